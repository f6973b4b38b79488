import pytest
from sqlalchemy import create_engine, text

import bootstrap
import database
import run_migrations
from database import DatabaseUnavailableError, check_database_health, wait_for_database


def test_wait_for_database_connects(fresh_db):
    wait_for_database(max_attempts=1, base_delay=0)


def test_wait_for_database_gives_up(monkeypatch, tmp_path):
    unreachable = create_engine(f"sqlite:///{tmp_path / 'missing' / 'nested' / 'fest.db'}")
    monkeypatch.setattr(database, "engine", unreachable)
    with pytest.raises(DatabaseUnavailableError):
        wait_for_database(max_attempts=2, base_delay=0)
    assert check_database_health() == {"status": "error", "connected": False}


def test_health_reports_dialect(fresh_db):
    assert check_database_health() == {"status": "connected", "connected": True, "dialect": "sqlite"}


def test_unique_indexes_present_after_create_all(fresh_db):
    assert bootstrap.missing_indexes() == set()


def test_ensure_unique_indexes_restores_dropped_index(fresh_db):
    with fresh_db.begin() as conn:
        conn.execute(text("DROP INDEX ux_utr"))
    assert bootstrap.missing_indexes() == {"ux_utr"}

    bootstrap.ensure_unique_indexes()
    assert bootstrap.missing_indexes() == set()


def test_run_migrations_check(fresh_db):
    assert run_migrations.main(["--check", "--max-attempts", "1"]) == 0
    with fresh_db.begin() as conn:
        conn.execute(text("DROP INDEX ux_email_event"))
    assert run_migrations.main(["--check", "--max-attempts", "1"]) == 2
    assert run_migrations.main(["--max-attempts", "1"]) == 0
    assert bootstrap.missing_indexes() == set()
