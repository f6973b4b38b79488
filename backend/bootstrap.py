from __future__ import annotations

import logging

from sqlalchemy import text

from database import Base, engine, wait_for_database
import models  # noqa: F401  registers tables on Base.metadata

logger = logging.getLogger(__name__)

UNIQUE_INDEX_DDL = {
    "ux_email_event": """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_email_event
        ON registrations (participant_email, event_name)
    """,
    "ux_utr": """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_utr
        ON registrations (UPPER(utr_number))
        WHERE utr_number IS NOT NULL
    """,
}


def _index_names(conn) -> set:
    if conn.dialect.name == "sqlite":
        rows = conn.execute(
            text("SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = 'registrations'")
        ).fetchall()
    else:
        rows = conn.execute(
            text("SELECT indexname FROM pg_indexes WHERE tablename = 'registrations'")
        ).fetchall()
    return {row[0] for row in rows}


def missing_indexes() -> set:
    with engine.begin() as conn:
        return set(UNIQUE_INDEX_DDL) - _index_names(conn)


def ensure_unique_indexes() -> None:
    # create_all skips indexes on tables that already existed.
    with engine.begin() as conn:
        present = _index_names(conn)
        for name, ddl in UNIQUE_INDEX_DDL.items():
            if name not in present:
                conn.execute(text(ddl))
                logger.info("Created index %s", name)


def run_bootstrap_migrations(wait: bool = True) -> None:
    if wait:
        wait_for_database()
    Base.metadata.create_all(bind=engine)
    ensure_unique_indexes()
    logger.info("Registration schema is up to date.")
