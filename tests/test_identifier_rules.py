import pytest

from conftest import registration_columns

import registration_store
from errors import DuplicateKeyError, ValidationError
from identifier_rules import (
    format_registration_id,
    next_registration_id,
    normalize_utr,
    parse_registration_number,
    validate_utr,
)
from models import Registration


def test_normalize_utr():
    assert normalize_utr("xyz 789") == "XYZ789"
    assert normalize_utr("  ab\tcd 12 34 ") == "ABCD1234"
    assert normalize_utr(None) == ""


def test_normalize_utr_is_idempotent():
    for raw in ("xyz 789", "Abc123456", " 4 0 4 ", ""):
        once = normalize_utr(raw)
        assert normalize_utr(once) == once


def test_validate_utr():
    assert validate_utr("xyz 789") == "XYZ789"
    with pytest.raises(ValidationError) as exc:
        validate_utr("   ")
    assert exc.value.detail == "UTR is required"
    with pytest.raises(ValidationError) as exc:
        validate_utr("ab-12345")
    assert exc.value.detail == "Invalid UTR format"
    with pytest.raises(ValidationError):
        validate_utr("A1B2")


def test_registration_id_format():
    assert format_registration_id(1) == "ESP20260001"
    assert format_registration_id(42, prefix="FEST") == "FEST0042"
    assert format_registration_id(12345) == "ESP202612345"
    assert parse_registration_number("ESP20260042") == 42
    assert parse_registration_number("OTHER0042") is None
    assert parse_registration_number("ESP2026abcd") is None


def test_first_registration_id(db):
    assert next_registration_id(db) == "ESP20260001"


def test_registration_ids_increase(db):
    first = registration_store.create(db, registration_columns())
    second = registration_store.create(db, registration_columns(participant_email="second@gmail.com"))
    third = registration_store.create(db, registration_columns(participant_email="third@gmail.com"))
    assert [first.registration_id, second.registration_id, third.registration_id] == [
        "ESP20260001", "ESP20260002", "ESP20260003",
    ]


def test_registration_ids_grow_past_four_digits(db):
    db.add(Registration(registration_id="ESP20269999", **registration_columns()))
    db.commit()
    assert next_registration_id(db) == "ESP202610000"
    registration_store.create(db, registration_columns(participant_email="next@gmail.com"))
    assert next_registration_id(db) == "ESP202610001"


def test_create_retries_when_id_taken(db, monkeypatch):
    registration_store.create(db, registration_columns())
    real_next = registration_store.next_registration_id
    calls = []

    def stale_then_real(session, prefix):
        calls.append(prefix)
        if len(calls) == 1:
            return "ESP20260001"
        return real_next(session, prefix)

    monkeypatch.setattr(registration_store, "next_registration_id", stale_then_real)
    row = registration_store.create(db, registration_columns(participant_email="late@gmail.com"))
    assert row.registration_id == "ESP20260002"
    assert len(calls) == 2


def test_create_gives_up_after_max_attempts(db, monkeypatch):
    registration_store.create(db, registration_columns())
    monkeypatch.setattr(registration_store, "next_registration_id", lambda session, prefix: "ESP20260001")
    with pytest.raises(DuplicateKeyError):
        registration_store.create(db, registration_columns(participant_email="late@gmail.com"))
    assert db.query(Registration).count() == 1
