from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import registration_columns

import registration_store
from errors import (
    DuplicateEmailEventError,
    DuplicateUtrError,
    NoFieldsToUpdateError,
    NotFoundError,
    ValidationError,
)


def _create(db, **overrides):
    return registration_store.create(db, registration_columns(**overrides))


def test_create_normalizes_utr_and_defaults(db):
    row = _create(db, utr_number="abc 123 456")
    assert row.utr_number == "ABC123456"
    assert row.payment_status == "pending"
    assert row.registration_status == "active"
    assert row.team_members == []
    assert row.submitted_at is not None


def test_duplicate_email_and_event_conflicts(db):
    _create(db)
    with pytest.raises(DuplicateEmailEventError) as exc:
        _create(db)
    assert exc.value.status_code == 409
    # Same participant, different event is fine.
    assert _create(db, event_name="Paper Presentation").registration_id == "ESP20260002"


def test_utr_unique_across_registrations(db):
    _create(db, utr_number="UTR123456")
    with pytest.raises(DuplicateUtrError):
        _create(db, participant_email="other@gmail.com", utr_number="utr 123 456")


def test_rows_without_utr_do_not_collide(db):
    _create(db)
    _create(db, participant_email="other@gmail.com")
    assert len(registration_store.find_all(db)) == 2


def test_find_all_filters(db):
    _create(db)
    _create(db, participant_email="dancer@gmail.com", event_name="Solo Dance", event_category="Cultural")
    _create(db, participant_email="coder@gmail.com", participant_name="Karthik S")

    assert len(registration_store.find_all(db, category="Technical")) == 2
    assert [r.event_name for r in registration_store.find_all(db, event_name="Solo Dance")] == ["Solo Dance"]
    assert [r.participant_email for r in registration_store.find_all(db, search="karthik")] == ["coder@gmail.com"]
    assert len(registration_store.find_all(db, payment_status="confirmed")) == 0


def test_find_all_newest_first(db):
    first = _create(db)
    second = _create(db, participant_email="b@gmail.com")
    ids = [r.registration_id for r in registration_store.find_all(db)]
    assert ids == [second.registration_id, first.registration_id]


def test_payment_status_controls_payment_date(db):
    row = _create(db)
    confirmed = registration_store.update_payment_status(db, row.registration_id, "confirmed", verified_by="desk-1")
    assert confirmed.payment_date is not None
    assert confirmed.payment_verified_by == "desk-1"

    pending = registration_store.update_payment_status(db, row.registration_id, "pending")
    assert pending.payment_status == "pending"
    assert pending.payment_date is None


def test_payment_status_rejects_unknown_values(db):
    row = _create(db)
    with pytest.raises(ValidationError):
        registration_store.update_payment_status(db, row.registration_id, "refunded")
    with pytest.raises(NotFoundError):
        registration_store.update_payment_status(db, "ESP20269999", "confirmed")


def test_bulk_update_counts_only_category(db):
    _create(db)
    _create(db, participant_email="b@gmail.com")
    _create(db, participant_email="c@gmail.com", event_category="Sports", event_name="Chess")
    assert registration_store.bulk_update_payment_status(db, "Technical", "confirmed") == 2
    assert registration_store.bulk_update_payment_status(db, "E-Sports", "confirmed") == 0
    with pytest.raises(ValidationError):
        registration_store.bulk_update_payment_status(db, "Music", "confirmed")


def test_verify_payment(db):
    row = _create(db)
    verified = registration_store.verify_payment(db, row.registration_id, "xyz 789")
    assert verified.utr_number == "XYZ789"
    assert verified.payment_status == "confirmed"
    assert verified.payment_date is not None

    again = registration_store.verify_payment(db, row.registration_id, "XYZ789")
    assert again.utr_number == "XYZ789"


def test_verify_payment_conflicts_and_missing(db):
    first = _create(db)
    second = _create(db, participant_email="b@gmail.com")
    registration_store.verify_payment(db, first.registration_id, "XYZ789")
    with pytest.raises(DuplicateUtrError):
        registration_store.verify_payment(db, second.registration_id, "xyz789")
    with pytest.raises(NotFoundError):
        registration_store.verify_payment(db, "ESP20260999", "ABC123456")


def test_utr_availability(db):
    row = _create(db)
    registration_store.verify_payment(db, row.registration_id, "ABC123456")
    assert registration_store.is_utr_available(db, "abc 123 456") == ("ABC123456", False)
    assert registration_store.is_utr_available(db, "ZZZ999999") == ("ZZZ999999", True)


def test_update_uses_allow_list(db):
    row = _create(db)
    with pytest.raises(NoFieldsToUpdateError):
        registration_store.update(db, row.registration_id, {"registration_id": "HACKED", "ip_address": "1.1.1.1"})
    with pytest.raises(NotFoundError):
        registration_store.update(db, "ESP20260999", {"admin_notes": "x"})

    updated = registration_store.update(db, row.registration_id, {"admin_notes": "ID verified", "registration_id": "HACKED"})
    assert updated.admin_notes == "ID verified"
    assert updated.registration_id == row.registration_id


def test_update_maps_unique_violations(db):
    _create(db)
    other = _create(db, participant_email="b@gmail.com")
    with pytest.raises(DuplicateEmailEventError):
        registration_store.update(db, other.registration_id, {"participant_email": "asha.rao@gmail.com"})


def test_delete_returns_snapshot(db):
    row = _create(db)
    snapshot = registration_store.delete(db, row.registration_id)
    assert snapshot.registration_id == row.registration_id
    assert registration_store.find_by_id(db, row.registration_id) is None
    assert registration_store.delete(db, row.registration_id) is None


def test_editable_and_email_format(db):
    row = _create(db, team_members=[{"name": "Ravi", "email": "ravi@gmail.com"}])
    assert registration_store.is_editable(row)
    payload = registration_store.to_email_format(row)
    assert payload["registrationId"] == row.registration_id
    assert payload["teamSize"] == 2
    assert payload["eventFee"] == 200.0

    registration_store.update_payment_status(db, row.registration_id, "confirmed")
    db.refresh(row)
    assert not registration_store.is_editable(row)


def test_statistics(db):
    first = _create(db, event_fee=150)
    _create(db, participant_email="b@gmail.com", event_fee=150)
    dance = _create(db, participant_email="c@gmail.com", event_category="Cultural", event_name="Solo Dance", event_fee=100)
    registration_store.update_payment_status(db, first.registration_id, "confirmed")
    registration_store.update_payment_status(db, dance.registration_id, "failed")

    stats = registration_store.get_statistics(db)
    assert stats["total_registrations"] == 3
    assert stats["pending_payments"] == 1
    assert stats["confirmed_payments"] == 1
    assert stats["failed_payments"] == 1
    assert stats["total_revenue"] == 150.0
    assert stats["category_wise"] == [
        {"category": "Cultural", "count": 1, "revenue": 0.0},
        {"category": "Technical", "count": 2, "revenue": 150.0},
    ]
    assert {s["status"]: s["count"] for s in stats["status_wise"]} == {"pending": 1, "confirmed": 1, "failed": 1}


def test_find_by_email_and_event_ignores_case(db):
    row = _create(db)
    assert registration_store.find_by_email_and_event(db, " Asha.Rao@Gmail.com ", "Code Sprint").id == row.id
    assert registration_store.find_by_email_and_event(db, "asha.rao@gmail.com", "Solo Dance") is None


def test_update_payment_status_keeps_payment_date_invariant(db):
    row = _create(db)
    confirmed = registration_store.update(db, row.registration_id, {"payment_status": "confirmed"})
    assert confirmed.payment_date is not None

    failed = registration_store.update(db, row.registration_id, {"payment_status": "failed"})
    assert failed.payment_date is not None

    pending = registration_store.update(db, row.registration_id, {"payment_status": "pending", "admin_notes": "reopened"})
    assert pending.payment_date is None
    assert pending.admin_notes == "reopened"

    with pytest.raises(ValidationError):
        registration_store.update(db, row.registration_id, {"payment_status": "refunded"})


def test_update_validates_utr(db):
    row = _create(db)
    with pytest.raises(ValidationError):
        registration_store.update(db, row.registration_id, {"utr_number": "a!"})
    assert registration_store.find_by_id(db, row.registration_id).utr_number is None

    updated = registration_store.update(db, row.registration_id, {"utr_number": "abc 123 456"})
    assert updated.utr_number == "ABC123456"


class _PgUniqueViolation(Exception):
    def __init__(self, constraint_name, message):
        super().__init__(message)
        self.diag = SimpleNamespace(constraint_name=constraint_name)


def _integrity_error(orig):
    return IntegrityError("UPDATE registrations SET ...", {}, orig)


def test_classify_integrity_error_prefers_constraint_name():
    # Key values in the detail text must not decide the classification.
    misleading = "duplicate key value violates unique constraint\nDETAIL: Key (participant_email, event_name)=(utr_number@gmail.com, registration_id)"
    assert registration_store.classify_integrity_error(_integrity_error(_PgUniqueViolation("ux_email_event", misleading))) == "email_event"
    assert registration_store.classify_integrity_error(_integrity_error(_PgUniqueViolation("ux_utr", misleading))) == "utr"
    assert registration_store.classify_integrity_error(
        _integrity_error(_PgUniqueViolation("registrations_registration_id_key", misleading))
    ) == "registration_id"
    assert registration_store.classify_integrity_error(_integrity_error(_PgUniqueViolation("registrations_pkey", misleading))) == "other"


def test_classify_integrity_error_from_sqlite_message():
    def classify(message):
        return registration_store.classify_integrity_error(_integrity_error(Exception(message)))

    assert classify("UNIQUE constraint failed: index 'ux_utr'") == "utr"
    assert classify("UNIQUE constraint failed: registrations.participant_email, registrations.event_name") == "email_event"
    assert classify("UNIQUE constraint failed: registrations.registration_id") == "registration_id"
    assert classify("NOT NULL constraint failed: registrations.event_name") == "other"
