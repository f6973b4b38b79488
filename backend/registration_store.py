import logging
import os
from typing import Optional, List

from sqlalchemy import case, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import (
    DuplicateEmailEventError,
    DuplicateKeyError,
    DuplicateUtrError,
    NoFieldsToUpdateError,
    NotFoundError,
    ValidationError,
)
from identifier_rules import REGISTRATION_ID_PREFIX, next_registration_id, normalize_utr, validate_utr
from models import EventCategory, PaymentStatus, Registration, RegistrationStatus
from schemas import RegistrationResponse
from time_utils import now_tz

logger = logging.getLogger(__name__)

REGISTRATION_ID_MAX_ATTEMPTS = int(os.environ.get("REGISTRATION_ID_MAX_ATTEMPTS", 5))

MUTABLE_FIELDS = frozenset({
    "event_name", "event_category", "event_fee",
    "participant_name", "participant_email", "participant_phone", "participant_college", "participant_roll",
    "team_size", "team_name", "team_captain", "team_members",
    "payment_status", "utr_number", "payment_date", "payment_proof",
    "registration_status", "admin_notes",
})

PAYMENT_STATUSES = {s.value for s in PaymentStatus}
EVENT_CATEGORIES = {c.value for c in EventCategory}


def classify_integrity_error(exc: IntegrityError) -> str:
    """Map a unique violation to ``utr``, ``email_event``, ``registration_id`` or ``other``."""
    diag = getattr(exc.orig, "diag", None)
    constraint = (getattr(diag, "constraint_name", None) or "").lower()
    if constraint:
        # Postgres names the violated index or constraint.
        if constraint == "ux_utr":
            return "utr"
        if constraint == "ux_email_event":
            return "email_event"
        if "registration_id" in constraint:
            return "registration_id"
        return "other"

    # SQLite only reports "UNIQUE constraint failed: <index or columns>".
    message = str(exc.orig).lower()
    if "ux_utr" in message or "registrations.utr_number" in message:
        return "utr"
    if "ux_email_event" in message or ("registrations.participant_email" in message and "registrations.event_name" in message):
        return "email_event"
    if "registrations.registration_id" in message:
        return "registration_id"
    return "other"


def conflict_for(kind: str):
    if kind == "utr":
        return DuplicateUtrError()
    if kind == "email_event":
        return DuplicateEmailEventError()
    return DuplicateKeyError()


def _normalize_utr_field(values: dict) -> None:
    if "utr_number" in values:
        values["utr_number"] = normalize_utr(values["utr_number"]) or None


def create(db: Session, fields: dict, prefix: str = REGISTRATION_ID_PREFIX) -> Registration:
    values = dict(fields)
    values.pop("registration_id", None)
    _normalize_utr_field(values)
    values.setdefault("team_members", [])

    for attempt in range(1, REGISTRATION_ID_MAX_ATTEMPTS + 1):
        registration_id = next_registration_id(db, prefix)
        row = Registration(registration_id=registration_id, **values)
        db.add(row)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            kind = classify_integrity_error(exc)
            if kind != "registration_id":
                raise conflict_for(kind) from exc
            logger.warning("Registration id %s was taken concurrently (attempt %s/%s)", registration_id, attempt, REGISTRATION_ID_MAX_ATTEMPTS)
            continue
        db.refresh(row)
        logger.info("Created registration %s for %s", row.registration_id, row.event_name)
        return row

    raise DuplicateKeyError("Could not allocate a registration ID, please retry the submission")


def find_by_id(db: Session, registration_id: str) -> Optional[Registration]:
    return db.query(Registration).filter(Registration.registration_id == registration_id).first()


def find_by_email_and_event(db: Session, email: str, event_name: str) -> Optional[Registration]:
    return (
        db.query(Registration)
        .filter(Registration.participant_email == (email or "").strip().lower(), Registration.event_name == event_name)
        .first()
    )


def find_all(
    db: Session,
    category: Optional[str] = None,
    payment_status: Optional[str] = None,
    event_name: Optional[str] = None,
    registration_status: Optional[str] = None,
    search: Optional[str] = None,
) -> List[Registration]:
    query = db.query(Registration)
    if category:
        query = query.filter(Registration.event_category == category)
    if payment_status:
        query = query.filter(Registration.payment_status == payment_status)
    if event_name:
        query = query.filter(Registration.event_name == event_name)
    if registration_status:
        query = query.filter(Registration.registration_status == registration_status)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Registration.registration_id.ilike(pattern),
            Registration.participant_name.ilike(pattern),
            Registration.participant_email.ilike(pattern),
            Registration.utr_number.ilike(pattern),
        ))
    return query.order_by(Registration.submitted_at.desc(), Registration.id.desc()).all()


def update(db: Session, registration_id: str, updates: dict) -> Registration:
    values = {key: value for key, value in updates.items() if key in MUTABLE_FIELDS}
    if not values:
        raise NoFieldsToUpdateError()
    if values.get("utr_number"):
        values["utr_number"] = validate_utr(values["utr_number"])
    _normalize_utr_field(values)
    if "payment_status" in values:
        _check_payment_status(values["payment_status"])
        # Keep payment_date consistent with the new status.
        status_values = _payment_status_values(values["payment_status"])
        status_values.pop("updated_at")
        if values["payment_status"] == PaymentStatus.FAILED.value:
            status_values.pop("payment_date", None)
        elif values["payment_status"] == PaymentStatus.CONFIRMED.value and values.get("payment_date"):
            status_values.pop("payment_date")
        values.update(status_values)

    row = find_by_id(db, registration_id)
    if not row:
        raise NotFoundError()

    for key, value in values.items():
        setattr(row, key, value)
    row.updated_at = now_tz()
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise conflict_for(classify_integrity_error(exc)) from exc
    db.refresh(row)
    return row


def _check_payment_status(status: str) -> None:
    if status not in PAYMENT_STATUSES:
        raise ValidationError("Invalid status")


def _payment_status_values(status: str, verified_by: Optional[str] = None) -> dict:
    now = now_tz()
    values = {"payment_status": status, "updated_at": now}
    if status == PaymentStatus.CONFIRMED.value:
        values["payment_date"] = now
        if verified_by:
            values["payment_verified_by"] = verified_by
            values["payment_verified_at"] = now
    elif status == PaymentStatus.PENDING.value:
        values["payment_date"] = None
    return values


def update_payment_status(db: Session, registration_id: str, status: str, verified_by: Optional[str] = None) -> Registration:
    _check_payment_status(status)
    modified = (
        db.query(Registration)
        .filter(Registration.registration_id == registration_id)
        .update(_payment_status_values(status, verified_by), synchronize_session=False)
    )
    if not modified:
        db.rollback()
        raise NotFoundError()
    db.commit()
    return find_by_id(db, registration_id)


def bulk_update_payment_status(db: Session, category: str, status: str, verified_by: Optional[str] = None) -> int:
    _check_payment_status(status)
    if category not in EVENT_CATEGORIES:
        raise ValidationError(f"Event category must be one of: {', '.join(c.value for c in EventCategory)}")
    modified = (
        db.query(Registration)
        .filter(Registration.event_category == category)
        .update(_payment_status_values(status, verified_by), synchronize_session=False)
    )
    db.commit()
    logger.info("Bulk payment status %s applied to %s %s registrations", status, modified, category)
    return modified


def verify_payment(db: Session, registration_id: str, raw_utr: str) -> Registration:
    utr = validate_utr(raw_utr)
    now = now_tz()
    try:
        modified = (
            db.query(Registration)
            .filter(Registration.registration_id == registration_id)
            .update({
                "utr_number": utr,
                "payment_status": PaymentStatus.CONFIRMED.value,
                "payment_date": now,
                "updated_at": now,
            }, synchronize_session=False)
        )
        if not modified:
            db.rollback()
            raise NotFoundError()
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        kind = classify_integrity_error(exc)
        raise (DuplicateUtrError() if kind in ("utr", "other") else conflict_for(kind)) from exc
    return find_by_id(db, registration_id)


def is_utr_available(db: Session, raw_utr: str) -> tuple:
    utr = validate_utr(raw_utr)
    taken = db.query(Registration.id).filter(func.upper(Registration.utr_number) == utr).first()
    return utr, taken is None


def delete(db: Session, registration_id: str) -> Optional[RegistrationResponse]:
    row = find_by_id(db, registration_id)
    if not row:
        return None
    snapshot = RegistrationResponse.model_validate(row)
    db.delete(row)
    db.commit()
    logger.info("Deleted registration %s", registration_id)
    return snapshot


def is_editable(row: Registration) -> bool:
    return row.payment_status == PaymentStatus.PENDING.value and row.registration_status == RegistrationStatus.ACTIVE.value


def to_email_format(row: Registration) -> dict:
    return {
        "registrationId": row.registration_id,
        "eventName": row.event_name,
        "eventCategory": row.event_category,
        "participantName": row.participant_name,
        "participantEmail": row.participant_email,
        "participantPhone": row.participant_phone,
        "participantCollege": row.participant_college,
        "teamName": row.team_name,
        "teamSize": len(row.team_members or []) + 1,
        "eventFee": float(row.event_fee),
        "paymentStatus": row.payment_status,
        "submittedAt": row.submitted_at,
    }


def get_statistics(db: Session) -> dict:
    confirmed = PaymentStatus.CONFIRMED.value
    total = db.query(func.count(Registration.id)).scalar() or 0

    status_rows = (
        db.query(Registration.payment_status, func.count(Registration.id))
        .group_by(Registration.payment_status)
        .all()
    )
    status_counts = {s: c for s, c in status_rows}

    revenue = (
        db.query(func.coalesce(func.sum(Registration.event_fee), 0))
        .filter(Registration.payment_status == confirmed)
        .scalar()
    )

    category_rows = (
        db.query(
            Registration.event_category,
            func.count(Registration.id),
            func.coalesce(func.sum(case((Registration.payment_status == confirmed, Registration.event_fee), else_=0)), 0),
        )
        .group_by(Registration.event_category)
        .order_by(Registration.event_category.asc())
        .all()
    )

    return {
        "total_registrations": total,
        "pending_payments": status_counts.get(PaymentStatus.PENDING.value, 0),
        "confirmed_payments": status_counts.get(confirmed, 0),
        "failed_payments": status_counts.get(PaymentStatus.FAILED.value, 0),
        "total_revenue": float(revenue or 0),
        "category_wise": [
            {"category": category, "count": count, "revenue": float(category_revenue or 0)}
            for category, count, category_revenue in category_rows
        ],
        "status_wise": [
            {"status": s.value, "count": status_counts.get(s.value, 0)}
            for s in PaymentStatus
        ],
    }
