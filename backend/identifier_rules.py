import os
import re
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from errors import ValidationError
from models import Registration

REGISTRATION_ID_PREFIX = os.environ.get("REGISTRATION_ID_PREFIX", "ESP2026")
REGISTRATION_ID_DIGITS = 4
UTR_RE = re.compile(r"^[A-Z0-9]{6,50}$")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_utr(value: Optional[str]) -> str:
    return _WHITESPACE_RE.sub("", str(value or "").strip().upper())


def validate_utr(value: Optional[str]) -> str:
    normalized = normalize_utr(value)
    if not normalized:
        raise ValidationError("UTR is required")
    if not UTR_RE.match(normalized):
        raise ValidationError("Invalid UTR format")
    return normalized


def format_registration_id(number: int, prefix: str = REGISTRATION_ID_PREFIX) -> str:
    return f"{prefix}{number:0{REGISTRATION_ID_DIGITS}d}"


def parse_registration_number(registration_id: Optional[str], prefix: str = REGISTRATION_ID_PREFIX) -> Optional[int]:
    if not registration_id or not registration_id.startswith(prefix):
        return None
    suffix = registration_id[len(prefix):]
    if not suffix.isdigit():
        return None
    return int(suffix)


def next_registration_id(db: Session, prefix: str = REGISTRATION_ID_PREFIX) -> str:
    # Longer ids sort after shorter ones so the count can grow past 9999.
    latest = (
        db.query(Registration.registration_id)
        .filter(Registration.registration_id.like(f"{prefix}%"))
        .order_by(func.length(Registration.registration_id).desc(), Registration.registration_id.desc())
        .first()
    )
    current = parse_registration_number(latest[0], prefix) if latest else None
    return format_registration_id((current or 0) + 1, prefix)
