import os
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

EXPORT_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def display_timezone() -> ZoneInfo:
    return ZoneInfo(os.environ.get("APP_TIMEZONE", "UTC"))


def now_tz() -> datetime:
    return datetime.now(timezone.utc)


def ensure_timezone(dt: datetime) -> datetime:
    # Naive values come back from SQLite, which stores UTC without an offset.
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(display_timezone())


def isoformat_or_none(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return ensure_timezone(dt).isoformat()


def format_for_export(dt: Optional[datetime]) -> str:
    if dt is None:
        return ""
    return ensure_timezone(dt).strftime(EXPORT_DATETIME_FORMAT)
