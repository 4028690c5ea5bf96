# CUI // SP-CTI
"""Timezone-aware datetime and duration helpers.

All engine timestamps are UTC-aware; these helpers keep the wire formats
(ISO-8601 with ``Z``, eMASS ``yyyy-MM-ddTHH:mm:ssZ``, ``HH:MM:SS`` durations)
in one place.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 UTC with ``Z`` suffix (second precision)."""
    if value is None:
        return None
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


def format_duration(value: Optional[timedelta]) -> Optional[str]:
    """``HH:MM:SS`` with hours allowed past 24 (``52:30:00``)."""
    if value is None:
        return None
    total = int(round(value.total_seconds()))
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    return f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"


def hours(value: Optional[timedelta]) -> float:
    return round(value.total_seconds() / 3600, 2) if value else 0.0
