# Overview: UTC time helpers; the ledgers store UTC-naive datetimes and emit ISO-8601 with Z.

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc_naive(dt: datetime) -> datetime:
    """Aware datetimes are converted to UTC; naive ones are taken as UTC already."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string into a UTC-naive datetime.

    None or "" gives None. A bare date is midnight UTC, a naive time is
    read as UTC, and "Z" / "+HH:MM" offsets are converted.
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return as_utc_naive(datetime.fromisoformat(s))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with a trailing 'Z', to the second. Naive values are UTC."""
    if dt is None:
        return None
    return as_utc_naive(dt).replace(microsecond=0).isoformat() + "Z"


# Reporting windows

def start_of_day(dt: datetime) -> datetime:
    return datetime(dt.year, dt.month, dt.day)


def start_of_month(dt: datetime) -> datetime:
    return datetime(dt.year, dt.month, 1)


def days_between(earlier: datetime | date, later: datetime | date) -> int:
    """Whole days from earlier to later (negative if later is before earlier)."""
    if isinstance(earlier, datetime):
        earlier = earlier.date()
    if isinstance(later, datetime):
        later = later.date()
    return (later - earlier).days
