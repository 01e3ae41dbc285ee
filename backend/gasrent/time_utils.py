from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional


ONE_DAY = timedelta(days=1)


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime | date]) -> Optional[datetime]:
    """
    Normalize a date or datetime to a UTC-naive datetime.

    - None -> None
    - date (no time part) -> midnight of that day
    - aware datetime -> converted to UTC, tzinfo stripped
    - naive datetime -> interpreted as UTC, returned unchanged
    """
    if value is None:
        return None
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" is interpreted as midnight UTC
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    return to_naive_utc(datetime.fromisoformat(s))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def started_days(delta: timedelta) -> int:
    """
    Number of days a positive interval touches, rounded up.

    3 days exactly -> 3, 3 days and 1 second -> 4. Zero or negative -> 0.
    """
    if delta <= timedelta(0):
        return 0
    whole, remainder = divmod(delta, ONE_DAY)
    return whole + (1 if remainder else 0)
