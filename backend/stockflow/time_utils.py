from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 date or datetime string into a UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" is midnight UTC of that day
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def normalize_datetime(value: Union[datetime, date, str, None], *, default_now: bool = True) -> Optional[datetime]:
    """
    Coerce a business timestamp to canonical UTC-naive datetime.

    Raises ValueError on unparseable strings or unsupported types.
    """
    if value is None:
        return utcnow() if default_now else None

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    if isinstance(value, str):
        dt = parse_iso_datetime(value)
        if dt is None:
            if default_now:
                return utcnow()
            return None
        return dt

    raise ValueError(f"unsupported datetime value: {value!r}")


def window_start(days: int, *, now: Optional[datetime] = None) -> datetime:
    """Start of a trailing window of `days` days ending at `now`."""
    return (now or utcnow()) - timedelta(days=days)


def days_since(value: Optional[datetime], *, now: Optional[datetime] = None) -> int:
    """Whole days elapsed since `value` (floored, never negative)."""
    if value is None:
        return 0
    delta = (now or utcnow()) - value
    return max(0, delta.days)


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


def to_iso_date(value: Optional[Union[date, datetime]]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()
