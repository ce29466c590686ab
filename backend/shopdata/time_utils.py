from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


# Matches the textual timestamps written by the snapshot codec (and older
# snapshots written with a trailing offset or no fractional seconds).
ISO_DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}")


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


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

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with millisecond precision and trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc)
    return dt_utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def coerce_datetime(value) -> Optional[datetime]:
    """Accept a datetime, a date or an ISO string; return UTC-naive datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    return parse_iso_datetime(str(value))


def start_of_day(dt: datetime) -> datetime:
    return datetime.combine(dt.date(), time.min)


def end_of_day(dt: datetime) -> datetime:
    return datetime.combine(dt.date(), time.max)


def days_between(start: datetime, end: datetime) -> int:
    """Whole days covered by an inclusive [start, end] window (at least 1)."""
    span = end - start
    days = span.days + (1 if span.seconds or span.microseconds else 0)
    return max(1, days)


def shift_window(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    """The window of equal length immediately preceding [start, end]."""
    length = end - start
    prev_end = start - timedelta(microseconds=1)
    return prev_end - length, prev_end


def resolve_window(start=None, end=None) -> tuple[Optional[datetime], Optional[datetime]]:
    """
    Normalize inclusive [start, end] bounds for date-window queries.

    Either bound may be None (unbounded), a datetime/date or an ISO string.
    A bare date as `end` covers that whole day. Unparseable text raises
    ValueError.
    """
    start_dt = coerce_datetime(start)
    end_dt = coerce_datetime(end)
    if end_dt is not None and _is_bare_date(end):
        end_dt = end_of_day(end_dt)
    return start_dt, end_dt


def _is_bare_date(value) -> bool:
    if isinstance(value, datetime):
        return False
    if isinstance(value, date):
        return True
    return isinstance(value, str) and len(value.strip()) == 10


def in_window(dt: Optional[datetime], start: Optional[datetime], end: Optional[datetime]) -> bool:
    if dt is None:
        return False
    if start is not None and dt < start:
        return False
    if end is not None and dt > end:
        return False
    return True
