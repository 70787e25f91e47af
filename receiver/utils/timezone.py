"""
Timezone utilities for consistent datetime handling.

PostgreSQL hands back timezone-aware datetimes while SQLite hands back naive
ones, and comparing the two raises TypeError. Everything in the tracker works
in naive UTC; use these helpers at the boundaries.
"""

from datetime import datetime, timezone as tz
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC time as a naive datetime.

    Returns:
        Current UTC time without tzinfo
    """
    return datetime.now(tz.utc).replace(tzinfo=None)


def normalize_datetime(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Convert a datetime to naive UTC for safe comparisons.

    Args:
        dt: A datetime that may or may not have timezone info

    Returns:
        Naive datetime in UTC, or None if input was None

    Examples:
        >>> aware = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        >>> normalize_datetime(aware)
        datetime.datetime(2024, 1, 1, 12, 0)
    """
    if dt is None:
        return None

    if dt.tzinfo is not None:
        if dt.tzinfo != tz.utc:
            dt = dt.astimezone(tz.utc)
        return dt.replace(tzinfo=None)

    return dt


def seconds_between(earlier: Optional[datetime], later: Optional[datetime]) -> Optional[float]:
    """Elapsed seconds between two datetimes of either flavour, None if either is missing."""
    if earlier is None or later is None:
        return None
    return (normalize_datetime(later) - normalize_datetime(earlier)).total_seconds()


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO 8601 date or datetime string into naive UTC.

    Accepts a trailing 'Z'. Returns None for empty input and raises
    ValueError for malformed input.
    """
    if not value:
        return None
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    return normalize_datetime(datetime.fromisoformat(value))
