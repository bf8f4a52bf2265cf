"""Timestamp utilities for UTC handling and storage formatting.

All timestamps in this package are timezone-aware UTC datetimes. The
persistence layer stores them as fixed-width ISO 8601 strings so that
lexicographic ordering matches chronological ordering.
"""

from datetime import datetime, timezone
from typing import Optional

STORAGE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current UTC time with timezone info

    Example:
        >>> now = utc_now()
        >>> now.tzinfo == timezone.utc
        True
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware and in UTC.

    If the datetime is timezone-naive, it's treated as UTC.
    If the datetime has a different timezone, it's converted to UTC.

    Args:
        dt: Datetime to convert (can be None)

    Returns:
        Timezone-aware datetime in UTC, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def format_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime as a fixed-width ISO 8601 string for storage.

    Args:
        dt: Datetime object (naive values are treated as UTC)

    Returns:
        ISO 8601 formatted string with microseconds and 'Z' suffix, or None

    Example:
        >>> format_timestamp(datetime(2025, 11, 4, 12, 0, tzinfo=timezone.utc))
        '2025-11-04T12:00:00.000000Z'
    """
    dt_utc = ensure_utc(dt)
    if dt_utc is None:
        return None
    return dt_utc.strftime(STORAGE_FORMAT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO 8601 string back into a UTC datetime.

    Accepts values with or without microseconds and with or without the
    trailing 'Z'.

    Args:
        value: ISO 8601 formatted string

    Returns:
        Timezone-aware datetime in UTC or None
    """
    if value is None or value == "":
        return None

    value = value.rstrip("Z")

    try:
        dt = datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%f")
    except ValueError:
        dt = datetime.strptime(value, "%Y-%m-%dT%H:%M:%S")

    return dt.replace(tzinfo=timezone.utc)
