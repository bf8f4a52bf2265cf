"""Duration parsing utilities.

Durations show up in cascade step delays and group expiry windows. They may
be given as ``timedelta`` objects, numeric seconds, or strings in either a
human-readable form ("15m", "1h30m") or ISO-8601 form ("PT15M", "P2D").
"""

import re
from datetime import timedelta
from typing import Union

DurationLike = Union[timedelta, int, float, str]

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}


class DurationParseError(ValueError):
    """Raised when a duration value cannot be parsed."""

    pass


def parse_duration(duration_str: str, allow_zero: bool = False) -> int:
    """Parse a duration string to seconds.

    Args:
        duration_str: Duration string to parse
        allow_zero: Accept durations that add up to zero seconds

    Returns:
        Duration in seconds

    Raises:
        DurationParseError: If the duration string is invalid

    Examples:
        >>> parse_duration("15m")
        900
        >>> parse_duration("PT1H")
        3600
    """
    duration_str = duration_str.strip()

    if not duration_str:
        raise DurationParseError("Duration string cannot be empty")

    if duration_str.upper().startswith("P"):
        total_seconds = _parse_iso8601_duration(duration_str)
    else:
        total_seconds = _parse_human_readable_duration(duration_str)

    if total_seconds == 0 and not allow_zero:
        raise DurationParseError(f"Duration cannot be zero: '{duration_str}'")

    return total_seconds


def _parse_iso8601_duration(duration_str: str) -> int:
    """Parse ISO-8601 durations of the form P[n]DT[n]H[n]M[n]S."""
    duration_str = duration_str.upper()

    pattern = r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?)?$"
    match = re.match(pattern, duration_str)

    if not match or duration_str in ("P", "PT"):
        raise DurationParseError(
            f"Invalid ISO-8601 duration format: '{duration_str}'. "
            "Expected format like 'P2D', 'PT1H30M', 'PT15M', or 'PT30S'"
        )

    days, hours, minutes, seconds = match.groups()

    total_seconds = 0
    if days:
        total_seconds += int(days) * _UNIT_SECONDS["d"]
    if hours:
        total_seconds += int(hours) * _UNIT_SECONDS["h"]
    if minutes:
        total_seconds += int(minutes) * _UNIT_SECONDS["m"]
    if seconds:
        total_seconds += int(float(seconds))

    return total_seconds


def _parse_human_readable_duration(duration_str: str) -> int:
    """Parse human-readable durations such as 30s, 15m, 1h30m or 2d12h."""
    matches = re.findall(r"(\d+)\s*([smhd])", duration_str.lower())

    if not matches:
        raise DurationParseError(
            f"Invalid duration format: '{duration_str}'. "
            "Expected format like '15m', '1h', '30s', '2d', or combinations like '1h30m'"
        )

    # The whole string must be made of number/unit pairs
    parsed_str = "".join(f"{num}{unit}" for num, unit in matches)
    cleaned_input = re.sub(r"\s+", "", duration_str.lower())
    if parsed_str != cleaned_input:
        raise DurationParseError(
            f"Invalid characters in duration: '{duration_str}'. "
            "Use only digits and units: s (seconds), m (minutes), h (hours), d (days)"
        )

    return sum(int(num) * _UNIT_SECONDS[unit] for num, unit in matches)


def is_duration(value: object) -> bool:
    """Check whether value is an acceptable non-negative duration."""
    try:
        to_seconds(value)
    except DurationParseError:
        return False
    return True


def to_seconds(value: DurationLike) -> float:
    """Convert a duration-like value to a number of seconds.

    Args:
        value: timedelta, non-negative int/float seconds, or duration string

    Returns:
        Duration in seconds as a float

    Raises:
        DurationParseError: If the value is not a valid non-negative duration
    """
    if isinstance(value, bool):
        raise DurationParseError(f"Duration must not be a boolean: {value!r}")

    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    elif isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        seconds = float(parse_duration(value, allow_zero=True))
    else:
        raise DurationParseError(
            f"Duration must be a timedelta, numeric seconds or a duration string, got: {type(value).__name__}"
        )

    if seconds < 0:
        raise DurationParseError(f"Duration cannot be negative: {value!r}")

    return seconds
