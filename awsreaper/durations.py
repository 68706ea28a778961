"""
Duration string parsing.

Durations are written the way Go writes them ("72h", "1h30m", "90s"), with an
extra "d" unit for whole days.
"""

import re
from datetime import timedelta
from typing import Union

_UNITS = {
    "ms": 0.001,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}

_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d)")
_WHOLE = re.compile(r"^(?:\d+(?:\.\d+)?(?:ms|s|m|h|d))+$")


def parse_duration(value: str) -> timedelta:
    """
    Parse a duration string into a timedelta.

    Args:
        value: Duration such as "72h", "1h30m" or "7d"

    Returns:
        The parsed duration

    Raises:
        ValueError: If the string is not a valid duration
    """
    text = value.strip() if isinstance(value, str) else ""
    if text == "0":
        return timedelta(0)
    if not _WHOLE.match(text):
        raise ValueError(f"Invalid duration: {value!r}")

    seconds = 0.0
    for amount, unit in _PART.findall(text):
        seconds += float(amount) * _UNITS[unit]
    return timedelta(seconds=seconds)


def coerce_duration(value: Union[str, int, float, timedelta]) -> timedelta:
    """Accept a duration string, a number of seconds, or a timedelta."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    return parse_duration(value)


def format_duration(delta: timedelta) -> str:
    """
    Format a timedelta compactly, e.g. "3d", "36h", "1h30m".

    Whole days are written as days, everything else as h/m/s parts.
    """
    total = int(delta.total_seconds())
    if total == 0:
        return "0s"
    if total % 86400 == 0:
        return f"{total // 86400}d"

    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds:
        parts.append(f"{seconds}s")
    return "".join(parts)
