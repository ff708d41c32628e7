"""Human-readable duration strings used in worker configuration.

"1 year", "5 minutes", "30s" and friends are parsed to milliseconds. An
uppercase "M" suffix means minutes; months are rejected because their length
varies.
"""

from __future__ import annotations

import re

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS
WEEK_MS = 7 * DAY_MS
YEAR_MS = 365.25 * DAY_MS

_UNITS: dict[str, float] = {
    "y": YEAR_MS,
    "yr": YEAR_MS,
    "yrs": YEAR_MS,
    "year": YEAR_MS,
    "years": YEAR_MS,
    "w": WEEK_MS,
    "week": WEEK_MS,
    "weeks": WEEK_MS,
    "d": DAY_MS,
    "day": DAY_MS,
    "days": DAY_MS,
    "h": HOUR_MS,
    "hr": HOUR_MS,
    "hrs": HOUR_MS,
    "hour": HOUR_MS,
    "hours": HOUR_MS,
    "m": MINUTE_MS,
    "min": MINUTE_MS,
    "mins": MINUTE_MS,
    "minute": MINUTE_MS,
    "minutes": MINUTE_MS,
    "s": SECOND_MS,
    "sec": SECOND_MS,
    "secs": SECOND_MS,
    "second": SECOND_MS,
    "seconds": SECOND_MS,
    "ms": 1,
    "msec": 1,
    "msecs": 1,
    "millisecond": 1,
    "milliseconds": 1,
}

_DURATION_RE = re.compile(r"^(-?(?:\d+)?\.?\d+)\s*([a-zA-Z]*)$")


class DurationFormatError(ValueError):
    """Raised for unparseable, non-positive or month-based durations."""


def parse_duration(value: str) -> float:
    """Parse a duration string to milliseconds.

    Raises:
        DurationFormatError: empty, malformed, unsupported unit, or <= 0.
    """
    raw = (value or "").strip()
    match = _DURATION_RE.match(raw)
    if not match:
        raise DurationFormatError(
            f'Invalid duration format: "{value}". Use e.g. "1 year", "365 days", "5 minutes"'
        )

    amount = float(match.group(1))
    unit = match.group(2)
    if unit == "M":
        multiplier = MINUTE_MS
    elif unit == "":
        multiplier = 1
    else:
        lowered = unit.lower()
        if lowered.startswith("mo"):
            raise DurationFormatError(
                f'Invalid duration format: "{value}". Months are not supported, '
                'use "365 days" or "1 year"'
            )
        if lowered not in _UNITS:
            raise DurationFormatError(f'Invalid duration format: "{value}"')
        multiplier = _UNITS[lowered]

    result = amount * multiplier
    if result <= 0:
        raise DurationFormatError(
            f'Invalid duration format: "{value}". Duration must be positive'
        )
    return result


def format_duration_ms(ms: float, long: bool = False) -> str:
    """Render milliseconds compactly ("7d") or in words ("7 days")."""
    abs_ms = abs(ms)
    for threshold, short, word in (
        (DAY_MS, "d", "day"),
        (HOUR_MS, "h", "hour"),
        (MINUTE_MS, "m", "minute"),
        (SECOND_MS, "s", "second"),
    ):
        if abs_ms >= threshold:
            count = round(ms / threshold)
            if long:
                plural = "s" if abs_ms >= threshold * 1.5 else ""
                return f"{count} {word}{plural}"
            return f"{count}{short}"
    return f"{int(ms)} ms" if long else f"{int(ms)}ms"
