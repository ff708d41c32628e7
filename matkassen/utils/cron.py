"""Minimal five-field cron matching for the worker's periodic jobs.

Supports numbers, "*", ranges ("1-5"), lists ("1,3") and steps ("*/15").
Day-of-week uses cron numbering: Sunday is 0 (or 7), Monday is 1.
"""

from __future__ import annotations

from datetime import datetime

from matkassen.utils.clock import get_zone

_FIELD_RANGES = (
    (0, 59),  # minute
    (0, 23),  # hour
    (1, 31),  # day of month
    (1, 12),  # month
    (0, 7),  # day of week
)


class CronFormatError(ValueError):
    pass


def _expand_field(field: str, low: int, high: int) -> set[int]:
    values: set[int] = set()
    for part in field.split(","):
        step = 1
        if "/" in part:
            part, step_raw = part.split("/", 1)
            step = int(step_raw)
            if step <= 0:
                raise CronFormatError(f"Invalid step in cron field: {field!r}")
        if part == "*":
            start, end = low, high
        elif "-" in part:
            start_raw, end_raw = part.split("-", 1)
            start, end = int(start_raw), int(end_raw)
        else:
            start = end = int(part)
        if start < low or end > high or start > end:
            raise CronFormatError(f"Cron field out of range: {field!r}")
        values.update(range(start, end + 1, step))
    return values


def parse_cron(expression: str) -> list[set[int]]:
    parts = expression.split()
    if len(parts) != 5:
        raise CronFormatError(f"Cron expression needs 5 fields: {expression!r}")
    try:
        fields = [
            _expand_field(part, low, high)
            for part, (low, high) in zip(parts, _FIELD_RANGES)
        ]
    except CronFormatError:
        raise
    except ValueError as exc:
        raise CronFormatError(f"Invalid cron expression: {expression!r}") from exc
    if 7 in fields[4]:
        fields[4].add(0)
    return fields


def should_run_cron(expression: str, now: datetime, tz: str | None = None) -> bool:
    """True when `now` (converted to the local zone) matches the expression."""
    minute, hour, dom, month, dow = parse_cron(expression)
    local_now = now.astimezone(get_zone(tz))
    cron_weekday = (local_now.weekday() + 1) % 7
    return (
        local_now.minute in minute
        and local_now.hour in hour
        and local_now.day in dom
        and local_now.month in month
        and cron_weekday in dow
    )
