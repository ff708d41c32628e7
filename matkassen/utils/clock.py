"""Time source and local-day helpers.

Every function that needs "now" takes a Clock explicitly; production wiring
passes SystemClock and tests pass FixedClock.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Protocol
from zoneinfo import ZoneInfo

from matkassen.core.config import settings


class Clock(Protocol):
    def now(self) -> datetime:
        """Current instant as an aware UTC datetime."""
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Deterministic clock for tests and replays."""

    def __init__(self, now: datetime):
        self._now = _require_aware(now)

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = _require_aware(now)

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("FixedClock requires a timezone-aware datetime")
    return value.astimezone(timezone.utc)


@lru_cache(maxsize=4)
def get_zone(name: str | None = None) -> ZoneInfo:
    return ZoneInfo(name or settings.TIMEZONE)


def to_local(value: datetime) -> datetime:
    """Convert an aware instant to the operating timezone."""
    return value.astimezone(get_zone())


def local_date(value: datetime) -> date:
    return to_local(value).date()


def local_datetime(day: date, at: time) -> datetime:
    """Aware datetime for a wall-clock time on a local calendar day."""
    return datetime.combine(day, at, tzinfo=get_zone())


def start_of_local_day(day: date) -> datetime:
    return local_datetime(day, time.min)


def end_of_local_day(day: date) -> datetime:
    return local_datetime(day, time.max)


def local_day_bounds(day: date) -> tuple[datetime, datetime]:
    """Half-open [start, next start) bounds of a local day, in UTC."""
    start = start_of_local_day(day)
    end = start_of_local_day(day + timedelta(days=1))
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def format_hhmm(value: datetime | time) -> str:
    if isinstance(value, datetime):
        value = to_local(value).time()
    return f"{value.hour:02d}:{value.minute:02d}"


def parse_hhmm(value: str | time) -> time:
    """Parse "HH:MM" or "HH:MM:SS" (database time columns) into a time."""
    if isinstance(value, time):
        return value
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time of day: {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    second = int(parts[2]) if len(parts) == 3 else 0
    return time(hour, minute, second)


def minutes_of_day(value: str | time) -> int:
    parsed = parse_hhmm(value)
    return parsed.hour * 60 + parsed.minute
