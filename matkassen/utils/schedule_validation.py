"""Pure schedule helpers: date-range overlap, ISO weeks, slot grids and gaps.

Nothing in here touches the database; callers convert ORM rows with
`location_schedule_from_model` first.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Iterable, Sequence

from matkassen.db.enums import Weekday
from matkassen.utils.clock import format_hhmm, local_date, minutes_of_day, parse_hhmm


@dataclass(frozen=True)
class DateRange:
    start_date: date
    end_date: date
    id: object | None = None


@dataclass(frozen=True)
class WeekSelection:
    year: int
    week: int


@dataclass(frozen=True)
class WeekRange:
    start_date: date
    end_date: date


@dataclass(frozen=True)
class DaySchedule:
    weekday: str
    is_open: bool
    opening_time: time | None = None
    closing_time: time | None = None


@dataclass(frozen=True)
class LocationSchedule:
    start_date: date
    end_date: date
    days: tuple[DaySchedule, ...] = ()
    id: object | None = None
    name: str = ""

    def day_for(self, weekday: str) -> DaySchedule | None:
        for day in self.days:
            if day.weekday == weekday:
                return day
        return None

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


@dataclass(frozen=True)
class SpecialDay:
    day: date
    is_open: bool
    opening_time: time | None = None
    closing_time: time | None = None
    reason: str | None = None


@dataclass(frozen=True)
class TimeGap:
    start_time: str
    end_time: str
    duration_minutes: int


@dataclass
class LocationScheduleInfo:
    """Everything needed to answer "is the location open then?" for one location."""

    schedules: list[LocationSchedule] = field(default_factory=list)
    special_days: list[SpecialDay] = field(default_factory=list)

    def special_day_for(self, day: date) -> SpecialDay | None:
        for special in self.special_days:
            if special.day == day:
                return special
        return None


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return local_date(value) if value.tzinfo else value.date()
    return value


# =============================================================================
# Date-range overlap
# =============================================================================


def do_date_ranges_overlap(first: DateRange, second: DateRange) -> bool:
    """Inclusive, date-only overlap. A range never overlaps itself (same id)."""
    if first.id is not None and first.id == second.id:
        return False
    first_start, first_end = _as_date(first.start_date), _as_date(first.end_date)
    second_start, second_end = _as_date(second.start_date), _as_date(second.end_date)
    return first_start <= second_end and second_start <= first_end


def find_overlapping_schedule(
    candidate: DateRange, existing: Iterable[DateRange]
) -> DateRange | None:
    """Return the first existing range (input order) overlapping the candidate."""
    for other in existing:
        if do_date_ranges_overlap(candidate, other):
            return other
    return None


# =============================================================================
# ISO-8601 weeks
# =============================================================================


def get_iso_week_number(value: date | datetime) -> int:
    return _as_date(value).isocalendar()[1]


def get_week_and_year(value: date | datetime) -> WeekSelection:
    """ISO week and ISO week-year; Dec 29-31 can be week 1 of the next year."""
    iso_year, iso_week, _ = _as_date(value).isocalendar()
    return WeekSelection(year=iso_year, week=iso_week)


def get_week_date_range(year: int, week: int) -> WeekRange:
    """Monday..Sunday of an ISO week.

    Raises:
        ValueError: week is not valid for that ISO year.
    """
    monday = date.fromisocalendar(year, week, 1)
    return WeekRange(start_date=monday, end_date=monday + timedelta(days=6))


def get_week_numbers_in_range(start: date | datetime, end: date | datetime) -> list[int]:
    """Week numbers touched by the range, in chronological order (52, 1, 2...)."""
    current, last = _as_date(start), _as_date(end)
    weeks: list[int] = []
    while current <= last:
        week = current.isocalendar()[1]
        if week not in weeks:
            weeks.append(week)
        current += timedelta(days=1)
    return weeks


def validate_week_selection(
    start_week: WeekSelection | None, end_week: WeekSelection | None
) -> tuple[bool, str | None]:
    if start_week is None or end_week is None:
        return False, "Start and end weeks are required"
    if (start_week.year, start_week.week) > (end_week.year, end_week.week):
        return False, "Start week cannot be after end week"
    return True, None


# =============================================================================
# Schedule lookup
# =============================================================================


def get_weekday_name(value: date | datetime) -> str:
    return Weekday.from_date(_as_date(value)).value


def find_schedule_for_date(
    value: date | datetime, schedules: Sequence[LocationSchedule]
) -> LocationSchedule | None:
    day = _as_date(value)
    for schedule in schedules:
        if schedule.covers(day):
            return schedule
    return None


def is_location_open_at(moment: datetime, schedules: Sequence[LocationSchedule]) -> bool:
    """Open when the local wall-clock time is within [opening, closing]."""
    schedule = find_schedule_for_date(moment, schedules)
    if schedule is None:
        return False
    day_config = schedule.day_for(get_weekday_name(moment))
    if day_config is None or not day_config.is_open:
        return False
    if day_config.opening_time is None or day_config.closing_time is None:
        return False
    current = format_hhmm(moment)
    return format_hhmm(day_config.opening_time) <= current <= format_hhmm(
        day_config.closing_time
    )


def opening_hours_for_date(
    value: date | datetime, info: LocationScheduleInfo
) -> tuple[time, time] | None:
    """(opening, closing) for a local date, or None when closed or unscheduled."""
    day = _as_date(value)
    special = info.special_day_for(day)
    if special is not None:
        if special.is_open and special.opening_time and special.closing_time:
            return special.opening_time, special.closing_time
        return None
    weekday = get_weekday_name(day)
    for schedule in info.schedules:
        if not schedule.covers(day):
            continue
        day_config = schedule.day_for(weekday)
        if day_config is None:
            continue
        if day_config.is_open and day_config.opening_time and day_config.closing_time:
            return day_config.opening_time, day_config.closing_time
        return None
    return None


# =============================================================================
# Slot grid
# =============================================================================


def generate_day_specific_time_slots(
    value: date | datetime,
    slot_minutes: int,
    location_schedules: LocationScheduleInfo | Sequence[LocationSchedule],
) -> list[str]:
    """
    "HH:MM" slot starts from opening time, stepping by slot_minutes.

    Only whole slots are produced: the last slot ends at or before closing.
    Closed or unscheduled days return an empty list.
    """
    if slot_minutes <= 0:
        raise ValueError("slot_minutes must be positive")
    if not isinstance(location_schedules, LocationScheduleInfo):
        location_schedules = LocationScheduleInfo(schedules=list(location_schedules))

    hours = opening_hours_for_date(value, location_schedules)
    if hours is None:
        return []

    opening, closing = minutes_of_day(hours[0]), minutes_of_day(hours[1])
    slots: list[str] = []
    current = opening
    while current + slot_minutes <= closing:
        slots.append(_minutes_to_hhmm(current))
        current += slot_minutes
    return slots


def find_time_gaps(slots: Iterable[str], slot_minutes: int = 15) -> list[TimeGap]:
    """Gaps between consecutive slots spaced more than slot_minutes apart.

    A gap starts where the previous slot ends and runs to the next slot start.
    """
    ordered = sorted(slots, key=minutes_of_day)
    gaps: list[TimeGap] = []
    for previous, current in zip(ordered, ordered[1:]):
        previous_minutes = minutes_of_day(previous)
        current_minutes = minutes_of_day(current)
        if current_minutes - previous_minutes > slot_minutes:
            gap_start = previous_minutes + slot_minutes
            gaps.append(
                TimeGap(
                    start_time=_minutes_to_hhmm(gap_start),
                    end_time=_minutes_to_hhmm(current_minutes),
                    duration_minutes=current_minutes - gap_start,
                )
            )
    return gaps


def format_duration(minutes: int) -> str:
    """45 -> "45 min", 120 -> "2 hours", 90 -> "1h 30m"."""
    if minutes < 60:
        return f"{minutes} min"
    hours, rest = divmod(minutes, 60)
    if rest == 0:
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{hours}h {rest}m"


def _minutes_to_hhmm(total: int) -> str:
    return f"{total // 60:02d}:{total % 60:02d}"


# =============================================================================
# ORM conversion
# =============================================================================


def location_schedule_from_model(schedule) -> LocationSchedule:
    """Build a LocationSchedule from a PickupLocationSchedule row."""
    return LocationSchedule(
        id=schedule.id,
        name=schedule.name,
        start_date=schedule.start_date,
        end_date=schedule.end_date,
        days=tuple(
            DaySchedule(
                weekday=day.weekday,
                is_open=day.is_open,
                opening_time=parse_hhmm(day.opening_time) if day.opening_time else None,
                closing_time=parse_hhmm(day.closing_time) if day.closing_time else None,
            )
            for day in schedule.days
        ),
    )


def special_day_from_model(special) -> SpecialDay:
    return SpecialDay(
        day=special.day,
        is_open=special.is_open,
        opening_time=special.opening_time,
        closing_time=special.closing_time,
        reason=special.reason,
    )
