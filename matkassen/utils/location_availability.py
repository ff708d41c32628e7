"""Opening-hours checks for dates, times and parcels."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from matkassen.utils.clock import format_hhmm, local_date, minutes_of_day
from matkassen.utils.schedule_validation import (
    LocationScheduleInfo,
    get_weekday_name,
)

NO_SCHEDULED_HOURS = "No scheduled hours"
CLOSED_ON_THIS_DAY = "Closed on this day"


@dataclass(frozen=True)
class Availability:
    is_available: bool
    message: str | None = None
    opening_time: str | None = None
    closing_time: str | None = None


@dataclass(frozen=True)
class ParcelTimeInfo:
    id: object
    pickup_earliest_time: datetime
    pickup_latest_time: datetime
    is_picked_up: bool = False


def is_date_available(value: date | datetime, info: LocationScheduleInfo) -> Availability:
    """Whether the location opens at all on a local date, and its hours if so.

    A special day for the date overrides the weekly schedules.
    """
    day = local_date(value) if isinstance(value, datetime) else value

    special = info.special_day_for(day)
    if special is not None:
        if special.is_open and special.opening_time and special.closing_time:
            return Availability(
                True,
                "",
                format_hhmm(special.opening_time),
                format_hhmm(special.closing_time),
            )
        return Availability(False, special.reason or CLOSED_ON_THIS_DAY)

    weekday = get_weekday_name(day)
    for schedule in info.schedules:
        if not schedule.covers(day):
            continue
        day_config = schedule.day_for(weekday)
        if day_config is None:
            continue
        if not day_config.is_open:
            return Availability(False, CLOSED_ON_THIS_DAY)
        return Availability(
            True,
            "",
            format_hhmm(day_config.opening_time) if day_config.opening_time else None,
            format_hhmm(day_config.closing_time) if day_config.closing_time else None,
        )

    return Availability(False, NO_SCHEDULED_HOURS)


def is_time_available(
    value: date | datetime, time_of_day: str, info: LocationScheduleInfo
) -> Availability:
    """Open when opening <= time < closing on that date."""
    availability = is_date_available(value, info)
    if not availability.is_available:
        return availability
    if not availability.opening_time or not availability.closing_time:
        return Availability(True)

    current = minutes_of_day(time_of_day)
    if current < minutes_of_day(availability.opening_time) or current >= minutes_of_day(
        availability.closing_time
    ):
        return Availability(
            False,
            f"This location is only open from {availability.opening_time} "
            f"to {availability.closing_time} on this day",
            availability.opening_time,
            availability.closing_time,
        )
    return Availability(True, None, availability.opening_time, availability.closing_time)


def get_available_time_range(
    value: date | datetime, info: LocationScheduleInfo
) -> tuple[str | None, str | None]:
    availability = is_date_available(value, info)
    if not availability.is_available:
        return None, None
    return availability.opening_time, availability.closing_time


def check_window_within_opening_hours(
    earliest: datetime, latest: datetime, info: LocationScheduleInfo
) -> Availability:
    """
    A pickup window fits when it starts in [opening, closing) and ends in
    [opening, closing] on the same local day. Ending exactly at closing is fine.
    """
    start_day, end_day = local_date(earliest), local_date(latest)
    start_time, end_time = format_hhmm(earliest), format_hhmm(latest)

    start = is_time_available(start_day, start_time, info)
    if not start.is_available:
        return start
    if end_day != start_day:
        return Availability(
            False,
            "Pickup window must start and end on the same day",
            start.opening_time,
            start.closing_time,
        )

    end = is_time_available(end_day, end_time, info)
    if not end.is_available and end.closing_time and end_time == end.closing_time:
        end = Availability(True, None, end.opening_time, end.closing_time)
    return end


def is_parcel_outside_opening_hours(parcel: ParcelTimeInfo, info: LocationScheduleInfo) -> bool:
    return not check_window_within_opening_hours(
        parcel.pickup_earliest_time, parcel.pickup_latest_time, info
    ).is_available


def is_future_parcel(parcel: ParcelTimeInfo, now: datetime) -> bool:
    return parcel.pickup_earliest_time > now


def is_active_parcel(parcel: ParcelTimeInfo, now: datetime) -> bool:
    return not parcel.is_picked_up and is_future_parcel(parcel, now)


def filter_outside_hours_parcels(
    parcels: list[ParcelTimeInfo], info: LocationScheduleInfo, now: datetime
) -> list[ParcelTimeInfo]:
    """Active parcels that no longer fit the location's opening hours."""
    return [
        parcel
        for parcel in parcels
        if is_active_parcel(parcel, now) and is_parcel_outside_opening_hours(parcel, info)
    ]


def count_parcels_affected_by_schedule_change(
    parcels: list[ParcelTimeInfo],
    current: LocationScheduleInfo,
    proposed: LocationScheduleInfo,
    now: datetime,
) -> int:
    """Active parcels inside hours today that would fall outside with `proposed`."""
    return sum(
        1
        for parcel in parcels
        if is_active_parcel(parcel, now)
        and not is_parcel_outside_opening_hours(parcel, current)
        and is_parcel_outside_opening_hours(parcel, proposed)
    )
