from datetime import date, time, timedelta

from matkassen.utils.location_availability import (
    CLOSED_ON_THIS_DAY,
    NO_SCHEDULED_HOURS,
    ParcelTimeInfo,
    check_window_within_opening_hours,
    count_parcels_affected_by_schedule_change,
    filter_outside_hours_parcels,
    is_date_available,
    is_time_available,
)
from matkassen.utils.schedule_validation import (
    DaySchedule,
    LocationSchedule,
    LocationScheduleInfo,
    SpecialDay,
)

from conftest import NOW, at_local

TUESDAY = date(2025, 6, 10)


def _info(opening=time(9, 0), closing=time(17, 0), special_days=()):
    days = tuple(
        DaySchedule(weekday=name, is_open=True, opening_time=opening, closing_time=closing)
        for name in ("monday", "tuesday", "wednesday", "thursday", "friday")
    ) + (DaySchedule(weekday="saturday", is_open=False),)
    schedule = LocationSchedule(start_date=date(2025, 6, 1), end_date=date(2025, 6, 30), days=days)
    return LocationScheduleInfo(schedules=[schedule], special_days=list(special_days))


def test_date_availability_messages():
    info = _info()
    assert is_date_available(TUESDAY, info).opening_time == "09:00"
    assert is_date_available(date(2025, 6, 14), info).message == CLOSED_ON_THIS_DAY
    # Sunday has no day entry, July has no schedule
    assert is_date_available(date(2025, 6, 15), info).message == NO_SCHEDULED_HOURS
    assert is_date_available(date(2025, 7, 1), info).message == NO_SCHEDULED_HOURS


def test_special_day_reason_is_reported():
    info = _info(special_days=[SpecialDay(day=TUESDAY, is_open=False, reason="Midsummer")])
    availability = is_date_available(TUESDAY, info)
    assert not availability.is_available
    assert availability.message == "Midsummer"


def test_closing_time_is_exclusive_for_start_times():
    info = _info()
    assert is_time_available(TUESDAY, "16:59", info).is_available
    closed = is_time_available(TUESDAY, "17:00", info)
    assert not closed.is_available
    assert closed.message == "This location is only open from 09:00 to 17:00 on this day"


def test_window_may_end_exactly_at_closing():
    info = _info()
    assert check_window_within_opening_hours(
        at_local(TUESDAY, 16, 45), at_local(TUESDAY, 17, 0), info
    ).is_available
    assert not check_window_within_opening_hours(
        at_local(TUESDAY, 16, 50), at_local(TUESDAY, 17, 5), info
    ).is_available
    assert not check_window_within_opening_hours(
        at_local(TUESDAY, 8, 45), at_local(TUESDAY, 9, 0), info
    ).is_available


def _parcel(pid, earliest, picked_up=False):
    return ParcelTimeInfo(pid, earliest, earliest + timedelta(minutes=15), picked_up)


def test_outside_hours_filter_ignores_past_and_picked_up_parcels():
    info = _info(opening=time(10, 0))
    parcels = [
        _parcel("early", at_local(TUESDAY, 9, 0)),
        _parcel("fine", at_local(TUESDAY, 11, 0)),
        _parcel("picked", at_local(TUESDAY, 9, 0), picked_up=True),
        _parcel("past", at_local(date(2025, 6, 2), 9, 0)),
    ]
    assert [p.id for p in filter_outside_hours_parcels(parcels, info, NOW)] == ["early"]


def test_schedule_change_impact_counts_newly_affected_parcels():
    current = _info()
    proposed = _info(closing=time(12, 0))
    parcels = [
        _parcel("morning", at_local(TUESDAY, 10, 0)),
        _parcel("afternoon", at_local(TUESDAY, 14, 0)),
        _parcel("late", at_local(TUESDAY, 15, 0)),
    ]
    assert count_parcels_affected_by_schedule_change(parcels, current, proposed, NOW) == 2
