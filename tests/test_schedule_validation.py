"""Tests for pure schedule helpers: overlap, ISO weeks, slot grids and gaps."""

from datetime import date, time

import pytest

from matkassen.utils.schedule_validation import (
    DateRange,
    DaySchedule,
    LocationSchedule,
    LocationScheduleInfo,
    SpecialDay,
    WeekSelection,
    do_date_ranges_overlap,
    find_overlapping_schedule,
    find_schedule_for_date,
    find_time_gaps,
    format_duration,
    generate_day_specific_time_slots,
    get_week_and_year,
    get_week_date_range,
    get_week_numbers_in_range,
    get_weekday_name,
    is_location_open_at,
    validate_week_selection,
)
from matkassen.utils.clock import minutes_of_day


def _weekday_schedule(start: date, end: date, opening=time(9, 0), closing=time(17, 0)):
    days = tuple(
        DaySchedule(weekday=name, is_open=True, opening_time=opening, closing_time=closing)
        for name in ("monday", "tuesday", "wednesday", "thursday", "friday")
    ) + (
        DaySchedule(weekday="saturday", is_open=False),
        DaySchedule(weekday="sunday", is_open=False),
    )
    return LocationSchedule(start_date=start, end_date=end, days=days, id="s1", name="Summer")


class TestDateRangeOverlap:
    def test_overlap_is_symmetric(self):
        ranges = [
            DateRange(date(2025, 1, 1), date(2025, 1, 31), id="a"),
            DateRange(date(2025, 1, 31), date(2025, 2, 15), id="b"),
            DateRange(date(2025, 2, 16), date(2025, 3, 1), id="c"),
            DateRange(date(2024, 12, 1), date(2025, 6, 1), id="d"),
        ]
        for first in ranges:
            for second in ranges:
                if first.id == second.id:
                    continue
                assert do_date_ranges_overlap(first, second) == do_date_ranges_overlap(
                    second, first
                )

    def test_range_never_overlaps_itself(self):
        a = DateRange(date(2025, 1, 1), date(2025, 12, 31), id="same")
        assert do_date_ranges_overlap(a, a) is False

    def test_shared_end_day_overlaps(self):
        a = DateRange(date(2025, 1, 1), date(2025, 1, 31), id="a")
        b = DateRange(date(2025, 1, 31), date(2025, 2, 28), id="b")
        assert do_date_ranges_overlap(a, b) is True

    def test_consecutive_ranges_do_not_overlap(self):
        a = DateRange(date(2025, 1, 1), date(2025, 1, 31), id="a")
        b = DateRange(date(2025, 2, 1), date(2025, 2, 28), id="b")
        assert do_date_ranges_overlap(a, b) is False

    def test_find_overlapping_schedule_returns_first_in_input_order(self):
        candidate = DateRange(date(2025, 3, 1), date(2025, 3, 31))
        existing = [
            DateRange(date(2025, 1, 1), date(2025, 1, 31), id="jan"),
            DateRange(date(2025, 3, 15), date(2025, 4, 15), id="mid-march"),
            DateRange(date(2025, 2, 1), date(2025, 3, 5), id="feb-march"),
        ]
        assert find_overlapping_schedule(candidate, existing).id == "mid-march"

    def test_find_overlapping_schedule_skips_self_on_update(self):
        candidate = DateRange(date(2025, 3, 1), date(2025, 3, 31), id="x")
        existing = [DateRange(date(2025, 3, 1), date(2025, 3, 31), id="x")]
        assert find_overlapping_schedule(candidate, existing) is None


class TestIsoWeeks:
    @pytest.mark.parametrize("year,week", [(2025, 2), (2025, 24), (2024, 30), (2026, 51)])
    def test_week_range_round_trips(self, year, week):
        week_range = get_week_date_range(year, week)
        assert week_range.start_date.weekday() == 0
        assert (week_range.end_date - week_range.start_date).days == 6
        assert get_week_and_year(week_range.start_date) == WeekSelection(year=year, week=week)

    def test_late_december_belongs_to_next_iso_year(self):
        assert get_week_and_year(date(2025, 12, 29)) == WeekSelection(year=2026, week=1)

    def test_week_53_exists_only_in_long_years(self):
        assert get_week_date_range(2026, 53).start_date == date(2026, 12, 28)
        with pytest.raises(ValueError):
            get_week_date_range(2025, 53)

    def test_week_numbers_cross_year_in_chronological_order(self):
        assert get_week_numbers_in_range(date(2025, 12, 22), date(2026, 1, 12)) == [52, 1, 2, 3]

    def test_validate_week_selection(self):
        assert validate_week_selection(None, WeekSelection(2025, 1)) == (
            False,
            "Start and end weeks are required",
        )
        assert validate_week_selection(WeekSelection(2025, 10), WeekSelection(2025, 9)) == (
            False,
            "Start week cannot be after end week",
        )
        assert validate_week_selection(WeekSelection(2025, 52), WeekSelection(2026, 1)) == (
            True,
            None,
        )


class TestSlotGrid:
    def test_slots_never_run_past_closing(self):
        schedule = _weekday_schedule(
            date(2025, 6, 1), date(2025, 6, 30), time(9, 0), time(10, 40)
        )
        for slot_minutes in (10, 15, 20, 30, 45):
            slots = generate_day_specific_time_slots(date(2025, 6, 10), slot_minutes, [schedule])
            assert slots[0] == "09:00"
            for slot in slots:
                assert minutes_of_day(slot) + slot_minutes <= minutes_of_day("10:40")

    def test_closed_and_unscheduled_days_have_no_slots(self):
        schedule = _weekday_schedule(date(2025, 6, 1), date(2025, 6, 30))
        assert generate_day_specific_time_slots(date(2025, 6, 14), 15, [schedule]) == []
        assert generate_day_specific_time_slots(date(2025, 7, 1), 15, [schedule]) == []

    def test_special_day_overrides_weekly_hours(self):
        schedule = _weekday_schedule(date(2025, 6, 1), date(2025, 6, 30))
        info = LocationScheduleInfo(
            schedules=[schedule],
            special_days=[
                SpecialDay(day=date(2025, 6, 10), is_open=True, opening_time=time(12, 0), closing_time=time(13, 0)),
                SpecialDay(day=date(2025, 6, 11), is_open=False, reason="Holiday"),
            ],
        )
        assert generate_day_specific_time_slots(date(2025, 6, 10), 30, info) == ["12:00", "12:30"]
        assert generate_day_specific_time_slots(date(2025, 6, 11), 30, info) == []

    def test_schedule_lookup_helpers(self):
        schedule = _weekday_schedule(date(2025, 6, 1), date(2025, 6, 30))
        assert get_weekday_name(date(2025, 6, 10)) == "tuesday"
        assert find_schedule_for_date(date(2025, 6, 10), [schedule]) is schedule
        assert find_schedule_for_date(date(2025, 7, 10), [schedule]) is None


class TestTimeGaps:
    def test_evenly_spaced_slots_have_no_gaps(self):
        assert find_time_gaps(["09:00", "09:15", "09:30", "09:45"], 15) == []

    def test_each_wider_spacing_yields_one_gap(self):
        gaps = find_time_gaps(["14:00", "09:00", "09:15", "11:45", "14:15"], 15)
        assert [(g.start_time, g.end_time, g.duration_minutes) for g in gaps] == [
            ("09:30", "11:45", 135),
            ("12:00", "14:00", 120),
        ]

    def test_short_inputs_have_no_gaps(self):
        assert find_time_gaps([], 15) == []
        assert find_time_gaps(["10:00"], 15) == []

    @pytest.mark.parametrize(
        "minutes,expected",
        [(45, "45 min"), (60, "1 hour"), (120, "2 hours"), (90, "1h 30m")],
    )
    def test_format_duration(self, minutes, expected):
        assert format_duration(minutes) == expected


def test_is_location_open_at_uses_local_time():
    from datetime import datetime, timezone

    schedule = _weekday_schedule(date(2025, 6, 1), date(2025, 6, 30))
    # 07:30 UTC is 09:30 in Stockholm during summer time
    assert is_location_open_at(datetime(2025, 6, 10, 7, 30, tzinfo=timezone.utc), [schedule])
    assert not is_location_open_at(datetime(2025, 6, 10, 6, 30, tzinfo=timezone.utc), [schedule])
