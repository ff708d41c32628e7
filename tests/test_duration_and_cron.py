from datetime import datetime, timezone

import pytest

from matkassen.utils.cron import CronFormatError, parse_cron, should_run_cron
from matkassen.utils.duration import (
    DAY_MS,
    DurationFormatError,
    format_duration_ms,
    parse_duration,
)


class TestParseDuration:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("1 year", 365.25 * 86_400_000),
            ("365 days", 365 * 86_400_000),
            ("5 minutes", 300_000),
            ("12M", 720_000),
            ("30s", 30_000),
            ("2h", 7_200_000),
            ("1500", 1500),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "abc", "-5", "0", "0 days", "10 parsecs"])
    def test_invalid(self, value):
        with pytest.raises(DurationFormatError):
            parse_duration(value)

    def test_months_are_rejected_with_a_hint(self):
        with pytest.raises(DurationFormatError, match="Months are not supported"):
            parse_duration("6 months")

    def test_format(self):
        assert format_duration_ms(7 * DAY_MS) == "7d"
        assert format_duration_ms(7 * DAY_MS, long=True) == "7 days"
        assert format_duration_ms(500) == "500ms"


class TestCron:
    def test_default_anonymization_schedule(self):
        # Sunday 02:00 local is 00:00 UTC in June
        sunday = datetime(2025, 6, 15, 0, 0, tzinfo=timezone.utc)
        assert should_run_cron("0 2 * * 0", sunday)
        assert not should_run_cron("0 2 * * 0", sunday.replace(minute=1))
        assert not should_run_cron("0 2 * * 1", sunday)

    def test_seven_means_sunday(self):
        sunday = datetime(2025, 6, 15, 0, 0, tzinfo=timezone.utc)
        assert should_run_cron("0 2 * * 7", sunday)

    def test_steps_ranges_and_lists(self):
        minute, hour, *_ = parse_cron("*/15 8-10,14 * * *")
        assert minute == {0, 15, 30, 45}
        assert hour == {8, 9, 10, 14}

    @pytest.mark.parametrize("expression", ["* * * *", "61 * * * *", "*/0 * * * *", "a b c d e"])
    def test_invalid(self, expression):
        with pytest.raises(CronFormatError):
            parse_cron(expression)
