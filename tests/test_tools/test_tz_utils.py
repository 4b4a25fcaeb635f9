"""
Tests for timezone helpers
"""

import pytest
from datetime import date, datetime, timezone

from exceptions import InvalidTimeFormatError, InvalidTimezoneError
from models import Weekday
from tools.tz_utils import (
    add_days_in_tz,
    day_range_utc,
    ensure_utc,
    local_date_time,
    local_to_utc,
    normalize_hhmm,
    parse_hhmm,
    start_of_day_in_tz,
    to_naive_utc,
    validate_timezone,
    weekday_of,
)


UTC = timezone.utc


class TestValidation:

    @pytest.mark.unit
    def test_valid_timezone(self):
        assert validate_timezone("America/New_York") == "America/New_York"

    @pytest.mark.unit
    @pytest.mark.parametrize("name", ["Mars/Olympus_Mons", "", None, "   "])
    def test_invalid_timezone(self, name):
        with pytest.raises(InvalidTimezoneError):
            validate_timezone(name)

    @pytest.mark.unit
    def test_parse_and_normalize(self):
        assert parse_hhmm("08:05").hour == 8
        assert normalize_hhmm("8:05") == "08:05"
        assert normalize_hhmm("23:59") == "23:59"

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["24:00", "8am", "12:60", "", 800])
    def test_invalid_time_format(self, value):
        with pytest.raises(InvalidTimeFormatError):
            parse_hhmm(value)


class TestConversions:

    @pytest.mark.unit
    def test_naive_values_are_utc(self):
        naive = datetime(2025, 3, 3, 8, 0)
        assert ensure_utc(naive) == datetime(2025, 3, 3, 8, 0, tzinfo=UTC)
        assert to_naive_utc(ensure_utc(naive)) == naive
        assert to_naive_utc(None) is None

    @pytest.mark.unit
    def test_local_to_utc_uses_offset_of_that_day(self):
        # New York: EST (-5) before 2025-03-09, EDT (-4) after
        assert local_to_utc(date(2025, 3, 8), "08:00", "America/New_York") == datetime(2025, 3, 8, 13, 0, tzinfo=UTC)
        assert local_to_utc(date(2025, 3, 10), "08:00", "America/New_York") == datetime(2025, 3, 10, 12, 0, tzinfo=UTC)

    @pytest.mark.unit
    def test_round_trip_keeps_wall_clock_across_dst(self):
        for day in (date(2025, 3, 8), date(2025, 3, 9), date(2025, 3, 10)):
            instant = local_to_utc(day, "08:00", "America/New_York")
            assert local_date_time(instant, "America/New_York") == (day, "08:00")

    @pytest.mark.unit
    def test_nonexistent_time_shifts_forward(self):
        # 02:30 does not exist on 2025-03-09 in New York; it becomes 03:30 EDT
        instant = local_to_utc(date(2025, 3, 9), "02:30", "America/New_York")
        assert instant == datetime(2025, 3, 9, 7, 30, tzinfo=UTC)
        assert local_date_time(instant, "America/New_York") == (date(2025, 3, 9), "03:30")

    @pytest.mark.unit
    def test_ambiguous_time_takes_first_occurrence(self):
        # 01:30 happens twice on 2025-11-02 in New York; the EDT one comes first
        instant = local_to_utc(date(2025, 11, 2), "01:30", "America/New_York")
        assert instant == datetime(2025, 11, 2, 5, 30, tzinfo=UTC)

    @pytest.mark.unit
    def test_weekday_depends_on_zone(self):
        instant = datetime(2025, 3, 3, 23, 30, tzinfo=UTC)  # Monday in UTC
        assert weekday_of(instant, "UTC") == Weekday.MON
        assert weekday_of(instant, "Asia/Tokyo") == Weekday.TUE

    @pytest.mark.unit
    def test_start_of_day_and_day_range(self):
        instant = datetime(2025, 3, 3, 12, 0, tzinfo=UTC)
        assert start_of_day_in_tz(instant, "Europe/Berlin") == datetime(2025, 3, 2, 23, 0, tzinfo=UTC)

        start, end = day_range_utc(date(2025, 3, 9), "America/New_York")
        assert start == datetime(2025, 3, 9, 5, 0, tzinfo=UTC)
        assert end == datetime(2025, 3, 10, 4, 0, tzinfo=UTC)
        assert (end - start).total_seconds() == 23 * 3600

    @pytest.mark.unit
    def test_add_days_keeps_local_time(self):
        before = local_to_utc(date(2025, 3, 8), "08:00", "America/New_York")
        after = add_days_in_tz(before, 2, "America/New_York")
        assert local_date_time(after, "America/New_York") == (date(2025, 3, 10), "08:00")
