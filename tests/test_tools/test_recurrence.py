"""
Tests for the recurrence expander
"""

import pytest
from datetime import date, datetime, timezone

from exceptions import InvalidTimeFormatError, InvalidTimezoneError, ValidationError
from models import Weekday
from tools.recurrence import ScheduleRule, effective_window, expand, sorted_days


UTC = timezone.utc


def rule(**kwargs) -> ScheduleRule:
    defaults = {"timezone": "UTC", "days_of_week": ["MON", "WED", "FRI"], "times": ["08:00", "20:00"]}
    defaults.update(kwargs)
    return ScheduleRule.build(**defaults)


class TestScheduleRule:

    @pytest.mark.unit
    def test_build_normalizes(self):
        r = ScheduleRule.build("UTC", ["mon", Weekday.FRI, "MON"], ["8:00", "08:00"])
        assert r.days_of_week == frozenset({Weekday.MON, Weekday.FRI})
        assert r.times == frozenset({"08:00"})

    @pytest.mark.unit
    def test_build_rejects_bad_input(self):
        with pytest.raises(ValidationError):
            ScheduleRule.build("UTC", ["FUNDAY"], ["08:00"])
        with pytest.raises(InvalidTimeFormatError):
            ScheduleRule.build("UTC", ["MON"], ["25:00"])
        with pytest.raises(InvalidTimezoneError):
            ScheduleRule.build("Nowhere/Land", ["MON"], ["08:00"])
        with pytest.raises(ValidationError):
            ScheduleRule.build("UTC", ["MON"], ["08:00"], date(2025, 3, 10), date(2025, 3, 1))

    @pytest.mark.unit
    def test_sorted_days_is_calendar_order(self):
        assert sorted_days({Weekday.SUN, Weekday.MON, Weekday.WED}) == [Weekday.MON, Weekday.WED, Weekday.SUN]

    @pytest.mark.unit
    def test_effective_window(self):
        assert effective_window(None, None, date(2025, 3, 1), None) == (date(2025, 3, 1), None)
        assert effective_window(date(2025, 3, 5), date(2025, 4, 1), date(2025, 3, 1), date(2025, 3, 20)) == (
            date(2025, 3, 5), date(2025, 3, 20)
        )


class TestExpand:

    @pytest.mark.unit
    def test_one_week_yields_six_instants(self):
        instants = expand(
            rule(),
            datetime(2025, 3, 3, 0, 0, tzinfo=UTC),
            datetime(2025, 3, 9, 23, 59, tzinfo=UTC),
        )
        assert len(instants) == 6
        assert instants[0] == datetime(2025, 3, 3, 8, 0, tzinfo=UTC)
        assert instants[-1] == datetime(2025, 3, 7, 20, 0, tzinfo=UTC)
        assert instants == sorted(instants)

    @pytest.mark.unit
    def test_range_bounds_are_inclusive(self):
        instants = expand(
            rule(),
            datetime(2025, 3, 3, 8, 0, tzinfo=UTC),
            datetime(2025, 3, 3, 20, 0, tzinfo=UTC),
        )
        assert instants == [
            datetime(2025, 3, 3, 8, 0, tzinfo=UTC),
            datetime(2025, 3, 3, 20, 0, tzinfo=UTC),
        ]

    @pytest.mark.unit
    def test_schedule_window_clips_days(self):
        instants = expand(
            rule(start_date=date(2025, 3, 5), end_date=date(2025, 3, 5)),
            datetime(2025, 3, 1, tzinfo=UTC),
            datetime(2025, 3, 31, tzinfo=UTC),
        )
        assert instants == [
            datetime(2025, 3, 5, 8, 0, tzinfo=UTC),
            datetime(2025, 3, 5, 20, 0, tzinfo=UTC),
        ]

    @pytest.mark.unit
    def test_offsets_follow_dst(self):
        daily = rule(
            timezone="America/New_York",
            days_of_week=["MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN"],
            times=["08:00"],
        )
        instants = expand(
            daily,
            datetime(2025, 3, 8, 0, 0, tzinfo=UTC),
            datetime(2025, 3, 11, 0, 0, tzinfo=UTC),
        )
        assert instants == [
            datetime(2025, 3, 8, 13, 0, tzinfo=UTC),
            datetime(2025, 3, 9, 12, 0, tzinfo=UTC),
            datetime(2025, 3, 10, 12, 0, tzinfo=UTC),
        ]

    @pytest.mark.unit
    def test_weekday_is_taken_in_schedule_zone(self):
        # Monday 08:00 in Tokyo is Sunday 23:00 UTC
        tokyo = rule(timezone="Asia/Tokyo", days_of_week=["MON"], times=["08:00"])
        instants = expand(
            tokyo,
            datetime(2025, 3, 2, 0, 0, tzinfo=UTC),
            datetime(2025, 3, 3, 23, 59, tzinfo=UTC),
        )
        assert instants == [datetime(2025, 3, 2, 23, 0, tzinfo=UTC)]

    @pytest.mark.unit
    def test_empty_rule_expands_to_nothing(self):
        empty = ScheduleRule.build("UTC", [], [])
        assert expand(empty, datetime(2025, 3, 1, tzinfo=UTC), datetime(2025, 3, 31, tzinfo=UTC)) == []

    @pytest.mark.unit
    def test_reversed_range_is_rejected(self):
        with pytest.raises(ValidationError):
            expand(rule(), datetime(2025, 3, 9, tzinfo=UTC), datetime(2025, 3, 1, tzinfo=UTC))
