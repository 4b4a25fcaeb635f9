"""
Recurrence Expander
Expands a weekly schedule (days x times in a timezone) into UTC dose instants
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import FrozenSet, Iterable, List, Optional, Tuple

from exceptions import ValidationError
from models import Weekday, WEEKDAYS
from tools.tz_utils import (
    ensure_utc,
    local_date,
    local_to_utc,
    normalize_hhmm,
    validate_timezone,
    weekday_of_date,
)


logger = logging.getLogger(__name__)


def normalize_days(days: Optional[Iterable]) -> FrozenSet[Weekday]:
    """Coerce weekday names/enums into a set, rejecting unknown names"""
    result = set()
    for day in days or []:
        try:
            result.add(Weekday(day.value if isinstance(day, Weekday) else str(day).upper()))
        except ValueError:
            raise ValidationError(f"Invalid weekday: {day!r}")
    return frozenset(result)


def normalize_times(times: Optional[Iterable[str]]) -> FrozenSet[str]:
    """Coerce 'HH:mm' strings into a set of zero-padded values"""
    return frozenset(normalize_hhmm(t) for t in (times or []))


def sorted_days(days: Iterable[Weekday]) -> List[Weekday]:
    """Days in calendar order, Monday first"""
    day_set = set(days)
    return [d for d in WEEKDAYS if d in day_set]


def validate_window(start_date: Optional[date], end_date: Optional[date], label: str = "Schedule") -> None:
    if start_date and end_date and end_date < start_date:
        raise ValidationError(f"{label} end date cannot be before start date")


@dataclass(frozen=True)
class ScheduleRule:
    """Normalized recurrence definition of one schedule"""
    timezone: str
    days_of_week: FrozenSet[Weekday] = field(default_factory=frozenset)
    times: FrozenSet[str] = field(default_factory=frozenset)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @classmethod
    def build(
        cls,
        timezone: str,
        days_of_week: Optional[Iterable] = None,
        times: Optional[Iterable[str]] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> "ScheduleRule":
        """Validate and normalize raw schedule fields"""
        validate_window(start_date, end_date)
        return cls(
            timezone=validate_timezone(timezone),
            days_of_week=normalize_days(days_of_week),
            times=normalize_times(times),
            start_date=start_date,
            end_date=end_date,
        )

    @classmethod
    def from_schedule(cls, schedule) -> "ScheduleRule":
        """Build a rule from a Schedule ORM row"""
        return cls.build(
            timezone=schedule.timezone,
            days_of_week=schedule.days_of_week,
            times=schedule.times,
            start_date=schedule.start_date,
            end_date=schedule.end_date,
        )

    @property
    def is_empty(self) -> bool:
        """PRN-style rule that can never produce an instance"""
        return not self.days_of_week or not self.times

    def bounded_by(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> "ScheduleRule":
        """Rule whose window is intersected with an outer (prescription) window"""
        start, end = effective_window(self.start_date, self.end_date, start_date, end_date)
        return ScheduleRule(
            timezone=self.timezone,
            days_of_week=self.days_of_week,
            times=self.times,
            start_date=start,
            end_date=end,
        )


def effective_window(
    schedule_start: Optional[date],
    schedule_end: Optional[date],
    outer_start: Optional[date] = None,
    outer_end: Optional[date] = None
) -> Tuple[Optional[date], Optional[date]]:
    """Intersection of two optional inclusive date windows (latest start, earliest end)"""
    starts = [d for d in (schedule_start, outer_start) if d is not None]
    ends = [d for d in (schedule_end, outer_end) if d is not None]
    return (max(starts) if starts else None, min(ends) if ends else None)


def expand(rule: ScheduleRule, from_: datetime, to: datetime) -> List[datetime]:
    """
    Produce every UTC instant in [from_, to] at which the rule expects a dose.

    Walks calendar days in the rule's timezone from the later of the local
    date of `from_` and the rule's start date, to the earlier of the local
    date of `to` and the rule's end date. Each day whose weekday is in the
    day-set contributes one instant per time-of-day, converted with that
    day's own UTC offset. Results are sorted and unique.
    """
    from_ = ensure_utc(from_)
    to = ensure_utc(to)
    if to < from_:
        raise ValidationError("Range end cannot be before range start")

    if rule.is_empty:
        return []

    first_day = local_date(from_, rule.timezone)
    last_day = local_date(to, rule.timezone)
    if rule.start_date and rule.start_date > first_day:
        first_day = rule.start_date
    if rule.end_date and rule.end_date < last_day:
        last_day = rule.end_date

    instants = set()
    day = first_day
    while day <= last_day:
        if weekday_of_date(day) in rule.days_of_week:
            for hhmm in rule.times:
                instant = local_to_utc(day, hhmm, rule.timezone)
                if from_ <= instant <= to:
                    instants.add(instant)
        day += timedelta(days=1)

    return sorted(instants)


__all__ = [
    "ScheduleRule",
    "normalize_days",
    "normalize_times",
    "sorted_days",
    "validate_window",
    "effective_window",
    "expand",
]
