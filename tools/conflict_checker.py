"""
Schedule Conflict Checker
Pairwise comparison of a candidate schedule against existing schedules
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from models import Weekday
from tools.recurrence import normalize_days, normalize_times, sorted_days


@dataclass
class ScheduleData:
    """The dimensions that matter for conflict detection"""
    days_of_week: Iterable = field(default_factory=list)
    times: Iterable[str] = field(default_factory=list)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    id: Optional[int] = None

    @classmethod
    def from_schedule(cls, schedule) -> "ScheduleData":
        return cls(
            id=schedule.id,
            days_of_week=schedule.days_of_week or [],
            times=schedule.times or [],
            start_date=schedule.start_date,
            end_date=schedule.end_date,
        )


@dataclass
class ScheduleConflict:
    """One existing schedule that collides with the candidate"""
    schedule_id: Optional[int]
    conflicting_days: List[Weekday]
    conflicting_times: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schedule_id": self.schedule_id,
            "conflicting_days": [d.value for d in self.conflicting_days],
            "conflicting_times": list(self.conflicting_times),
        }


def date_ranges_overlap(
    start1: Optional[date],
    end1: Optional[date],
    start2: Optional[date],
    end2: Optional[date]
) -> bool:
    """
    Whether two inclusive, optionally open-ended date windows overlap.

    A window with neither bound overlaps everything. Otherwise the windows
    are disjoint only when one ends strictly before the other starts.
    """
    if start1 is None and end1 is None:
        return True
    if start2 is None and end2 is None:
        return True

    if end1 is not None and start2 is not None and end1 < start2:
        return False
    if end2 is not None and start1 is not None and end2 < start1:
        return False

    return True


def check_schedule_conflicts(
    candidate: ScheduleData,
    existing_schedules: Iterable[ScheduleData],
    exclude_schedule_id: Optional[int] = None
) -> List[ScheduleConflict]:
    """
    Report every existing schedule that conflicts with the candidate.

    A conflict requires all of: a shared weekday, a shared time of day and
    overlapping validity windows. The schedule being updated is excluded by
    id. Conflicts are reported per pair and never merged.
    """
    candidate_days = normalize_days(candidate.days_of_week)
    candidate_times = normalize_times(candidate.times)
    conflicts: List[ScheduleConflict] = []

    for existing in existing_schedules:
        if exclude_schedule_id is not None and existing.id == exclude_schedule_id:
            continue

        shared_days = candidate_days & normalize_days(existing.days_of_week)
        if not shared_days:
            continue

        shared_times = candidate_times & normalize_times(existing.times)
        if not shared_times:
            continue

        if not date_ranges_overlap(
            candidate.start_date, candidate.end_date,
            existing.start_date, existing.end_date
        ):
            continue

        conflicts.append(ScheduleConflict(
            schedule_id=existing.id,
            conflicting_days=sorted_days(shared_days),
            conflicting_times=sorted(shared_times),
        ))

    return conflicts


__all__ = [
    "ScheduleData",
    "ScheduleConflict",
    "date_ranges_overlap",
    "check_schedule_conflicts",
]
