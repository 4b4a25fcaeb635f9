"""
Inventory and Notification Triggers
Low-stock predicate, restock detection, reminder eligibility window, adherence rate
"""

from datetime import datetime, timedelta
from typing import Optional, Tuple

from tools.tz_utils import ensure_utc


DEFAULT_NOTIFICATION_WINDOW_MINUTES = 2


def is_low_stock(current_qty: Optional[float], low_threshold: Optional[float]) -> bool:
    """Low stock holds only when a threshold is set and quantity has reached it"""
    if low_threshold is None or current_qty is None:
        return False
    return current_qty <= low_threshold


def is_restock(previous_qty: Optional[float], new_qty: float) -> bool:
    """A quantity update counts as a restock when it strictly increases stock"""
    if previous_qty is None:
        return False
    return new_qty > previous_qty


def resolve_last_restocked_at(
    previous_qty: Optional[float],
    new_qty: float,
    now: datetime,
    explicit: Optional[datetime] = None,
    current: Optional[datetime] = None
) -> Optional[datetime]:
    """
    lastRestockedAt after a quantity update: an explicit value wins, a
    restock stamps `now`, otherwise the stored value is kept.
    """
    if explicit is not None:
        return explicit
    if is_restock(previous_qty, new_qty):
        return now
    return current


def notification_window(
    now: datetime,
    window_minutes: int = DEFAULT_NOTIFICATION_WINDOW_MINUTES
) -> Tuple[datetime, datetime]:
    """[now, now + W] in UTC"""
    now = ensure_utc(now)
    return now, now + timedelta(minutes=window_minutes)


def is_in_notification_window(
    scheduled_for: datetime,
    now: datetime,
    window_minutes: int = DEFAULT_NOTIFICATION_WINDOW_MINUTES
) -> bool:
    start, end = notification_window(now, window_minutes)
    return start <= ensure_utc(scheduled_for) <= end


def adherence_rate(taken: int, missed: int, skipped: int) -> int:
    """
    taken / (taken + missed + skipped) as a rounded percentage.
    Pending SCHEDULED doses are not part of the denominator; with nothing
    resolved yet the rate is 100.
    """
    resolved = taken + missed + skipped
    if resolved == 0:
        return 100
    return round(taken * 100 / resolved)


__all__ = [
    "DEFAULT_NOTIFICATION_WINDOW_MINUTES",
    "is_low_stock",
    "is_restock",
    "resolve_last_restocked_at",
    "notification_window",
    "is_in_notification_window",
    "adherence_rate",
]
