"""
Adherence State Machine
Lifecycle rules for a single dose instance: SCHEDULED -> TAKEN | SKIPPED | MISSED
"""

import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from exceptions import ValidationError
from models import DoseStatus
from tools.tz_utils import ensure_utc, to_naive_utc, to_zone, utcnow


# Only the missed-detection sweep transitions automatically, and only out of SCHEDULED
AUTOMATIC_TRANSITIONS = {
    DoseStatus.SCHEDULED: frozenset({DoseStatus.MISSED}),
}

EDITABLE_FIELDS = frozenset({"status", "taken_at", "scheduled_for", "quantity", "unit", "notes"})


def can_transition(current: DoseStatus, target: DoseStatus, automatic: bool = False) -> bool:
    """
    Whether `current -> target` is permitted.

    Manual edits may move a record between any two states (administrative
    correction); automatic transitions are limited to AUTOMATIC_TRANSITIONS.
    """
    current = DoseStatus(current)
    target = DoseStatus(target)
    if not automatic:
        return True
    return target in AUTOMATIC_TRANSITIONS.get(current, frozenset())


def automatic_sources(target: DoseStatus) -> List[DoseStatus]:
    """Statuses the sweep may move to `target` on its own"""
    return [status for status in DoseStatus if can_transition(status, target, automatic=True)]


def should_be_marked_missed(
    status: DoseStatus,
    scheduled_for: datetime,
    user_timezone: str,
    now: Optional[datetime] = None
) -> bool:
    """
    A SCHEDULED dose is missed once its scheduled wall-clock time in the
    user's timezone is strictly earlier than 'now' in that same timezone.
    """
    if not can_transition(status, DoseStatus.MISSED, automatic=True):
        return False
    scheduled_local = to_zone(scheduled_for, user_timezone)
    now_local = to_zone(now or utcnow(), user_timezone)
    return scheduled_local < now_local


def validate_quantity(quantity: Any) -> Optional[float]:
    """Quantity must be absent or a finite number"""
    if quantity is None:
        return None
    if isinstance(quantity, bool) or not isinstance(quantity, (int, float)):
        raise ValidationError(f"Quantity must be a number, got {quantity!r}")
    if not math.isfinite(quantity):
        raise ValidationError("Quantity must be a finite number")
    return float(quantity)


def apply_take(dose, taken_at: Optional[datetime] = None, now: Optional[datetime] = None) -> None:
    """Mark taken; takenAt defaults to now. No deadline applies."""
    dose.status = DoseStatus.TAKEN
    dose.taken_at = to_naive_utc(taken_at or now or utcnow())


def apply_skip(dose) -> None:
    dose.status = DoseStatus.SKIPPED
    dose.taken_at = None


def apply_edit(dose, changes: Dict[str, Any], now: Optional[datetime] = None) -> None:
    """
    Apply a direct user edit. Everything is validated first so that an
    invalid edit leaves the dose untouched.
    """
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unsupported dose fields: {', '.join(sorted(unknown))}")

    updates: Dict[str, Any] = {}
    if "quantity" in changes:
        updates["quantity"] = validate_quantity(changes["quantity"])
    if "unit" in changes:
        updates["unit"] = changes["unit"]
    if "notes" in changes:
        updates["notes"] = changes["notes"]
    if changes.get("scheduled_for") is not None:
        updates["scheduled_for"] = to_naive_utc(ensure_utc(changes["scheduled_for"]))

    status = DoseStatus(dose.status)
    if changes.get("status") is not None:
        try:
            status = DoseStatus(changes["status"])
        except ValueError:
            raise ValidationError(f"Invalid dose status: {changes['status']!r}")
        if not can_transition(dose.status, status):
            raise ValidationError(f"Cannot move dose from {dose.status} to {status.value}")
    updates["status"] = status

    # takenAt only exists while TAKEN
    if status == DoseStatus.TAKEN:
        taken_at = changes.get("taken_at")
        if taken_at is not None:
            updates["taken_at"] = to_naive_utc(taken_at)
        elif dose.taken_at is None:
            updates["taken_at"] = to_naive_utc(now or utcnow())
    else:
        updates["taken_at"] = None

    for field_name, value in updates.items():
        setattr(dose, field_name, value)


__all__ = [
    "AUTOMATIC_TRANSITIONS",
    "can_transition",
    "automatic_sources",
    "should_be_marked_missed",
    "validate_quantity",
    "apply_take",
    "apply_skip",
    "apply_edit",
]
