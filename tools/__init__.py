"""
Tools Package
Pure scheduling, timezone and trigger logic plus the notification transport
"""

from .tz_utils import (
    get_zone,
    validate_timezone,
    parse_hhmm,
    normalize_hhmm,
    utcnow,
    ensure_utc,
    to_naive_utc,
    local_date_time,
    local_to_utc,
    start_of_day_in_tz,
    add_days_in_tz,
    weekday_of,
    day_range_utc,
)

from .recurrence import (
    ScheduleRule,
    effective_window,
    expand,
)

from .dose_state import (
    can_transition,
    automatic_sources,
    should_be_marked_missed,
    validate_quantity,
)

from .conflict_checker import (
    ScheduleData,
    ScheduleConflict,
    date_ranges_overlap,
    check_schedule_conflicts,
)

from .triggers import (
    is_low_stock,
    resolve_last_restocked_at,
    notification_window,
    is_in_notification_window,
    adherence_rate,
)

from .notification_service import (
    NotificationService,
    NotificationPayload,
    NotificationType,
    DeliveryResult,
    notification_service,
)


__all__ = [
    # Clock / timezone
    "get_zone",
    "validate_timezone",
    "parse_hhmm",
    "normalize_hhmm",
    "utcnow",
    "ensure_utc",
    "to_naive_utc",
    "local_date_time",
    "local_to_utc",
    "start_of_day_in_tz",
    "add_days_in_tz",
    "weekday_of",
    "day_range_utc",
    # Recurrence
    "ScheduleRule",
    "effective_window",
    "expand",
    # Dose state
    "can_transition",
    "automatic_sources",
    "should_be_marked_missed",
    "validate_quantity",
    # Conflicts
    "ScheduleData",
    "ScheduleConflict",
    "date_ranges_overlap",
    "check_schedule_conflicts",
    # Triggers
    "is_low_stock",
    "resolve_last_restocked_at",
    "notification_window",
    "is_in_notification_window",
    "adherence_rate",
    # Notifications
    "NotificationService",
    "NotificationPayload",
    "NotificationType",
    "DeliveryResult",
    "notification_service",
]
