"""
Actions Module
Batch jobs run by the external periodic trigger
"""

from .dose_jobs import (
    JobResult,
    generate_doses_for_all_users,
    mark_missed_for_all_users,
    send_notifications_for_all_users,
    send_low_stock_alerts,
)


__all__ = [
    "JobResult",
    "generate_doses_for_all_users",
    "mark_missed_for_all_users",
    "send_notifications_for_all_users",
    "send_low_stock_alerts",
]
