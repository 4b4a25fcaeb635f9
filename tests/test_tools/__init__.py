"""
Test Tools Package
Tests for the tools module (timezones, recurrence, conflicts, dose state, triggers, notifications)
"""

__all__ = [
    "test_tz_utils",
    "test_recurrence",
    "test_conflict_checker",
    "test_dose_state",
    "test_triggers",
    "test_notification_service",
]
