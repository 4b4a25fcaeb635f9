"""
Domain Exceptions
Error taxonomy shared by the dose engine, services and API layer
"""

from typing import Any, List, Optional


class DoseEngineError(Exception):
    """Base class for all PillMind domain errors"""


class ValidationError(DoseEngineError, ValueError):
    """Malformed input; raised before any mutation happens"""


class InvalidTimezoneError(ValidationError):
    """Unrecognized IANA timezone name"""

    def __init__(self, timezone: Any):
        self.timezone = timezone
        super().__init__(f"Invalid timezone: {timezone!r}")


class InvalidTimeFormatError(ValidationError):
    """Time of day not in HH:mm 24-hour form"""

    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"Invalid time format (expected HH:mm): {value!r}")


class ScheduleConflictError(ValidationError):
    """Candidate schedule overlaps one or more existing schedules"""

    def __init__(self, conflicts: List[Any]):
        self.conflicts = conflicts
        super().__init__(
            f"Schedule conflicts with {len(conflicts)} existing schedule(s)"
        )


class NotFoundError(DoseEngineError, LookupError):
    """
    Entity does not exist, or exists but belongs to another user.
    Both cases are reported identically so existence is never leaked.
    """

    def __init__(self, entity: str, entity_id: Optional[Any] = None):
        self.entity = entity
        self.entity_id = entity_id
        message = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(message)


class ConflictError(DoseEngineError):
    """Uniqueness violation on dose materialization"""


class ConfigurationError(DoseEngineError):
    """A collaborator (e.g. a notification transport) is not configured"""


class TransientError(DoseEngineError):
    """
    Storage or network failure on one item of a batch. The item is
    reported and retried on the next run; its siblings carry on.
    """


__all__ = [
    "DoseEngineError",
    "ValidationError",
    "InvalidTimezoneError",
    "InvalidTimeFormatError",
    "ScheduleConflictError",
    "NotFoundError",
    "ConflictError",
    "ConfigurationError",
    "TransientError",
]
