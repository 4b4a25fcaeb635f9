"""
Schedule Schemas
Pydantic models for schedule requests and responses
"""

from typing import Optional, List
from datetime import date, datetime
from pydantic import BaseModel, Field, ConfigDict

from models import Unit
from api.schemas.common import GenerateDosesResponse


# ==================== REQUEST SCHEMAS ====================

class ScheduleCreate(BaseModel):
    """Schema for creating a schedule under a prescription"""
    days_of_week: List[str] = Field(..., min_length=1, description="e.g. [\"MON\", \"WED\"]")
    times: List[str] = Field(..., min_length=1, description="Times in HH:mm format")
    timezone: Optional[str] = Field(None, description="IANA zone; defaults to the user's settings timezone")
    dose_quantity: Optional[float] = None
    dose_unit: Optional[Unit] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ScheduleUpdate(BaseModel):
    """Schema for updating a schedule; only the fields sent are applied"""
    days_of_week: Optional[List[str]] = None
    times: Optional[List[str]] = None
    timezone: Optional[str] = None
    dose_quantity: Optional[float] = None
    dose_unit: Optional[Unit] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ConflictCheckRequest(BaseModel):
    """Candidate schedule to test against the user's existing schedules"""
    days_of_week: List[str] = Field(..., min_length=1)
    times: List[str] = Field(..., min_length=1)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    exclude_schedule_id: Optional[int] = None


class TimezoneSyncRequest(BaseModel):
    """Target zone for every schedule; defaults to the settings timezone"""
    timezone: Optional[str] = None


# ==================== RESPONSE SCHEMAS ====================

class ScheduleResponse(BaseModel):
    """Schema for schedule response"""
    id: int
    prescription_id: int
    timezone: str
    days_of_week: List[str]
    times: List[str]
    dose_quantity: Optional[float] = None
    dose_unit: Optional[Unit] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ScheduleChangeResponse(BaseModel):
    """A saved schedule plus what happened to its doses"""
    schedule: ScheduleResponse
    dose_generation: Optional[GenerateDosesResponse] = None
    deleted_doses: int = 0
    updated_doses: int = 0


class ScheduleDeleteResponse(BaseModel):
    """Result of deleting a schedule"""
    success: bool = True
    deleted_doses: int


class ScheduleConflictResponse(BaseModel):
    """One existing schedule that collides with the candidate"""
    schedule_id: Optional[int]
    conflicting_days: List[str]
    conflicting_times: List[str]


class ConflictCheckResponse(BaseModel):
    """Conflict check result"""
    has_conflicts: bool
    conflicts: List[ScheduleConflictResponse]


class TimezoneSyncResponse(BaseModel):
    """Result of moving every schedule to one timezone"""
    timezone: str
    updated_count: int
    deleted_doses: int
    dose_generation: GenerateDosesResponse
