"""
Dose Schemas
Pydantic models for dose instance requests and responses
"""

from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict, field_validator

from models import DoseStatus, Unit
from api.schemas.common import as_utc


# ==================== REQUEST SCHEMAS ====================

class DoseCreate(BaseModel):
    """Schema for logging a dose by hand"""
    prescription_id: int
    schedule_id: Optional[int] = None
    scheduled_for: datetime
    status: DoseStatus = DoseStatus.TAKEN
    taken_at: Optional[datetime] = None
    quantity: Optional[float] = None
    unit: Optional[Unit] = None
    notes: Optional[str] = None


class DoseUpdate(BaseModel):
    """Schema for editing a dose; only the fields sent are applied"""
    status: Optional[DoseStatus] = None
    taken_at: Optional[datetime] = None
    scheduled_for: Optional[datetime] = None
    quantity: Optional[float] = None
    unit: Optional[Unit] = None
    notes: Optional[str] = None


class DoseTake(BaseModel):
    """Schema for marking a dose taken"""
    taken_at: Optional[datetime] = None


class DoseSnooze(BaseModel):
    """Schema for snoozing a scheduled dose"""
    minutes: int = Field(..., ge=1, le=24 * 60)


class DoseGenerateRequest(BaseModel):
    """Schema for an on-demand materialization range"""
    model_config = ConfigDict(populate_by_name=True)

    from_: datetime = Field(..., alias="from")
    to: datetime
    prescription_id: Optional[int] = None


# ==================== RESPONSE SCHEMAS ====================

class DoseResponse(BaseModel):
    """Schema for dose response"""
    id: int
    prescription_id: int
    schedule_id: Optional[int] = None
    scheduled_for: datetime
    slot_for: datetime
    taken_at: Optional[datetime] = None
    status: DoseStatus
    quantity: Optional[float] = None
    unit: Optional[Unit] = None
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("scheduled_for", "slot_for", "taken_at")
    @classmethod
    def attach_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class DoseList(BaseModel):
    """List of doses"""
    doses: List[DoseResponse]
    total: int
