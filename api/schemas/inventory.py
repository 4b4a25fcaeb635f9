"""
Inventory Schemas
Pydantic models for medication stock
"""

from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict, field_validator

from models import Unit
from api.schemas.common import as_utc


class InventoryUpdate(BaseModel):
    """Full replacement of a medication's stock record"""
    current_qty: float = Field(..., ge=0)
    unit: Unit
    low_threshold: Optional[float] = Field(None, ge=0)
    last_restocked_at: Optional[datetime] = None


class InventoryResponse(BaseModel):
    """Schema for inventory response"""
    id: int
    medication_id: int
    current_qty: float
    unit: Unit
    low_threshold: Optional[float] = None
    last_restocked_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("last_restocked_at")
    @classmethod
    def attach_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class LowStockItemResponse(BaseModel):
    """Medication at or below its threshold"""
    medication_id: int
    name: str
    current_qty: float
    low_threshold: float
    unit: Optional[Unit] = None

    model_config = ConfigDict(from_attributes=True)


class LowStockList(BaseModel):
    """Low stock medications for the caller"""
    items: List[LowStockItemResponse]
    total: int
