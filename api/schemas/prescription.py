"""
Prescription Schemas
Pydantic models for medications, care providers and prescriptions
"""

from typing import Optional, List
from datetime import date, datetime
from pydantic import BaseModel, Field, ConfigDict

from models import MedForm, Unit
from api.schemas.inventory import InventoryResponse


# ==================== REQUEST SCHEMAS ====================

class InitialInventory(BaseModel):
    """Stock recorded together with a new medication"""
    current_qty: float = Field(..., ge=0)
    unit: Unit = Unit.TAB
    low_threshold: Optional[float] = Field(None, ge=0)


class MedicationCreate(BaseModel):
    """Schema for creating a medication"""
    name: str = Field(..., min_length=1, max_length=255)
    brand_name: Optional[str] = Field(None, max_length=255)
    form: Optional[MedForm] = None
    strength_value: Optional[float] = Field(None, gt=0)
    strength_unit: Optional[Unit] = None
    notes: Optional[str] = None
    inventory: Optional[InitialInventory] = None


class CareProviderCreate(BaseModel):
    """Schema for adding a prescriber"""
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    clinic: Optional[str] = Field(None, max_length=255)


class PrescriptionCreate(BaseModel):
    """Schema for creating a prescription"""
    medication_id: int
    start_date: date
    end_date: Optional[date] = None
    as_needed: bool = False
    indication: Optional[str] = Field(None, max_length=255)
    max_daily_dose: Optional[float] = None
    instructions: Optional[str] = None
    provider_id: Optional[int] = None


class PrescriptionUpdate(BaseModel):
    """Schema for updating a prescription; only the fields sent are applied"""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    as_needed: Optional[bool] = None
    indication: Optional[str] = Field(None, max_length=255)
    max_daily_dose: Optional[float] = None
    instructions: Optional[str] = None
    provider_id: Optional[int] = None


# ==================== RESPONSE SCHEMAS ====================

class MedicationResponse(BaseModel):
    """Schema for medication response"""
    id: int
    name: str
    brand_name: Optional[str] = None
    form: Optional[MedForm] = None
    strength_value: Optional[float] = None
    strength_unit: Optional[Unit] = None
    notes: Optional[str] = None
    inventory: Optional[InventoryResponse] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CareProviderResponse(BaseModel):
    """Schema for care provider response"""
    id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    clinic: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PrescriptionResponse(BaseModel):
    """Schema for prescription response"""
    id: int
    medication_id: int
    provider_id: Optional[int] = None
    indication: Optional[str] = None
    as_needed: bool
    max_daily_dose: Optional[float] = None
    instructions: Optional[str] = None
    start_date: date
    end_date: Optional[date] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PrescriptionDetail(PrescriptionResponse):
    """Prescription with its medication and schedule ids"""
    medication: MedicationResponse
    schedule_ids: List[int] = []
