"""
Analytics Schemas
Pydantic models for adherence statistics
"""

from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict


class AdherenceCounts(BaseModel):
    """Status counts with the derived rate"""
    total: int
    taken: int
    missed: int
    skipped: int
    scheduled: int
    adherence_rate: int = Field(..., ge=0, le=100)


class MedicationAdherence(AdherenceCounts):
    """Counts for one medication"""
    medication_id: int
    medication_name: str


class AdherencePeriod(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: datetime = Field(..., alias="from")
    to: datetime


class AdherenceStatsResponse(BaseModel):
    """Adherence over a period"""
    period: AdherencePeriod
    overall: AdherenceCounts
    by_medication: List[MedicationAdherence]


class DailyDose(BaseModel):
    dose_id: int
    prescription_id: int
    medication_name: str
    local_time: str
    status: str


class DailySummaryResponse(AdherenceCounts):
    """The caller's doses for one local calendar day"""
    date: str
    timezone: str
    doses: List[DailyDose]
