"""
Services Module
Business logic layer for the PillMind dose engine
"""

from services.dose_service import DoseService, DoseQuery, GenerateDosesResult, dose_service
from services.settings_service import SettingsService, settings_service
from services.schedule_service import ScheduleService, ScheduleChangeResult, schedule_service
from services.prescription_service import PrescriptionService, prescription_service
from services.inventory_service import InventoryService, LowStockItem, inventory_service
from services.adherence_service import AdherenceService, adherence_service


__all__ = [
    # Service classes
    "DoseService",
    "SettingsService",
    "ScheduleService",
    "PrescriptionService",
    "InventoryService",
    "AdherenceService",
    # Result and query types
    "DoseQuery",
    "GenerateDosesResult",
    "ScheduleChangeResult",
    "LowStockItem",
    # Singleton instances
    "dose_service",
    "settings_service",
    "schedule_service",
    "prescription_service",
    "inventory_service",
    "adherence_service",
]
