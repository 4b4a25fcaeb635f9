"""
Inventory Service
Stock levels per medication: upsert with restock detection, low-stock listing
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from database import get_db_context
from exceptions import NotFoundError, ValidationError
import models
from tools.triggers import is_low_stock, resolve_last_restocked_at
from tools.tz_utils import ensure_utc, to_naive_utc, utcnow


logger = logging.getLogger(__name__)


@dataclass
class LowStockItem:
    medication_id: int
    name: str
    current_qty: float
    low_threshold: float
    unit: Optional[models.Unit] = None


def _validate_amount(label: str, value: Optional[float], required: bool = False) -> None:
    if value is None:
        if required:
            raise ValidationError(f"{label} is required")
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(f"{label} must be a finite number")
    if value < 0:
        raise ValidationError(f"{label} cannot be negative")


def _owned_medication(session: Session, user_id: int, medication_id: int) -> models.Medication:
    medication = session.query(models.Medication).filter(
        and_(
            models.Medication.id == medication_id,
            models.Medication.user_id == user_id
        )
    ).first()
    if not medication:
        raise NotFoundError("Medication", medication_id)
    return medication


class InventoryService:
    """
    Service for medication inventory
    """

    async def get_inventory(
        self,
        user_id: int,
        medication_id: int,
        db: Optional[Session] = None
    ) -> Optional[models.Inventory]:
        def _get(session: Session) -> Optional[models.Inventory]:
            return _owned_medication(session, user_id, medication_id).inventory

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def create_inventory(
        self,
        user_id: int,
        medication_id: int,
        current_qty: float,
        unit: models.Unit,
        low_threshold: Optional[float] = None,
        last_restocked_at: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.Inventory:
        """Create the inventory row; a medication has at most one"""
        _validate_amount("Current quantity", current_qty, required=True)
        _validate_amount("Low threshold", low_threshold)

        def _create(session: Session) -> models.Inventory:
            medication = _owned_medication(session, user_id, medication_id)
            if medication.inventory is not None:
                raise ValidationError("Inventory already exists for this medication")

            inventory = models.Inventory(
                medication_id=medication.id,
                current_qty=current_qty,
                unit=unit,
                low_threshold=low_threshold,
                last_restocked_at=to_naive_utc(last_restocked_at),
            )
            session.add(inventory)
            session.commit()
            session.refresh(inventory)
            return inventory

        if db:
            return _create(db)

        with get_db_context() as session:
            return _create(session)

    async def upsert_inventory(
        self,
        user_id: int,
        medication_id: int,
        current_qty: float,
        unit: models.Unit,
        low_threshold: Optional[float] = None,
        last_restocked_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.Inventory:
        """
        Set the stock level of a medication, creating the row if needed.

        An increase over the stored quantity is a restock and stamps
        last_restocked_at with `now`. An explicitly supplied
        last_restocked_at takes precedence over that stamp.
        """
        _validate_amount("Current quantity", current_qty, required=True)
        _validate_amount("Low threshold", low_threshold)
        now = ensure_utc(now or utcnow())

        def _upsert(session: Session) -> models.Inventory:
            medication = _owned_medication(session, user_id, medication_id)
            inventory = medication.inventory
            previous_qty = inventory.current_qty if inventory else None

            restocked_at = resolve_last_restocked_at(
                previous_qty,
                current_qty,
                now,
                explicit=ensure_utc(last_restocked_at) if last_restocked_at else None,
                current=inventory.last_restocked_at if inventory else None,
            )

            if inventory is None:
                inventory = models.Inventory(medication_id=medication.id)
                session.add(inventory)

            inventory.current_qty = current_qty
            inventory.unit = unit
            inventory.low_threshold = low_threshold
            inventory.last_restocked_at = to_naive_utc(restocked_at)
            session.commit()
            session.refresh(inventory)

            if previous_qty is not None and current_qty > previous_qty:
                logger.info(f"Restocked medication {medication_id}: {previous_qty} -> {current_qty}")
            return inventory

        if db:
            return _upsert(db)

        with get_db_context() as session:
            return _upsert(session)

    async def list_low_stock(
        self,
        user_id: int,
        db: Optional[Session] = None
    ) -> List[LowStockItem]:
        """Medications whose stock is at or below their threshold"""
        def _list(session: Session) -> List[LowStockItem]:
            rows = session.query(models.Medication, models.Inventory).join(
                models.Inventory, models.Inventory.medication_id == models.Medication.id
            ).filter(
                and_(
                    models.Medication.user_id == user_id,
                    models.Inventory.low_threshold.isnot(None)
                )
            ).order_by(models.Medication.name).all()

            return [
                LowStockItem(
                    medication_id=medication.id,
                    name=medication.name,
                    current_qty=inventory.current_qty,
                    low_threshold=inventory.low_threshold,
                    unit=inventory.unit,
                )
                for medication, inventory in rows
                if is_low_stock(inventory.current_qty, inventory.low_threshold)
            ]

        if db:
            return _list(db)

        with get_db_context() as session:
            return _list(session)


# Singleton instance
inventory_service = InventoryService()
