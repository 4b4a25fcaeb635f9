"""
Inventory API Router
Endpoints for medication stock levels
"""

from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.deps import get_db, get_current_user_id, services
from api.schemas.inventory import InventoryUpdate, InventoryResponse, LowStockItemResponse, LowStockList


router = APIRouter(tags=["inventory"])


@router.get("/inventory/low-stock", response_model=LowStockList)
async def list_low_stock(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Medications at or below their low-stock threshold
    """
    inventory_service = services.get_inventory_service()

    items = await inventory_service.list_low_stock(user_id, db=db)
    return LowStockList(
        items=[LowStockItemResponse.model_validate(i) for i in items],
        total=len(items)
    )


@router.get("/medications/{medication_id}/inventory", response_model=Optional[InventoryResponse])
async def get_inventory(
    medication_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    inventory_service = services.get_inventory_service()
    inventory = await inventory_service.get_inventory(user_id, medication_id, db=db)
    return InventoryResponse.model_validate(inventory) if inventory else None


@router.put("/medications/{medication_id}/inventory", response_model=InventoryResponse)
async def upsert_inventory(
    medication_id: int,
    inventory_data: InventoryUpdate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Replace the stock record. A higher quantity than before counts as a
    restock and stamps last_restocked_at unless one is given.
    """
    inventory_service = services.get_inventory_service()

    inventory = await inventory_service.upsert_inventory(
        user_id=user_id,
        medication_id=medication_id,
        current_qty=inventory_data.current_qty,
        unit=inventory_data.unit,
        low_threshold=inventory_data.low_threshold,
        last_restocked_at=inventory_data.last_restocked_at,
        db=db
    )
    return InventoryResponse.model_validate(inventory)
