"""
Doses API Router
Endpoints for listing, logging and resolving dose instances
"""

from typing import List, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.orm import Session

from api.deps import get_db, get_current_user_id, services
from api.schemas.common import GenerateDosesResponse
from api.schemas.dose import (
    DoseCreate,
    DoseUpdate,
    DoseTake,
    DoseSnooze,
    DoseGenerateRequest,
    DoseResponse,
    DoseList,
)
from models import DoseStatus
from services.dose_service import DoseQuery


router = APIRouter(prefix="/doses", tags=["doses"])


@router.get("", response_model=DoseList)
async def list_doses(
    from_: Optional[datetime] = Query(None, alias="from"),
    to: Optional[datetime] = Query(None),
    prescription_id: Optional[List[int]] = Query(None),
    schedule_id: Optional[int] = Query(None),
    dose_status: Optional[List[DoseStatus]] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=1000),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    List the caller's doses, newest first unless `order=asc`
    """
    dose_service = services.get_dose_service()

    doses = await dose_service.list_doses(
        DoseQuery(
            user_id=user_id,
            prescription_ids=prescription_id,
            schedule_id=schedule_id,
            from_=from_,
            to=to,
            statuses=dose_status,
            limit=limit,
            descending=order == "desc",
        ),
        db=db
    )
    return DoseList(
        doses=[DoseResponse.model_validate(d) for d in doses],
        total=len(doses)
    )


@router.post("", response_model=DoseResponse, status_code=status.HTTP_201_CREATED)
async def create_dose(
    dose_data: DoseCreate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Log a dose by hand, e.g. an as-needed intake
    """
    dose_service = services.get_dose_service()

    dose = await dose_service.create_dose(
        user_id=user_id,
        prescription_id=dose_data.prescription_id,
        scheduled_for=dose_data.scheduled_for,
        status=dose_data.status,
        schedule_id=dose_data.schedule_id,
        taken_at=dose_data.taken_at,
        quantity=dose_data.quantity,
        unit=dose_data.unit,
        notes=dose_data.notes,
        db=db
    )
    return DoseResponse.model_validate(dose)


@router.post("/generate", response_model=GenerateDosesResponse)
async def generate_doses(
    request: DoseGenerateRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Materialize the caller's schedules over a range. Re-running is safe.
    """
    dose_service = services.get_dose_service()

    result = await dose_service.generate_doses_for_user(
        user_id=user_id,
        from_=request.from_,
        to=request.to,
        prescription_id=request.prescription_id,
        db=db
    )
    return GenerateDosesResponse(**result.to_dict())


@router.get("/{dose_id}", response_model=DoseResponse)
async def get_dose(
    dose_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    dose_service = services.get_dose_service()
    dose = await dose_service.get_dose(user_id, dose_id, db=db)
    return DoseResponse.model_validate(dose)


@router.patch("/{dose_id}", response_model=DoseResponse)
async def update_dose(
    dose_id: int,
    update_data: DoseUpdate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Edit a dose. Setting TAKEN without taken_at stamps the current time;
    any other status clears taken_at.
    """
    dose_service = services.get_dose_service()

    dose = await dose_service.update_dose(
        user_id,
        dose_id,
        update_data.model_dump(exclude_unset=True),
        db=db
    )
    return DoseResponse.model_validate(dose)


@router.post("/{dose_id}/take", response_model=DoseResponse)
async def take_dose(
    dose_id: int,
    take_data: Optional[DoseTake] = None,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    dose_service = services.get_dose_service()

    dose = await dose_service.take_dose(
        user_id,
        dose_id,
        taken_at=take_data.taken_at if take_data else None,
        db=db
    )
    return DoseResponse.model_validate(dose)


@router.post("/{dose_id}/skip", response_model=DoseResponse)
async def skip_dose(
    dose_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    dose_service = services.get_dose_service()
    dose = await dose_service.skip_dose(user_id, dose_id, db=db)
    return DoseResponse.model_validate(dose)


@router.post("/{dose_id}/snooze", response_model=DoseResponse)
async def snooze_dose(
    dose_id: int,
    snooze_data: DoseSnooze,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Push a scheduled dose later
    """
    dose_service = services.get_dose_service()
    dose = await dose_service.snooze_dose(user_id, dose_id, snooze_data.minutes, db=db)
    return DoseResponse.model_validate(dose)
