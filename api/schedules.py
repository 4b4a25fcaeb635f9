"""
Schedules API Router
Endpoints for dosing schedule management
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.deps import get_db, get_current_user_id, services
from api.schemas.common import GenerateDosesResponse
from api.schemas.schedule import (
    ScheduleUpdate,
    ConflictCheckRequest,
    TimezoneSyncRequest,
    ScheduleResponse,
    ScheduleChangeResponse,
    ScheduleDeleteResponse,
    ScheduleConflictResponse,
    ConflictCheckResponse,
    TimezoneSyncResponse,
)
from services.schedule_service import ScheduleChangeResult


router = APIRouter(prefix="/schedules", tags=["schedules"])


def change_response(result: ScheduleChangeResult) -> ScheduleChangeResponse:
    generation = result.dose_generation
    return ScheduleChangeResponse(
        schedule=ScheduleResponse.model_validate(result.schedule),
        dose_generation=GenerateDosesResponse(**generation.to_dict()) if generation else None,
        deleted_doses=result.deleted_doses,
        updated_doses=result.updated_doses,
    )


# ==================== ENDPOINTS ====================

@router.get("", response_model=List[ScheduleResponse])
async def list_schedules(
    prescription_id: Optional[int] = Query(None),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    List the caller's schedules, optionally for one prescription
    """
    schedule_service = services.get_schedule_service()

    schedules = await schedule_service.list_schedules(user_id, prescription_id=prescription_id, db=db)
    return [ScheduleResponse.model_validate(s) for s in schedules]


@router.post("/check-conflicts", response_model=ConflictCheckResponse)
async def check_conflicts(
    request: ConflictCheckRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Test a candidate schedule against every schedule the caller has
    """
    schedule_service = services.get_schedule_service()

    conflicts = await schedule_service.check_conflicts(
        user_id,
        days_of_week=request.days_of_week,
        times=request.times,
        start_date=request.start_date,
        end_date=request.end_date,
        exclude_schedule_id=request.exclude_schedule_id,
        db=db
    )
    return ConflictCheckResponse(
        has_conflicts=bool(conflicts),
        conflicts=[ScheduleConflictResponse(**c.to_dict()) for c in conflicts]
    )


@router.post("/sync-timezone", response_model=TimezoneSyncResponse)
async def sync_timezone(
    request: Optional[TimezoneSyncRequest] = None,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Move every schedule to one timezone and rebuild the affected future doses
    """
    settings_service = services.get_settings_service()

    result = await settings_service.sync_schedule_timezones(
        user_id,
        timezone=request.timezone if request else None,
        db=db
    )
    return TimezoneSyncResponse(
        timezone=result.timezone,
        updated_count=result.updated_count,
        deleted_doses=result.deleted_doses,
        dose_generation=GenerateDosesResponse(**result.dose_generation.to_dict())
    )


@router.get("/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(
    schedule_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    schedule_service = services.get_schedule_service()
    schedule = await schedule_service.get_schedule(user_id, schedule_id, db=db)
    return ScheduleResponse.model_validate(schedule)


@router.put("/{schedule_id}", response_model=ScheduleChangeResponse)
async def update_schedule(
    schedule_id: int,
    update_data: ScheduleUpdate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Update a schedule. Future scheduled doses are trimmed, regenerated or
    re-quantified to match; recorded history is left alone.
    """
    schedule_service = services.get_schedule_service()

    result = await schedule_service.update_schedule(
        user_id,
        schedule_id,
        update_data.model_dump(exclude_unset=True),
        db=db
    )
    return change_response(result)


@router.delete("/{schedule_id}", response_model=ScheduleDeleteResponse)
async def delete_schedule(
    schedule_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Delete a schedule and its future scheduled doses
    """
    schedule_service = services.get_schedule_service()

    deleted = await schedule_service.delete_schedule(user_id, schedule_id, db=db)
    return ScheduleDeleteResponse(success=True, deleted_doses=deleted)
