"""
Settings API Router
Endpoints for the caller's timezone, time format and notification channels
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.deps import get_db, get_current_user_id, services
from api.schemas.settings import SettingsUpdate, SettingsResponse


router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("", response_model=SettingsResponse)
async def get_settings(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    The caller's settings, created with defaults on first access
    """
    settings_service = services.get_settings_service()
    user_settings = await settings_service.ensure_settings(user_id, db=db)
    return SettingsResponse.model_validate(user_settings)


@router.put("", response_model=SettingsResponse)
async def update_settings(
    update_data: SettingsUpdate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Changing the timezone does not move existing schedules; use
    POST /schedules/sync-timezone for that.
    """
    settings_service = services.get_settings_service()

    user_settings = await settings_service.update_settings(
        user_id,
        update_data.model_dump(exclude_unset=True),
        db=db
    )
    return SettingsResponse.model_validate(user_settings)
