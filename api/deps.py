"""
API Dependencies
Common dependencies for FastAPI endpoints
"""

import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from config import settings
from database import get_db


async def get_current_user_id(
    x_user_id: Optional[int] = Header(None, alias="X-User-Id"),
    db: Session = Depends(get_db)
) -> int:
    """
    Caller identity, resolved by the authentication layer in front of the
    API and passed explicitly on every request.
    """
    from models import User

    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

    user = db.query(User).filter(User.id == x_user_id).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return user.id


async def verify_cron_secret(
    authorization: Optional[str] = Header(None)
) -> bool:
    """
    Guard for periodic-trigger endpoints: `Authorization: Bearer <CRON_SECRET>`.
    Skipped when no secret is configured.
    """
    if not settings.CRON_SECRET:
        return True

    expected = f"Bearer {settings.CRON_SECRET}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return True


class ServiceDependency:
    """
    Dependency injection for services
    """

    @staticmethod
    def get_dose_service():
        from services.dose_service import dose_service
        return dose_service

    @staticmethod
    def get_schedule_service():
        from services.schedule_service import schedule_service
        return schedule_service

    @staticmethod
    def get_prescription_service():
        from services.prescription_service import prescription_service
        return prescription_service

    @staticmethod
    def get_inventory_service():
        from services.inventory_service import inventory_service
        return inventory_service

    @staticmethod
    def get_settings_service():
        from services.settings_service import settings_service
        return settings_service

    @staticmethod
    def get_adherence_service():
        from services.adherence_service import adherence_service
        return adherence_service


# Service dependency instances
services = ServiceDependency()


__all__ = [
    "get_db",
    "get_current_user_id",
    "verify_cron_secret",
    "ServiceDependency",
    "services",
]
