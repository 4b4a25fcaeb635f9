"""
Settings Service
Per-user preferences: timezone, time format and default notification channels
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from config import settings
from database import get_db_context
from exceptions import NotFoundError, ValidationError
import models
from services.dose_service import GenerateDosesResult, dose_service
from tools.tz_utils import ensure_utc, utcnow, validate_timezone


logger = logging.getLogger(__name__)


@dataclass
class TimezoneSyncResult:
    timezone: str
    updated_count: int = 0
    deleted_doses: int = 0
    dose_generation: GenerateDosesResult = field(default_factory=GenerateDosesResult)


def resolve_user_timezone(session: Session, user_id: int) -> str:
    """The user's settings timezone; the authority for missed detection and display"""
    user_settings = session.query(models.UserSettings).filter(
        models.UserSettings.user_id == user_id
    ).first()
    return user_settings.timezone if user_settings else settings.DEFAULT_TIMEZONE


def _normalize_channels(channels: Any) -> List[str]:
    if channels is None:
        return [models.Channel.EMAIL.value]
    result: List[str] = []
    for channel in channels:
        try:
            value = models.Channel(channel.value if isinstance(channel, models.Channel) else str(channel).upper()).value
        except ValueError:
            raise ValidationError(f"Invalid notification channel: {channel!r}")
        if value not in result:
            result.append(value)
    return result


class SettingsService:
    """
    Service for user settings
    """

    async def ensure_settings(
        self,
        user_id: int,
        timezone: Optional[str] = None,
        time_format: Optional[models.TimeFormat] = None,
        db: Optional[Session] = None
    ) -> models.UserSettings:
        """Return the user's settings, creating them with defaults on first use"""
        def _ensure(session: Session) -> models.UserSettings:
            existing = session.query(models.UserSettings).filter(
                models.UserSettings.user_id == user_id
            ).first()
            if existing:
                return existing

            user = session.query(models.User).filter(models.User.id == user_id).first()
            if not user:
                raise NotFoundError("User", user_id)

            zone = settings.DEFAULT_TIMEZONE
            if timezone:
                try:
                    zone = validate_timezone(timezone)
                except ValidationError:
                    logger.warning(f"Ignoring invalid timezone {timezone!r} for user {user_id}; using default")

            created = models.UserSettings(
                user_id=user_id,
                timezone=zone,
                time_format=time_format or models.TimeFormat.H24,
                default_channels=[models.Channel.EMAIL.value],
            )
            session.add(created)
            session.commit()
            session.refresh(created)
            logger.info(f"Created settings for user {user_id} ({zone})")
            return created

        if db:
            return _ensure(db)

        with get_db_context() as session:
            return _ensure(session)

    async def update_settings(
        self,
        user_id: int,
        updates: Dict[str, Any],
        db: Optional[Session] = None
    ) -> models.UserSettings:
        """Update timezone, time_format and/or default_channels"""
        allowed = {"timezone", "time_format", "default_channels"}
        unknown = set(updates) - allowed
        if unknown:
            raise ValidationError(f"Unsupported settings fields: {', '.join(sorted(unknown))}")

        changes: Dict[str, Any] = {}
        if updates.get("timezone") is not None:
            changes["timezone"] = validate_timezone(updates["timezone"])
        if updates.get("time_format") is not None:
            try:
                changes["time_format"] = models.TimeFormat(updates["time_format"])
            except ValueError:
                raise ValidationError(f"Invalid time format: {updates['time_format']!r}")
        if "default_channels" in updates:
            changes["default_channels"] = _normalize_channels(updates["default_channels"])

        async def _update(session: Session) -> models.UserSettings:
            user_settings = await self.ensure_settings(user_id, db=session)
            for field_name, value in changes.items():
                setattr(user_settings, field_name, value)
            session.commit()
            session.refresh(user_settings)
            return user_settings

        if db:
            return await _update(db)

        with get_db_context() as session:
            return await _update(session)

    async def sync_schedule_timezones(
        self,
        user_id: int,
        timezone: Optional[str] = None,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> TimezoneSyncResult:
        """
        Rewrite every schedule of the user to one timezone (the given one,
        else the settings timezone). Schedules whose zone changes get their
        future SCHEDULED doses rebuilt at the new offsets.
        """
        now = ensure_utc(now or utcnow())

        async def _sync(session: Session) -> TimezoneSyncResult:
            zone = validate_timezone(timezone) if timezone else resolve_user_timezone(session, user_id)
            result = TimezoneSyncResult(timezone=zone)

            schedules = session.query(models.Schedule).join(models.Prescription).filter(
                models.Prescription.user_id == user_id
            ).all()

            for schedule in schedules:
                if schedule.timezone == zone:
                    continue
                schedule.timezone = zone
                session.flush()
                result.updated_count += 1
                result.deleted_doses += await dose_service.delete_future_scheduled_doses(
                    schedule.id, now=now, db=session
                )
                result.dose_generation.merge(dose_service.materialize(
                    session,
                    schedule.prescription,
                    schedule,
                    now,
                    now + timedelta(days=settings.SCHEDULE_REGENERATION_DAYS),
                    now=now,
                ))

            session.commit()
            logger.info(f"Synced {result.updated_count} schedules to {zone} for user {user_id}")
            return result

        if db:
            return await _sync(db)

        with get_db_context() as session:
            return await _sync(session)


# Singleton instance
settings_service = SettingsService()
