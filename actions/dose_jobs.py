"""
Dose Jobs
Batch operations invoked by the external periodic trigger: materialization,
missed sweep, reminder dispatch and low-stock alerts
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy import and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from database import get_db_context
from exceptions import ConfigurationError, TransientError, ValidationError
import models
from services.dose_service import dose_service
from services.inventory_service import inventory_service
from services.settings_service import resolve_user_timezone
from tools.notification_service import (
    NotificationPayload,
    NotificationService,
    NotificationType,
    notification_service,
)
from tools.triggers import notification_window
from tools.tz_utils import day_range_utc, ensure_utc, local_date, to_naive_utc, to_zone, utcnow


logger = logging.getLogger(__name__)


LOW_STOCK_ALERT_TYPE = NotificationType.LOW_STOCK_ALERT.value


@dataclass
class JobResult:
    """
    Outcome of one batch run. Items fail independently; their errors are
    collected here instead of being raised.
    """
    job: str
    total: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    unconfigured: int = 0
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job,
            "success": self.success,
            "total": self.total,
            "results": self.results,
            "errors": self.errors,
            "unconfigured": self.unconfigured,
            "timestamp": self.timestamp.isoformat(),
        }


@contextmanager
def _transient():
    """Re-raise storage and network failures of one batch item as TransientError"""
    try:
        yield
    except (SQLAlchemyError, httpx.HTTPError) as e:
        raise TransientError(str(e)) from e


def _user_channels(user: models.User) -> List[models.Channel]:
    if user.settings is None:
        return [models.Channel.EMAIL]
    return user.settings.channels


def _format_time(instant: datetime, user: models.User, tz: str) -> str:
    local = to_zone(instant, tz)
    if user.settings is not None and user.settings.time_format == models.TimeFormat.H12:
        return local.strftime("%I:%M %p").lstrip("0")
    return local.strftime("%H:%M")


def _record(
    session: Session,
    user_id: int,
    channel: models.Channel,
    status: models.NotificationStatus,
    now: datetime,
    meta: Dict[str, Any],
    dose_log_id: Optional[int] = None
) -> models.NotificationLog:
    log = models.NotificationLog(
        user_id=user_id,
        dose_log_id=dose_log_id,
        channel=channel,
        status=status,
        sent_at=to_naive_utc(now),
        meta=meta,
    )
    session.add(log)
    session.flush()
    return log


# ==================== MATERIALIZATION ====================

async def generate_doses_for_all_users(
    now: Optional[datetime] = None,
    horizon_days: Optional[int] = None,
    db: Optional[Session] = None
) -> JobResult:
    """
    Extend every scheduled prescription's doses to `now + horizon_days`.
    Safe to re-run on overlapping horizons.
    """
    now = ensure_utc(now or utcnow())
    if horizon_days is None:
        horizon_days = settings.DOSE_HORIZON_DAYS
    if horizon_days < 0:
        raise ValidationError("Horizon days cannot be negative")
    horizon = now + timedelta(days=horizon_days)
    result = JobResult(job="generate_doses")

    def _run(session: Session) -> JobResult:
        schedule_ids = [
            row[0] for row in session.query(models.Schedule.id).join(models.Prescription).filter(
                models.Prescription.as_needed.is_(False)
            ).order_by(models.Schedule.id).all()
        ]

        for schedule_id in schedule_ids:
            user_id = None
            try:
                with _transient():
                    schedule = session.get(models.Schedule, schedule_id)
                    if schedule is None:
                        # Deleted since the id list was read
                        continue
                    user_id = schedule.prescription.user_id
                    generation = dose_service.materialize(
                        session, schedule.prescription, schedule, now, horizon, now=now
                    )
                    session.commit()
            except (TransientError, ValidationError) as e:
                session.rollback()
                logger.error(f"Dose generation failed for schedule {schedule_id}: {e}")
                result.errors.append({"user_id": user_id, "schedule_id": schedule_id, "error": str(e)})
                continue

            result.total += generation.generated
            for error in generation.errors:
                result.errors.append({"user_id": user_id, "schedule_id": schedule_id, "error": error})
            result.results.append({
                "user_id": user_id,
                "schedule_id": schedule_id,
                **generation.to_dict(),
            })

        logger.info(
            f"Dose generation: {result.total} created across {len(schedule_ids)} schedules, "
            f"{len(result.errors)} errors"
        )
        return result

    if db:
        return _run(db)

    with get_db_context() as session:
        return _run(session)


# ==================== MISSED SWEEP ====================

async def mark_missed_for_all_users(
    now: Optional[datetime] = None,
    db: Optional[Session] = None
) -> JobResult:
    """Run the missed-dose sweep for every user in their own timezone"""
    now = ensure_utc(now or utcnow())
    result = JobResult(job="mark_missed")

    async def _run(session: Session) -> JobResult:
        user_ids = [row[0] for row in session.query(models.User.id).order_by(models.User.id).all()]
        for user_id in user_ids:
            try:
                with _transient():
                    marked = await dose_service.mark_missed_for_user(user_id, now=now, db=session)
            except TransientError as e:
                session.rollback()
                logger.error(f"Missed sweep failed for user {user_id}: {e}")
                result.errors.append({"user_id": user_id, "error": str(e)})
                continue
            if marked:
                result.total += marked
                result.results.append({"user_id": user_id, "marked": marked})

        logger.info(f"Missed sweep: {result.total} doses marked missed, {len(result.errors)} errors")
        return result

    if db:
        return await _run(db)

    with get_db_context() as session:
        return await _run(session)


# ==================== REMINDERS ====================

def _already_notified(session: Session, dose_id: int) -> bool:
    """Any SENT log for the dose counts, whatever the channel"""
    return session.query(models.NotificationLog.id).filter(
        and_(
            models.NotificationLog.dose_log_id == dose_id,
            models.NotificationLog.status == models.NotificationStatus.SENT
        )
    ).first() is not None


async def send_notifications_for_all_users(
    now: Optional[datetime] = None,
    window_minutes: Optional[int] = None,
    transport: Optional[NotificationService] = None,
    db: Optional[Session] = None
) -> JobResult:
    """
    Send a reminder for every SCHEDULED dose due within [now, now + W]
    that has not been notified yet, over each of the user's channels.

    Each attempt is logged SENT or FAILED. A channel without credentials is
    counted as unconfigured and not logged. SMS has no transport and is
    skipped.
    """
    now = ensure_utc(now or utcnow())
    window_start, window_end = notification_window(
        now, window_minutes if window_minutes is not None else settings.NOTIFICATION_WINDOW_MINUTES
    )
    transport = transport or notification_service
    result = JobResult(job="send_notifications")

    async def _notify_dose(session: Session, user: models.User, tz: str, dose: models.DoseLog) -> None:
        medication_name = dose.prescription.medication.name
        meta = {
            "medicationName": medication_name,
            "scheduledFor": dose.scheduled_for.isoformat(),
            "timezone": tz,
        }
        payload = NotificationPayload(
            notification_type=NotificationType.MEDICATION_REMINDER,
            data={
                "medicationName": medication_name,
                "scheduledTime": _format_time(dose.scheduled_for, user, tz),
            },
        )

        for channel in _user_channels(user):
            if channel == models.Channel.SMS:
                continue
            try:
                with _transient():
                    delivery = await transport.send(user.id, channel, payload, db=session)
            except ConfigurationError as e:
                logger.debug(f"{channel.value} not configured: {e}")
                result.unconfigured += 1
                continue
            except TransientError as e:
                logger.error(f"Failed to send {channel.value} reminder for dose {dose.id}: {e}")
                _record(session, user.id, channel, models.NotificationStatus.FAILED, now,
                        {**meta, "error": str(e)}, dose_log_id=dose.id)
                result.errors.append({"user_id": user.id, "dose_id": dose.id, "channel": channel.value, "error": str(e)})
                continue

            log_meta = meta if delivery.success else {**meta, "reason": delivery.reason}
            log = _record(session, user.id, channel, delivery.status, now, log_meta, dose_log_id=dose.id)
            if delivery.success:
                result.total += 1
                result.results.append({
                    "user_id": user.id,
                    "dose_id": dose.id,
                    "medication_name": medication_name,
                    "channel": channel.value,
                    "scheduled_for": dose.scheduled_for.isoformat(),
                    "notification_id": log.id,
                })

    async def _run(session: Session) -> JobResult:
        users = session.query(models.User).order_by(models.User.id).all()
        for user in users:
            try:
                with _transient():
                    tz = resolve_user_timezone(session, user.id)
                    doses = session.query(models.DoseLog).join(models.Prescription).filter(
                    and_(
                        models.Prescription.user_id == user.id,
                        models.DoseLog.status == models.DoseStatus.SCHEDULED,
                        models.DoseLog.scheduled_for >= to_naive_utc(window_start),
                        models.DoseLog.scheduled_for <= to_naive_utc(window_end)
                    )
                ).order_by(models.DoseLog.scheduled_for).all()
            except TransientError as e:
                session.rollback()
                logger.error(f"Failed to load due doses for user {user.id}: {e}")
                result.errors.append({"user_id": user.id, "error": str(e)})
                continue

            for dose in doses:
                if _already_notified(session, dose.id):
                    continue
                try:
                    with _transient():
                        await _notify_dose(session, user, tz, dose)
                        session.commit()
                except TransientError as e:
                    session.rollback()
                    logger.error(f"Notification dispatch failed for dose {dose.id}: {e}")
                    result.errors.append({"user_id": user.id, "dose_id": dose.id, "error": str(e)})

        logger.info(
            f"Reminders: {result.total} sent, {result.unconfigured} unconfigured, {len(result.errors)} errors"
        )
        return result

    if db:
        return await _run(db)

    with get_db_context() as session:
        return await _run(session)


# ==================== LOW STOCK ====================

def _alerted_today(session: Session, user_id: int, tz: str, now: datetime) -> bool:
    """At most one low-stock alert per user per local calendar day"""
    day_start, _ = day_range_utc(local_date(now, tz), tz)
    logs = session.query(models.NotificationLog).filter(
        and_(
            models.NotificationLog.user_id == user_id,
            models.NotificationLog.status == models.NotificationStatus.SENT,
            models.NotificationLog.dose_log_id.is_(None),
            models.NotificationLog.sent_at >= to_naive_utc(day_start)
        )
    ).all()
    return any((log.meta or {}).get("type") == LOW_STOCK_ALERT_TYPE for log in logs)


async def send_low_stock_alerts(
    now: Optional[datetime] = None,
    transport: Optional[NotificationService] = None,
    db: Optional[Session] = None
) -> JobResult:
    """Alert each user whose medications are at or below their threshold"""
    now = ensure_utc(now or utcnow())
    transport = transport or notification_service
    result = JobResult(job="low_stock_alerts")

    async def _alert_user(session: Session, user: models.User) -> None:
        tz = resolve_user_timezone(session, user.id)
        low_stock = await inventory_service.list_low_stock(user.id, db=session)
        if not low_stock or _alerted_today(session, user.id, tz, now):
            return

        medications = [
            {
                "id": item.medication_id,
                "name": item.name,
                "currentQty": item.current_qty,
                "lowThreshold": item.low_threshold,
                "unit": item.unit.value if item.unit else "",
            }
            for item in low_stock
        ]
        payload = NotificationPayload(
            notification_type=NotificationType.LOW_STOCK_ALERT,
            data={
                "medicationsCount": len(medications),
                "medications": medications,
                "names": ", ".join(m["name"] for m in medications),
            },
        )
        meta = {"type": LOW_STOCK_ALERT_TYPE, "medications": medications}

        for channel in _user_channels(user):
            if channel == models.Channel.SMS:
                continue
            try:
                with _transient():
                    delivery = await transport.send(user.id, channel, payload, db=session)
            except ConfigurationError:
                result.unconfigured += 1
                continue
            except TransientError as e:
                logger.error(f"Failed to send low stock alert for user {user.id}: {e}")
                _record(session, user.id, channel, models.NotificationStatus.FAILED, now, {**meta, "error": str(e)})
                result.errors.append({"user_id": user.id, "channel": channel.value, "error": str(e)})
                continue

            log_meta = meta if delivery.success else {**meta, "reason": delivery.reason}
            log = _record(session, user.id, channel, delivery.status, now, log_meta)
            if delivery.success:
                result.total += 1
                result.results.append({
                    "user_id": user.id,
                    "channel": channel.value,
                    "low_stock_count": len(medications),
                    "notification_id": log.id,
                })

    async def _run(session: Session) -> JobResult:
        users = session.query(models.User).order_by(models.User.id).all()
        for user in users:
            try:
                with _transient():
                    await _alert_user(session, user)
                    session.commit()
            except TransientError as e:
                session.rollback()
                logger.error(f"Low stock alert failed for user {user.id}: {e}")
                result.errors.append({"user_id": user.id, "error": str(e)})

        logger.info(f"Low stock alerts: {result.total} sent, {len(result.errors)} errors")
        return result

    if db:
        return await _run(db)

    with get_db_context() as session:
        return await _run(session)


__all__ = [
    "JobResult",
    "generate_doses_for_all_users",
    "mark_missed_for_all_users",
    "send_notifications_for_all_users",
    "send_low_stock_alerts",
]
