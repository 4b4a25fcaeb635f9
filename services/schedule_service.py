"""
Schedule Service
Business logic for dosing schedules: validation, conflicts, dose cleanup and regeneration
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from config import settings
from database import get_db_context
from exceptions import DoseEngineError, NotFoundError, ScheduleConflictError, ValidationError
import models
from services.dose_service import GenerateDosesResult, dose_service
from services.settings_service import resolve_user_timezone
from tools.conflict_checker import ScheduleConflict, ScheduleData, check_schedule_conflicts
from tools.dose_state import validate_quantity
from tools.recurrence import ScheduleRule, sorted_days
from tools.tz_utils import day_range_utc, ensure_utc, local_date, utcnow


logger = logging.getLogger(__name__)


UPDATABLE_FIELDS = frozenset({
    "timezone", "days_of_week", "times", "dose_quantity", "dose_unit", "start_date", "end_date"
})


@dataclass
class ScheduleChangeResult:
    """A saved schedule plus what happened to its dose instances"""
    schedule: models.Schedule
    dose_generation: Optional[GenerateDosesResult] = None
    deleted_doses: int = 0
    updated_doses: int = 0


def _owned_prescription(session: Session, user_id: int, prescription_id: int) -> models.Prescription:
    prescription = session.query(models.Prescription).filter(
        and_(
            models.Prescription.id == prescription_id,
            models.Prescription.user_id == user_id
        )
    ).first()
    if not prescription:
        raise NotFoundError("Prescription", prescription_id)
    return prescription


def _owned_schedule(session: Session, user_id: int, schedule_id: int) -> models.Schedule:
    schedule = session.query(models.Schedule).join(models.Prescription).filter(
        and_(
            models.Schedule.id == schedule_id,
            models.Prescription.user_id == user_id
        )
    ).first()
    if not schedule:
        raise NotFoundError("Schedule", schedule_id)
    return schedule


def _validate_dose_quantity(quantity: Optional[float]) -> None:
    quantity = validate_quantity(quantity)
    if quantity is not None and quantity <= 0:
        raise ValidationError("Dose quantity must be positive")


def _validate_against_prescription(
    prescription: models.Prescription,
    start_date: Optional[date],
    end_date: Optional[date]
) -> None:
    if start_date and start_date < prescription.start_date:
        raise ValidationError("Schedule start date cannot be before prescription start date")
    if end_date and prescription.end_date and end_date > prescription.end_date:
        raise ValidationError("Schedule end date cannot be after prescription end date")


def _validate_not_stale(label: str, value: Optional[date], today: date) -> None:
    """Dates may reach back at most SCHEDULE_MAX_PAST_DAYS (backfill allowance)"""
    if value is None:
        return
    max_past = today - timedelta(days=settings.SCHEDULE_MAX_PAST_DAYS)
    if value < max_past:
        raise ValidationError(
            f"Schedule {label} date cannot be more than {settings.SCHEDULE_MAX_PAST_DAYS} days in the past"
        )


class ScheduleService:
    """
    Service for medication schedule management
    """

    def _user_schedules(self, session: Session, user_id: int) -> List[models.Schedule]:
        return session.query(models.Schedule).join(models.Prescription).filter(
            models.Prescription.user_id == user_id
        ).all()

    async def check_conflicts(
        self,
        user_id: int,
        days_of_week: List[Any],
        times: List[str],
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        exclude_schedule_id: Optional[int] = None,
        db: Optional[Session] = None
    ) -> List[ScheduleConflict]:
        """Conflicts of a candidate schedule against all of the user's schedules"""
        candidate = ScheduleData(
            days_of_week=days_of_week,
            times=times,
            start_date=start_date,
            end_date=end_date,
        )

        async def _check(session: Session) -> List[ScheduleConflict]:
            existing = [ScheduleData.from_schedule(s) for s in self._user_schedules(session, user_id)]
            return check_schedule_conflicts(candidate, existing, exclude_schedule_id)

        if db:
            return await _check(db)

        with get_db_context() as session:
            return await _check(session)

    def _regenerate(
        self,
        session: Session,
        prescription: models.Prescription,
        schedule: models.Schedule,
        now: datetime
    ) -> Optional[GenerateDosesResult]:
        """Materialize the regeneration horizon; failures are reported, not raised"""
        if prescription.as_needed:
            return None
        try:
            return dose_service.materialize(
                session,
                prescription,
                schedule,
                now,
                now + timedelta(days=settings.SCHEDULE_REGENERATION_DAYS),
                now=now,
            )
        except DoseEngineError as e:
            logger.error(f"Dose generation failed for schedule {schedule.id}: {e}")
            return GenerateDosesResult(errors=[str(e)])

    async def create_schedule(
        self,
        user_id: int,
        prescription_id: int,
        days_of_week: List[Any],
        times: List[str],
        timezone: Optional[str] = None,
        dose_quantity: Optional[float] = None,
        dose_unit: Optional[models.Unit] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> ScheduleChangeResult:
        """
        Create a schedule under a prescription and materialize its first
        SCHEDULE_REGENERATION_DAYS of doses.

        Args:
            user_id: Owner of the prescription
            prescription_id: Prescription ID
            days_of_week: Weekday names, e.g. ["MON", "WED"]
            times: Times of day as "HH:mm"
            timezone: IANA zone; defaults to the user's settings timezone
            dose_quantity: Quantity per dose, snapshotted onto each instance
            dose_unit: Unit per dose
            start_date: First local calendar day (inclusive)
            end_date: Last local calendar day (inclusive)
            now: Injectable clock
            db: Database session

        Returns:
            ScheduleChangeResult with the schedule and generation counts
        """
        now = ensure_utc(now or utcnow())
        _validate_dose_quantity(dose_quantity)

        async def _create(session: Session) -> ScheduleChangeResult:
            prescription = _owned_prescription(session, user_id, prescription_id)
            zone = timezone or resolve_user_timezone(session, user_id)
            rule = ScheduleRule.build(zone, days_of_week, times, start_date, end_date)

            _validate_against_prescription(prescription, start_date, end_date)
            today = local_date(now, rule.timezone)
            _validate_not_stale("start", start_date, today)
            _validate_not_stale("end", end_date, today)

            conflicts = await self.check_conflicts(
                user_id, list(rule.days_of_week), list(rule.times), start_date, end_date, db=session
            )
            if conflicts:
                raise ScheduleConflictError(conflicts)

            schedule = models.Schedule(
                prescription_id=prescription.id,
                timezone=rule.timezone,
                days_of_week=[d.value for d in sorted_days(rule.days_of_week)],
                times=sorted(rule.times),
                dose_quantity=dose_quantity,
                dose_unit=dose_unit,
                start_date=start_date,
                end_date=end_date,
            )
            session.add(schedule)
            session.flush()

            generation = self._regenerate(session, prescription, schedule, now)
            session.commit()
            session.refresh(schedule)

            logger.info(
                f"Created schedule {schedule.id} for prescription {prescription.id} "
                f"({', '.join(schedule.days_of_week)} at {', '.join(schedule.times)} {schedule.timezone})"
            )
            return ScheduleChangeResult(schedule=schedule, dose_generation=generation)

        if db:
            return await _create(db)

        with get_db_context() as session:
            return await _create(session)

    async def get_schedule(
        self,
        user_id: int,
        schedule_id: int,
        db: Optional[Session] = None
    ) -> models.Schedule:
        """Get schedule by ID"""
        def _get(session: Session) -> models.Schedule:
            return _owned_schedule(session, user_id, schedule_id)

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def list_schedules(
        self,
        user_id: int,
        prescription_id: Optional[int] = None,
        db: Optional[Session] = None
    ) -> List[models.Schedule]:
        def _list(session: Session) -> List[models.Schedule]:
            query = session.query(models.Schedule).join(models.Prescription).filter(
                models.Prescription.user_id == user_id
            )
            if prescription_id is not None:
                _owned_prescription(session, user_id, prescription_id)
                query = query.filter(models.Schedule.prescription_id == prescription_id)
            return query.order_by(models.Schedule.created_at, models.Schedule.id).all()

        if db:
            return _list(db)

        with get_db_context() as session:
            return _list(session)

    async def update_schedule(
        self,
        user_id: int,
        schedule_id: int,
        updates: Dict[str, Any],
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> ScheduleChangeResult:
        """
        Update a schedule and bring its dose instances in line.

        - end date moved earlier: SCHEDULED doses after the new end are deleted
        - start date moved later: SCHEDULED doses before the new start are deleted
        - timezone, days or times changed: future SCHEDULED doses are deleted
          and the regeneration horizon is materialized again
        - quantity or unit changed: future SCHEDULED doses take the new values

        Taken, skipped and missed history is never touched.
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unsupported schedule fields: {', '.join(sorted(unknown))}")
        now = ensure_utc(now or utcnow())
        if "dose_quantity" in updates:
            _validate_dose_quantity(updates["dose_quantity"])

        async def _update(session: Session) -> ScheduleChangeResult:
            schedule = _owned_schedule(session, user_id, schedule_id)
            prescription = schedule.prescription

            new_tz = updates.get("timezone") or schedule.timezone
            new_days = updates["days_of_week"] if updates.get("days_of_week") is not None else schedule.days_of_week
            new_times = updates["times"] if updates.get("times") is not None else schedule.times
            new_start = updates["start_date"] if "start_date" in updates else schedule.start_date
            new_end = updates["end_date"] if "end_date" in updates else schedule.end_date

            rule = ScheduleRule.build(new_tz, new_days, new_times, new_start, new_end)
            old_rule = ScheduleRule.from_schedule(schedule)

            _validate_against_prescription(prescription, new_start, new_end)
            today = local_date(now, rule.timezone)
            if "start_date" in updates:
                _validate_not_stale("start", new_start, today)
            if "end_date" in updates:
                _validate_not_stale("end", new_end, today)

            conflicts = await self.check_conflicts(
                user_id, list(rule.days_of_week), list(rule.times), new_start, new_end,
                exclude_schedule_id=schedule.id, db=session
            )
            if conflicts:
                raise ScheduleConflictError(conflicts)

            result = ScheduleChangeResult(schedule=schedule)
            old_start, old_end = schedule.start_date, schedule.end_date

            if new_end and (old_end is None or new_end < old_end):
                _, cutoff = day_range_utc(new_end, rule.timezone)
                result.deleted_doses += await dose_service.delete_scheduled_doses_after(
                    cutoff, schedule_id=schedule.id, db=session
                )

            if new_start and (old_start is None or new_start > old_start):
                cutoff, _ = day_range_utc(new_start, rule.timezone)
                result.deleted_doses += await dose_service.delete_scheduled_doses_before(
                    schedule.id, cutoff, db=session
                )

            recurrence_changed = (
                rule.timezone != old_rule.timezone
                or rule.days_of_week != old_rule.days_of_week
                or rule.times != old_rule.times
            )
            window_changed = new_start != old_start or new_end != old_end

            schedule.timezone = rule.timezone
            schedule.days_of_week = [d.value for d in sorted_days(rule.days_of_week)]
            schedule.times = sorted(rule.times)
            schedule.start_date = new_start
            schedule.end_date = new_end
            if "dose_quantity" in updates:
                schedule.dose_quantity = updates["dose_quantity"]
            if "dose_unit" in updates:
                schedule.dose_unit = updates["dose_unit"]
            session.flush()

            if recurrence_changed:
                result.deleted_doses += await dose_service.delete_future_scheduled_doses(
                    schedule.id, now=now, db=session
                )

            if recurrence_changed or window_changed:
                result.dose_generation = self._regenerate(session, prescription, schedule, now)

            if "dose_quantity" in updates or "dose_unit" in updates:
                result.updated_doses = await dose_service.update_future_scheduled_quantity(
                    schedule.id, schedule.dose_quantity, schedule.dose_unit, now=now, db=session
                )

            session.commit()
            session.refresh(schedule)
            logger.info(
                f"Updated schedule {schedule.id}: deleted={result.deleted_doses} "
                f"updated={result.updated_doses} regenerated={result.dose_generation is not None}"
            )
            return result

        if db:
            return await _update(db)

        with get_db_context() as session:
            return await _update(session)

    async def delete_schedule(
        self,
        user_id: int,
        schedule_id: int,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> int:
        """
        Delete a schedule and its future SCHEDULED doses.
        Past instances stay as history with their schedule link cleared.
        Returns the number of dose instances deleted.
        """
        now = ensure_utc(now or utcnow())

        async def _delete(session: Session) -> int:
            schedule = _owned_schedule(session, user_id, schedule_id)
            deleted = await dose_service.delete_future_scheduled_doses(schedule.id, now=now, db=session)

            session.query(models.DoseLog).filter(
                models.DoseLog.schedule_id == schedule.id
            ).update({models.DoseLog.schedule_id: None}, synchronize_session="fetch")
            session.delete(schedule)
            session.commit()

            logger.info(f"Deleted schedule {schedule_id} and {deleted} future scheduled doses")
            return deleted

        if db:
            return await _delete(db)

        with get_db_context() as session:
            return await _delete(session)


# Singleton instance
schedule_service = ScheduleService()
