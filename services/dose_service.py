"""
Dose Service
Dose materialization, cleanup and state transitions on persisted dose instances
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from database import get_db_context
from exceptions import ConflictError, NotFoundError, ValidationError
import models
from tools.dose_state import (
    apply_edit,
    apply_skip,
    apply_take,
    automatic_sources,
    should_be_marked_missed,
    validate_quantity,
)
from tools.recurrence import ScheduleRule, expand
from tools.tz_utils import ensure_utc, to_naive_utc, utcnow


logger = logging.getLogger(__name__)


@dataclass
class GenerateDosesResult:
    """Outcome of one materialization run; never all-or-nothing"""
    requested: int = 0
    generated: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def merge(self, other: "GenerateDosesResult") -> "GenerateDosesResult":
        self.requested += other.requested
        self.generated += other.generated
        self.skipped += other.skipped
        self.errors.extend(other.errors)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requested": self.requested,
            "generated": self.generated,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


@dataclass
class DoseQuery:
    """Typed filter for listing a user's dose instances"""
    user_id: int
    prescription_ids: Optional[List[int]] = None
    schedule_id: Optional[int] = None
    from_: Optional[datetime] = None
    to: Optional[datetime] = None
    statuses: Optional[List[models.DoseStatus]] = None
    limit: Optional[int] = None
    descending: bool = True


def _owned_dose(session: Session, user_id: int, dose_id: int) -> models.DoseLog:
    dose = session.query(models.DoseLog).join(models.Prescription).filter(
        and_(
            models.DoseLog.id == dose_id,
            models.Prescription.user_id == user_id
        )
    ).first()
    if not dose:
        raise NotFoundError("Dose", dose_id)
    return dose


class DoseService:
    """
    Service for dose instances: materialization from schedules, bulk
    cleanup after schedule edits, and the adherence state transitions.
    """

    # ==================== MATERIALIZATION ====================

    def _check_range(self, from_: datetime, to: datetime) -> None:
        if to < from_:
            raise ValidationError("Range end cannot be before range start")
        if to - from_ > timedelta(days=settings.MAX_GENERATION_DAYS):
            raise ValidationError(
                f"Generation range cannot exceed {settings.MAX_GENERATION_DAYS} days"
            )

    def _existing_instants(
        self,
        session: Session,
        prescription_id: int,
        schedule_id: int,
        from_: datetime,
        to: datetime
    ) -> Set[datetime]:
        """Slots already materialized in range, under any status and wherever the dose was moved"""
        rows = session.query(models.DoseLog.slot_for).filter(
            and_(
                models.DoseLog.prescription_id == prescription_id,
                models.DoseLog.schedule_id == schedule_id,
                models.DoseLog.slot_for >= to_naive_utc(from_),
                models.DoseLog.slot_for <= to_naive_utc(to)
            )
        ).all()
        return {row[0] for row in rows}

    def _insert_dose(self, session: Session, dose: models.DoseLog) -> None:
        """Insert one instance in its own SAVEPOINT; a duplicate key raises ConflictError"""
        try:
            with session.begin_nested():
                session.add(dose)
                session.flush()
        except IntegrityError as e:
            raise ConflictError(str(e.orig)) from e

    def materialize(
        self,
        session: Session,
        prescription: models.Prescription,
        schedule: models.Schedule,
        from_: datetime,
        to: datetime,
        now: Optional[datetime] = None
    ) -> GenerateDosesResult:
        """
        Ensure a SCHEDULED instance exists for every expanded instant in
        [from_, to] that is later than `now`.

        Each instant is inserted independently. A uniqueness violation means
        a concurrent run (or an earlier one) already created it and counts
        as skipped; any other storage error is recorded and the batch goes on.
        """
        from_ = ensure_utc(from_)
        to = ensure_utc(to)
        now = ensure_utc(now or utcnow())
        self._check_range(from_, to)

        result = GenerateDosesResult()
        if prescription.as_needed:
            return result

        rule = ScheduleRule.from_schedule(schedule).bounded_by(
            prescription.start_date, prescription.end_date
        )
        instants = [i for i in expand(rule, from_, to) if i > now]
        result.requested = len(instants)
        if not instants:
            return result

        existing = self._existing_instants(session, prescription.id, schedule.id, instants[0], instants[-1])

        for instant in instants:
            scheduled_for = to_naive_utc(instant)
            if scheduled_for in existing:
                result.skipped += 1
                continue

            dose = models.DoseLog(
                prescription_id=prescription.id,
                schedule_id=schedule.id,
                scheduled_for=scheduled_for,
                slot_for=scheduled_for,
                status=models.DoseStatus.SCHEDULED,
                quantity=schedule.dose_quantity,
                unit=schedule.dose_unit,
            )
            try:
                self._insert_dose(session, dose)
                result.generated += 1
            except ConflictError:
                result.skipped += 1
            except SQLAlchemyError as e:
                logger.error(f"Failed to materialize dose at {instant.isoformat()} for schedule {schedule.id}: {e}")
                result.errors.append(f"{instant.isoformat()}: {e}")

        logger.info(
            f"Materialized schedule {schedule.id}: generated={result.generated} "
            f"skipped={result.skipped} errors={len(result.errors)}"
        )
        return result

    async def generate_doses_for_schedule(
        self,
        schedule_id: int,
        from_: datetime,
        to: datetime,
        now: Optional[datetime] = None,
        user_id: Optional[int] = None,
        db: Optional[Session] = None
    ) -> GenerateDosesResult:
        """
        Materialize one schedule over [from_, to].

        When `user_id` is given the schedule must belong to that user.
        """
        def _generate(session: Session) -> GenerateDosesResult:
            query = session.query(models.Schedule).join(models.Prescription).filter(
                models.Schedule.id == schedule_id
            )
            if user_id is not None:
                query = query.filter(models.Prescription.user_id == user_id)
            schedule = query.first()
            if not schedule:
                raise NotFoundError("Schedule", schedule_id)

            result = self.materialize(session, schedule.prescription, schedule, from_, to, now)
            session.commit()
            return result

        if db:
            return _generate(db)

        with get_db_context() as session:
            return _generate(session)

    async def generate_doses_for_user(
        self,
        user_id: int,
        from_: datetime,
        to: datetime,
        now: Optional[datetime] = None,
        prescription_id: Optional[int] = None,
        db: Optional[Session] = None
    ) -> GenerateDosesResult:
        """Materialize every schedule of the user's scheduled (non-PRN) prescriptions"""
        def _generate(session: Session) -> GenerateDosesResult:
            self._check_range(ensure_utc(from_), ensure_utc(to))
            query = session.query(models.Schedule).join(models.Prescription).filter(
                and_(
                    models.Prescription.user_id == user_id,
                    models.Prescription.as_needed.is_(False)
                )
            )
            if prescription_id is not None:
                query = query.filter(models.Prescription.id == prescription_id)

            total = GenerateDosesResult()
            for schedule in query.order_by(models.Schedule.id).all():
                try:
                    total.merge(self.materialize(session, schedule.prescription, schedule, from_, to, now))
                except ValidationError as e:
                    total.errors.append(f"schedule {schedule.id}: {e}")
            session.commit()
            return total

        if db:
            return _generate(db)

        with get_db_context() as session:
            return _generate(session)

    # ==================== CLEANUP ====================

    def _scheduled(self, session: Session):
        return session.query(models.DoseLog).filter(
            models.DoseLog.status == models.DoseStatus.SCHEDULED
        )

    async def delete_future_scheduled_doses(
        self,
        schedule_id: int,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> int:
        """Delete SCHEDULED instances of a schedule whose slot is at or after `now`; history stays"""
        cutoff = to_naive_utc(now or utcnow())

        def _delete(session: Session) -> int:
            deleted = self._scheduled(session).filter(
                and_(
                    models.DoseLog.schedule_id == schedule_id,
                    models.DoseLog.slot_for >= cutoff
                )
            ).delete(synchronize_session="fetch")
            logger.info(f"Deleted {deleted} future scheduled doses for schedule {schedule_id}")
            return deleted

        if db:
            return _delete(db)

        with get_db_context() as session:
            return _delete(session)

    async def delete_scheduled_doses_after(
        self,
        cutoff: datetime,
        schedule_id: Optional[int] = None,
        prescription_id: Optional[int] = None,
        db: Optional[Session] = None
    ) -> int:
        """Delete SCHEDULED instances whose slot is at or after `cutoff` (window end moved earlier)"""
        if schedule_id is None and prescription_id is None:
            raise ValidationError("schedule_id or prescription_id is required")
        cutoff = to_naive_utc(cutoff)

        def _delete(session: Session) -> int:
            query = self._scheduled(session).filter(models.DoseLog.slot_for >= cutoff)
            if schedule_id is not None:
                query = query.filter(models.DoseLog.schedule_id == schedule_id)
            if prescription_id is not None:
                query = query.filter(models.DoseLog.prescription_id == prescription_id)
            deleted = query.delete(synchronize_session="fetch")
            logger.info(
                f"Deleted {deleted} scheduled doses after {cutoff.isoformat()} "
                f"(schedule={schedule_id}, prescription={prescription_id})"
            )
            return deleted

        if db:
            return _delete(db)

        with get_db_context() as session:
            return _delete(session)

    async def delete_scheduled_doses_before(
        self,
        schedule_id: int,
        cutoff: datetime,
        db: Optional[Session] = None
    ) -> int:
        """Delete SCHEDULED instances whose slot is before `cutoff` (window start moved later)"""
        cutoff = to_naive_utc(cutoff)

        def _delete(session: Session) -> int:
            deleted = self._scheduled(session).filter(
                and_(
                    models.DoseLog.schedule_id == schedule_id,
                    models.DoseLog.slot_for < cutoff
                )
            ).delete(synchronize_session="fetch")
            logger.info(f"Deleted {deleted} scheduled doses before {cutoff.isoformat()} for schedule {schedule_id}")
            return deleted

        if db:
            return _delete(db)

        with get_db_context() as session:
            return _delete(session)

    async def delete_unscheduled_doses_outside(
        self,
        prescription_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> int:
        """
        Delete SCHEDULED instances of a prescription that belong to no
        schedule and fall before `start` or at/after `end`.
        """
        if start is None and end is None:
            return 0
        bounds = []
        if start is not None:
            bounds.append(models.DoseLog.slot_for < to_naive_utc(start))
        if end is not None:
            bounds.append(models.DoseLog.slot_for >= to_naive_utc(end))

        def _delete(session: Session) -> int:
            deleted = self._scheduled(session).filter(
                and_(
                    models.DoseLog.prescription_id == prescription_id,
                    models.DoseLog.schedule_id.is_(None),
                    or_(*bounds)
                )
            ).delete(synchronize_session="fetch")
            if deleted:
                logger.info(f"Deleted {deleted} unscheduled doses outside the window of prescription {prescription_id}")
            return deleted

        if db:
            return _delete(db)

        with get_db_context() as session:
            return _delete(session)

    async def update_future_scheduled_quantity(
        self,
        schedule_id: int,
        quantity: Optional[float],
        unit: Optional[models.Unit],
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> int:
        """Propagate a schedule's new quantity/unit to its future SCHEDULED instances"""
        quantity = validate_quantity(quantity)
        cutoff = to_naive_utc(now or utcnow())

        def _update(session: Session) -> int:
            return self._scheduled(session).filter(
                and_(
                    models.DoseLog.schedule_id == schedule_id,
                    models.DoseLog.scheduled_for >= cutoff
                )
            ).update(
                {models.DoseLog.quantity: quantity, models.DoseLog.unit: unit},
                synchronize_session="fetch"
            )

        if db:
            return _update(db)

        with get_db_context() as session:
            return _update(session)

    # ==================== STATE TRANSITIONS ====================

    async def get_dose(
        self,
        user_id: int,
        dose_id: int,
        db: Optional[Session] = None
    ) -> models.DoseLog:
        def _get(session: Session) -> models.DoseLog:
            return _owned_dose(session, user_id, dose_id)

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def take_dose(
        self,
        user_id: int,
        dose_id: int,
        taken_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.DoseLog:
        """Mark a dose TAKEN; there is no deadline"""
        def _take(session: Session) -> models.DoseLog:
            dose = _owned_dose(session, user_id, dose_id)
            apply_take(dose, taken_at=taken_at, now=now)
            session.commit()
            session.refresh(dose)
            logger.info(f"Dose {dose_id} taken by user {user_id}")
            return dose

        if db:
            return _take(db)

        with get_db_context() as session:
            return _take(session)

    async def skip_dose(
        self,
        user_id: int,
        dose_id: int,
        db: Optional[Session] = None
    ) -> models.DoseLog:
        def _skip(session: Session) -> models.DoseLog:
            dose = _owned_dose(session, user_id, dose_id)
            apply_skip(dose)
            session.commit()
            session.refresh(dose)
            logger.info(f"Dose {dose_id} skipped by user {user_id}")
            return dose

        if db:
            return _skip(db)

        with get_db_context() as session:
            return _skip(session)

    async def snooze_dose(
        self,
        user_id: int,
        dose_id: int,
        minutes: int,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.DoseLog:
        """
        Re-time a SCHEDULED dose to `minutes` from now.

        Only scheduled_for moves; the dose keeps its slot, so regeneration
        still sees the instance as materialized.
        """
        if minutes <= 0:
            raise ValidationError("Snooze minutes must be positive")
        now = ensure_utc(now or utcnow())

        def _snooze(session: Session) -> models.DoseLog:
            dose = _owned_dose(session, user_id, dose_id)
            if dose.status != models.DoseStatus.SCHEDULED:
                raise ValidationError(f"Only scheduled doses can be snoozed (dose is {dose.status.value})")
            apply_edit(dose, {"scheduled_for": now + timedelta(minutes=minutes)}, now=now)
            session.commit()
            session.refresh(dose)
            logger.info(f"Dose {dose_id} snoozed {minutes} minutes by user {user_id}")
            return dose

        if db:
            return _snooze(db)

        with get_db_context() as session:
            return _snooze(session)

    async def update_dose(
        self,
        user_id: int,
        dose_id: int,
        changes: Dict[str, Any],
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.DoseLog:
        """
        Direct user edit of status, taken_at, scheduled_for, quantity, unit
        or notes. Validation happens before any field is written.
        """
        def _update(session: Session) -> models.DoseLog:
            dose = _owned_dose(session, user_id, dose_id)
            apply_edit(dose, changes, now=now)
            session.commit()
            session.refresh(dose)
            return dose

        if db:
            return _update(db)

        with get_db_context() as session:
            return _update(session)

    async def create_dose(
        self,
        user_id: int,
        prescription_id: int,
        scheduled_for: datetime,
        status: models.DoseStatus = models.DoseStatus.TAKEN,
        schedule_id: Optional[int] = None,
        taken_at: Optional[datetime] = None,
        quantity: Optional[float] = None,
        unit: Optional[models.Unit] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.DoseLog:
        """Log a dose by hand (PRN intake or a backfilled record)"""
        quantity = validate_quantity(quantity)

        def _create(session: Session) -> models.DoseLog:
            prescription = session.query(models.Prescription).filter(
                and_(
                    models.Prescription.id == prescription_id,
                    models.Prescription.user_id == user_id
                )
            ).first()
            if not prescription:
                raise NotFoundError("Prescription", prescription_id)

            if schedule_id is not None:
                schedule = session.query(models.Schedule).filter(
                    and_(
                        models.Schedule.id == schedule_id,
                        models.Schedule.prescription_id == prescription_id
                    )
                ).first()
                if not schedule:
                    raise NotFoundError("Schedule", schedule_id)

            dose = models.DoseLog(
                prescription_id=prescription_id,
                schedule_id=schedule_id,
                scheduled_for=to_naive_utc(scheduled_for),
                slot_for=to_naive_utc(scheduled_for),
                status=models.DoseStatus.SCHEDULED,
                quantity=quantity,
                unit=unit,
                notes=notes,
            )
            apply_edit(dose, {"status": status, "taken_at": taken_at}, now=now)
            session.add(dose)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                raise ValidationError("A dose already exists for that schedule and time")
            session.refresh(dose)
            logger.info(f"Logged dose {dose.id} for prescription {prescription_id}")
            return dose

        if db:
            return _create(db)

        with get_db_context() as session:
            return _create(session)

    async def list_doses(
        self,
        query: DoseQuery,
        db: Optional[Session] = None
    ) -> List[models.DoseLog]:
        def _list(session: Session) -> List[models.DoseLog]:
            q = session.query(models.DoseLog).join(models.Prescription).filter(
                models.Prescription.user_id == query.user_id
            )
            if query.prescription_ids:
                q = q.filter(models.DoseLog.prescription_id.in_(query.prescription_ids))
            if query.schedule_id is not None:
                q = q.filter(models.DoseLog.schedule_id == query.schedule_id)
            if query.from_ is not None:
                q = q.filter(models.DoseLog.scheduled_for >= to_naive_utc(query.from_))
            if query.to is not None:
                q = q.filter(models.DoseLog.scheduled_for <= to_naive_utc(query.to))
            if query.statuses:
                q = q.filter(models.DoseLog.status.in_(query.statuses))

            order = models.DoseLog.scheduled_for.desc() if query.descending else models.DoseLog.scheduled_for.asc()
            q = q.order_by(order)
            if query.limit:
                q = q.limit(query.limit)
            return q.all()

        if db:
            return _list(db)

        with get_db_context() as session:
            return _list(session)

    # ==================== MISSED SWEEP ====================

    async def mark_missed_for_user(
        self,
        user_id: int,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> int:
        """
        Move the user's overdue SCHEDULED doses to MISSED.

        Overdue is judged in the user's current settings timezone. The
        update is guarded by status so a dose taken in the meantime is left
        alone, and a re-run reports zero.
        """
        now = ensure_utc(now or utcnow())
        missable = automatic_sources(models.DoseStatus.MISSED)

        def _sweep(session: Session) -> int:
            user_settings = session.query(models.UserSettings).filter(
                models.UserSettings.user_id == user_id
            ).first()
            user_tz = user_settings.timezone if user_settings else settings.DEFAULT_TIMEZONE

            candidates = session.query(
                models.DoseLog.id, models.DoseLog.status, models.DoseLog.scheduled_for
            ).join(
                models.Prescription
            ).filter(
                and_(
                    models.Prescription.user_id == user_id,
                    models.DoseLog.status.in_(missable),
                    models.DoseLog.scheduled_for < to_naive_utc(now)
                )
            ).all()

            overdue_ids = [
                dose_id for dose_id, status, scheduled_for in candidates
                if should_be_marked_missed(status, scheduled_for, user_tz, now)
            ]
            if not overdue_ids:
                return 0

            marked = session.query(models.DoseLog).filter(
                and_(
                    models.DoseLog.id.in_(overdue_ids),
                    models.DoseLog.status.in_(missable)
                )
            ).update({models.DoseLog.status: models.DoseStatus.MISSED}, synchronize_session="fetch")
            session.commit()
            if marked:
                logger.info(f"Marked {marked} doses missed for user {user_id}")
            return marked

        if db:
            return _sweep(db)

        with get_db_context() as session:
            return _sweep(session)


# Singleton instance
dose_service = DoseService()
