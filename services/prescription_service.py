"""
Prescription Service
Business logic for medications, care providers and prescriptions
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from database import get_db_context
from exceptions import NotFoundError, ValidationError
import models
from services.dose_service import dose_service
from services.settings_service import resolve_user_timezone
from tools.recurrence import validate_window
from tools.tz_utils import day_range_utc, ensure_utc, utcnow


logger = logging.getLogger(__name__)


PRESCRIPTION_FIELDS = frozenset({
    "provider_id", "indication", "as_needed", "max_daily_dose", "instructions", "start_date", "end_date"
})


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


def _check_provider(session: Session, user_id: int, provider_id: Optional[int]) -> None:
    if provider_id is None:
        return
    provider = session.query(models.CareProvider).filter(
        and_(
            models.CareProvider.id == provider_id,
            models.CareProvider.user_id == user_id
        )
    ).first()
    if not provider:
        raise NotFoundError("Care provider", provider_id)


class PrescriptionService:
    """
    Service for medications and their prescriptions
    """

    # ==================== MEDICATIONS ====================

    async def create_medication(
        self,
        user_id: int,
        name: str,
        brand_name: Optional[str] = None,
        form: Optional[models.MedForm] = None,
        strength_value: Optional[float] = None,
        strength_unit: Optional[models.Unit] = None,
        notes: Optional[str] = None,
        inventory: Optional[Dict[str, Any]] = None,
        db: Optional[Session] = None
    ) -> models.Medication:
        """
        Create a medication, optionally with its inventory row

        Args:
            user_id: Owner
            name: Generic or display name
            inventory: Optional {"current_qty", "unit", "low_threshold"}
            db: Database session
        """
        if not name or not name.strip():
            raise ValidationError("Medication name is required")

        def _create(session: Session) -> models.Medication:
            user = session.query(models.User).filter(models.User.id == user_id).first()
            if not user:
                raise NotFoundError("User", user_id)

            medication = models.Medication(
                user_id=user_id,
                name=name.strip(),
                brand_name=brand_name,
                form=form or models.MedForm.TABLET,
                strength_value=strength_value,
                strength_unit=strength_unit,
                notes=notes,
            )
            session.add(medication)
            session.flush()

            if inventory:
                current_qty = inventory.get("current_qty", 0)
                if current_qty is None or current_qty < 0:
                    raise ValidationError("Inventory quantity cannot be negative")
                session.add(models.Inventory(
                    medication_id=medication.id,
                    current_qty=current_qty,
                    unit=inventory.get("unit") or models.Unit.TAB,
                    low_threshold=inventory.get("low_threshold"),
                    last_restocked_at=utcnow().replace(tzinfo=None),
                ))

            session.commit()
            session.refresh(medication)
            logger.info(f"Created medication {medication.id} ({medication.name}) for user {user_id}")
            return medication

        if db:
            return _create(db)

        with get_db_context() as session:
            return _create(session)

    async def get_medication(
        self,
        user_id: int,
        medication_id: int,
        db: Optional[Session] = None
    ) -> models.Medication:
        def _get(session: Session) -> models.Medication:
            return _owned_medication(session, user_id, medication_id)

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def list_medications(
        self,
        user_id: int,
        db: Optional[Session] = None
    ) -> List[models.Medication]:
        def _list(session: Session) -> List[models.Medication]:
            return session.query(models.Medication).filter(
                models.Medication.user_id == user_id
            ).order_by(models.Medication.name).all()

        if db:
            return _list(db)

        with get_db_context() as session:
            return _list(session)

    async def create_care_provider(
        self,
        user_id: int,
        name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        clinic: Optional[str] = None,
        db: Optional[Session] = None
    ) -> models.CareProvider:
        def _create(session: Session) -> models.CareProvider:
            provider = models.CareProvider(user_id=user_id, name=name, email=email, phone=phone, clinic=clinic)
            session.add(provider)
            session.commit()
            session.refresh(provider)
            return provider

        if db:
            return _create(db)

        with get_db_context() as session:
            return _create(session)

    # ==================== PRESCRIPTIONS ====================

    async def create_prescription(
        self,
        user_id: int,
        medication_id: int,
        start_date: date,
        end_date: Optional[date] = None,
        as_needed: bool = False,
        indication: Optional[str] = None,
        max_daily_dose: Optional[float] = None,
        instructions: Optional[str] = None,
        provider_id: Optional[int] = None,
        db: Optional[Session] = None
    ) -> models.Prescription:
        """Create a prescription for one of the user's medications"""
        if start_date is None:
            raise ValidationError("Prescription start date is required")
        validate_window(start_date, end_date, label="Prescription")
        if max_daily_dose is not None and max_daily_dose <= 0:
            raise ValidationError("Max daily dose must be positive")

        def _create(session: Session) -> models.Prescription:
            _owned_medication(session, user_id, medication_id)
            _check_provider(session, user_id, provider_id)

            prescription = models.Prescription(
                user_id=user_id,
                medication_id=medication_id,
                provider_id=provider_id,
                indication=indication,
                as_needed=as_needed,
                max_daily_dose=max_daily_dose,
                instructions=instructions,
                start_date=start_date,
                end_date=end_date,
            )
            session.add(prescription)
            session.commit()
            session.refresh(prescription)
            logger.info(
                f"Created {'PRN ' if as_needed else ''}prescription {prescription.id} "
                f"for medication {medication_id}"
            )
            return prescription

        if db:
            return _create(db)

        with get_db_context() as session:
            return _create(session)

    async def get_prescription(
        self,
        user_id: int,
        prescription_id: int,
        db: Optional[Session] = None
    ) -> models.Prescription:
        def _get(session: Session) -> models.Prescription:
            prescription = session.query(models.Prescription).filter(
                and_(
                    models.Prescription.id == prescription_id,
                    models.Prescription.user_id == user_id
                )
            ).first()
            if not prescription:
                raise NotFoundError("Prescription", prescription_id)
            return prescription

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)

    async def list_prescriptions(
        self,
        user_id: int,
        db: Optional[Session] = None
    ) -> List[models.Prescription]:
        def _list(session: Session) -> List[models.Prescription]:
            return session.query(models.Prescription).filter(
                models.Prescription.user_id == user_id
            ).order_by(models.Prescription.start_date.desc(), models.Prescription.id).all()

        if db:
            return _list(db)

        with get_db_context() as session:
            return _list(session)

    async def update_prescription(
        self,
        user_id: int,
        prescription_id: int,
        updates: Dict[str, Any],
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> models.Prescription:
        """
        Update a prescription.

        Turning a scheduled prescription into PRN deletes all of its future
        SCHEDULED doses. Moving the start date later or the end date earlier
        deletes SCHEDULED doses outside the new window, judged per schedule
        in that schedule's timezone.
        """
        unknown = set(updates) - PRESCRIPTION_FIELDS
        if unknown:
            raise ValidationError(f"Unsupported prescription fields: {', '.join(sorted(unknown))}")
        if updates.get("max_daily_dose") is not None and updates["max_daily_dose"] <= 0:
            raise ValidationError("Max daily dose must be positive")
        if "start_date" in updates and updates["start_date"] is None:
            raise ValidationError("Prescription start date is required")
        now = ensure_utc(now or utcnow())

        async def _update(session: Session) -> models.Prescription:
            prescription = await self.get_prescription(user_id, prescription_id, db=session)
            if "provider_id" in updates:
                _check_provider(session, user_id, updates["provider_id"])

            new_start = updates.get("start_date", prescription.start_date)
            new_end = updates["end_date"] if "end_date" in updates else prescription.end_date
            validate_window(new_start, new_end, label="Prescription")

            if updates.get("as_needed") and not prescription.as_needed:
                deleted = await dose_service.delete_scheduled_doses_after(
                    now, prescription_id=prescription.id, db=session
                )
                logger.info(f"Prescription {prescription.id} switched to PRN; deleted {deleted} future doses")

            old_start, old_end = prescription.start_date, prescription.end_date
            start_later = new_start > old_start
            end_earlier = new_end is not None and (old_end is None or new_end < old_end)

            # Window dates are calendar days in each schedule's own timezone
            for schedule in prescription.schedules:
                if start_later:
                    start_cutoff, _ = day_range_utc(new_start, schedule.timezone)
                    await dose_service.delete_scheduled_doses_before(schedule.id, start_cutoff, db=session)
                if end_earlier:
                    _, end_cutoff = day_range_utc(new_end, schedule.timezone)
                    await dose_service.delete_scheduled_doses_after(end_cutoff, schedule_id=schedule.id, db=session)

            if start_later or end_earlier:
                user_tz = resolve_user_timezone(session, user_id)
                await dose_service.delete_unscheduled_doses_outside(
                    prescription.id,
                    start=day_range_utc(new_start, user_tz)[0] if start_later else None,
                    end=day_range_utc(new_end, user_tz)[1] if end_earlier else None,
                    db=session
                )

            for field_name, value in updates.items():
                setattr(prescription, field_name, value)

            session.commit()
            session.refresh(prescription)
            return prescription

        if db:
            return await _update(db)

        with get_db_context() as session:
            return await _update(session)

    async def delete_prescription(
        self,
        user_id: int,
        prescription_id: int,
        db: Optional[Session] = None
    ) -> bool:
        """Delete a prescription with its schedules and dose history"""
        async def _delete(session: Session) -> bool:
            prescription = await self.get_prescription(user_id, prescription_id, db=session)
            session.delete(prescription)
            session.commit()
            logger.info(f"Deleted prescription {prescription_id}")
            return True

        if db:
            return await _delete(db)

        with get_db_context() as session:
            return await _delete(session)


# Singleton instance
prescription_service = PrescriptionService()
