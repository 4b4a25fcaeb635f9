"""
Adherence Service
Adherence statistics over persisted dose instances
"""

import logging
from collections import OrderedDict
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from database import get_db_context
from exceptions import ValidationError
import models
from models import DoseStatus
from services.settings_service import resolve_user_timezone
from tools.triggers import adherence_rate
from tools.tz_utils import day_range_utc, ensure_utc, local_date, to_naive_utc, to_zone, utcnow


logger = logging.getLogger(__name__)


def _empty_counts() -> Dict[str, int]:
    return {"total": 0, "taken": 0, "missed": 0, "skipped": 0, "scheduled": 0}


def _count(counts: Dict[str, int], status: DoseStatus) -> None:
    counts["total"] += 1
    counts[DoseStatus(status).value.lower()] += 1


def _with_rate(counts: Dict[str, int]) -> Dict[str, Any]:
    return {
        **counts,
        "adherence_rate": adherence_rate(counts["taken"], counts["missed"], counts["skipped"]),
    }


class AdherenceService:
    """
    Service for adherence tracking and analysis
    """

    async def get_adherence_stats(
        self,
        user_id: int,
        from_: datetime,
        to: datetime,
        prescription_id: Optional[int] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """
        Adherence for the user's doses scheduled in [from_, to]

        Args:
            user_id: Owner
            from_: Range start (UTC instant)
            to: Range end (UTC instant)
            prescription_id: Optional single prescription
            db: Database session

        Returns:
            {"period", "overall", "by_medication"}; rates exclude pending
            SCHEDULED doses and are 100 when nothing is resolved yet
        """
        from_ = ensure_utc(from_)
        to = ensure_utc(to)
        if to < from_:
            raise ValidationError("Range end cannot be before range start")

        def _calculate(session: Session) -> Dict[str, Any]:
            query = session.query(models.DoseLog.status, models.Medication.id, models.Medication.name).join(
                models.Prescription, models.DoseLog.prescription_id == models.Prescription.id
            ).join(
                models.Medication, models.Prescription.medication_id == models.Medication.id
            ).filter(
                and_(
                    models.Prescription.user_id == user_id,
                    models.DoseLog.scheduled_for >= to_naive_utc(from_),
                    models.DoseLog.scheduled_for <= to_naive_utc(to)
                )
            )
            if prescription_id is not None:
                query = query.filter(models.DoseLog.prescription_id == prescription_id)

            overall = _empty_counts()
            by_medication: "OrderedDict[int, Dict[str, Any]]" = OrderedDict()
            for status, medication_id, medication_name in query.all():
                _count(overall, status)
                if medication_id not in by_medication:
                    by_medication[medication_id] = {
                        "medication_id": medication_id,
                        "medication_name": medication_name,
                        **_empty_counts(),
                    }
                _count(by_medication[medication_id], status)

            return {
                "period": {"from": from_, "to": to},
                "overall": _with_rate(overall),
                "by_medication": [_with_rate(stats) for stats in by_medication.values()],
            }

        if db:
            return _calculate(db)

        with get_db_context() as session:
            return _calculate(session)

    async def get_daily_summary(
        self,
        user_id: int,
        day: Optional[date] = None,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """
        The user's doses for one local calendar day, in the settings timezone
        """
        def _get(session: Session) -> Dict[str, Any]:
            tz = resolve_user_timezone(session, user_id)
            target = day or local_date(now or utcnow(), tz)
            start, end = day_range_utc(target, tz)

            doses: List[models.DoseLog] = session.query(models.DoseLog).join(models.Prescription).filter(
                and_(
                    models.Prescription.user_id == user_id,
                    models.DoseLog.scheduled_for >= to_naive_utc(start),
                    models.DoseLog.scheduled_for < to_naive_utc(end)
                )
            ).order_by(models.DoseLog.scheduled_for).all()

            counts = _empty_counts()
            items = []
            for dose in doses:
                _count(counts, dose.status)
                items.append({
                    "dose_id": dose.id,
                    "prescription_id": dose.prescription_id,
                    "medication_name": dose.prescription.medication.name,
                    "local_time": to_zone(dose.scheduled_for, tz).strftime("%H:%M"),
                    "status": dose.status.value,
                })

            return {
                "date": target.isoformat(),
                "timezone": tz,
                **_with_rate(counts),
                "doses": items,
            }

        if db:
            return _get(db)

        with get_db_context() as session:
            return _get(session)


# Singleton instance
adherence_service = AdherenceService()
