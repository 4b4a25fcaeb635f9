"""
Analytics API Router
Endpoints for adherence statistics
"""

from typing import Optional
from datetime import date, datetime, timedelta
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.deps import get_db, get_current_user_id, services
from api.schemas.analytics import AdherenceStatsResponse, DailySummaryResponse
from tools.tz_utils import utcnow


router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/adherence", response_model=AdherenceStatsResponse)
async def get_adherence(
    from_: Optional[datetime] = Query(None, alias="from"),
    to: Optional[datetime] = Query(None),
    days: int = Query(30, ge=1, le=365),
    prescription_id: Optional[int] = Query(None),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Adherence over [from, to]; defaults to the last `days` days.
    Pending scheduled doses do not count against the rate.
    """
    adherence_service = services.get_adherence_service()

    end = to or utcnow()
    start = from_ or end - timedelta(days=days)
    return await adherence_service.get_adherence_stats(
        user_id,
        from_=start,
        to=end,
        prescription_id=prescription_id,
        db=db
    )


@router.get("/daily", response_model=DailySummaryResponse)
async def get_daily_summary(
    day: Optional[date] = Query(None, alias="date"),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    The caller's doses for one local day (today by default)
    """
    adherence_service = services.get_adherence_service()
    return await adherence_service.get_daily_summary(user_id, day=day, db=db)
