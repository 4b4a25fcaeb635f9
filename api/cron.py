"""
Cron API Router
Entry points for the external periodic trigger
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.deps import get_db, verify_cron_secret
from api.schemas.common import JobResultResponse
from actions.dose_jobs import (
    generate_doses_for_all_users,
    mark_missed_for_all_users,
    send_notifications_for_all_users,
    send_low_stock_alerts,
)


router = APIRouter(
    prefix="/cron",
    tags=["cron"],
    dependencies=[Depends(verify_cron_secret)]
)


@router.post("/generate-doses", response_model=JobResultResponse)
async def generate_doses(db: Session = Depends(get_db)):
    """Extend every schedule's doses to the rolling horizon"""
    result = await generate_doses_for_all_users(db=db)
    return result.to_dict()


@router.post("/mark-missed", response_model=JobResultResponse)
async def mark_missed(db: Session = Depends(get_db)):
    """Move overdue scheduled doses to MISSED"""
    result = await mark_missed_for_all_users(db=db)
    return result.to_dict()


@router.post("/send-notifications", response_model=JobResultResponse)
async def send_notifications(db: Session = Depends(get_db)):
    """Remind users about doses due in the next few minutes"""
    result = await send_notifications_for_all_users(db=db)
    return result.to_dict()


@router.post("/low-stock-alerts", response_model=JobResultResponse)
async def low_stock_alerts(db: Session = Depends(get_db)):
    result = await send_low_stock_alerts(db=db)
    return result.to_dict()
