from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..appointments import complete_past_appointments
from ..calendar_provider import CalendarProvider
from ..calendar_sync import sync_all_calendars
from ..config import get_settings
from ..deps import get_calendar, get_db, get_dispatcher, get_email, require_cron_secret
from ..email_sender import EmailSender
from ..invoicing import process_monthly_invoices
from ..schemas import CronResponse
from ..tasks import TaskDispatcher


router = APIRouter(prefix="/api/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])


@router.post("/complete_appointments", response_model=CronResponse)
def cron_complete_appointments(
    dispatcher: TaskDispatcher = Depends(get_dispatcher),
    db: Session = Depends(get_db),
):
    return CronResponse(result=complete_past_appointments(db, dispatcher))


@router.post("/sync_calendars", response_model=CronResponse)
def cron_sync_calendars(
    provider: CalendarProvider = Depends(get_calendar),
    db: Session = Depends(get_db),
):
    results = sync_all_calendars(db, provider, window_months=get_settings().calendar_pull_window_months)
    return CronResponse(result=results)


@router.post("/generate_invoices", response_model=CronResponse)
def cron_generate_invoices(
    email_sender: EmailSender = Depends(get_email),
    db: Session = Depends(get_db),
):
    return CronResponse(result=process_monthly_invoices(db, email_sender))
