from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..calendar_provider import CalendarProvider
from ..calendar_sync import pull_google_calendar_events
from ..client_sync import sync_clients_from_calendar
from ..config import get_settings
from ..context import TenantContext
from ..deps import get_calendar, get_db, require_token, require_trainer
from ..errors import CalendarNotConnectedError
from ..models import TrainerSettings
from ..rate_limit import sync_rate_limit_check
from ..schemas import CalendarSyncResponse, ClientSyncRequest, ClientSyncResponse


router = APIRouter(prefix="/api", tags=["calendar"], dependencies=[Depends(require_token)])


def _trainer_settings(db: Session, ctx: TenantContext) -> TrainerSettings:
    settings = db.get(TrainerSettings, ctx.user_id)
    if settings is None or settings.workspace_id != ctx.workspace_id:
        raise CalendarNotConnectedError()
    return settings


@router.post("/calendar.sync", response_model=CalendarSyncResponse)
def calendar_sync(
    ctx: TenantContext = Depends(require_trainer),
    provider: CalendarProvider = Depends(get_calendar),
    db: Session = Depends(get_db),
):
    sync_rate_limit_check(ctx.user_id)
    trainer_settings = _trainer_settings(db, ctx)
    summary = pull_google_calendar_events(
        db, trainer_settings, provider, window_months=get_settings().calendar_pull_window_months
    )
    if summary is None:
        return CalendarSyncResponse(ok=True, skipped=True)
    return CalendarSyncResponse(ok=True, summary=summary.as_dict())


@router.post("/clients.sync_from_calendar", response_model=ClientSyncResponse)
def clients_sync_from_calendar(
    payload: Optional[ClientSyncRequest] = None,
    ctx: TenantContext = Depends(require_trainer),
    provider: CalendarProvider = Depends(get_calendar),
    db: Session = Depends(get_db),
):
    sync_rate_limit_check(ctx.user_id)
    trainer_settings = _trainer_settings(db, ctx)
    lookback = (payload.lookback_days if payload else None) or get_settings().client_sync_lookback_days
    return sync_clients_from_calendar(db, trainer_settings, provider, lookback_days=lookback)
