from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import appointments as service
from ..context import TenantContext
from ..deps import get_db, get_dispatcher, get_email, get_tenant, require_token
from ..email_sender import EmailSender
from ..schemas import APIResponse, AppointmentCreate, AppointmentOut, AppointmentsListResponse, AppointmentUpdate, IdPayload
from ..tasks import TaskDispatcher
from ..utils import to_naive_utc


router = APIRouter(prefix="/api", tags=["appointments"], dependencies=[Depends(require_token)])


@router.post("/appointments.create", response_model=AppointmentOut)
def appointments_create(
    payload: AppointmentCreate,
    ctx: TenantContext = Depends(get_tenant),
    dispatcher: TaskDispatcher = Depends(get_dispatcher),
    db: Session = Depends(get_db),
):
    return service.create_appointment(
        db,
        ctx,
        dispatcher,
        start=to_naive_utc(payload.start_time),
        end=to_naive_utc(payload.end_time),
        client_id=payload.client_id,
        group_session_override=payload.group_session_override,
    )


@router.post("/appointments.update", response_model=AppointmentOut)
def appointments_update(
    payload: AppointmentUpdate,
    ctx: TenantContext = Depends(get_tenant),
    dispatcher: TaskDispatcher = Depends(get_dispatcher),
    email_sender: EmailSender = Depends(get_email),
    db: Session = Depends(get_db),
):
    return service.update_appointment(
        db,
        ctx,
        payload.id,
        dispatcher,
        email_sender,
        status=payload.status,
        start=to_naive_utc(payload.start_time),
        end=to_naive_utc(payload.end_time),
        cancellation_reason=payload.cancellation_reason,
    )


@router.post("/appointments.delete", response_model=APIResponse)
def appointments_delete(
    payload: IdPayload,
    ctx: TenantContext = Depends(get_tenant),
    dispatcher: TaskDispatcher = Depends(get_dispatcher),
    db: Session = Depends(get_db),
):
    service.delete_appointment(db, ctx, payload.id, dispatcher)
    return APIResponse(ok=True, message="Appointment deleted")


@router.get("/appointments.list", response_model=AppointmentsListResponse)
def appointments_list(
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    status: Optional[str] = Query(default=None),
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    items = service.list_appointments(db, ctx, start=to_naive_utc(start), end=to_naive_utc(end), status=status)
    return AppointmentsListResponse(items=[AppointmentOut.model_validate(a) for a in items], total=len(items))
