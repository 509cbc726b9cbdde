from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import pending as service
from ..context import TenantContext
from ..deps import get_db, require_token, require_trainer
from ..models import ReviewStatus
from ..schemas import AppointmentOut, BlockedTimeOut, IdPayload, PendingAppointmentApprove, PendingAppointmentOut


router = APIRouter(prefix="/api", tags=["pending_appointments"], dependencies=[Depends(require_token)])


@router.get("/pending_appointments.list", response_model=list[PendingAppointmentOut])
def pending_appointments_list(
    status: str = Query(default=ReviewStatus.PENDING),
    ctx: TenantContext = Depends(require_trainer),
    db: Session = Depends(get_db),
):
    return service.list_pending_appointments(db, ctx, status=status)


@router.post("/pending_appointments.approve", response_model=AppointmentOut)
def pending_appointments_approve(
    payload: PendingAppointmentApprove,
    ctx: TenantContext = Depends(require_trainer),
    db: Session = Depends(get_db),
):
    return service.approve_pending_appointment(db, ctx, payload.id, client_id=payload.client_id)


@router.post("/pending_appointments.reject", response_model=BlockedTimeOut)
def pending_appointments_reject(
    payload: IdPayload,
    ctx: TenantContext = Depends(require_trainer),
    db: Session = Depends(get_db),
):
    return service.reject_pending_appointment(db, ctx, payload.id)
