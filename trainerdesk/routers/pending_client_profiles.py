from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import pending as service
from ..context import TenantContext
from ..deps import get_db, require_token, require_trainer
from ..models import ReviewStatus
from ..schemas import (
    AppointmentOut,
    ClientOut,
    IdPayload,
    PendingClientProfileApprove,
    PendingClientProfileApproveResponse,
    PendingClientProfileOut,
)


router = APIRouter(prefix="/api", tags=["pending_client_profiles"], dependencies=[Depends(require_token)])


@router.get("/pending_client_profiles.list", response_model=list[PendingClientProfileOut])
def pending_client_profiles_list(
    status: str = Query(default=ReviewStatus.PENDING),
    ctx: TenantContext = Depends(require_trainer),
    db: Session = Depends(get_db),
):
    return service.list_pending_client_profiles(db, ctx, status=status)


@router.post("/pending_client_profiles.approve", response_model=PendingClientProfileApproveResponse)
def pending_client_profiles_approve(
    payload: PendingClientProfileApprove,
    ctx: TenantContext = Depends(require_trainer),
    db: Session = Depends(get_db),
):
    result = service.approve_pending_client_profile(
        db,
        ctx,
        payload.id,
        full_name=payload.full_name,
        email=payload.email,
        phone=payload.phone,
        billing_frequency=payload.billing_frequency,
        session_rate_cents=payload.session_rate_cents,
        group_session_rate_cents=payload.group_session_rate_cents,
        notes=payload.notes,
        auto_invoice_enabled=payload.auto_invoice_enabled,
    )
    return PendingClientProfileApproveResponse(
        client=ClientOut.model_validate(result["client"]),
        appointments=[AppointmentOut.model_validate(a) for a in result["appointments"]],
    )


@router.post("/pending_client_profiles.reject", response_model=PendingClientProfileOut)
def pending_client_profiles_reject(
    payload: IdPayload,
    ctx: TenantContext = Depends(require_trainer),
    db: Session = Depends(get_db),
):
    return service.reject_pending_client_profile(db, ctx, payload.id)
