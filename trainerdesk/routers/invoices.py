from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..context import TenantContext
from ..deps import get_db, get_email, get_tenant, require_token, require_trainer
from ..email_sender import EmailSender
from ..invoicing import send_invoice
from ..models import Invoice
from ..schemas import IdPayload, InvoiceOut, InvoicesListResponse


router = APIRouter(prefix="/api", tags=["invoices"], dependencies=[Depends(require_token)])


@router.get("/invoices.list", response_model=InvoicesListResponse)
def invoices_list(
    status: Optional[str] = Query(default=None),
    client_id: Optional[str] = Query(default=None),
    ctx: TenantContext = Depends(get_tenant),
    db: Session = Depends(get_db),
):
    stmt = select(Invoice).where(Invoice.workspace_id == ctx.workspace_id)
    if ctx.is_trainer:
        stmt = stmt.where(Invoice.trainer_id == ctx.user_id)
        if client_id:
            stmt = stmt.where(Invoice.client_id == client_id)
    else:
        stmt = stmt.where(Invoice.client_id == ctx.user_id)
    if status:
        stmt = stmt.where(Invoice.status == status)
    items = db.execute(stmt.order_by(Invoice.created_at.desc())).unique().scalars().all()
    return InvoicesListResponse(items=[InvoiceOut.model_validate(i) for i in items], total=len(items))


@router.post("/invoices.send", response_model=InvoiceOut)
def invoices_send(
    payload: IdPayload,
    ctx: TenantContext = Depends(require_trainer),
    email_sender: EmailSender = Depends(get_email),
    db: Session = Depends(get_db),
):
    return InvoiceOut.model_validate(send_invoice(db, ctx, payload.id, email_sender))
