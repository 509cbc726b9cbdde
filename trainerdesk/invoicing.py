from __future__ import annotations

"""
Invoice generation: one invoice per completed PER_SESSION appointment, one per
month for MONTHLY clients. Invoices are marked SENT before delivery and fall
back to DRAFT when the email cannot be sent; the row itself is never removed.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import get_settings
from .context import TenantContext
from .email_sender import EmailSender
from .group_sessions import classify, session_description, session_rate_cents
from .models import (
    Appointment,
    AppointmentStatus,
    BillingFrequency,
    ClientProfile,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    Role,
    TrainerSettings,
    User,
)
from .errors import EmailDeliveryError, NotFoundError, TenantAccessError
from .utils import format_month, month_start, previous_month_bounds, utcnow


logger = logging.getLogger(__name__)


class _KeyLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


_locks_guard = threading.Lock()
_key_locks: Dict[str, _KeyLock] = {}


@contextmanager
def _locked(key: str) -> Iterator[None]:
    """Serialize check-then-create for one billable unit within this process.

    Entries are dropped once the last holder or waiter releases them.
    """
    with _locks_guard:
        entry = _key_locks.get(key)
        if entry is None:
            entry = _key_locks[key] = _KeyLock()
        entry.holders += 1
    try:
        with entry.lock:
            yield
    finally:
        with _locks_guard:
            entry.holders -= 1
            if entry.holders == 0:
                del _key_locks[key]


def _trainer_settings(db: Session, trainer_id: str) -> Optional[TrainerSettings]:
    return db.get(TrainerSettings, trainer_id)


def _client_profile(db: Session, workspace_id: str, client_id: str) -> Optional[ClientProfile]:
    return db.execute(
        select(ClientProfile).where(ClientProfile.user_id == client_id, ClientProfile.workspace_id == workspace_id)
    ).scalar_one_or_none()


def _due_date(settings: Optional[TrainerSettings], now: datetime) -> datetime:
    days = (settings.default_invoice_due_days if settings else None) or get_settings().default_invoice_due_days
    return now + timedelta(days=days)


def _deliver(db: Session, invoice: Invoice, email_sender: EmailSender) -> Invoice:
    try:
        email_sender.send_invoice_email(invoice)
        logger.info("Invoice email sent invoice_id=%s", invoice.id)
    except Exception:
        logger.exception("Failed to send invoice email invoice_id=%s; reverting to DRAFT", invoice.id)
        invoice.status = InvoiceStatus.DRAFT
        db.add(invoice)
        db.commit()
    return invoice


def generate_per_session_invoice(
    db: Session, appointment_id: str, email_sender: EmailSender, now: Optional[datetime] = None
) -> Optional[Invoice]:
    """Bill one completed appointment. Returns None when there is nothing to bill."""
    now = now or utcnow()
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        logger.info("Appointment not found, skipping invoice appointment_id=%s", appointment_id)
        return None
    if appointment.status != AppointmentStatus.COMPLETED:
        return None
    profile = _client_profile(db, appointment.workspace_id, appointment.client_id)
    if profile is None:
        logger.info("Client profile missing, skipping invoice client_id=%s", appointment.client_id)
        return None
    if not profile.auto_invoice_enabled or profile.billing_frequency != BillingFrequency.PER_SESSION:
        return None

    with _locked(f"session:{appointment_id}"):
        existing = db.execute(
            select(InvoiceLineItem.id).where(InvoiceLineItem.appointment_id == appointment_id)
        ).first()
        if existing is not None:
            logger.info("Invoice already exists for appointment_id=%s", appointment_id)
            return None

        settings = _trainer_settings(db, appointment.trainer_id)
        info = classify(db, appointment, settings.group_session_matching_logic if settings else None)
        rate = session_rate_cents(profile, settings, info.is_group_session)

        invoice = Invoice(
            workspace_id=appointment.workspace_id,
            trainer_id=appointment.trainer_id,
            client_id=appointment.client_id,
            amount_cents=rate,
            due_date=_due_date(settings, now),
            status=InvoiceStatus.SENT,
            created_at=now,
        )
        invoice.line_items.append(
            InvoiceLineItem(
                appointment_id=appointment.id,
                description=session_description(appointment, info.is_group_session),
                quantity=1,
                unit_price_cents=rate,
                total_cents=rate,
            )
        )
        db.add(invoice)
        db.commit()
        db.refresh(invoice)
        logger.info(
            "Created invoice_id=%s appointment_id=%s group=%s amount_cents=%s",
            invoice.id,
            appointment_id,
            info.is_group_session,
            rate,
        )

    return _deliver(db, invoice, email_sender)


def generate_monthly_invoice(
    db: Session,
    client_id: str,
    trainer_id: str,
    email_sender: EmailSender,
    now: Optional[datetime] = None,
) -> Optional[Invoice]:
    """Bill last month's completed appointments for a MONTHLY client, at most once per month."""
    now = now or utcnow()
    client = db.get(User, client_id)
    profile = _client_profile(db, client.workspace_id, client_id) if client else None
    if client is None or profile is None:
        logger.info("Client or profile not found client_id=%s", client_id)
        return None
    if not profile.auto_invoice_enabled or profile.billing_frequency != BillingFrequency.MONTHLY:
        return None

    period_start, period_end = previous_month_bounds(now)
    appointments = db.execute(
        select(Appointment)
        .where(
            Appointment.client_id == client_id,
            Appointment.trainer_id == trainer_id,
            Appointment.status == AppointmentStatus.COMPLETED,
            Appointment.start_time >= period_start,
            Appointment.start_time < period_end,
        )
        .order_by(Appointment.start_time)
    ).scalars().all()
    if not appointments:
        logger.info("No completed appointments for client_id=%s in %s", client_id, format_month(period_start))
        return None

    with _locked(f"monthly:{client_id}:{trainer_id}:{period_end:%Y-%m}"):
        existing = db.execute(
            select(Invoice.id).where(
                Invoice.client_id == client_id,
                Invoice.trainer_id == trainer_id,
                Invoice.created_at >= month_start(now),
            )
        ).first()
        if existing is not None:
            logger.info("Monthly invoice already exists client_id=%s trainer_id=%s", client_id, trainer_id)
            return None

        settings = _trainer_settings(db, trainer_id)
        matching_logic = settings.group_session_matching_logic if settings else None
        items: List[InvoiceLineItem] = []
        for appointment in appointments:
            info = classify(db, appointment, matching_logic)
            rate = session_rate_cents(profile, settings, info.is_group_session)
            items.append(
                InvoiceLineItem(
                    appointment_id=appointment.id,
                    description=session_description(appointment, info.is_group_session),
                    quantity=1,
                    unit_price_cents=rate,
                    total_cents=rate,
                )
            )

        invoice = Invoice(
            workspace_id=client.workspace_id,
            trainer_id=trainer_id,
            client_id=client_id,
            amount_cents=sum(item.total_cents for item in items),
            due_date=_due_date(settings, now),
            status=InvoiceStatus.SENT,
            notes=f"Monthly invoice for {format_month(period_start)}",
            created_at=now,
            line_items=items,
        )
        db.add(invoice)
        db.commit()
        db.refresh(invoice)
        logger.info(
            "Created monthly invoice_id=%s client_id=%s sessions=%s amount_cents=%s",
            invoice.id,
            client_id,
            len(items),
            invoice.amount_cents,
        )

    return _deliver(db, invoice, email_sender)


def process_monthly_invoices(
    db: Session, email_sender: EmailSender, now: Optional[datetime] = None
) -> Dict[str, int]:
    """Run monthly billing for trainers whose invoice day is today; client failures are isolated."""
    now = now or utcnow()
    trainers = db.execute(
        select(TrainerSettings).where(
            TrainerSettings.auto_invoicing_enabled.is_(True),
            TrainerSettings.monthly_invoice_day == now.day,
        )
    ).scalars().all()
    logger.info("Monthly invoicing day=%s trainers=%s", now.day, len(trainers))

    result = {"trainers": len(trainers), "invoices": 0, "failures": 0}
    for settings in trainers:
        clients = db.execute(
            select(User)
            .join(ClientProfile, ClientProfile.user_id == User.id)
            .where(
                User.workspace_id == settings.workspace_id,
                User.role == Role.CLIENT,
                ClientProfile.workspace_id == settings.workspace_id,
                ClientProfile.billing_frequency == BillingFrequency.MONTHLY,
                ClientProfile.auto_invoice_enabled.is_(True),
            )
        ).scalars().all()
        for client in clients:
            try:
                if generate_monthly_invoice(db, client.id, settings.trainer_id, email_sender, now=now):
                    result["invoices"] += 1
            except Exception:
                db.rollback()
                result["failures"] += 1
                logger.exception(
                    "Monthly invoice failed client_id=%s trainer_id=%s", client.id, settings.trainer_id
                )
    return result


def send_invoice(db: Session, ctx: TenantContext, invoice_id: str, email_sender: EmailSender) -> Invoice:
    """Email an invoice on demand. A DRAFT invoice becomes SENT only once delivery succeeds."""
    invoice = db.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    if invoice.workspace_id != ctx.workspace_id or invoice.trainer_id != ctx.user_id:
        raise TenantAccessError()

    try:
        email_sender.send_invoice_email(invoice)
    except Exception as exc:
        logger.exception("Failed to send invoice email invoice_id=%s", invoice.id)
        raise EmailDeliveryError() from exc

    if invoice.status == InvoiceStatus.DRAFT:
        invoice.status = InvoiceStatus.SENT
        db.add(invoice)
        db.commit()
        db.refresh(invoice)
    logger.info("Invoice sent on request invoice_id=%s status=%s", invoice.id, invoice.status)
    return invoice
