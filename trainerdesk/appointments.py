from __future__ import annotations

"""
Appointment lifecycle: booking, status transitions, rescheduling, deletion and
the hourly auto-completion sweep. Calendar writes are dispatched, never awaited.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .booking import ensure_no_conflict, validate_client_booking
from .calendar_sync import find_mapping_for_appointment
from .context import TenantContext
from .email_sender import EmailSender
from .errors import BookingValidationError, NotFoundError, TenantAccessError
from .invoicing import generate_per_session_invoice
from .models import Appointment, AppointmentStatus, GroupSessionOverride, Role, User, Workspace
from .tasks import TaskDispatcher, delete_external_event_task, generate_invoice_task, sync_appointment_task
from .utils import utcnow


logger = logging.getLogger(__name__)

_OVERRIDES = (GroupSessionOverride.ALLOW_ALL, GroupSessionOverride.ALLOW_SPECIFIC, GroupSessionOverride.NO_GROUP)


def _validate_range(start: datetime, end: datetime) -> None:
    if end <= start:
        raise BookingValidationError("End time must be after start time")


def _workspace_client(db: Session, workspace_id: str, client_id: str) -> User:
    client = db.get(User, client_id)
    if client is None or client.workspace_id != workspace_id or client.role != Role.CLIENT:
        raise NotFoundError("Client not found")
    return client


def get_appointment_for(db: Session, ctx: TenantContext, appointment_id: str) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError("Appointment not found")
    if appointment.workspace_id != ctx.workspace_id:
        raise TenantAccessError()
    if ctx.user_id not in (appointment.trainer_id, appointment.client_id):
        raise TenantAccessError()
    return appointment


def list_appointments(
    db: Session,
    ctx: TenantContext,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status: Optional[str] = None,
) -> List[Appointment]:
    stmt = select(Appointment).where(Appointment.workspace_id == ctx.workspace_id)
    if ctx.is_trainer:
        stmt = stmt.where(Appointment.trainer_id == ctx.user_id)
    else:
        stmt = stmt.where(Appointment.client_id == ctx.user_id)
    if start is not None:
        stmt = stmt.where(Appointment.end_time >= start)
    if end is not None:
        stmt = stmt.where(Appointment.start_time <= end)
    if status:
        stmt = stmt.where(Appointment.status == status)
    return list(db.execute(stmt.order_by(Appointment.start_time)).scalars().all())


def create_appointment(
    db: Session,
    ctx: TenantContext,
    dispatcher: TaskDispatcher,
    start: datetime,
    end: datetime,
    client_id: Optional[str] = None,
    group_session_override: Optional[str] = None,
) -> Appointment:
    _validate_range(start, end)
    if group_session_override is not None and group_session_override not in _OVERRIDES:
        raise BookingValidationError("Invalid group session override")
    workspace = db.get(Workspace, ctx.workspace_id)
    if workspace is None:
        raise NotFoundError("Workspace not found")

    if ctx.is_trainer:
        if not client_id:
            raise BookingValidationError("Client ID is required when trainer is booking")
        _workspace_client(db, ctx.workspace_id, client_id)
        trainer_id = ctx.user_id
    else:
        client_id = ctx.user_id
        trainer_id = workspace.trainer_id
        validate_client_booking(db, ctx.workspace_id, trainer_id, client_id, start, end)

    appointment = Appointment(
        workspace_id=ctx.workspace_id,
        trainer_id=trainer_id,
        client_id=client_id,
        start_time=start,
        end_time=end,
        status=AppointmentStatus.SCHEDULED,
        group_session_override=group_session_override,
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)
    logger.info(
        "Appointment created appointment_id=%s trainer_id=%s client_id=%s by=%s",
        appointment.id,
        trainer_id,
        client_id,
        ctx.role,
    )
    dispatcher.dispatch(sync_appointment_task, appointment.id)
    return appointment


def update_appointment(
    db: Session,
    ctx: TenantContext,
    appointment_id: str,
    dispatcher: TaskDispatcher,
    email_sender: EmailSender,
    status: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    cancellation_reason: Optional[str] = None,
) -> Appointment:
    appointment = get_appointment_for(db, ctx, appointment_id)
    if status is not None and status not in AppointmentStatus.ALL:
        raise BookingValidationError(f"Invalid status: {status}")

    if start is not None or end is not None:
        new_start = start if start is not None else appointment.start_time
        new_end = end if end is not None else appointment.end_time
        _validate_range(new_start, new_end)
        ensure_no_conflict(db, appointment, new_start, new_end)

    if status:
        appointment.status = status
    if cancellation_reason:
        appointment.cancellation_reason = cancellation_reason
    if start is not None:
        appointment.start_time = start
    if end is not None:
        appointment.end_time = end
    db.add(appointment)
    db.commit()
    db.refresh(appointment)

    dispatcher.dispatch(sync_appointment_task, appointment.id)

    if status == AppointmentStatus.COMPLETED:
        try:
            generate_per_session_invoice(db, appointment.id, email_sender)
        except Exception:
            db.rollback()
            logger.exception("Per-session invoice failed appointment_id=%s", appointment.id)
    return appointment


def delete_appointment(db: Session, ctx: TenantContext, appointment_id: str, dispatcher: TaskDispatcher) -> None:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError("Appointment not found")
    if appointment.workspace_id != ctx.workspace_id:
        raise TenantAccessError()
    if appointment.trainer_id != ctx.user_id:
        raise TenantAccessError("Only trainers can delete appointments")

    # The mapping goes in the same transaction; only the remote event is left to the task.
    mapping = find_mapping_for_appointment(db, appointment.id)
    external_event_id = mapping.external_event_id if mapping is not None else None
    if mapping is not None:
        db.delete(mapping)
    trainer_id = appointment.trainer_id
    db.delete(appointment)
    db.commit()
    logger.info("Appointment deleted appointment_id=%s", appointment_id)

    if external_event_id:
        dispatcher.dispatch(delete_external_event_task, trainer_id, external_event_id)


def complete_past_appointments(
    db: Session, dispatcher: TaskDispatcher, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Mark ended SCHEDULED/RESCHEDULED appointments COMPLETED, one at a time."""
    now = now or utcnow()
    past = db.execute(
        select(Appointment)
        .where(Appointment.status.in_(AppointmentStatus.ACTIVE), Appointment.end_time < now)
        .order_by(Appointment.end_time)
    ).scalars().all()
    logger.info("Auto-completing %s past appointments", len(past))

    results: List[Dict[str, Any]] = []
    for appointment in past:
        appointment_id = appointment.id
        try:
            appointment.status = AppointmentStatus.COMPLETED
            db.add(appointment)
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.exception("Failed to complete appointment_id=%s", appointment_id)
            results.append({"appointmentId": appointment_id, "status": "error", "error": str(exc)})
            continue
        dispatcher.dispatch(sync_appointment_task, appointment_id)
        dispatcher.dispatch(generate_invoice_task, appointment_id)
        results.append({"appointmentId": appointment_id, "status": "success"})

    completed = sum(1 for r in results if r["status"] == "success")
    return {"completed": completed, "failed": len(results) - completed, "results": results}
