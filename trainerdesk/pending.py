from __future__ import annotations

"""
Trainer review of medium/low confidence calendar matches and of client
candidates discovered in calendar history.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .calendar_sync import DEFAULT_CALENDAR_ID, PROVIDER, find_mapping_for_event
from .client_identity import is_email_in_use
from .context import TenantContext
from .errors import AlreadyProcessedError, BookingValidationError, NotFoundError, TenantAccessError
from .models import (
    Appointment,
    AppointmentStatus,
    AppointmentTarget,
    BillingFrequency,
    BlockedTime,
    BlockedTimeTarget,
    CalendarEventMapping,
    ClientProfile,
    PendingAppointment,
    PendingClientProfile,
    ReviewStatus,
    Role,
    SyncDirection,
    User,
)
from .utils import utcnow


logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def _require_trainer_owner(ctx: TenantContext, workspace_id: str, trainer_id: str) -> None:
    if not ctx.is_trainer or workspace_id != ctx.workspace_id or trainer_id != ctx.user_id:
        raise TenantAccessError()


def _point_event_to(
    db: Session, workspace_id: str, external_event_id: str, target
) -> CalendarEventMapping:
    mapping = find_mapping_for_event(db, external_event_id)
    if mapping is None:
        mapping = CalendarEventMapping(
            workspace_id=workspace_id,
            provider=PROVIDER,
            external_event_id=external_event_id,
            external_calendar_id=DEFAULT_CALENDAR_ID,
            sync_direction=SyncDirection.INBOUND,
        )
    mapping.point_to(target)
    mapping.last_synced_at = utcnow()
    db.add(mapping)
    return mapping


# ---------------------------------------------------------------------------
# Pending appointments
# ---------------------------------------------------------------------------


def list_pending_appointments(db: Session, ctx: TenantContext, status: str = ReviewStatus.PENDING) -> List[PendingAppointment]:
    if not ctx.is_trainer:
        raise TenantAccessError()
    return list(
        db.execute(
            select(PendingAppointment)
            .where(
                PendingAppointment.workspace_id == ctx.workspace_id,
                PendingAppointment.trainer_id == ctx.user_id,
                PendingAppointment.status == status,
            )
            .order_by(PendingAppointment.start_time)
        ).scalars().all()
    )


def _load_pending_appointment(db: Session, ctx: TenantContext, pending_id: str) -> PendingAppointment:
    pending = db.get(PendingAppointment, pending_id)
    if pending is None:
        raise NotFoundError("Pending appointment not found")
    _require_trainer_owner(ctx, pending.workspace_id, pending.trainer_id)
    if pending.status != ReviewStatus.PENDING:
        raise AlreadyProcessedError("Appointment already processed")
    return pending


def approve_pending_appointment(
    db: Session, ctx: TenantContext, pending_id: str, client_id: Optional[str] = None
) -> Appointment:
    pending = _load_pending_appointment(db, ctx, pending_id)
    final_client_id = client_id or pending.suggested_client_id
    if not final_client_id:
        raise BookingValidationError("No client specified")
    client = db.get(User, final_client_id)
    if client is None or client.workspace_id != ctx.workspace_id or client.role != Role.CLIENT:
        raise NotFoundError("Client not found")

    appointment = Appointment(
        workspace_id=pending.workspace_id,
        trainer_id=pending.trainer_id,
        client_id=final_client_id,
        start_time=pending.start_time,
        end_time=pending.end_time,
        status=AppointmentStatus.SCHEDULED,
    )
    db.add(appointment)
    db.flush()
    pending.status = ReviewStatus.CONVERTED
    pending.created_appointment_id = appointment.id
    db.add(pending)
    _point_event_to(db, pending.workspace_id, pending.external_event_id, AppointmentTarget(appointment.id))
    db.commit()
    db.refresh(appointment)
    logger.info("Approved pending_id=%s -> appointment_id=%s", pending_id, appointment.id)
    return appointment


def reject_pending_appointment(db: Session, ctx: TenantContext, pending_id: str) -> BlockedTime:
    pending = _load_pending_appointment(db, ctx, pending_id)
    blocked = BlockedTime(
        workspace_id=pending.workspace_id,
        trainer_id=pending.trainer_id,
        start_time=pending.start_time,
        end_time=pending.end_time,
        reason=f"{pending.external_event_title or 'Untitled Event'} (via Google)",
        is_recurring=False,
    )
    db.add(blocked)
    db.flush()
    pending.status = ReviewStatus.REJECTED
    db.add(pending)
    _point_event_to(db, pending.workspace_id, pending.external_event_id, BlockedTimeTarget(blocked.id))
    db.commit()
    logger.info("Rejected pending_id=%s -> blocked_time_id=%s", pending_id, blocked.id)
    return blocked


# ---------------------------------------------------------------------------
# Pending client profiles
# ---------------------------------------------------------------------------


def list_pending_client_profiles(
    db: Session, ctx: TenantContext, status: str = ReviewStatus.PENDING
) -> List[PendingClientProfile]:
    if not ctx.is_trainer:
        raise TenantAccessError()
    return list(
        db.execute(
            select(PendingClientProfile)
            .where(
                PendingClientProfile.workspace_id == ctx.workspace_id,
                PendingClientProfile.trainer_id == ctx.user_id,
                PendingClientProfile.status == status,
            )
            .order_by(PendingClientProfile.occurrence_count.desc(), PendingClientProfile.created_at)
        ).scalars().all()
    )


def _load_pending_profile(db: Session, ctx: TenantContext, profile_id: str) -> PendingClientProfile:
    profile = db.get(PendingClientProfile, profile_id)
    if profile is None:
        raise NotFoundError("Pending profile not found")
    _require_trainer_owner(ctx, profile.workspace_id, profile.trainer_id)
    if profile.status != ReviewStatus.PENDING:
        raise AlreadyProcessedError("Profile already processed")
    return profile


def _placeholder_email(name: str) -> str:
    return _WHITESPACE.sub("", name).lower() + "@placeholder.local"


def approve_pending_client_profile(
    db: Session,
    ctx: TenantContext,
    profile_id: str,
    full_name: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    billing_frequency: Optional[str] = None,
    session_rate_cents: Optional[int] = None,
    group_session_rate_cents: Optional[int] = None,
    notes: Optional[str] = None,
    auto_invoice_enabled: bool = True,
) -> Dict[str, Any]:
    """Create the client and convert every pending appointment or blocked time sourced from its events."""
    profile = _load_pending_profile(db, ctx, profile_id)
    final_name = full_name or profile.extracted_name
    final_email = email or profile.extracted_email

    if final_email and is_email_in_use(db, ctx.workspace_id, final_email):
        profile.status = ReviewStatus.DUPLICATE
        db.add(profile)
        db.commit()
        raise BookingValidationError("Email already in use")

    frequency = billing_frequency or profile.default_billing_frequency
    if frequency not in (BillingFrequency.PER_SESSION, BillingFrequency.MONTHLY):
        raise BookingValidationError(f"Invalid billing frequency: {frequency}")

    client = User(
        workspace_id=ctx.workspace_id,
        full_name=final_name,
        email=final_email or _placeholder_email(final_name),
        phone=phone,
        role=Role.CLIENT,
    )
    db.add(client)
    db.flush()
    db.add(
        ClientProfile(
            user_id=client.id,
            workspace_id=ctx.workspace_id,
            session_rate_cents=session_rate_cents if session_rate_cents is not None else profile.default_session_rate_cents,
            group_session_rate_cents=group_session_rate_cents,
            billing_frequency=frequency,
            auto_invoice_enabled=auto_invoice_enabled,
            notes=notes,
        )
    )
    profile.status = ReviewStatus.APPROVED
    profile.created_client_id = client.id
    db.add(profile)

    event_ids = list(profile.source_event_ids or [])
    created: List[Appointment] = []

    pendings = []
    if event_ids:
        pendings = db.execute(
            select(PendingAppointment).where(
                PendingAppointment.workspace_id == ctx.workspace_id,
                PendingAppointment.trainer_id == profile.trainer_id,
                PendingAppointment.external_event_id.in_(event_ids),
                PendingAppointment.status == ReviewStatus.PENDING,
            )
        ).scalars().all()
    for pending in pendings:
        appointment = Appointment(
            workspace_id=ctx.workspace_id,
            trainer_id=profile.trainer_id,
            client_id=client.id,
            start_time=pending.start_time,
            end_time=pending.end_time,
            status=AppointmentStatus.SCHEDULED,
        )
        db.add(appointment)
        db.flush()
        _point_event_to(db, ctx.workspace_id, pending.external_event_id, AppointmentTarget(appointment.id))
        pending.status = ReviewStatus.CONVERTED
        pending.created_appointment_id = appointment.id
        db.add(pending)
        created.append(appointment)

    mappings = []
    if event_ids:
        mappings = db.execute(
            select(CalendarEventMapping).where(
                CalendarEventMapping.workspace_id == ctx.workspace_id,
                CalendarEventMapping.external_event_id.in_(event_ids),
                CalendarEventMapping.blocked_time_id.is_not(None),
                CalendarEventMapping.appointment_id.is_(None),
            )
        ).scalars().all()
    for mapping in mappings:
        blocked = db.get(BlockedTime, mapping.blocked_time_id)
        if blocked is None:
            continue
        appointment = Appointment(
            workspace_id=ctx.workspace_id,
            trainer_id=profile.trainer_id,
            client_id=client.id,
            start_time=blocked.start_time,
            end_time=blocked.end_time,
            status=AppointmentStatus.SCHEDULED,
        )
        db.add(appointment)
        db.flush()
        mapping.point_to(AppointmentTarget(appointment.id))
        mapping.last_synced_at = utcnow()
        db.add(mapping)
        db.flush()
        db.delete(blocked)
        created.append(appointment)

    db.commit()
    db.refresh(client)
    logger.info(
        "Approved pending profile_id=%s -> client_id=%s converted=%s",
        profile_id,
        client.id,
        len(created),
    )
    return {"client": client, "appointments": created}


def reject_pending_client_profile(db: Session, ctx: TenantContext, profile_id: str) -> PendingClientProfile:
    profile = _load_pending_profile(db, ctx, profile_id)
    profile.status = ReviewStatus.REJECTED
    db.add(profile)
    db.commit()
    db.refresh(profile)
    logger.info("Rejected pending profile_id=%s", profile_id)
    return profile
