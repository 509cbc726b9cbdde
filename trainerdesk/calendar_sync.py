from __future__ import annotations

"""
Two-way reconciliation between appointments/blocked time and the external calendar.

A ``CalendarEventMapping`` row records which external event belongs to which
local entity and who authored it. Outbound events (created here) are never
re-imported; inbound events are refreshed in place on every pull.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .calendar_provider import CalendarEvent, CalendarProvider
from .client_identity import HIGH, match_event_to_client
from .models import (
    Appointment,
    AppointmentStatus,
    AppointmentTarget,
    BlockedTime,
    BlockedTimeTarget,
    CalendarEventMapping,
    PendingAppointment,
    ReviewStatus,
    SyncDirection,
    TrainerSettings,
    User,
)
from .utils import add_months, event_time_range, to_rfc3339, utcnow


logger = logging.getLogger(__name__)

PROVIDER = "google"
DEFAULT_CALENDAR_ID = "primary"

_STATUS_GLYPH = {
    AppointmentStatus.COMPLETED: "✓",
    AppointmentStatus.CANCELLED: "✗",
    AppointmentStatus.RESCHEDULED: "↻",
}

# Google Calendar colorId values: 10 basil, 11 tomato, 6 tangerine, 9 blueberry
_STATUS_COLOR = {
    AppointmentStatus.COMPLETED: "10",
    AppointmentStatus.CANCELLED: "11",
    AppointmentStatus.RESCHEDULED: "6",
}
_DEFAULT_COLOR = "9"


@dataclass
class PullSummary:
    events_seen: int = 0
    skipped: int = 0
    appointments_created: int = 0
    appointments_linked: int = 0
    appointments_updated: int = 0
    blocked_times_created: int = 0
    blocked_times_updated: int = 0
    pending_created: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def calendar_sync_enabled(settings: Optional[TrainerSettings]) -> bool:
    return bool(settings and settings.auto_sync_enabled and settings.google_calendar_connected)


def format_event_title(client_name: str, status: str) -> str:
    glyph = _STATUS_GLYPH.get(status)
    return f"{glyph} {client_name}" if glyph else client_name


def event_color(status: str) -> str:
    return _STATUS_COLOR.get(status, _DEFAULT_COLOR)


def build_event_payload(appointment: Appointment, client_name: str, settings: TrainerSettings) -> CalendarEvent:
    return {
        "summary": format_event_title(client_name, appointment.status),
        "description": f"Appointment with {client_name}\nStatus: {appointment.status}",
        "start": {"dateTime": to_rfc3339(appointment.start_time), "timeZone": settings.timezone},
        "end": {"dateTime": to_rfc3339(appointment.end_time), "timeZone": settings.timezone},
        "colorId": event_color(appointment.status),
    }


def find_mapping_for_appointment(db: Session, appointment_id: str) -> Optional[CalendarEventMapping]:
    return db.execute(
        select(CalendarEventMapping).where(
            CalendarEventMapping.appointment_id == appointment_id,
            CalendarEventMapping.provider == PROVIDER,
        )
    ).scalars().first()


def find_mapping_for_event(db: Session, external_event_id: str) -> Optional[CalendarEventMapping]:
    return db.execute(
        select(CalendarEventMapping).where(
            CalendarEventMapping.provider == PROVIDER,
            CalendarEventMapping.external_event_id == external_event_id,
        )
    ).scalar_one_or_none()


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------


def sync_appointment_to_google(
    db: Session, appointment: Appointment, settings: Optional[TrainerSettings], provider: CalendarProvider
) -> Optional[CalendarEventMapping]:
    """Create or update the external event for an appointment.

    Provider errors propagate; the appointment itself is never rolled back here.
    """
    if not calendar_sync_enabled(settings):
        logger.info("Skipping outbound sync appointment_id=%s: sync disabled or not connected", appointment.id)
        return None

    client = db.get(User, appointment.client_id)
    payload = build_event_payload(appointment, client.full_name if client else "Client", settings)
    mapping = find_mapping_for_appointment(db, appointment.id)

    try:
        if mapping and mapping.external_event_id:
            provider.update_event(appointment.trainer_id, mapping.external_event_id, payload)
            mapping.last_synced_at = utcnow()
            db.add(mapping)
            logger.info("Updated external event %s for appointment_id=%s", mapping.external_event_id, appointment.id)
        else:
            created = provider.create_event(appointment.trainer_id, payload)
            mapping = CalendarEventMapping(
                workspace_id=appointment.workspace_id,
                appointment_id=appointment.id,
                provider=PROVIDER,
                external_event_id=created["id"],
                external_calendar_id=DEFAULT_CALENDAR_ID,
                sync_direction=SyncDirection.OUTBOUND,
                last_synced_at=utcnow(),
            )
            db.add(mapping)
            logger.info("Created external event %s for appointment_id=%s", created["id"], appointment.id)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to sync appointment_id=%s to external calendar", appointment.id)
        raise
    return mapping


def delete_mapped_event(
    db: Session, mapping: Optional[CalendarEventMapping], settings: Optional[TrainerSettings], provider: CalendarProvider
) -> bool:
    """Delete the external event and its mapping; remote failures are logged and swallowed."""
    if mapping is None or settings is None or not settings.google_calendar_connected:
        return False
    try:
        provider.delete_event(settings.trainer_id, mapping.external_event_id)
        db.delete(mapping)
        db.commit()
        return True
    except Exception:
        db.rollback()
        logger.exception("Failed to delete external event %s", mapping.external_event_id)
        return False


def delete_external_event(
    settings: Optional[TrainerSettings], provider: CalendarProvider, external_event_id: str
) -> bool:
    """Delete a remote event whose mapping is already gone locally; failures are logged and swallowed."""
    if settings is None or not settings.google_calendar_connected:
        return False
    try:
        provider.delete_event(settings.trainer_id, external_event_id)
        return True
    except Exception:
        logger.exception("Failed to delete external event %s", external_event_id)
        return False


def delete_appointment_from_google(
    db: Session, appointment_id: str, settings: Optional[TrainerSettings], provider: CalendarProvider
) -> bool:
    return delete_mapped_event(db, find_mapping_for_appointment(db, appointment_id), settings, provider)


# ---------------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------------


def _attach_or_create_mapping(
    db: Session,
    settings: TrainerSettings,
    mapping: Optional[CalendarEventMapping],
    external_event_id: str,
    target,
    now: datetime,
) -> CalendarEventMapping:
    if mapping is None:
        mapping = CalendarEventMapping(
            workspace_id=settings.workspace_id,
            provider=PROVIDER,
            external_event_id=external_event_id,
            external_calendar_id=DEFAULT_CALENDAR_ID,
            sync_direction=SyncDirection.INBOUND,
        )
    mapping.point_to(target)
    mapping.last_synced_at = now
    db.add(mapping)
    return mapping


def _create_blocked_time(db: Session, settings: TrainerSettings, title: str, start: datetime, end: datetime) -> BlockedTime:
    blocked = BlockedTime(
        workspace_id=settings.workspace_id,
        trainer_id=settings.trainer_id,
        start_time=start,
        end_time=end,
        reason=f"Google Calendar: {title}",
        is_recurring=False,
    )
    db.add(blocked)
    db.flush()
    return blocked


def _reconcile_event(
    db: Session, settings: TrainerSettings, event: CalendarEvent, summary: PullSummary, now: datetime
) -> None:
    times = event_time_range(event)
    if times is None or not event.get("id"):
        summary.skipped += 1
        return
    start, end = times
    event_id = event["id"]
    title = event.get("summary") or ""
    mapping = find_mapping_for_event(db, event_id)

    if mapping is not None and mapping.sync_direction == SyncDirection.OUTBOUND:
        summary.skipped += 1
        return

    target = mapping.target if mapping is not None else None
    if isinstance(target, AppointmentTarget):
        appointment = db.get(Appointment, target.appointment_id)
        if appointment is not None:
            appointment.start_time = start
            appointment.end_time = end
            db.add(appointment)
        mapping.last_synced_at = now
        db.add(mapping)
        summary.appointments_updated += 1
        return
    if isinstance(target, BlockedTimeTarget):
        # Established blocked time is refreshed, never re-classified into an appointment
        blocked = db.get(BlockedTime, target.blocked_time_id)
        if blocked is not None:
            blocked.start_time = start
            blocked.end_time = end
            blocked.reason = f"Google Calendar: {title}"
            db.add(blocked)
        mapping.last_synced_at = now
        db.add(mapping)
        summary.blocked_times_updated += 1
        return

    match = match_event_to_client(db, settings.workspace_id, event)
    if match is not None and match.confidence == HIGH:
        existing = db.execute(
            select(Appointment).where(
                Appointment.workspace_id == settings.workspace_id,
                Appointment.trainer_id == settings.trainer_id,
                Appointment.client_id == match.client_id,
                Appointment.start_time == start,
                Appointment.end_time == end,
            )
        ).scalars().first()
        if existing is not None:
            _attach_or_create_mapping(db, settings, mapping, event_id, AppointmentTarget(existing.id), now)
            summary.appointments_linked += 1
            logger.info("Linked event %s to existing appointment_id=%s", event_id, existing.id)
            return
        appointment = Appointment(
            workspace_id=settings.workspace_id,
            trainer_id=settings.trainer_id,
            client_id=match.client_id,
            start_time=start,
            end_time=end,
            status=AppointmentStatus.SCHEDULED,
        )
        db.add(appointment)
        db.flush()
        _attach_or_create_mapping(db, settings, mapping, event_id, AppointmentTarget(appointment.id), now)
        summary.appointments_created += 1
        logger.info("Auto-created appointment_id=%s from event %s (%s)", appointment.id, event_id, match.reason)
        return

    if match is not None:
        pending = db.execute(
            select(PendingAppointment).where(
                PendingAppointment.trainer_id == settings.trainer_id,
                PendingAppointment.external_event_id == event_id,
            )
        ).scalars().first()
        if pending is None:
            db.add(
                PendingAppointment(
                    workspace_id=settings.workspace_id,
                    trainer_id=settings.trainer_id,
                    external_event_id=event_id,
                    external_event_title=title or "Untitled Event",
                    start_time=start,
                    end_time=end,
                    suggested_client_id=match.client_id,
                    match_confidence=match.confidence,
                    match_reason=match.reason,
                    status=ReviewStatus.PENDING,
                )
            )
            summary.pending_created += 1
        else:
            summary.skipped += 1
        return

    blocked = _create_blocked_time(db, settings, title, start, end)
    _attach_or_create_mapping(db, settings, mapping, event_id, BlockedTimeTarget(blocked.id), now)
    summary.blocked_times_created += 1


def pull_google_calendar_events(
    db: Session,
    settings: Optional[TrainerSettings],
    provider: CalendarProvider,
    now: Optional[datetime] = None,
    window_months: int = 3,
) -> Optional[PullSummary]:
    """Import external events for the next ``window_months`` months.

    Returns None when sync is disabled for the trainer.
    """
    if not calendar_sync_enabled(settings):
        logger.info("Skipping pull: sync disabled or calendar not connected")
        return None

    now = now or utcnow()
    time_min, time_max = to_rfc3339(now), to_rfc3339(add_months(now, window_months))
    events: List[Dict[str, Any]] = provider.list_events(settings.trainer_id, time_min, time_max)
    logger.info("Pulled %s external events trainer_id=%s", len(events), settings.trainer_id)

    summary = PullSummary()
    for event in events:
        summary.events_seen += 1
        try:
            _reconcile_event(db, settings, event, summary, now)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to reconcile event %s trainer_id=%s", event.get("id"), settings.trainer_id)
            raise

    settings.last_synced_at = now
    db.add(settings)
    db.commit()

    if settings.auto_client_sync_enabled:
        from .client_sync import extract_clients_from_new_events

        try:
            extract_clients_from_new_events(db, settings, events)
        except Exception:
            db.rollback()
            logger.exception("Client extraction failed after pull trainer_id=%s", settings.trainer_id)
    return summary


def sync_all_calendars(
    db: Session, provider: CalendarProvider, now: Optional[datetime] = None, window_months: int = 3
) -> List[Dict[str, Any]]:
    """Pull every trainer with auto-sync on and a connected calendar; one trainer's failure does not stop the rest."""
    trainers = db.execute(
        select(TrainerSettings).where(
            TrainerSettings.auto_sync_enabled.is_(True),
            TrainerSettings.google_calendar_connected.is_(True),
        )
    ).scalars().all()
    logger.info("Syncing calendars for %s trainers", len(trainers))

    results: List[Dict[str, Any]] = []
    for settings in trainers:
        trainer_id = settings.trainer_id
        try:
            summary = pull_google_calendar_events(db, settings, provider, now=now, window_months=window_months)
            results.append({"trainerId": trainer_id, "status": "success", "summary": summary.as_dict() if summary else None})
        except Exception as exc:
            db.rollback()
            logger.exception("Calendar sync failed trainer_id=%s", trainer_id)
            results.append({"trainerId": trainer_id, "status": "error", "error": str(exc)})
    return results
