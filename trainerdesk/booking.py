from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import SlotConflictError, SlotUnavailableError
from .intervals import TimeRange, overlaps_closed
from .models import (
    Appointment,
    AppointmentStatus,
    ClientProfile,
    GroupSessionOverride,
    GroupSessionPermission,
)


logger = logging.getLogger(__name__)

_OVERRIDE_TO_PERMISSION = {
    GroupSessionOverride.ALLOW_ALL: GroupSessionPermission.ALLOW_ALL_GROUP,
    GroupSessionOverride.ALLOW_SPECIFIC: GroupSessionPermission.ALLOW_SPECIFIC_CLIENTS,
    GroupSessionOverride.NO_GROUP: GroupSessionPermission.NO_GROUP_SESSIONS,
}


def find_overlapping_active(
    db: Session,
    workspace_id: str,
    trainer_id: str,
    start: datetime,
    end: datetime,
    exclude_id: Optional[str] = None,
) -> List[Appointment]:
    """Active appointments of the trainer overlapping ``[start, end]``; touching endpoints count."""
    stmt = select(Appointment).where(
        Appointment.workspace_id == workspace_id,
        Appointment.trainer_id == trainer_id,
        Appointment.status.in_(AppointmentStatus.ACTIVE),
        Appointment.start_time <= end,
        Appointment.end_time >= start,
    )
    if exclude_id:
        stmt = stmt.where(Appointment.id != exclude_id)
    requested = TimeRange(start, end)
    rows = db.execute(stmt.order_by(Appointment.start_time)).scalars().all()
    return [a for a in rows if overlaps_closed(requested, TimeRange(a.start_time, a.end_time))]


def effective_permission(appointment: Appointment, occupant_profile: Optional[ClientProfile]) -> str:
    if appointment.group_session_override:
        return _OVERRIDE_TO_PERMISSION.get(appointment.group_session_override, GroupSessionPermission.NO_GROUP_SESSIONS)
    if occupant_profile is None:
        return GroupSessionPermission.NO_GROUP_SESSIONS
    return occupant_profile.group_session_permission


def can_client_book_with(
    db: Session, occupant: Appointment, booker_profile: Optional[ClientProfile]
) -> bool:
    occupant_profile = db.execute(
        select(ClientProfile).where(
            ClientProfile.user_id == occupant.client_id, ClientProfile.workspace_id == occupant.workspace_id
        )
    ).scalar_one_or_none()
    permission = effective_permission(occupant, occupant_profile)
    if permission == GroupSessionPermission.ALLOW_ALL_GROUP:
        return True
    if permission == GroupSessionPermission.ALLOW_SPECIFIC_CLIENTS:
        if booker_profile is None or occupant_profile is None:
            return False
        return any(p.id == booker_profile.id for p in occupant_profile.allowed_group_clients)
    return False


def validate_client_booking(
    db: Session,
    workspace_id: str,
    trainer_id: str,
    booker_client_id: str,
    start: datetime,
    end: datetime,
) -> None:
    """Reject a client self-booking unless every concurrent occupant allows the booker.

    Raises ``SlotUnavailableError``.
    """
    overlapping = find_overlapping_active(db, workspace_id, trainer_id, start, end)
    if not overlapping:
        return
    booker_profile = db.execute(
        select(ClientProfile).where(
            ClientProfile.user_id == booker_client_id, ClientProfile.workspace_id == workspace_id
        )
    ).scalar_one_or_none()
    for occupant in overlapping:
        if occupant.client_id == booker_client_id or not can_client_book_with(db, occupant, booker_profile):
            logger.info(
                "Booking rejected client_id=%s trainer_id=%s: slot held by appointment_id=%s",
                booker_client_id,
                trainer_id,
                occupant.id,
            )
            raise SlotUnavailableError()


def ensure_no_conflict(
    db: Session, appointment: Appointment, start: datetime, end: datetime
) -> None:
    """Reschedule check: no other active appointment of the trainer may overlap the new window."""
    conflicts = find_overlapping_active(
        db, appointment.workspace_id, appointment.trainer_id, start, end, exclude_id=appointment.id
    )
    if conflicts:
        raise SlotConflictError()
