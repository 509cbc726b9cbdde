from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .intervals import MatchingPolicy, TimeRange, ranges_match
from .models import Appointment, AppointmentStatus, ClientProfile, TrainerSettings


@dataclass(frozen=True)
class GroupSessionInfo:
    is_group_session: bool
    participant_count: int


def classify(db: Session, appointment: Appointment, matching_logic: object) -> GroupSessionInfo:
    """Count other SCHEDULED/COMPLETED appointments of the same trainer that match under the policy."""
    policy = MatchingPolicy.parse(matching_logic)
    own = TimeRange(appointment.start_time, appointment.end_time)

    # Every policy implies a closed overlap, so narrow the candidates in SQL first
    candidates = db.execute(
        select(Appointment).where(
            Appointment.workspace_id == appointment.workspace_id,
            Appointment.trainer_id == appointment.trainer_id,
            Appointment.status.in_(AppointmentStatus.BILLABLE_PARTICIPANT),
            Appointment.id != appointment.id,
            Appointment.start_time <= appointment.end_time,
            Appointment.end_time >= appointment.start_time,
        )
    ).scalars().all()

    others = sum(1 for other in candidates if ranges_match(own, TimeRange(other.start_time, other.end_time), policy))
    return GroupSessionInfo(is_group_session=others >= 1, participant_count=others + 1)


def session_rate_cents(
    profile: ClientProfile, trainer_settings: Optional[TrainerSettings], is_group_session: bool
) -> int:
    """Group: client group rate, then trainer default group rate, then individual rate."""
    if is_group_session:
        if profile.group_session_rate_cents:
            return profile.group_session_rate_cents
        if trainer_settings is not None and trainer_settings.default_group_session_rate_cents:
            return trainer_settings.default_group_session_rate_cents
    return profile.session_rate_cents


def session_description(appointment: Appointment, is_group_session: bool) -> str:
    session_type = "Group training session" if is_group_session else "Training session"
    return f"{session_type} on {appointment.start_time.strftime('%m/%d/%Y')}"
