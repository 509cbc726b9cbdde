from __future__ import annotations

"""
Persistent entities for workspaces, clients, appointments, calendar mappings and invoices.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class Role:
    TRAINER = "TRAINER"
    CLIENT = "CLIENT"


class AppointmentStatus:
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    RESCHEDULED = "RESCHEDULED"

    ALL = (SCHEDULED, COMPLETED, CANCELLED, RESCHEDULED)
    # Occupies the slot for booking purposes
    ACTIVE = (SCHEDULED, RESCHEDULED)
    # Counted as a participant when classifying group sessions
    BILLABLE_PARTICIPANT = (SCHEDULED, COMPLETED)


class GroupSessionPermission:
    ALLOW_ALL_GROUP = "ALLOW_ALL_GROUP"
    ALLOW_SPECIFIC_CLIENTS = "ALLOW_SPECIFIC_CLIENTS"
    NO_GROUP_SESSIONS = "NO_GROUP_SESSIONS"


class GroupSessionOverride:
    ALLOW_ALL = "ALLOW_ALL"
    ALLOW_SPECIFIC = "ALLOW_SPECIFIC"
    NO_GROUP = "NO_GROUP"


class BillingFrequency:
    PER_SESSION = "PER_SESSION"
    MONTHLY = "MONTHLY"


class InvoiceStatus:
    DRAFT = "DRAFT"
    SENT = "SENT"
    PAID = "PAID"


class SyncDirection:
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class ReviewStatus:
    PENDING = "pending"
    REJECTED = "rejected"
    APPROVED = "approved"
    CONVERTED = "converted"
    DUPLICATE = "duplicate"


# Many-to-many: which client profiles may share a session with a given profile
client_allowed_group_clients = Table(
    "client_allowed_group_clients",
    Base.metadata,
    Column("profile_id", String(36), ForeignKey("client_profiles.id", ondelete="CASCADE"), primary_key=True),
    Column("allowed_profile_id", String(36), ForeignKey("client_profiles.id", ondelete="CASCADE"), primary_key=True),
)


class Workspace(Base):
    __tablename__ = "workspaces"
    """A trainer's business; every other row is scoped to one workspace."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    trainer_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class User(Base):
    __tablename__ = "users"
    """Trainer or client account inside a workspace."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    workspace_id: Mapped[str] = mapped_column(String(36), ForeignKey("workspaces.id", ondelete="CASCADE"), index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    role: Mapped[str] = mapped_column(String(16), default=Role.CLIENT, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    client_profile: Mapped[Optional["ClientProfile"]] = relationship(
        "ClientProfile", back_populates="user", uselist=False, lazy="selectin"
    )

    __table_args__ = (Index("ix_users_workspace_role", "workspace_id", "role"),)


class ClientProfile(Base):
    __tablename__ = "client_profiles"
    """Billing and group-session preferences for one client."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True)
    workspace_id: Mapped[str] = mapped_column(String(36), ForeignKey("workspaces.id", ondelete="CASCADE"), index=True)
    session_rate_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    group_session_rate_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    group_session_permission: Mapped[str] = mapped_column(
        String(32), default=GroupSessionPermission.NO_GROUP_SESSIONS, nullable=False
    )
    billing_frequency: Mapped[str] = mapped_column(String(16), default=BillingFrequency.PER_SESSION, nullable=False)
    auto_invoice_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    user: Mapped[User] = relationship(User, back_populates="client_profile")
    allowed_group_clients: Mapped[list["ClientProfile"]] = relationship(
        "ClientProfile",
        secondary=client_allowed_group_clients,
        primaryjoin=lambda: ClientProfile.id == client_allowed_group_clients.c.profile_id,
        secondaryjoin=lambda: ClientProfile.id == client_allowed_group_clients.c.allowed_profile_id,
        lazy="selectin",
    )


class TrainerSettings(Base):
    __tablename__ = "trainer_settings"
    """Per-trainer configuration consumed by sync, classification and invoicing."""

    trainer_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    workspace_id: Mapped[str] = mapped_column(String(36), ForeignKey("workspaces.id", ondelete="CASCADE"), index=True)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)

    auto_sync_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    google_calendar_connected: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    google_access_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    google_refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    google_token_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    auto_client_sync_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    group_session_matching_logic: Mapped[str] = mapped_column(String(16), default="EXACT_MATCH", nullable=False)
    default_group_session_rate_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    default_individual_session_rate_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    auto_invoicing_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    default_invoice_due_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    monthly_invoice_day: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_client_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    has_completed_initial_client_sync: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        CheckConstraint("monthly_invoice_day >= 1 AND monthly_invoice_day <= 31", name="ck_monthly_invoice_day"),
    )


class Appointment(Base):
    __tablename__ = "appointments"
    """A booked session between a trainer and one client."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    workspace_id: Mapped[str] = mapped_column(String(36), ForeignKey("workspaces.id", ondelete="CASCADE"), index=True)
    trainer_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    client_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=AppointmentStatus.SCHEDULED, nullable=False)
    group_session_override: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    client: Mapped[User] = relationship(User, foreign_keys=[client_id], lazy="joined")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_appointment_end_after_start"),
        Index("ix_appointments_trainer_status", "trainer_id", "status"),
    )


class BlockedTime(Base):
    __tablename__ = "blocked_times"
    """Busy time without a client, usually imported from the external calendar."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    workspace_id: Mapped[str] = mapped_column(String(36), ForeignKey("workspaces.id", ondelete="CASCADE"), index=True)
    trainer_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


@dataclass(frozen=True)
class AppointmentTarget:
    appointment_id: str


@dataclass(frozen=True)
class BlockedTimeTarget:
    blocked_time_id: str


MappingTarget = Union[AppointmentTarget, BlockedTimeTarget]


class CalendarEventMapping(Base):
    __tablename__ = "calendar_event_mappings"
    """Link between one external calendar event and one appointment or blocked time."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    workspace_id: Mapped[str] = mapped_column(String(36), ForeignKey("workspaces.id", ondelete="CASCADE"), index=True)
    appointment_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("appointments.id", ondelete="CASCADE"), nullable=True, index=True
    )
    blocked_time_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("blocked_times.id", ondelete="CASCADE"), nullable=True, index=True
    )
    provider: Mapped[str] = mapped_column(String(32), default="google", nullable=False)
    external_event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_calendar_id: Mapped[str] = mapped_column(String(255), default="primary", nullable=False)
    sync_direction: Mapped[str] = mapped_column(String(16), nullable=False)
    last_synced_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("provider", "external_event_id", name="uq_mapping_provider_event"),
        CheckConstraint(
            "(appointment_id IS NOT NULL AND blocked_time_id IS NULL)"
            " OR (appointment_id IS NULL AND blocked_time_id IS NOT NULL)",
            name="ck_mapping_single_target",
        ),
    )

    @property
    def target(self) -> Optional[MappingTarget]:
        """The mapped entity; None only before ``point_to`` has run on a new row."""
        if self.appointment_id:
            return AppointmentTarget(self.appointment_id)
        if self.blocked_time_id:
            return BlockedTimeTarget(self.blocked_time_id)
        return None

    def point_to(self, target: MappingTarget) -> None:
        # blocked time may be promoted to an appointment; the reverse is never automatic
        if isinstance(target, AppointmentTarget):
            self.appointment_id = target.appointment_id
            self.blocked_time_id = None
        elif isinstance(target, BlockedTimeTarget):
            if self.appointment_id:
                raise ValueError("Mapping already points to an appointment")
            self.blocked_time_id = target.blocked_time_id
        else:
            raise TypeError(f"Unsupported mapping target: {target!r}")


class PendingAppointment(Base):
    __tablename__ = "pending_appointments"
    """Medium/low confidence calendar match waiting for trainer approval."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    workspace_id: Mapped[str] = mapped_column(String(36), ForeignKey("workspaces.id", ondelete="CASCADE"), index=True)
    trainer_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    external_event_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    external_event_title: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    suggested_client_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    match_confidence: Mapped[str] = mapped_column(String(16), nullable=False)
    match_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default=ReviewStatus.PENDING, nullable=False)
    created_appointment_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class PendingClientProfile(Base):
    __tablename__ = "pending_client_profiles"
    """Candidate client aggregated from calendar history; rejected rows stay to suppress re-suggestion."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    workspace_id: Mapped[str] = mapped_column(String(36), ForeignKey("workspaces.id", ondelete="CASCADE"), index=True)
    trainer_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    source: Mapped[str] = mapped_column(String(32), default="google", nullable=False)
    source_event_ids: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    extracted_name: Mapped[str] = mapped_column(String(255), nullable=False)
    extracted_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    extraction_confidence: Mapped[str] = mapped_column(String(16), nullable=False)
    extraction_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    first_seen_date: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    occurrence_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=ReviewStatus.PENDING, nullable=False, index=True)
    default_session_rate_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    default_billing_frequency: Mapped[str] = mapped_column(
        String(16), default=BillingFrequency.PER_SESSION, nullable=False
    )
    created_client_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class Invoice(Base):
    __tablename__ = "invoices"
    """Amounts in cents; the row is the durable record even when delivery fails."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    workspace_id: Mapped[str] = mapped_column(String(36), ForeignKey("workspaces.id", ondelete="CASCADE"), index=True)
    trainer_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    client_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=InvoiceStatus.DRAFT, nullable=False, index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    client: Mapped[User] = relationship(User, foreign_keys=[client_id], lazy="joined")
    trainer: Mapped[User] = relationship(User, foreign_keys=[trainer_id], lazy="joined")
    line_items: Mapped[list["InvoiceLineItem"]] = relationship(
        "InvoiceLineItem", back_populates="invoice", cascade="all, delete-orphan", lazy="selectin"
    )

    __table_args__ = (Index("ix_invoices_client_trainer_created", "client_id", "trainer_id", "created_at"),)


class InvoiceLineItem(Base):
    __tablename__ = "invoice_line_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    invoice_id: Mapped[str] = mapped_column(String(36), ForeignKey("invoices.id", ondelete="CASCADE"), index=True)
    appointment_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    description: Mapped[str] = mapped_column(String(512), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    invoice: Mapped[Invoice] = relationship(Invoice, back_populates="line_items")
