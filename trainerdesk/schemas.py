from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class APIResponse(BaseModel):
    ok: bool = True
    message: Optional[str] = None


class IdPayload(BaseModel):
    id: str


# Appointments
class AppointmentCreate(BaseModel):
    client_id: Optional[str] = None
    start_time: datetime
    end_time: datetime
    group_session_override: Optional[str] = None


class AppointmentUpdate(BaseModel):
    id: str
    status: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    cancellation_reason: Optional[str] = None


class AppointmentOut(BaseModel):
    id: str
    workspace_id: str
    trainer_id: str
    client_id: str
    start_time: datetime
    end_time: datetime
    status: str
    group_session_override: Optional[str] = None
    cancellation_reason: Optional[str] = None

    model_config = dict(from_attributes=True)


class AppointmentsListResponse(BaseModel):
    items: List[AppointmentOut]
    total: int


# Calendar sync
class CalendarSyncResponse(BaseModel):
    ok: bool = True
    skipped: bool = False
    summary: Optional[Dict[str, int]] = None


class ClientSyncRequest(BaseModel):
    lookback_days: Optional[int] = Field(default=None, ge=1, le=365)


class PendingProfileSummary(BaseModel):
    id: str
    extractedName: str
    extractedEmail: Optional[str] = None
    confidence: str
    occurrenceCount: int


class ClientSyncResponse(BaseModel):
    extractedCount: int
    createdCount: int
    duplicateCount: int
    pendingProfiles: List[PendingProfileSummary]


# Pending review
class PendingAppointmentOut(BaseModel):
    id: str
    external_event_id: str
    external_event_title: Optional[str] = None
    start_time: datetime
    end_time: datetime
    suggested_client_id: Optional[str] = None
    match_confidence: str
    match_reason: Optional[str] = None
    status: str
    created_appointment_id: Optional[str] = None

    model_config = dict(from_attributes=True)


class PendingAppointmentApprove(BaseModel):
    id: str
    client_id: Optional[str] = None


class BlockedTimeOut(BaseModel):
    id: str
    start_time: datetime
    end_time: datetime
    reason: Optional[str] = None

    model_config = dict(from_attributes=True)


class PendingClientProfileOut(BaseModel):
    id: str
    source: str
    source_event_ids: List[str] = []
    extracted_name: str
    extracted_email: Optional[str] = None
    extraction_confidence: str
    extraction_reason: Optional[str] = None
    first_seen_date: datetime
    occurrence_count: int
    status: str
    default_session_rate_cents: int
    default_billing_frequency: str
    created_client_id: Optional[str] = None

    model_config = dict(from_attributes=True)


class PendingClientProfileApprove(BaseModel):
    id: str
    full_name: Optional[str] = Field(default=None, min_length=2)
    email: Optional[str] = None
    phone: Optional[str] = None
    billing_frequency: Optional[str] = None
    session_rate_cents: Optional[int] = Field(default=None, ge=0)
    group_session_rate_cents: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None
    auto_invoice_enabled: bool = True


class ClientOut(BaseModel):
    id: str
    full_name: str
    email: str
    phone: Optional[str] = None

    model_config = dict(from_attributes=True)


class PendingClientProfileApproveResponse(BaseModel):
    client: ClientOut
    appointments: List[AppointmentOut]


# Invoices
class InvoiceLineItemOut(BaseModel):
    id: str
    appointment_id: Optional[str] = None
    description: str
    quantity: int
    unit_price_cents: int
    total_cents: int

    model_config = dict(from_attributes=True)


class InvoiceOut(BaseModel):
    id: str
    trainer_id: str
    client_id: str
    amount_cents: int
    due_date: datetime
    status: str
    notes: Optional[str] = None
    created_at: datetime
    line_items: List[InvoiceLineItemOut] = []

    model_config = dict(from_attributes=True)


class InvoicesListResponse(BaseModel):
    items: List[InvoiceOut]
    total: int


# Cron
class CronResponse(BaseModel):
    ok: bool = True
    result: Any = None
