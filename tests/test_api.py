from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
from fastapi.testclient import TestClient

from trainerdesk.calendar_provider import get_calendar_provider
from trainerdesk.config import get_settings
from trainerdesk.email_sender import get_email_sender
from trainerdesk.invoicing import generate_per_session_invoice
from trainerdesk.main import app
from trainerdesk.models import AppointmentStatus, GroupSessionPermission, InvoiceStatus, Role
from trainerdesk.rate_limit import reset_rate_limits


API_TOKEN = os.getenv("TRAINERDESK_API_TOKEN", "dev-token")
CRON_SECRET = os.getenv("TRAINERDESK_CRON_SECRET", "dev-cron-secret")


@pytest.fixture()
def client(db_session) -> TestClient:
    return TestClient(app)


def _headers(ws, user, role: str = Role.TRAINER) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {API_TOKEN}",
        "X-Workspace-Id": ws.id,
        "X-User-Id": user.id,
        "X-User-Role": role,
    }


def test_health_open(client: TestClient) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json().get("status") == "ok"
    assert "X-Process-Time-Ms" in r.headers


def test_token_and_tenant_required(client: TestClient, factory) -> None:
    r = client.get("/api/appointments.list")
    assert r.status_code == 401

    r = client.get("/api/appointments.list", headers={"Authorization": f"Bearer {API_TOKEN}"})
    assert r.status_code == 401
    body = r.json()
    assert body["ok"] is False
    assert body["error"] == {"status": 401, "message": "Missing tenant context", "path": "/api/appointments.list"}

    ws, trainer, _ = factory.workspace()
    headers = _headers(ws, trainer)
    headers["X-User-Role"] = "ADMIN"
    assert client.get("/api/appointments.list", headers=headers).status_code == 400


def test_appointment_lifecycle(client: TestClient, factory) -> None:
    ws, trainer, _ = factory.workspace()
    ann = factory.client(ws, "Ann Able")
    headers = _headers(ws, trainer)

    r = client.post(
        "/api/appointments.create",
        json={"client_id": ann.id, "start_time": "2026-03-02T10:00:00Z", "end_time": "2026-03-02T11:00:00Z"},
        headers=headers,
    )
    assert r.status_code == 200, r.text
    created = r.json()
    assert created["status"] == AppointmentStatus.SCHEDULED
    assert created["start_time"].startswith("2026-03-02T10:00:00")

    listed = client.get("/api/appointments.list", headers=_headers(ws, ann, Role.CLIENT)).json()
    assert listed["total"] == 1
    assert listed["items"][0]["id"] == created["id"]

    r = client.post(
        "/api/appointments.update",
        json={"id": created["id"], "status": AppointmentStatus.COMPLETED},
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json()["status"] == AppointmentStatus.COMPLETED

    invoices = client.get("/api/invoices.list", headers=_headers(ws, ann, Role.CLIENT)).json()
    assert invoices["total"] == 1
    assert invoices["items"][0]["amount_cents"] == 10000
    assert invoices["items"][0]["line_items"][0]["appointment_id"] == created["id"]

    r = client.post("/api/appointments.delete", json={"id": created["id"]}, headers=_headers(ws, ann, Role.CLIENT))
    assert r.status_code == 403
    assert r.json()["error"]["message"] == "Only trainers can delete appointments"

    r = client.post("/api/appointments.delete", json={"id": created["id"]}, headers=headers)
    assert r.status_code == 200
    assert client.get("/api/appointments.list", headers=headers).json()["total"] == 0

    r = client.post("/api/appointments.update", json={"id": created["id"]}, headers=headers)
    assert r.status_code == 404
    assert r.json()["error"]["message"] == "Appointment not found"


def test_client_booking_rejected_when_slot_taken(client: TestClient, factory) -> None:
    ws, trainer, _ = factory.workspace()
    ann = factory.client(ws, "Ann Able", group_session_permission=GroupSessionPermission.NO_GROUP_SESSIONS)
    ben = factory.client(ws, "Ben Bold")
    factory.appointment(ws, trainer, ann, datetime(2026, 3, 2, 10), datetime(2026, 3, 2, 11))

    r = client.post(
        "/api/appointments.create",
        json={"start_time": "2026-03-02T10:30:00Z", "end_time": "2026-03-02T11:30:00Z"},
        headers=_headers(ws, ben, Role.CLIENT),
    )
    assert r.status_code == 400
    assert r.json()["error"]["message"] == "This time slot is not available for booking"


def test_review_endpoints_are_trainer_only(client: TestClient, factory) -> None:
    ws, trainer, _ = factory.workspace()
    ann = factory.client(ws, "Ann Able")
    r = client.get("/api/pending_appointments.list", headers=_headers(ws, ann, Role.CLIENT))
    assert r.status_code == 403
    assert r.json()["error"]["message"] == "Trainer access required"
    assert client.get("/api/pending_client_profiles.list", headers=_headers(ws, trainer)).json() == []


def test_calendar_sync_endpoint(client: TestClient, factory) -> None:
    ws, trainer, settings = factory.workspace()
    factory.client(ws, "Ann Able")
    headers = _headers(ws, trainer)

    r = client.post("/api/calendar.sync", headers=headers)
    assert r.status_code == 200
    assert r.json()["skipped"] is True

    settings.auto_sync_enabled = True
    settings.google_calendar_connected = True
    factory.db.commit()
    day = (datetime.utcnow() + timedelta(days=2)).strftime("%Y-%m-%d")
    get_calendar_provider().add_external_event(
        trainer.id,
        {
            "summary": "Ann Able",
            "start": {"dateTime": f"{day}T10:00:00Z"},
            "end": {"dateTime": f"{day}T11:00:00Z"},
        },
    )
    r = client.post("/api/calendar.sync", headers=headers)
    assert r.status_code == 200
    summary = r.json()["summary"]
    assert summary["appointments_created"] == 1
    assert client.get("/api/appointments.list", headers=headers).json()["total"] == 1


def test_calendar_sync_rate_limit(client: TestClient, factory, monkeypatch: pytest.MonkeyPatch) -> None:
    ws, trainer, _ = factory.workspace()
    monkeypatch.setenv("TRAINERDESK_SYNC_RATE_LIMIT_ENABLED", "true")
    monkeypatch.setenv("TRAINERDESK_SYNC_RATE_LIMIT_PER_MINUTE", "2")
    get_settings.cache_clear()  # type: ignore[attr-defined]
    reset_rate_limits()

    for _ in range(2):
        assert client.post("/api/calendar.sync", headers=_headers(ws, trainer)).status_code == 200
    blocked = client.post("/api/calendar.sync", headers=_headers(ws, trainer))
    assert blocked.status_code == 429
    assert blocked.json()["error"]["message"] == "Sync rate limit exceeded"


def test_client_sync_requires_connection(client: TestClient, factory) -> None:
    ws, trainer, _ = factory.workspace()
    r = client.post("/api/clients.sync_from_calendar", json={"lookback_days": 14}, headers=_headers(ws, trainer))
    assert r.status_code == 400
    assert r.json()["error"]["message"] == "Google Calendar not connected"


def test_cron_endpoints_use_cron_secret(client: TestClient, factory) -> None:
    ws, trainer, _ = factory.workspace()
    ann = factory.client(ws, "Ann Able")
    factory.appointment(ws, trainer, ann, datetime(2020, 1, 5, 10), datetime(2020, 1, 5, 11))

    assert client.post("/api/cron/complete_appointments").status_code == 401
    r = client.post(
        "/api/cron/complete_appointments", headers={"Authorization": f"Bearer {API_TOKEN}"}
    )
    assert r.status_code == 401

    cron = {"Authorization": f"Bearer {CRON_SECRET}"}
    r = client.post("/api/cron/complete_appointments", headers=cron)
    assert r.status_code == 200
    assert r.json()["result"]["completed"] == 1

    r = client.post("/api/cron/sync_calendars", headers=cron)
    assert r.status_code == 200
    assert r.json()["result"] == []

    r = client.post("/api/cron/generate_invoices", headers=cron)
    assert r.status_code == 200
    assert set(r.json()["result"]) == {"trainers", "invoices", "failures"}


def test_invoice_send_retries_draft(client: TestClient, factory, db_session) -> None:
    ws, trainer, _ = factory.workspace()
    ann = factory.client(ws, "Ann Able")
    appt = factory.appointment(
        ws, trainer, ann, datetime(2026, 3, 2, 10), datetime(2026, 3, 2, 11), status=AppointmentStatus.COMPLETED
    )
    sender = get_email_sender()
    sender.fail_with = RuntimeError("smtp down")
    invoice_id = generate_per_session_invoice(db_session, appt.id, sender).id

    r = client.post("/api/invoices.send", json={"id": invoice_id}, headers=_headers(ws, trainer))
    assert r.status_code == 500
    assert r.json()["error"]["message"] == "Failed to send invoice email"

    r = client.post("/api/invoices.send", json={"id": invoice_id}, headers=_headers(ws, ann, Role.CLIENT))
    assert r.status_code == 403

    sender.fail_with = None
    r = client.post("/api/invoices.send", json={"id": invoice_id}, headers=_headers(ws, trainer))
    assert r.status_code == 200, r.text
    assert r.json()["status"] == InvoiceStatus.SENT
    assert [m["invoice_id"] for m in sender.sent] == [invoice_id]
