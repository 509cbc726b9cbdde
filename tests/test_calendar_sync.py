from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy import func, select

from trainerdesk import client_sync
from trainerdesk.calendar_provider import FakeCalendarProvider
from trainerdesk.calendar_sync import (
    delete_appointment_from_google,
    format_event_title,
    pull_google_calendar_events,
    sync_all_calendars,
    sync_appointment_to_google,
)
from trainerdesk.models import (
    Appointment,
    AppointmentStatus,
    BlockedTime,
    CalendarEventMapping,
    PendingAppointment,
    PendingClientProfile,
    SyncDirection,
)


NOW = datetime(2026, 3, 1, 8, 0)


def _event(summary: str, start: str = "10:00", end: str = "11:00", day: str = "2026-03-02", **extra) -> dict:
    return {
        "summary": summary,
        "start": {"dateTime": f"{day}T{start}:00Z"},
        "end": {"dateTime": f"{day}T{end}:00Z"},
        **extra,
    }


def _count(db, model) -> int:
    return db.execute(select(func.count()).select_from(model)).scalar_one()


@pytest.fixture()
def synced(factory):
    ws, trainer, settings = factory.workspace(auto_sync_enabled=True, google_calendar_connected=True, timezone="Europe/London")
    ann = factory.client(ws, "Ann Able")
    return ws, trainer, settings, ann


def test_event_titles_carry_status_glyph() -> None:
    assert format_event_title("Ann Able", AppointmentStatus.SCHEDULED) == "Ann Able"
    assert format_event_title("Ann Able", AppointmentStatus.COMPLETED) == "✓ Ann Able"
    assert format_event_title("Ann Able", AppointmentStatus.CANCELLED) == "✗ Ann Able"
    assert format_event_title("Ann Able", AppointmentStatus.RESCHEDULED) == "↻ Ann Able"


def test_outbound_sync_creates_then_updates(factory, db_session, synced) -> None:
    ws, trainer, settings, ann = synced
    provider = FakeCalendarProvider()
    appt = factory.appointment(ws, trainer, ann, datetime(2026, 3, 2, 10), datetime(2026, 3, 2, 11))

    mapping = sync_appointment_to_google(db_session, appt, settings, provider)
    assert mapping.sync_direction == SyncDirection.OUTBOUND
    remote = provider.events[trainer.id][mapping.external_event_id]
    assert remote["summary"] == "Ann Able"
    assert remote["start"] == {"dateTime": "2026-03-02T10:00:00Z", "timeZone": "Europe/London"}
    assert "Status: SCHEDULED" in remote["description"]

    appt.status = AppointmentStatus.COMPLETED
    db_session.commit()
    sync_appointment_to_google(db_session, appt, settings, provider)
    assert provider.calls == ["create", "update"]
    remote = provider.events[trainer.id][mapping.external_event_id]
    assert remote["summary"] == "✓ Ann Able"
    assert remote["colorId"] == "10"
    assert _count(db_session, CalendarEventMapping) == 1


def test_outbound_sync_noop_when_disabled(factory, db_session) -> None:
    ws, trainer, settings = factory.workspace(auto_sync_enabled=True, google_calendar_connected=False)
    ann = factory.client(ws, "Ann Able")
    appt = factory.appointment(ws, trainer, ann, datetime(2026, 3, 2, 10), datetime(2026, 3, 2, 11))
    provider = FakeCalendarProvider()
    assert sync_appointment_to_google(db_session, appt, settings, provider) is None
    assert provider.calls == []


def test_outbound_failure_propagates_without_touching_appointment(factory, db_session, synced) -> None:
    ws, trainer, settings, ann = synced
    appt = factory.appointment(ws, trainer, ann, datetime(2026, 3, 2, 10), datetime(2026, 3, 2, 11))
    provider = FakeCalendarProvider()
    provider.fail_with = RuntimeError("calendar down")
    with pytest.raises(RuntimeError):
        sync_appointment_to_google(db_session, appt, settings, provider)
    assert db_session.get(Appointment, appt.id) is not None
    assert _count(db_session, CalendarEventMapping) == 0


def test_outbound_delete_swallows_remote_errors(factory, db_session, synced) -> None:
    ws, trainer, settings, ann = synced
    appt = factory.appointment(ws, trainer, ann, datetime(2026, 3, 2, 10), datetime(2026, 3, 2, 11))
    provider = FakeCalendarProvider()
    sync_appointment_to_google(db_session, appt, settings, provider)

    provider.fail_with = RuntimeError("calendar down")
    assert delete_appointment_from_google(db_session, appt.id, settings, provider) is False
    assert _count(db_session, CalendarEventMapping) == 1

    provider.fail_with = None
    assert delete_appointment_from_google(db_session, appt.id, settings, provider) is True
    assert _count(db_session, CalendarEventMapping) == 0
    assert provider.events[trainer.id] == {}


def test_pull_never_touches_outbound_events(factory, db_session, synced) -> None:
    ws, trainer, settings, ann = synced
    appt = factory.appointment(ws, trainer, ann, datetime(2026, 3, 2, 10), datetime(2026, 3, 2, 11))
    provider = FakeCalendarProvider()
    mapping = sync_appointment_to_google(db_session, appt, settings, provider)
    remote = provider.events[trainer.id][mapping.external_event_id]
    remote["start"] = {"dateTime": "2026-03-02T14:00:00Z"}
    remote["end"] = {"dateTime": "2026-03-02T15:00:00Z"}
    synced_at = mapping.last_synced_at

    summary = pull_google_calendar_events(db_session, settings, provider, now=NOW)
    assert summary.skipped == 1
    assert summary.appointments_created == 0
    db_session.expire_all()
    assert db_session.get(Appointment, appt.id).start_time == datetime(2026, 3, 2, 10)
    stored = db_session.get(CalendarEventMapping, mapping.id)
    assert stored.last_synced_at == synced_at
    assert stored.sync_direction == SyncDirection.OUTBOUND
    assert _count(db_session, Appointment) == 1


def test_pull_high_confidence_creates_then_refreshes(factory, db_session, synced) -> None:
    ws, trainer, settings, ann = synced
    provider = FakeCalendarProvider()
    event = provider.add_external_event(trainer.id, _event("✓ Ann Able"))

    summary = pull_google_calendar_events(db_session, settings, provider, now=NOW)
    assert summary.appointments_created == 1
    appt = db_session.execute(select(Appointment)).scalar_one()
    assert appt.client_id == ann.id
    assert appt.status == AppointmentStatus.SCHEDULED
    mapping = db_session.execute(select(CalendarEventMapping)).scalar_one()
    assert mapping.sync_direction == SyncDirection.INBOUND
    assert mapping.appointment_id == appt.id
    assert provider.calls == ["list"]

    provider.events[trainer.id][event["id"]]["end"] = {"dateTime": "2026-03-02T11:30:00Z"}
    summary = pull_google_calendar_events(db_session, settings, provider, now=NOW)
    assert summary.appointments_updated == 1
    db_session.expire_all()
    assert db_session.get(Appointment, appt.id).end_time == datetime(2026, 3, 2, 11, 30)
    assert _count(db_session, Appointment) == 1


def test_pull_links_existing_appointment_instead_of_duplicating(factory, db_session, synced) -> None:
    ws, trainer, settings, ann = synced
    existing = factory.appointment(ws, trainer, ann, datetime(2026, 3, 2, 10), datetime(2026, 3, 2, 11))
    provider = FakeCalendarProvider()
    provider.add_external_event(trainer.id, _event("Ann Able"))

    summary = pull_google_calendar_events(db_session, settings, provider, now=NOW)
    assert summary.appointments_linked == 1
    assert _count(db_session, Appointment) == 1
    assert db_session.execute(select(CalendarEventMapping)).scalar_one().appointment_id == existing.id


def test_pull_matches_client_named_in_a_prefixed_title(factory, db_session, synced) -> None:
    ws, trainer, settings, ann = synced
    provider = FakeCalendarProvider()
    provider.add_external_event(trainer.id, _event("Personal Training: Ann Able"))

    summary = pull_google_calendar_events(db_session, settings, provider, now=NOW)
    assert summary.appointments_created == 1
    assert summary.blocked_times_created == 0
    assert db_session.execute(select(Appointment)).scalar_one().client_id == ann.id

def test_pull_medium_confidence_creates_pending_once(factory, db_session, synced) -> None:
    ws, trainer, settings, ann = synced
    provider = FakeCalendarProvider()
    provider.add_external_event(trainer.id, _event("A Able"))

    first = pull_google_calendar_events(db_session, settings, provider, now=NOW)
    second = pull_google_calendar_events(db_session, settings, provider, now=NOW)
    assert first.pending_created == 1
    assert second.pending_created == 0
    pending = db_session.execute(select(PendingAppointment)).scalar_one()
    assert pending.suggested_client_id == ann.id
    assert pending.match_confidence == "medium"
    assert _count(db_session, Appointment) == 0


def test_pull_unmatched_becomes_stable_blocked_time(factory, db_session, synced) -> None:
    ws, trainer, settings, _ = synced
    provider = FakeCalendarProvider()
    event = provider.add_external_event(trainer.id, _event("Zed Quill"))

    summary = pull_google_calendar_events(db_session, settings, provider, now=NOW)
    assert summary.blocked_times_created == 1
    blocked = db_session.execute(select(BlockedTime)).scalar_one()
    assert blocked.reason == "Google Calendar: Zed Quill"

    # a matching client appearing later does not re-classify established blocked time
    factory.client(ws, "Zed Quill")
    provider.events[trainer.id][event["id"]]["start"] = {"dateTime": "2026-03-02T09:30:00Z"}
    summary = pull_google_calendar_events(db_session, settings, provider, now=NOW)
    assert summary.blocked_times_updated == 1
    assert _count(db_session, Appointment) == 0
    db_session.expire_all()
    assert db_session.get(BlockedTime, blocked.id).start_time == datetime(2026, 3, 2, 9, 30)


def test_pull_skips_all_day_events_and_stamps_last_sync(factory, db_session, synced) -> None:
    ws, trainer, settings, _ = synced
    provider = FakeCalendarProvider()
    provider.add_external_event(
        trainer.id, {"summary": "Ann Able", "start": {"date": "2026-03-03"}, "end": {"date": "2026-03-04"}}
    )
    summary = pull_google_calendar_events(db_session, settings, provider, now=NOW)
    assert summary.skipped == 1
    assert _count(db_session, Appointment) == 0
    assert settings.last_synced_at == NOW


def test_pull_noop_when_sync_disabled(factory, db_session) -> None:
    ws, trainer, settings = factory.workspace(auto_sync_enabled=False, google_calendar_connected=True)
    provider = FakeCalendarProvider()
    assert pull_google_calendar_events(db_session, settings, provider, now=NOW) is None
    assert provider.calls == []


def test_pull_runs_client_extraction_and_survives_its_failure(factory, db_session, monkeypatch) -> None:
    ws, trainer, settings = factory.workspace(
        auto_sync_enabled=True, google_calendar_connected=True, auto_client_sync_enabled=True
    )
    provider = FakeCalendarProvider()
    provider.add_external_event(trainer.id, _event("Nora Quinn"))

    pull_google_calendar_events(db_session, settings, provider, now=NOW)
    profile = db_session.execute(select(PendingClientProfile)).scalar_one()
    assert profile.extracted_name == "Nora Quinn"

    def _boom(*args, **kwargs):
        raise RuntimeError("extraction exploded")

    monkeypatch.setattr(client_sync, "extract_clients_from_new_events", _boom)
    summary = pull_google_calendar_events(db_session, settings, provider, now=NOW)
    assert summary is not None
    assert summary.blocked_times_updated == 1


def test_sync_all_calendars_isolates_trainer_failures(factory, db_session) -> None:
    factory.workspace(auto_sync_enabled=True, google_calendar_connected=True)
    factory.workspace(auto_sync_enabled=False, google_calendar_connected=True)
    provider = FakeCalendarProvider()
    provider.fail_with = RuntimeError("calendar down")

    results = sync_all_calendars(db_session, provider, now=NOW)
    assert len(results) == 1
    assert results[0]["status"] == "error"
