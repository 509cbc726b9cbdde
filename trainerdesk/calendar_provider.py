from __future__ import annotations

"""
External calendar providers: an in-memory fake for development/tests and Google Calendar v3 over httpx.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx

from .config import get_settings
from .database import SessionLocal
from .errors import CalendarNotConnectedError
from .models import TrainerSettings
from .utils import parse_event_datetime, utcnow


logger = logging.getLogger(__name__)

CalendarEvent = Dict[str, Any]


class CalendarProvider:
    def list_events(self, owner_id: str, time_min: str, time_max: str) -> List[CalendarEvent]:  # pragma: no cover - interface
        raise NotImplementedError

    def create_event(self, owner_id: str, payload: CalendarEvent) -> CalendarEvent:  # pragma: no cover - interface
        raise NotImplementedError

    def update_event(self, owner_id: str, event_id: str, payload: CalendarEvent) -> CalendarEvent:  # pragma: no cover - interface
        raise NotImplementedError

    def delete_event(self, owner_id: str, event_id: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class FakeCalendarProvider(CalendarProvider):
    """Keeps events per owner in memory. Set ``fail_with`` to make every call raise."""

    def __init__(self) -> None:
        self.events: Dict[str, Dict[str, CalendarEvent]] = {}
        self.fail_with: Optional[Exception] = None
        self.calls: List[str] = []

    def _check(self, op: str) -> None:
        self.calls.append(op)
        if self.fail_with is not None:
            raise self.fail_with

    def add_external_event(self, owner_id: str, event: CalendarEvent) -> CalendarEvent:
        """Simulate an event created directly in the external calendar."""
        stored = dict(event)
        stored.setdefault("id", f"ext_{uuid.uuid4().hex[:12]}")
        self.events.setdefault(owner_id, {})[stored["id"]] = stored
        return stored

    def list_events(self, owner_id: str, time_min: str, time_max: str) -> List[CalendarEvent]:
        self._check("list")
        lo = parse_event_datetime(time_min)
        hi = parse_event_datetime(time_max)
        items = []
        for event in self.events.get(owner_id, {}).values():
            start = event.get("start") or {}
            when = parse_event_datetime(start.get("dateTime")) or (
                datetime.fromisoformat(start["date"]) if start.get("date") else None
            )
            if when is None or (lo and when < lo) or (hi and when > hi):
                continue
            items.append(dict(event))
        items.sort(key=lambda e: (e.get("start") or {}).get("dateTime") or (e.get("start") or {}).get("date") or "")
        return items

    def create_event(self, owner_id: str, payload: CalendarEvent) -> CalendarEvent:
        self._check("create")
        event = dict(payload)
        event["id"] = f"evt_{uuid.uuid4().hex[:12]}"
        self.events.setdefault(owner_id, {})[event["id"]] = event
        return dict(event)

    def update_event(self, owner_id: str, event_id: str, payload: CalendarEvent) -> CalendarEvent:
        self._check("update")
        owner_events = self.events.setdefault(owner_id, {})
        if event_id not in owner_events:
            raise KeyError(f"Unknown event: {event_id}")
        event = dict(payload)
        event["id"] = event_id
        owner_events[event_id] = event
        return dict(event)

    def delete_event(self, owner_id: str, event_id: str) -> None:
        self._check("delete")
        self.events.get(owner_id, {}).pop(event_id, None)


class GoogleCalendarProvider(CalendarProvider):
    """Google Calendar v3 client for the trainer's primary calendar.

    Tokens live on ``TrainerSettings``; an access token expiring within five
    minutes is refreshed and persisted before the call.
    """

    def __init__(self, api_base: str, token_url: str, client_id: Optional[str], client_secret: Optional[str]) -> None:
        self.api_base = api_base.rstrip("/")
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret

    def _access_token(self, owner_id: str) -> str:
        db = SessionLocal()
        try:
            settings = db.get(TrainerSettings, owner_id)
            if not settings or not settings.google_access_token or not settings.google_refresh_token:
                raise CalendarNotConnectedError()
            expires_at = settings.google_token_expires_at
            if expires_at is not None and expires_at > utcnow() + timedelta(minutes=5):
                return settings.google_access_token

            logger.info("Refreshing Google Calendar token trainer_id=%s", owner_id)
            with httpx.Client(timeout=30) as client:
                resp = client.post(
                    self.token_url,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "refresh_token": settings.google_refresh_token,
                        "grant_type": "refresh_token",
                    },
                )
                resp.raise_for_status()
                tokens = resp.json()
            access_token = tokens.get("access_token")
            if not access_token:
                raise CalendarNotConnectedError("Google token refresh returned no access token")
            settings.google_access_token = access_token
            settings.google_token_expires_at = utcnow() + timedelta(seconds=int(tokens.get("expires_in", 3600)))
            db.add(settings)
            db.commit()
            return access_token
        finally:
            db.close()

    def _request(self, owner_id: str, method: str, path: str, **kwargs) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._access_token(owner_id)}"}
        with httpx.Client(timeout=30) as client:
            resp = client.request(method, f"{self.api_base}{path}", headers=headers, **kwargs)
            resp.raise_for_status()
            return resp

    def list_events(self, owner_id: str, time_min: str, time_max: str) -> List[CalendarEvent]:
        items: List[CalendarEvent] = []
        params: Dict[str, Any] = {
            "timeMin": time_min,
            "timeMax": time_max,
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        while True:
            data = self._request(owner_id, "GET", "/calendars/primary/events", params=params).json()
            items.extend(data.get("items") or [])
            page_token = data.get("nextPageToken")
            if not page_token:
                return items
            params["pageToken"] = page_token

    def create_event(self, owner_id: str, payload: CalendarEvent) -> CalendarEvent:
        return self._request(owner_id, "POST", "/calendars/primary/events", json=payload).json()

    def update_event(self, owner_id: str, event_id: str, payload: CalendarEvent) -> CalendarEvent:
        return self._request(owner_id, "PUT", f"/calendars/primary/events/{event_id}", json=payload).json()

    def delete_event(self, owner_id: str, event_id: str) -> None:
        self._request(owner_id, "DELETE", f"/calendars/primary/events/{event_id}")


_fake_provider: Optional[FakeCalendarProvider] = None


def get_calendar_provider() -> CalendarProvider:
    global _fake_provider
    settings = get_settings()
    if settings.calendar_provider == "google":
        return GoogleCalendarProvider(
            api_base=settings.google_calendar_api_base,
            token_url=settings.google_token_url,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
        )
    # One shared in-memory calendar per process so background tasks see request writes
    if _fake_provider is None:
        _fake_provider = FakeCalendarProvider()
    return _fake_provider


def reset_fake_calendar_provider() -> None:
    global _fake_provider
    _fake_provider = None
