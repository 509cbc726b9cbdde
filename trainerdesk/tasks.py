from __future__ import annotations

"""
Fire-and-forget work. Call sites pick a dispatcher explicitly: request handlers
push work behind the response, batch jobs and tests run it inline. Either way a
failing task is logged and never reaches the caller.
"""

import logging
from typing import Any, Callable, List

from fastapi import BackgroundTasks

from .calendar_provider import get_calendar_provider
from .calendar_sync import delete_external_event, sync_appointment_to_google
from .database import SessionLocal
from .email_sender import get_email_sender
from .invoicing import generate_per_session_invoice
from .models import Appointment, TrainerSettings


logger = logging.getLogger(__name__)


def run_logged(func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    try:
        func(*args, **kwargs)
    except Exception:
        logger.exception("Background task %s failed args=%s", getattr(func, "__name__", func), args)


class TaskDispatcher:
    def dispatch(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class BackgroundTaskDispatcher(TaskDispatcher):
    """Runs tasks after the HTTP response has been sent."""

    def __init__(self, background_tasks: BackgroundTasks) -> None:
        self.background_tasks = background_tasks

    def dispatch(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        self.background_tasks.add_task(run_logged, func, *args, **kwargs)


class InlineTaskDispatcher(TaskDispatcher):
    def __init__(self) -> None:
        self.dispatched: List[str] = []

    def dispatch(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        self.dispatched.append(getattr(func, "__name__", repr(func)))
        run_logged(func, *args, **kwargs)


# ---------------------------------------------------------------------------
# Tasks; each opens its own session since it outlives the request
# ---------------------------------------------------------------------------


def sync_appointment_task(appointment_id: str) -> None:
    db = SessionLocal()
    try:
        appointment = db.get(Appointment, appointment_id)
        if appointment is None:
            return
        settings = db.get(TrainerSettings, appointment.trainer_id)
        sync_appointment_to_google(db, appointment, settings, get_calendar_provider())
    finally:
        db.close()


def delete_external_event_task(trainer_id: str, external_event_id: str) -> None:
    db = SessionLocal()
    try:
        settings = db.get(TrainerSettings, trainer_id)
        delete_external_event(settings, get_calendar_provider(), external_event_id)
    finally:
        db.close()


def generate_invoice_task(appointment_id: str) -> None:
    db = SessionLocal()
    try:
        generate_per_session_invoice(db, appointment_id, get_email_sender())
    finally:
        db.close()
