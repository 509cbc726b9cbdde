from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import pytest

# Ensure project root on path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from trainerdesk.calendar_provider import reset_fake_calendar_provider
from trainerdesk.config import get_settings
from trainerdesk.database import Base, SessionLocal, engine
from trainerdesk.email_sender import reset_fake_email_sender
from trainerdesk.models import (
    Appointment,
    AppointmentStatus,
    ClientProfile,
    Role,
    TrainerSettings,
    User,
    Workspace,
)
from trainerdesk.rate_limit import reset_rate_limits


def _clear_tables(db) -> None:
    for table in reversed(Base.metadata.sorted_tables):
        db.execute(table.delete())
    db.commit()


@pytest.fixture()
def db_session():
    Base.metadata.create_all(bind=engine)
    reset_fake_calendar_provider()
    reset_fake_email_sender()
    reset_rate_limits()
    db = SessionLocal()
    try:
        # Clean every table to isolate tests
        _clear_tables(db)
        yield db
    finally:
        db.close()
        get_settings.cache_clear()  # type: ignore[attr-defined]


class Factory:
    """Seeds a workspace with one trainer plus clients and appointments."""

    def __init__(self, db) -> None:
        self.db = db

    def workspace(self, **settings_kwargs):
        ws = Workspace(name="North Side Strength")
        self.db.add(ws)
        self.db.flush()
        trainer = User(
            workspace_id=ws.id,
            full_name="Tina Trainer",
            email=f"tina+{ws.id[:8]}@example.com",
            role=Role.TRAINER,
        )
        self.db.add(trainer)
        self.db.flush()
        ws.trainer_id = trainer.id
        settings = TrainerSettings(trainer_id=trainer.id, workspace_id=ws.id, **settings_kwargs)
        self.db.add(settings)
        self.db.commit()
        return ws, trainer, settings

    def client(
        self,
        ws: Workspace,
        full_name: str,
        email: Optional[str] = None,
        with_profile: bool = True,
        **profile_kwargs,
    ) -> User:
        user = User(
            workspace_id=ws.id,
            full_name=full_name,
            email=email or f"{full_name.replace(' ', '.').lower()}@example.com",
            role=Role.CLIENT,
        )
        self.db.add(user)
        self.db.flush()
        if with_profile:
            profile_kwargs.setdefault("session_rate_cents", 10000)
            self.db.add(ClientProfile(user_id=user.id, workspace_id=ws.id, **profile_kwargs))
        self.db.commit()
        return user

    def profile(self, user: User) -> ClientProfile:
        self.db.refresh(user)
        return user.client_profile

    def appointment(
        self,
        ws: Workspace,
        trainer: User,
        client: User,
        start: datetime,
        end: datetime,
        status: str = AppointmentStatus.SCHEDULED,
        override: Optional[str] = None,
    ) -> Appointment:
        appt = Appointment(
            workspace_id=ws.id,
            trainer_id=trainer.id,
            client_id=client.id,
            start_time=start,
            end_time=end,
            status=status,
            group_session_override=override,
        )
        self.db.add(appt)
        self.db.commit()
        return appt


@pytest.fixture()
def factory(db_session) -> Factory:
    return Factory(db_session)
