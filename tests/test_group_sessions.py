from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from trainerdesk.group_sessions import classify, session_description, session_rate_cents
from trainerdesk.models import AppointmentStatus, ClientProfile, TrainerSettings


T10 = datetime(2026, 3, 2, 10, 0)
T11 = datetime(2026, 3, 2, 11, 0)
T1130 = datetime(2026, 3, 2, 11, 30)


def test_rate_fallback_tiers_in_isolation() -> None:
    trainer = TrainerSettings(trainer_id="t", workspace_id="w", default_group_session_rate_cents=6000)
    own_group_rate = ClientProfile(session_rate_cents=10000, group_session_rate_cents=5000)
    no_group_rate = ClientProfile(session_rate_cents=10000, group_session_rate_cents=None)

    assert session_rate_cents(own_group_rate, trainer, True) == 5000
    assert session_rate_cents(no_group_rate, trainer, True) == 6000
    bare_trainer = TrainerSettings(trainer_id="t", workspace_id="w", default_group_session_rate_cents=None)
    assert session_rate_cents(no_group_rate, bare_trainer, True) == 10000
    assert session_rate_cents(no_group_rate, None, True) == 10000
    # individual sessions never use group rates
    assert session_rate_cents(own_group_rate, trainer, False) == 10000


def test_description_labels_group_sessions() -> None:
    class _Appt:
        start_time = T10

    assert session_description(_Appt(), True) == "Group training session on 03/02/2026"
    assert session_description(_Appt(), False) == "Training session on 03/02/2026"


def test_start_match_counts_completed_neighbours(factory, db_session) -> None:
    ws, trainer, _ = factory.workspace()
    a = factory.client(ws, "Ann Able")
    b = factory.client(ws, "Ben Baker")
    appt = factory.appointment(ws, trainer, a, T10, T11, status=AppointmentStatus.COMPLETED)
    factory.appointment(ws, trainer, b, T10, T1130, status=AppointmentStatus.COMPLETED)

    info = classify(db_session, appt, "START_MATCH")
    assert info.is_group_session
    assert info.participant_count == 2

    info = classify(db_session, appt, "EXACT_MATCH")
    assert not info.is_group_session
    assert info.participant_count == 1


def test_cancelled_and_other_trainers_never_count(factory, db_session) -> None:
    ws, trainer, _ = factory.workspace()
    ws2, trainer2, _ = factory.workspace()
    a = factory.client(ws, "Ann Able")
    b = factory.client(ws, "Ben Baker")
    c = factory.client(ws2, "Cat Cole")
    appt = factory.appointment(ws, trainer, a, T10, T11)
    factory.appointment(ws, trainer, b, T10, T11, status=AppointmentStatus.CANCELLED)
    factory.appointment(ws2, trainer2, c, T10, T11)

    info = classify(db_session, appt, "EXACT_MATCH")
    assert not info.is_group_session
    assert info.participant_count == 1


def test_any_overlap_ignores_back_to_back(factory, db_session) -> None:
    ws, trainer, _ = factory.workspace()
    a = factory.client(ws, "Ann Able")
    b = factory.client(ws, "Ben Baker")
    appt = factory.appointment(ws, trainer, a, T10, T11)
    factory.appointment(ws, trainer, b, T11, datetime(2026, 3, 2, 12, 0))
    assert not classify(db_session, appt, "ANY_OVERLAP").is_group_session

    factory.appointment(ws, trainer, b, datetime(2026, 3, 2, 10, 30), T1130)
    info = classify(db_session, appt, "ANY_OVERLAP")
    assert info.is_group_session and info.participant_count == 2
