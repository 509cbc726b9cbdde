from __future__ import annotations

"""
Client discovery from calendar history: extract, aggregate, deduplicate, then
store the survivors as pending client profiles for the trainer to review.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from .calendar_provider import CalendarProvider
from .client_identity import (
    AggregatedClient,
    aggregate_extracted_clients,
    extract_clients_from_events,
    find_any_duplicate,
)
from .errors import CalendarNotConnectedError
from .models import BillingFrequency, PendingClientProfile, ReviewStatus, TrainerSettings
from .utils import to_rfc3339, utcnow


logger = logging.getLogger(__name__)


def _profile_summary(profile: PendingClientProfile) -> Dict[str, Any]:
    return {
        "id": profile.id,
        "extractedName": profile.extracted_name,
        "extractedEmail": profile.extracted_email,
        "confidence": profile.extraction_confidence,
        "occurrenceCount": profile.occurrence_count,
    }


def create_pending_profiles(
    db: Session,
    settings: TrainerSettings,
    clients: Iterable[AggregatedClient],
    source: str = "google",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Persist aggregated candidates that are not already known.

    A candidate matching an existing pending/rejected profile folds its new
    event ids into that profile instead of creating another one.
    """
    now = now or utcnow()
    created: List[PendingClientProfile] = []
    duplicate_count = 0

    for client in clients:
        duplicate = find_any_duplicate(db, settings.workspace_id, settings.trainer_id, client.name, client.email)
        if duplicate is not None:
            duplicate_count += 1
            logger.info("Skipping duplicate candidate %r (%s)", client.name, duplicate.match_reason)
            if duplicate.kind == "pending_profile":
                profile = duplicate.profile
                known = list(profile.source_event_ids or [])
                fresh = [eid for eid in client.source_event_ids if eid not in known]
                if fresh:
                    profile.source_event_ids = known + fresh
                    profile.occurrence_count = profile.occurrence_count + len(fresh)
                    db.add(profile)
            continue

        profile = PendingClientProfile(
            workspace_id=settings.workspace_id,
            trainer_id=settings.trainer_id,
            source=source,
            source_event_ids=list(client.source_event_ids),
            extracted_name=client.name,
            extracted_email=client.email,
            extraction_confidence=client.confidence,
            extraction_reason=client.reason,
            first_seen_date=now,
            occurrence_count=client.occurrence_count,
            status=ReviewStatus.PENDING,
            default_session_rate_cents=settings.default_individual_session_rate_cents or 0,
            default_billing_frequency=BillingFrequency.PER_SESSION,
        )
        db.add(profile)
        db.flush()
        created.append(profile)
        logger.info(
            "Created pending profile %r (%s confidence, %s occurrences)",
            client.name,
            client.confidence,
            client.occurrence_count,
        )

    db.commit()
    return {
        "createdCount": len(created),
        "duplicateCount": duplicate_count,
        "pendingProfiles": [_profile_summary(p) for p in created],
    }


def extract_clients_from_new_events(
    db: Session, settings: TrainerSettings, events: Iterable[Dict[str, Any]]
) -> Optional[Dict[str, Any]]:
    if not settings.auto_client_sync_enabled:
        return None
    extracted = extract_clients_from_events(events)
    if not extracted:
        logger.info("No candidate clients in pulled events trainer_id=%s", settings.trainer_id)
        return None
    return create_pending_profiles(db, settings, aggregate_extracted_clients(extracted))


def sync_clients_from_calendar(
    db: Session,
    settings: Optional[TrainerSettings],
    provider: CalendarProvider,
    lookback_days: int = 30,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Initial client import over the last ``lookback_days`` days of calendar history."""
    if settings is None or not settings.google_calendar_connected:
        raise CalendarNotConnectedError()

    now = now or utcnow()
    events = provider.list_events(
        settings.trainer_id, to_rfc3339(now - timedelta(days=lookback_days)), to_rfc3339(now)
    )
    extracted = extract_clients_from_events(events)
    aggregated = aggregate_extracted_clients(extracted)
    logger.info(
        "Client sync trainer_id=%s events=%s extracted=%s unique=%s",
        settings.trainer_id,
        len(events),
        len(extracted),
        len(aggregated),
    )
    result = create_pending_profiles(db, settings, aggregated, now=now)

    settings.last_client_sync_at = now
    settings.has_completed_initial_client_sync = True
    db.add(settings)
    db.commit()
    return {"extractedCount": len(extracted), **result}
