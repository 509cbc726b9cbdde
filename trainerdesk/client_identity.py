from __future__ import annotations

"""
Client identity resolution for calendar events.

Turns free-text event titles and attendee lists into candidate clients, scores
how confident the guess is, and matches candidates against known clients and
previously surfaced pending profiles.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .models import ClientProfile, PendingClientProfile, ReviewStatus, Role, User


HIGH = "high"
MEDIUM = "medium"
LOW = "low"

# Prefixed by outbound sync to show appointment status in the external calendar
STATUS_GLYPHS = ("✓", "✗", "↻")

BLACKLIST_PATTERNS = [
    # meetings
    re.compile(r"\b(team|staff|group|all[- ]hands)\s+(meeting|sync|standup|huddle)\b", re.IGNORECASE),
    re.compile(r"\b(meeting|sync|standup|huddle|review)\b", re.IGNORECASE),
    re.compile(r"\b(1[:-]1|one[- ]on[- ]one)\s+(meeting|sync)\b", re.IGNORECASE),
    # meals
    re.compile(r"\b(breakfast|lunch|dinner|coffee|snack)\b", re.IGNORECASE),
    # work routines
    re.compile(r"\b(daily|weekly|monthly|quarterly)\s+(sync|standup|review|planning)\b", re.IGNORECASE),
    re.compile(r"\b(sprint|scrum|retro|retrospective|planning)\b", re.IGNORECASE),
    re.compile(r"\b(interview|onboarding|offboarding)\b", re.IGNORECASE),
    re.compile(r"\b(office\s+hours?)\b", re.IGNORECASE),
    # generic workout terms without a name
    re.compile(r"^(workout|training|session|personal\s+training|pt\s+session)$", re.IGNORECASE),
    re.compile(r"^(hiit|cardio|strength|yoga|pilates|crossfit)$", re.IGNORECASE),
    # time blocking
    re.compile(r"\b(blocked?|busy|unavailable|hold|do\s+not\s+book)\b", re.IGNORECASE),
    re.compile(r"\b(vacation|pto|out\s+of\s+office|ooo|holiday|time\s+off)\b", re.IGNORECASE),
    re.compile(r"\b(focus\s+time|deep\s+work|admin\s+time)\b", re.IGNORECASE),
    # personal
    re.compile(r"\b(doctor|dentist|appointment|errand|personal)\b", re.IGNORECASE),
    re.compile(r"^(available|availability|open\s+slot|free\s+time)$", re.IGNORECASE),
]

COMMON_PREFIXES = [
    re.compile(r"^(training|session|workout|pt|personal\s+training)[\s:-]+", re.IGNORECASE),
    re.compile(r"^(client|with)[\s:-]+", re.IGNORECASE),
]

_LETTER = re.compile(r"[a-zA-ZÀ-ſ]")
_NON_NAME_PATTERNS = [
    re.compile(r"^\d+$"),
    re.compile(r"^[^a-zA-ZÀ-ſ\s'-]+$"),
    re.compile(r"\b(session|workout|training|meeting|call)\b", re.IGNORECASE),
]
_PUNCTUATION = re.compile(r"[.,/#!$%^&*;:{}=\-_`~()]")
_WHITESPACE = re.compile(r"\s+")

# Score contributions; thresholds below map the total to a confidence level.
CONFIDENCE_WEIGHTS: Dict[str, int] = {
    "email": 30,
    "multi_word_name": 20,
    "has_attendees": 15,
    "one_on_one": 15,
    "has_description": 10,
}
CONFIDENCE_THRESHOLDS: Tuple[Tuple[int, str], ...] = ((60, HIGH), (30, MEDIUM))

_SIGNAL_REASONS = {
    "email": "email found in attendees",
    "has_attendees": "has attendees",
    "one_on_one": "1-on-1 meeting",
    "has_description": "has description",
}


@dataclass
class ExtractedClient:
    name: str
    email: Optional[str]
    confidence: str
    confidence_score: int
    reason: str
    source_event_id: str


@dataclass
class AggregatedClient(ExtractedClient):
    occurrence_count: int = 1
    source_event_ids: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ClientMatch:
    client_id: str
    client_name: str
    confidence: str
    reason: str


@dataclass
class DuplicateMatch:
    kind: str  # "existing_client" | "pending_profile"
    match_reason: str
    client: Optional[User] = None
    profile: Optional[PendingClientProfile] = None


# ---------------------------------------------------------------------------
# Title parsing
# ---------------------------------------------------------------------------


def strip_status_glyph(title: str) -> str:
    stripped = (title or "").strip()
    for glyph in STATUS_GLYPHS:
        if stripped.startswith(glyph):
            return stripped[len(glyph):].strip()
    return stripped


def is_blacklisted(title: str) -> bool:
    return any(p.search(title) for p in BLACKLIST_PATTERNS)


def extract_name_from_title(title: str) -> Optional[str]:
    processed = (title or "").strip()
    for prefix in COMMON_PREFIXES:
        processed = prefix.sub("", processed).strip()
    return processed or None


def is_likely_human_name(name: str) -> bool:
    if len(name) < 2 or len(name) > 50:
        return False
    if not _LETTER.search(name):
        return False
    words = name.split()
    if len(words) > 1:
        if all(w == w.upper() for w in words) or all(w == w.lower() for w in words):
            return False
    return not any(p.search(name) for p in _NON_NAME_PATTERNS)


def extract_email_from_attendees(attendees: Optional[Sequence[Dict[str, Any]]]) -> Optional[str]:
    """Email of the single non-organizer, non-declined attendee; None when ambiguous."""
    if not attendees:
        return None
    candidates = [
        a for a in attendees if not a.get("organizer") and a.get("responseStatus") != "declined"
    ]
    if len(candidates) == 1:
        return candidates[0].get("email") or None
    return None


# ---------------------------------------------------------------------------
# Confidence scoring
# ---------------------------------------------------------------------------


def confidence_for_score(score: int) -> str:
    for threshold, level in CONFIDENCE_THRESHOLDS:
        if score >= threshold:
            return level
    return LOW


def score_confidence(
    name: str, email: Optional[str], attendee_count: int, has_description: bool
) -> Tuple[str, int, str]:
    word_count = len(name.split())
    signals = {
        "email": bool(email),
        "multi_word_name": word_count >= 2,
        "has_attendees": attendee_count > 0,
        "one_on_one": attendee_count == 2,
        "has_description": has_description,
    }
    score = 0
    reasons: List[str] = []
    for key, present in signals.items():
        if not present:
            continue
        score += CONFIDENCE_WEIGHTS[key]
        reasons.append(f"{word_count}-word name" if key == "multi_word_name" else _SIGNAL_REASONS[key])
    return confidence_for_score(score), score, ", ".join(reasons) if reasons else "basic extraction"


def extract_client_from_event(event: Dict[str, Any]) -> Optional[ExtractedClient]:
    title = strip_status_glyph(event.get("summary") or "")
    if not title or is_blacklisted(title):
        return None
    name = extract_name_from_title(title)
    if not name or not is_likely_human_name(name):
        return None

    attendees = event.get("attendees") or []
    email = extract_email_from_attendees(attendees)
    confidence, score, reason = score_confidence(
        name, email, attendee_count=len(attendees), has_description=bool(event.get("description"))
    )
    return ExtractedClient(
        name=name,
        email=email,
        confidence=confidence,
        confidence_score=score,
        reason=reason,
        source_event_id=event.get("id") or "",
    )


def extract_clients_from_events(events: Iterable[Dict[str, Any]]) -> List[ExtractedClient]:
    extracted = []
    for event in events:
        candidate = extract_client_from_event(event)
        if candidate:
            extracted.append(candidate)
    return extracted


# ---------------------------------------------------------------------------
# Name comparison
# ---------------------------------------------------------------------------


def normalize_name(name: str) -> str:
    collapsed = _WHITESPACE.sub(" ", (name or "").lower().strip())
    return _PUNCTUATION.sub("", collapsed).strip()


def is_fuzzy_name_match(name1: str, name2: str) -> bool:
    """Compare two normalized names.

    A single-word name matches when it equals any word of the other name.
    Otherwise at least 75% of the shorter name's words must appear in the
    longer one, where a one-letter word matches any word with that initial
    ("j smith" matches "john smith").
    """
    words1 = name1.split()
    words2 = name2.split()
    if not words1 or not words2:
        return False
    if len(words1) == 1 or len(words2) == 1:
        return any(w1 == w2 for w1 in words1 for w2 in words2)

    shorter, longer = (words1, words2) if len(words1) <= len(words2) else (words2, words1)
    matched = 0
    for word in shorter:
        if word in longer:
            matched += 1
        elif len(word) == 1 and any(w.startswith(word) for w in longer):
            matched += 1
    return matched / len(shorter) >= 0.75


def names_match(name1: str, name2: str) -> Optional[str]:
    """Return the match reason for two raw names, or None."""
    n1, n2 = normalize_name(name1), normalize_name(name2)
    if not n1 or not n2:
        return None
    if n1 == n2:
        return "name exact match"
    if is_fuzzy_name_match(n1, n2):
        return "name fuzzy match"
    return None


# ---------------------------------------------------------------------------
# Aggregation across repeated occurrences
# ---------------------------------------------------------------------------


def aggregate_extracted_clients(extracted: Iterable[ExtractedClient]) -> List[AggregatedClient]:
    """Fold repeated sightings of one person into a single candidate.

    Sightings group by email when present, else by normalized name. A sighting
    with an email also joins an earlier email-less entry of the same name,
    backfilling the email.
    """
    ordered: List[AggregatedClient] = []
    by_email: Dict[str, AggregatedClient] = {}
    by_name: Dict[str, AggregatedClient] = {}
    for client in extracted:
        email_key = client.email.lower() if client.email else None
        name_key = normalize_name(client.name)
        existing = by_email.get(email_key) if email_key else None
        if existing is None:
            candidate = by_name.get(name_key)
            if candidate is not None and (not email_key or not candidate.email):
                existing = candidate

        if existing is None:
            entry = AggregatedClient(
                name=client.name,
                email=client.email,
                confidence=client.confidence,
                confidence_score=client.confidence_score,
                reason=client.reason,
                source_event_id=client.source_event_id,
                occurrence_count=1,
                source_event_ids=[client.source_event_id],
            )
            ordered.append(entry)
            if email_key:
                by_email[email_key] = entry
            else:
                by_name[name_key] = entry
            continue

        existing.occurrence_count += 1
        existing.source_event_ids.append(client.source_event_id)
        if existing.occurrence_count >= 3:
            existing.confidence = HIGH
            existing.confidence_score = max(existing.confidence_score, 60)
        elif existing.confidence == LOW:
            existing.confidence = MEDIUM
            existing.confidence_score = max(existing.confidence_score, 30)
        existing.reason = f"seen {existing.occurrence_count} times, {client.reason}"

        if email_key and not existing.email:
            existing.email = client.email
            existing.confidence_score += CONFIDENCE_WEIGHTS["email"]
            if existing.confidence != HIGH:
                existing.confidence = confidence_for_score(existing.confidence_score)
            by_email[email_key] = existing
    return ordered


# ---------------------------------------------------------------------------
# Matching calendar titles to known clients
# ---------------------------------------------------------------------------


def match_title_to_clients(
    title: str,
    clients: Sequence[Tuple[str, str, Optional[str]]],
    attendee_email: Optional[str] = None,
) -> Optional[ClientMatch]:
    """Match an event against ``(client_id, full_name, email)`` tuples.

    High: attendee email equals a client email, or the title contains the
    full client name. Medium: first and last name both appear, or the name
    extracted from the title fuzzy-matches. Low: exactly one client's first
    name appears.
    """
    cleaned = strip_status_glyph(title)
    if not cleaned:
        return None
    norm_title = normalize_name(cleaned)
    title_words = set(norm_title.split())
    candidate = normalize_name(extract_name_from_title(cleaned) or cleaned)
    if not norm_title:
        return None

    if attendee_email:
        for client_id, full_name, email in clients:
            if email and email.lower() == attendee_email.lower():
                return ClientMatch(client_id, full_name, HIGH, f'Email match: attendee {attendee_email}')

    for client_id, full_name, _ in clients:
        client_norm = normalize_name(full_name)
        if not client_norm:
            continue
        if candidate == client_norm or f" {client_norm} " in f" {norm_title} ":
            return ClientMatch(
                client_id,
                full_name,
                HIGH,
                f'Exact match: event title "{title}" contains client name "{full_name}"',
            )

    for client_id, full_name, _ in clients:
        parts = normalize_name(full_name).split()
        if len(parts) < 2:
            continue
        if parts[0] in title_words and parts[-1] in title_words:
            return ClientMatch(
                client_id,
                full_name,
                MEDIUM,
                f'Partial match: event title "{title}" contains first and last name of "{full_name}"',
            )
        if len(candidate.split()) >= 2 and is_fuzzy_name_match(candidate, " ".join(parts)):
            return ClientMatch(
                client_id,
                full_name,
                MEDIUM,
                f'Fuzzy match: "{candidate}" resembles "{full_name}"',
            )

    first_name_hits = []
    for client_id, full_name, _ in clients:
        parts = normalize_name(full_name).split()
        if parts and parts[0] in title_words:
            first_name_hits.append(
                ClientMatch(
                    client_id,
                    full_name,
                    LOW,
                    f'First name match: event title "{title}" contains first name of "{full_name}"',
                )
            )
    if len(first_name_hits) == 1:
        return first_name_hits[0]
    return None


def _workspace_clients(db: Session, workspace_id: str, with_profile: bool = False) -> List[User]:
    stmt = select(User).where(User.workspace_id == workspace_id, User.role == Role.CLIENT)
    if with_profile:
        stmt = stmt.join(ClientProfile, ClientProfile.user_id == User.id)
    return list(db.execute(stmt.order_by(User.created_at)).scalars().all())


def match_event_to_client(db: Session, workspace_id: str, event: Dict[str, Any]) -> Optional[ClientMatch]:
    clients = [(c.id, c.full_name, c.email) for c in _workspace_clients(db, workspace_id)]
    if not clients:
        return None
    email = extract_email_from_attendees(event.get("attendees"))
    return match_title_to_clients(event.get("summary") or "", clients, attendee_email=email)


# ---------------------------------------------------------------------------
# Duplicate search
# ---------------------------------------------------------------------------


def find_matching_client(
    db: Session, workspace_id: str, name: str, email: Optional[str] = None
) -> Optional[DuplicateMatch]:
    if email:
        client = db.execute(
            select(User).where(
                User.workspace_id == workspace_id,
                User.role == Role.CLIENT,
                func.lower(User.email) == email.lower(),
            )
        ).scalars().first()
        if client:
            return DuplicateMatch(kind="existing_client", client=client, match_reason="email exact match")

    for client in _workspace_clients(db, workspace_id, with_profile=True):
        reason = names_match(name, client.full_name)
        if reason:
            return DuplicateMatch(kind="existing_client", client=client, match_reason=reason)
    return None


def find_matching_pending_profile(
    db: Session, workspace_id: str, trainer_id: str, name: str, email: Optional[str] = None
) -> Optional[DuplicateMatch]:
    # Rejected profiles stay in the pool so dismissed suggestions do not come back
    base = select(PendingClientProfile).where(
        PendingClientProfile.workspace_id == workspace_id,
        PendingClientProfile.trainer_id == trainer_id,
        PendingClientProfile.status.in_([ReviewStatus.PENDING, ReviewStatus.REJECTED]),
    )
    if email:
        profile = db.execute(
            base.where(func.lower(PendingClientProfile.extracted_email) == email.lower())
        ).scalars().first()
        if profile:
            return DuplicateMatch(kind="pending_profile", profile=profile, match_reason="email exact match")

    for profile in db.execute(base.order_by(PendingClientProfile.created_at)).scalars().all():
        reason = names_match(name, profile.extracted_name)
        if reason:
            return DuplicateMatch(kind="pending_profile", profile=profile, match_reason=reason)
    return None


def find_any_duplicate(
    db: Session, workspace_id: str, trainer_id: str, name: str, email: Optional[str] = None
) -> Optional[DuplicateMatch]:
    return find_matching_client(db, workspace_id, name, email) or find_matching_pending_profile(
        db, workspace_id, trainer_id, name, email
    )


def is_email_in_use(db: Session, workspace_id: str, email: str) -> bool:
    user = db.execute(
        select(User.id).where(User.workspace_id == workspace_id, func.lower(User.email) == email.lower())
    ).first()
    return user is not None
