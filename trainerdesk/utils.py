from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_event_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_rfc3339(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0).isoformat() + "Z"


def event_time_range(event: Dict[str, Any]) -> Optional[Tuple[datetime, datetime]]:
    """Start/end of a timed event; None for all-day or untimed events."""
    start = parse_event_datetime((event.get("start") or {}).get("dateTime"))
    end = parse_event_datetime((event.get("end") or {}).get("dateTime"))
    if start is None or end is None or end <= start:
        return None
    return start, end


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def month_start(value: datetime) -> datetime:
    return datetime(value.year, value.month, 1)


def previous_month_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """Half-open ``[first day of last month, first day of this month)``."""
    this_month = month_start(now)
    return month_start(this_month - timedelta(days=1)), this_month


def format_month(value: date) -> str:
    return value.strftime("%B %Y")


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
