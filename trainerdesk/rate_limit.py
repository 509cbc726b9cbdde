from __future__ import annotations

import time
from typing import Tuple

from fastapi import HTTPException, status

from .config import get_settings


_window_counts: dict[Tuple[str, int], int] = {}


def sync_rate_limit_check(trainer_id: str) -> None:
    """Throttle manual calendar pulls per trainer per minute (if enabled)."""
    settings = get_settings()
    if not settings.sync_rate_limit_enabled:
        return
    minute = int(time.time() // 60)
    key = (trainer_id, minute)
    count = _window_counts.get(key, 0) + 1
    _window_counts[key] = count
    if count > settings.sync_rate_limit_per_minute:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Sync rate limit exceeded")


def reset_rate_limits() -> None:
    _window_counts.clear()
