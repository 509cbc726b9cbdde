from __future__ import annotations

"""
Time range comparisons used for group-session detection and booking conflicts.

Two notions of overlap coexist:

* ``overlaps_half_open`` treats ranges as ``[start, end)``; back-to-back sessions
  do not overlap. Group classification under ANY_OVERLAP uses it.
* ``overlaps_closed`` treats ranges as ``[start, end]``; touching endpoints
  conflict. The booking validator and reschedule conflict check use it.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class MatchingPolicy(str, Enum):
    EXACT_MATCH = "EXACT_MATCH"
    START_MATCH = "START_MATCH"
    END_MATCH = "END_MATCH"
    ANY_OVERLAP = "ANY_OVERLAP"

    @classmethod
    def parse(cls, value: object) -> "MatchingPolicy":
        """Coerce a stored setting; unknown or empty values fall back to EXACT_MATCH."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            return cls.EXACT_MATCH


@dataclass(frozen=True)
class TimeRange:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValueError("End time must be after start time")


def overlaps_half_open(a: TimeRange, b: TimeRange) -> bool:
    return a.start < b.end and a.end > b.start


def overlaps_closed(a: TimeRange, b: TimeRange) -> bool:
    return a.start <= b.end and b.start <= a.end


def ranges_match(a: TimeRange, b: TimeRange, policy: MatchingPolicy = MatchingPolicy.EXACT_MATCH) -> bool:
    if policy == MatchingPolicy.START_MATCH:
        return a.start == b.start
    if policy == MatchingPolicy.END_MATCH:
        return a.end == b.end
    if policy == MatchingPolicy.ANY_OVERLAP:
        return overlaps_half_open(a, b)
    return a.start == b.start and a.end == b.end
