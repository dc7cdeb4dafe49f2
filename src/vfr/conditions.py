"""Condition verdict ordering and confidence buckets."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Final, Literal

MinimumConditionLevel = Literal["good", "marginal"]
Confidence = Literal["high", "medium", "low"]

HIGH_CONFIDENCE_HOURS: Final[float] = 24.0
MEDIUM_CONFIDENCE_HOURS: Final[float] = 72.0


class SegmentCondition(str, Enum):
    """Verdict for one point in space and time.

    Members are declared from best to worst and compare by that order, so
    ``GOOD < MARGINAL < POOR < UNKNOWN``. ``UNKNOWN`` means required inputs
    were missing and ranks below ``POOR``.
    """

    GOOD = "good"
    MARGINAL = "marginal"
    POOR = "poor"
    UNKNOWN = "unknown"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SegmentCondition):
            return NotImplemented
        return self.severity < other.severity

    def __le__(self, other: object) -> bool:
        if not isinstance(other, SegmentCondition):
            return NotImplemented
        return self.severity <= other.severity

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, SegmentCondition):
            return NotImplemented
        return self.severity > other.severity

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, SegmentCondition):
            return NotImplemented
        return self.severity >= other.severity

    def __str__(self) -> str:
        return self.value


_SEVERITY: Final[dict[SegmentCondition, int]] = {
    condition: index for index, condition in enumerate(SegmentCondition)
}


def worse_condition(a: SegmentCondition, b: SegmentCondition) -> SegmentCondition:
    """Return the more severe of two verdicts."""

    return a if a >= b else b


def meets_minimum_condition(condition: SegmentCondition, minimum: MinimumConditionLevel) -> bool:
    """Return True when ``condition`` is at least as good as ``minimum``."""

    return condition <= SegmentCondition(minimum)


def calculate_confidence(start: datetime, now: datetime) -> Confidence:
    """Bucket the lead time between ``now`` and ``start`` into a confidence label."""

    lead = start - now
    if lead <= timedelta(hours=HIGH_CONFIDENCE_HOURS):
        return "high"
    if lead <= timedelta(hours=MEDIUM_CONFIDENCE_HOURS):
        return "medium"
    return "low"


__all__ = [
    "Confidence",
    "HIGH_CONFIDENCE_HOURS",
    "MEDIUM_CONFIDENCE_HOURS",
    "MinimumConditionLevel",
    "SegmentCondition",
    "calculate_confidence",
    "meets_minimum_condition",
    "worse_condition",
]
