"""Time-series interpolation helpers for forecast extraction."""

from __future__ import annotations

from bisect import bisect_right
from datetime import datetime
from typing import Sequence


def get_interpolation_indices(timestamps: Sequence[datetime], target: datetime) -> tuple[int, int, float]:
    """Return ``(lower, upper, fraction)`` bracketing ``target``.

    Targets outside the series clamp to its first or last entry with a zero
    fraction. ``timestamps`` must be sorted and non-empty.
    """

    if not timestamps:
        raise ValueError("Cannot interpolate an empty series")
    if target <= timestamps[0]:
        return 0, 0, 0.0
    last = len(timestamps) - 1
    if target >= timestamps[last]:
        return last, last, 0.0
    upper = bisect_right(timestamps, target)
    lower = upper - 1
    span = (timestamps[upper] - timestamps[lower]).total_seconds()
    if span <= 0:
        return lower, lower, 0.0
    fraction = (target - timestamps[lower]).total_seconds() / span
    return lower, upper, fraction


def interpolate_value(values: Sequence[float | None], lower: int, upper: int, fraction: float) -> float | None:
    """Linearly interpolate between two samples, tolerating one missing side."""

    if lower >= len(values) or upper >= len(values):
        return None
    low = values[lower]
    high = values[upper]
    if low is None and high is None:
        return None
    if low is None:
        return high
    if high is None or lower == upper:
        return low
    return low + (high - low) * fraction


def estimate_visibility_km(humidity_pct: float | None) -> float | None:
    """Rough visibility from relative humidity when the model has no visibility field."""

    if humidity_pct is None:
        return None
    if humidity_pct >= 100:
        return 0.5
    if humidity_pct >= 95:
        return 2.0
    if humidity_pct >= 90:
        return 5.0
    if humidity_pct >= 80:
        return 10.0
    return 20.0


__all__ = [
    "estimate_visibility_km",
    "get_interpolation_indices",
    "interpolate_value",
]
