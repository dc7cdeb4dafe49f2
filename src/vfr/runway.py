"""Runway selection from the surface wind."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Sequence

from .models import Runway


@dataclass(frozen=True, slots=True)
class BestRunwayResult:
    """Chosen runway end with its wind components.

    Attributes:
        runway_ident: Identifier of the chosen end (e.g. ``09``).
        runway_id: Identifier of the physical runway (e.g. ``09/27``).
        heading: True heading of the chosen end [deg].
        headwind: Signed headwind component; negative is a tailwind [kt].
        crosswind: Absolute crosswind component from the sustained wind [kt].
        gust_crosswind: Absolute crosswind component from the gust speed [kt].
        is_tailwind: True when the headwind component is negative.
    """

    runway_ident: str
    runway_id: str
    heading: float
    headwind: float
    crosswind: float
    gust_crosswind: float | None = None
    is_tailwind: bool = False

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


def calculate_wind_component(heading: float, wind_dir: float, wind_speed: float) -> tuple[float, float]:
    """Return signed ``(headwind, crosswind)`` for a runway heading [kt]."""

    delta = math.radians(heading - wind_dir)
    return wind_speed * math.cos(delta), wind_speed * math.sin(delta)


def find_best_runway(
    runways: Sequence[Runway],
    wind_dir: float,
    wind_speed: float,
    gust_speed: float | None = None,
) -> BestRunwayResult | None:
    """Pick the runway end with a headwind and the least crosswind.

    Ends with a non-negative headwind always beat tailwind ends. Among those,
    the lower crosswind wins, using the gust crosswind when gusts are known.
    Closed runways are never chosen. Returns ``None`` when no open runway
    remains.
    """

    candidates: list[BestRunwayResult] = []
    for runway in runways:
        if runway.closed:
            continue
        for end in runway.ends:
            headwind, crosswind = calculate_wind_component(end.heading_true, wind_dir, wind_speed)
            gust_crosswind: float | None = None
            if gust_speed is not None:
                _, gust_component = calculate_wind_component(end.heading_true, wind_dir, gust_speed)
                gust_crosswind = abs(gust_component)
            candidates.append(
                BestRunwayResult(
                    runway_ident=end.ident,
                    runway_id=runway.id,
                    heading=end.heading_true,
                    headwind=headwind,
                    crosswind=abs(crosswind),
                    gust_crosswind=gust_crosswind,
                    is_tailwind=headwind < 0,
                )
            )
    if not candidates:
        return None

    def _planning_key(result: BestRunwayResult) -> tuple[bool, float]:
        planning_crosswind = result.gust_crosswind if result.gust_crosswind is not None else result.crosswind
        return (result.headwind < 0, planning_crosswind)

    return min(candidates, key=_planning_key)


__all__ = ["BestRunwayResult", "calculate_wind_component", "find_best_runway"]
