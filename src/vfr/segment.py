"""Condition verdict for one waypoint at one moment."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from .conditions import SegmentCondition
from .models import ProfilePoint, Waypoint, WaypointWeather
from .rules import CLEAR_SKY_SENTINEL, DEFAULT_RULES, ConditionCriteria, VfrConditionRule, evaluate_all_rules
from .runway import BestRunwayResult, find_best_runway
from .units import meters_to_feet

DEFAULT_VISIBILITY_KM = 10.0
DEFAULT_PRECIPITATION_MM = 0.0
MISSING_WIND_REASON = "Missing wind data"
IN_CLOUD_REASON = "Aircraft above cloud base (IMC)"


@dataclass(slots=True)
class SegmentVerdict:
    condition: SegmentCondition
    reasons: list[str] = field(default_factory=list)
    best_runway: BestRunwayResult | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "condition": self.condition.value,
            "reasons": list(self.reasons),
            "best_runway": self.best_runway.to_payload() if self.best_runway else None,
        }


def build_profile_point(waypoint: Waypoint, altitude: float, weather: WaypointWeather | None) -> ProfilePoint:
    """Turn a weather snapshot into profile inputs at ``altitude`` [ft MSL]."""

    terrain = waypoint.elevation or 0.0
    cloud_base_msl: float | None = None
    if weather is not None and weather.cloud_base is not None and weather.cloud_base > 0:
        cloud_base_msl = terrain + meters_to_feet(weather.cloud_base)
    return ProfilePoint(
        altitude=altitude,
        terrain_elevation=terrain,
        cloud_base=cloud_base_msl,
        wind_speed=weather.wind_speed if weather is not None else None,
        wind_dir=weather.wind_dir if weather is not None else None,
    )


def evaluate_segment_condition(
    point: ProfilePoint,
    flight_altitude: float,
    weather: WaypointWeather | None = None,
    is_terminal: bool = False,
    waypoint: Waypoint | None = None,
    rules: Sequence[VfrConditionRule] = DEFAULT_RULES,
) -> SegmentVerdict:
    """Evaluate one profile point against the rule table.

    Missing or calm wind means the forecast extraction failed and yields
    ``unknown``. Flying at or above a known cloud base is ``poor`` regardless
    of the other criteria. A missing cloud base is clear sky. At terminal
    points with runway data the best runway is resolved from the surface wind
    and its components feed the crosswind and tailwind rules.
    """

    if not point.wind_speed:
        return SegmentVerdict(SegmentCondition.UNKNOWN, [MISSING_WIND_REASON])

    terrain_clearance = flight_altitude - point.terrain_elevation
    visibility = DEFAULT_VISIBILITY_KM
    precipitation = DEFAULT_PRECIPITATION_MM
    gust_speed: float | None = None
    if weather is not None:
        if weather.visibility is not None:
            visibility = weather.visibility
        if weather.precipitation is not None:
            precipitation = weather.precipitation
        gust_speed = weather.wind_gust

    cloud_base_agl = CLEAR_SKY_SENTINEL
    cloud_clearance = CLEAR_SKY_SENTINEL
    if point.cloud_base is not None:
        if flight_altitude >= point.cloud_base:
            return SegmentVerdict(SegmentCondition.POOR, [IN_CLOUD_REASON])
        cloud_base_agl = point.cloud_base - point.terrain_elevation
        cloud_clearance = point.cloud_base - flight_altitude

    terminal_wind_speed: float | None = None
    terminal_wind_dir: float | None = None
    crosswind: float | None = None
    headwind: float | None = None
    best_runway: BestRunwayResult | None = None
    if is_terminal:
        terminal_wind_speed = point.wind_speed
        terminal_wind_dir = point.wind_dir
        if weather is not None and weather.surface_wind_speed is not None:
            terminal_wind_speed = weather.surface_wind_speed
            terminal_wind_dir = weather.surface_wind_dir
        if waypoint is not None and waypoint.runways and terminal_wind_dir is not None:
            best_runway = find_best_runway(waypoint.runways, terminal_wind_dir, terminal_wind_speed, gust_speed)
            if best_runway is not None:
                crosswind = best_runway.crosswind
                headwind = best_runway.headwind

    criteria = ConditionCriteria(
        wind_speed=point.wind_speed,
        gust_speed=gust_speed,
        cloud_base_agl=cloud_base_agl,
        visibility=visibility,
        precipitation=precipitation,
        terrain_clearance=terrain_clearance,
        cloud_clearance=cloud_clearance,
        terminal_wind_speed=terminal_wind_speed,
        terminal_wind_dir=terminal_wind_dir,
        crosswind_kt=crosswind,
        headwind_kt=headwind,
    )
    result = evaluate_all_rules(criteria, is_terminal, rules)
    return SegmentVerdict(result.condition, result.reasons, best_runway)


__all__ = [
    "IN_CLOUD_REASON",
    "MISSING_WIND_REASON",
    "SegmentVerdict",
    "build_profile_point",
    "evaluate_segment_condition",
]
