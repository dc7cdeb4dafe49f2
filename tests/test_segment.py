from datetime import datetime, timezone

import pytest

from vfr.conditions import SegmentCondition
from vfr.models import ProfilePoint, Runway, RunwayEnd, Waypoint, WaypointWeather
from vfr.rules import build_rules_from_thresholds
from vfr.segment import IN_CLOUD_REASON, MISSING_WIND_REASON, build_profile_point, evaluate_segment_condition
from vfr.thresholds import CONSERVATIVE_THRESHOLDS
from vfr.units import meters_to_feet

NOW = datetime(2025, 6, 21, 12, tzinfo=timezone.utc)
RUNWAYS = (Runway(id="09/27", low_end=RunwayEnd("09", 90.0), high_end=RunwayEnd("27", 270.0)),)
AIRPORT = Waypoint(id="kabc", name="KABC", lat=40.0, lon=-75.0, elevation=500.0, runways=RUNWAYS)


def _weather(**overrides) -> WaypointWeather:
    values = dict(timestamp=NOW, wind_speed=10.0, wind_dir=270.0, visibility=20.0, precipitation=0.0)
    values.update(overrides)
    return WaypointWeather(**values)


def test_missing_wind_is_unknown():
    verdict = evaluate_segment_condition(ProfilePoint(altitude=3000, wind_speed=None), 3000)
    assert verdict.condition is SegmentCondition.UNKNOWN
    assert verdict.reasons == [MISSING_WIND_REASON]
    calm = evaluate_segment_condition(ProfilePoint(altitude=3000, wind_speed=0.0, wind_dir=0.0), 3000)
    assert calm.condition is SegmentCondition.UNKNOWN


def test_flying_at_or_above_cloud_base_is_poor():
    point = ProfilePoint(altitude=4500, terrain_elevation=500, cloud_base=4500, wind_speed=10, wind_dir=270)
    verdict = evaluate_segment_condition(point, 4500, _weather())
    assert verdict.condition is SegmentCondition.POOR
    assert verdict.reasons == [IN_CLOUD_REASON]


def test_clear_sky_enroute_is_good():
    point = ProfilePoint(altitude=4500, terrain_elevation=500, wind_speed=10, wind_dir=270)
    verdict = evaluate_segment_condition(point, 4500, _weather())
    assert verdict.condition is SegmentCondition.GOOD
    assert verdict.reasons == []
    assert verdict.best_runway is None


def test_ceiling_and_cloud_clearance_use_msl_cloud_base():
    point = ProfilePoint(altitude=2000, terrain_elevation=500, cloud_base=2300, wind_speed=10, wind_dir=270)
    verdict = evaluate_segment_condition(point, 2000, _weather())
    assert verdict.condition is SegmentCondition.MARGINAL
    assert verdict.reasons == ["Marginal ceiling (1800ft AGL)", "Marginal cloud clearance (300ft)"]


def test_missing_visibility_and_precipitation_use_defaults():
    point = ProfilePoint(altitude=4500, terrain_elevation=0, wind_speed=10, wind_dir=270)
    verdict = evaluate_segment_condition(point, 4500, _weather(visibility=None, precipitation=None))
    assert verdict.condition is SegmentCondition.GOOD


def test_terminal_uses_surface_wind_for_runway_selection():
    weather = _weather(wind_speed=35.0, wind_dir=180.0, surface_wind_speed=12.0, surface_wind_dir=275.0)
    point = build_profile_point(AIRPORT, 500.0, weather)
    verdict = evaluate_segment_condition(point, 500.0, weather, is_terminal=True, waypoint=AIRPORT)
    assert verdict.best_runway is not None
    assert verdict.best_runway.runway_ident == "27"
    assert verdict.best_runway.headwind == pytest.approx(12.0, abs=0.1)
    # Terrain clearance is not checked at terminals.
    assert verdict.condition is SegmentCondition.GOOD


def test_terminal_crosswind_feeds_the_rules():
    weather = _weather(surface_wind_speed=22.0, surface_wind_dir=0.0)
    point = build_profile_point(AIRPORT, 500.0, weather)
    verdict = evaluate_segment_condition(point, 500.0, weather, is_terminal=True, waypoint=AIRPORT)
    assert verdict.condition is SegmentCondition.POOR
    assert "High crosswind (22kt)" in verdict.reasons


def test_terminal_without_runways_skips_runway_rules():
    weather = _weather(surface_wind_speed=22.0, surface_wind_dir=0.0)
    waypoint = Waypoint(id="field", name="Field", lat=40.0, lon=-75.0, elevation=500.0)
    point = build_profile_point(waypoint, 500.0, weather)
    verdict = evaluate_segment_condition(point, 500.0, weather, is_terminal=True, waypoint=waypoint)
    assert verdict.best_runway is None
    assert verdict.condition is SegmentCondition.MARGINAL
    assert verdict.reasons == ["Elevated surface wind (22kt)"]


def test_custom_rules_change_the_verdict():
    point = ProfilePoint(altitude=4500, terrain_elevation=0, wind_speed=10, wind_dir=270)
    rules = build_rules_from_thresholds(CONSERVATIVE_THRESHOLDS)
    verdict = evaluate_segment_condition(point, 4500, _weather(visibility=10.0), rules=rules)
    assert verdict.condition is SegmentCondition.MARGINAL


def test_profile_point_converts_cloud_base_to_msl():
    point = build_profile_point(AIRPORT, 3000.0, _weather(cloud_base=600.0))
    assert point.cloud_base == pytest.approx(500.0 + meters_to_feet(600.0))
    assert point.terrain_elevation == 500.0
    assert build_profile_point(AIRPORT, 3000.0, _weather(cloud_base=0.0)).cloud_base is None
    assert build_profile_point(AIRPORT, 3000.0, _weather(cloud_base=None)).cloud_base is None
