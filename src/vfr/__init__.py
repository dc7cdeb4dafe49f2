"""VFR condition evaluation: thresholds, rules, runway wind and daylight."""

from .conditions import SegmentCondition, calculate_confidence, meets_minimum_condition, worse_condition
from .models import ForecastTimeRange, ProfilePoint, Runway, RunwayEnd, Waypoint, WaypointWeather
from .rules import ConditionCriteria, build_rules_from_thresholds, evaluate_all_rules, evaluate_rule
from .runway import BestRunwayResult, calculate_wind_component, find_best_runway
from .segment import SegmentVerdict, build_profile_point, evaluate_segment_condition
from .sun import filter_to_daylight_hours, get_sun_times, is_daylight
from .thresholds import (
    CONSERVATIVE_THRESHOLDS,
    STANDARD_THRESHOLDS,
    ConditionThreshold,
    VfrConditionThresholds,
    get_thresholds_for_preset,
    validate_thresholds,
)

__all__ = [
    "BestRunwayResult",
    "CONSERVATIVE_THRESHOLDS",
    "ConditionCriteria",
    "ConditionThreshold",
    "ForecastTimeRange",
    "ProfilePoint",
    "Runway",
    "RunwayEnd",
    "STANDARD_THRESHOLDS",
    "SegmentCondition",
    "SegmentVerdict",
    "VfrConditionThresholds",
    "Waypoint",
    "WaypointWeather",
    "build_profile_point",
    "build_rules_from_thresholds",
    "calculate_confidence",
    "calculate_wind_component",
    "evaluate_all_rules",
    "evaluate_rule",
    "evaluate_segment_condition",
    "filter_to_daylight_hours",
    "find_best_runway",
    "get_sun_times",
    "get_thresholds_for_preset",
    "is_daylight",
    "meets_minimum_condition",
    "validate_thresholds",
    "worse_condition",
]
