"""Threshold sets that parameterize the VFR condition rules."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Final, Literal, Mapping

ThresholdPreset = Literal["standard", "conservative", "custom"]

# Criteria where a lower observed value is worse (marginal >= poor).
LESS_THAN_FIELDS: Final[tuple[str, ...]] = (
    "cloud_base_agl",
    "visibility",
    "terrain_clearance",
    "cloud_clearance",
)
# Criteria where a higher observed value is worse (marginal <= poor).
GREATER_THAN_FIELDS: Final[tuple[str, ...]] = (
    "precipitation",
    "surface_wind_speed",
    "surface_gusts",
    "crosswind",
    "tailwind",
)

_PAYLOAD_KEYS: Final[dict[str, str]] = {
    "cloud_base_agl": "cloudBaseAgl",
    "visibility": "visibility",
    "precipitation": "precipitation",
    "surface_wind_speed": "surfaceWindSpeed",
    "surface_gusts": "surfaceGusts",
    "crosswind": "crosswind",
    "tailwind": "tailwind",
    "terrain_clearance": "terrainClearance",
    "cloud_clearance": "cloudClearance",
}


class ThresholdValidationError(ValueError):
    """Raised when a threshold set violates the poor/marginal ordering."""

    def __init__(self, violations: list[str]) -> None:
        super().__init__(f"Invalid thresholds: {', '.join(violations)}")
        self.violations = violations


@dataclass(frozen=True, slots=True)
class ConditionThreshold:
    poor: float
    marginal: float


@dataclass(frozen=True, slots=True)
class VfrConditionThresholds:
    """Poor/marginal boundaries for the nine VFR criteria.

    Attributes:
        cloud_base_agl: Ceiling above ground level [ft].
        visibility: Horizontal visibility [km].
        precipitation: Precipitation amount [mm].
        surface_wind_speed: Sustained surface wind at terminals [kt].
        surface_gusts: Gust speed at terminals [kt].
        crosswind: Runway crosswind component [kt].
        tailwind: Runway tailwind component, stored as a positive number [kt].
        terrain_clearance: Flight altitude above terrain [ft].
        cloud_clearance: Vertical distance below the cloud base [ft].
    """

    cloud_base_agl: ConditionThreshold
    visibility: ConditionThreshold
    precipitation: ConditionThreshold
    surface_wind_speed: ConditionThreshold
    surface_gusts: ConditionThreshold
    crosswind: ConditionThreshold
    tailwind: ConditionThreshold
    terrain_clearance: ConditionThreshold
    cloud_clearance: ConditionThreshold

    def to_payload(self) -> dict[str, dict[str, float]]:
        data = asdict(self)
        return {_PAYLOAD_KEYS[name]: data[name] for name in _PAYLOAD_KEYS}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> VfrConditionThresholds:
        """Build a threshold set from camelCase or snake_case keys."""

        values: dict[str, ConditionThreshold] = {}
        for name, camel in _PAYLOAD_KEYS.items():
            raw = payload.get(camel, payload.get(name))
            if not isinstance(raw, Mapping):
                raise ValueError(f"Missing threshold '{camel}'")
            try:
                values[name] = ConditionThreshold(poor=float(raw["poor"]), marginal=float(raw["marginal"]))
            except (KeyError, TypeError, ValueError) as exc:
                raise ValueError(f"Threshold '{camel}' needs numeric poor and marginal values") from exc
        return cls(**values)


STANDARD_THRESHOLDS: Final[VfrConditionThresholds] = VfrConditionThresholds(
    cloud_base_agl=ConditionThreshold(poor=1500, marginal=2000),
    visibility=ConditionThreshold(poor=5, marginal=8),
    precipitation=ConditionThreshold(poor=5, marginal=2),
    surface_wind_speed=ConditionThreshold(poor=25, marginal=20),
    surface_gusts=ConditionThreshold(poor=35, marginal=30),
    crosswind=ConditionThreshold(poor=20, marginal=15),
    tailwind=ConditionThreshold(poor=15, marginal=10),
    terrain_clearance=ConditionThreshold(poor=500, marginal=1000),
    cloud_clearance=ConditionThreshold(poor=200, marginal=500),
)

CONSERVATIVE_THRESHOLDS: Final[VfrConditionThresholds] = VfrConditionThresholds(
    cloud_base_agl=ConditionThreshold(poor=2000, marginal=3000),
    visibility=ConditionThreshold(poor=8, marginal=12),
    precipitation=ConditionThreshold(poor=3, marginal=1),
    surface_wind_speed=ConditionThreshold(poor=20, marginal=15),
    surface_gusts=ConditionThreshold(poor=28, marginal=22),
    crosswind=ConditionThreshold(poor=15, marginal=10),
    tailwind=ConditionThreshold(poor=10, marginal=5),
    terrain_clearance=ConditionThreshold(poor=1000, marginal=1500),
    cloud_clearance=ConditionThreshold(poor=500, marginal=1000),
)

THRESHOLD_PRESETS: Final[dict[str, VfrConditionThresholds]] = {
    "standard": STANDARD_THRESHOLDS,
    "conservative": CONSERVATIVE_THRESHOLDS,
}


def get_thresholds_for_preset(
    preset: ThresholdPreset,
    custom: VfrConditionThresholds | None = None,
) -> VfrConditionThresholds:
    if preset == "custom":
        return custom if custom is not None else STANDARD_THRESHOLDS
    return THRESHOLD_PRESETS.get(preset, STANDARD_THRESHOLDS)


def threshold_violations(thresholds: VfrConditionThresholds) -> list[str]:
    """Return the names of fields whose poor/marginal ordering is inverted."""

    violations: list[str] = []
    for item in fields(thresholds):
        threshold: ConditionThreshold = getattr(thresholds, item.name)
        if item.name in LESS_THAN_FIELDS and threshold.marginal < threshold.poor:
            violations.append(item.name)
        elif item.name in GREATER_THAN_FIELDS and threshold.marginal > threshold.poor:
            violations.append(item.name)
    return violations


def validate_thresholds(thresholds: VfrConditionThresholds) -> bool:
    return not threshold_violations(thresholds)


def require_valid_thresholds(thresholds: VfrConditionThresholds) -> VfrConditionThresholds:
    violations = threshold_violations(thresholds)
    if violations:
        raise ThresholdValidationError(violations)
    return thresholds


__all__ = [
    "CONSERVATIVE_THRESHOLDS",
    "ConditionThreshold",
    "GREATER_THAN_FIELDS",
    "LESS_THAN_FIELDS",
    "STANDARD_THRESHOLDS",
    "THRESHOLD_PRESETS",
    "ThresholdPreset",
    "ThresholdValidationError",
    "VfrConditionThresholds",
    "get_thresholds_for_preset",
    "require_valid_thresholds",
    "threshold_violations",
    "validate_thresholds",
]
