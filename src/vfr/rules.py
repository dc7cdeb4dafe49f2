"""Fixed VFR rule table and its evaluation."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Final, Literal, Sequence

from .conditions import SegmentCondition
from .thresholds import STANDARD_THRESHOLDS, VfrConditionThresholds

# Stand-in for unlimited ceiling or cloud clearance; rules treat it as not applicable.
CLEAR_SKY_SENTINEL: Final[float] = 999_999.0

RuleOperator = Literal["lt", "gt"]


@dataclass(frozen=True, slots=True)
class ConditionCriteria:
    """Observed values for one point in space and time.

    Attributes:
        wind_speed: Wind speed at flight altitude [kt].
        gust_speed: Gust speed [kt].
        cloud_base_agl: Ceiling above ground [ft].
        visibility: Visibility [km].
        precipitation: Precipitation [mm].
        terrain_clearance: Altitude above terrain [ft].
        cloud_clearance: Distance below the cloud base [ft].
        terminal_wind_speed: Surface wind at a departure or arrival point [kt].
        terminal_wind_dir: Surface wind direction at the terminal [deg].
        crosswind_kt: Runway crosswind component [kt].
        headwind_kt: Runway headwind component; negative is a tailwind [kt].
    """

    wind_speed: float | None = None
    gust_speed: float | None = None
    cloud_base_agl: float | None = None
    visibility: float | None = None
    precipitation: float | None = None
    terrain_clearance: float | None = None
    cloud_clearance: float | None = None
    terminal_wind_speed: float | None = None
    terminal_wind_dir: float | None = None
    crosswind_kt: float | None = None
    headwind_kt: float | None = None


@dataclass(frozen=True, slots=True)
class VfrConditionRule:
    id: str
    name: str
    operator: RuleOperator
    poor_threshold: float
    marginal_threshold: float
    get_value: Callable[[ConditionCriteria], float | None]
    poor_message: str
    marginal_message: str
    terminal_only: bool = False
    skip_for_terminal: bool = False


@dataclass(frozen=True, slots=True)
class RuleResult:
    condition: SegmentCondition
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class RulesEvaluation:
    condition: SegmentCondition
    reasons: list[str]


def _below_sentinel(value: float | None) -> float | None:
    if value is None or value >= CLEAR_SKY_SENTINEL:
        return None
    return value


def build_rules_from_thresholds(thresholds: VfrConditionThresholds) -> tuple[VfrConditionRule, ...]:
    """Return the nine-rule table parameterized by ``thresholds``."""

    return (
        VfrConditionRule(
            id="terminal-wind-speed",
            name="Surface Wind Speed",
            operator="gt",
            poor_threshold=thresholds.surface_wind_speed.poor,
            marginal_threshold=thresholds.surface_wind_speed.marginal,
            get_value=lambda c: c.terminal_wind_speed,
            poor_message="High surface wind ({value}kt)",
            marginal_message="Elevated surface wind ({value}kt)",
            terminal_only=True,
        ),
        VfrConditionRule(
            id="terminal-gust",
            name="Surface Gusts",
            operator="gt",
            poor_threshold=thresholds.surface_gusts.poor,
            marginal_threshold=thresholds.surface_gusts.marginal,
            get_value=lambda c: c.gust_speed,
            poor_message="High gusts ({value}kt)",
            marginal_message="Elevated gusts ({value}kt)",
            terminal_only=True,
        ),
        VfrConditionRule(
            id="crosswind",
            name="Crosswind Component",
            operator="gt",
            poor_threshold=thresholds.crosswind.poor,
            marginal_threshold=thresholds.crosswind.marginal,
            get_value=lambda c: c.crosswind_kt,
            poor_message="High crosswind ({value}kt)",
            marginal_message="Crosswind ({value}kt)",
            terminal_only=True,
        ),
        # Compares the headwind against negated tailwind limits.
        VfrConditionRule(
            id="tailwind",
            name="Tailwind Component",
            operator="lt",
            poor_threshold=-thresholds.tailwind.poor,
            marginal_threshold=-thresholds.tailwind.marginal,
            get_value=lambda c: c.headwind_kt,
            poor_message="Strong tailwind ({value}kt)",
            marginal_message="Tailwind ({value}kt)",
            terminal_only=True,
        ),
        VfrConditionRule(
            id="cloud-base-agl",
            name="Cloud Base AGL",
            operator="lt",
            poor_threshold=thresholds.cloud_base_agl.poor,
            marginal_threshold=thresholds.cloud_base_agl.marginal,
            get_value=lambda c: _below_sentinel(c.cloud_base_agl),
            poor_message="Low ceiling ({value}ft AGL)",
            marginal_message="Marginal ceiling ({value}ft AGL)",
        ),
        VfrConditionRule(
            id="visibility",
            name="Visibility",
            operator="lt",
            poor_threshold=thresholds.visibility.poor,
            marginal_threshold=thresholds.visibility.marginal,
            get_value=lambda c: c.visibility,
            poor_message="Low visibility ({value}km)",
            marginal_message="Reduced visibility ({value}km)",
        ),
        VfrConditionRule(
            id="precipitation",
            name="Precipitation",
            operator="gt",
            poor_threshold=thresholds.precipitation.poor,
            marginal_threshold=thresholds.precipitation.marginal,
            get_value=lambda c: c.precipitation,
            poor_message="Heavy precipitation ({value}mm)",
            marginal_message="Moderate precipitation ({value}mm)",
        ),
        VfrConditionRule(
            id="terrain-clearance",
            name="Terrain Clearance",
            operator="lt",
            poor_threshold=thresholds.terrain_clearance.poor,
            marginal_threshold=thresholds.terrain_clearance.marginal,
            get_value=lambda c: c.terrain_clearance,
            poor_message="Low terrain clearance ({value}ft)",
            marginal_message="Marginal terrain clearance ({value}ft)",
            skip_for_terminal=True,
        ),
        VfrConditionRule(
            id="cloud-clearance",
            name="Cloud Clearance",
            operator="lt",
            poor_threshold=thresholds.cloud_clearance.poor,
            marginal_threshold=thresholds.cloud_clearance.marginal,
            get_value=lambda c: _below_sentinel(c.cloud_clearance),
            poor_message="Insufficient cloud clearance ({value}ft)",
            marginal_message="Marginal cloud clearance ({value}ft)",
        ),
    )


DEFAULT_RULES: Final[tuple[VfrConditionRule, ...]] = build_rules_from_thresholds(STANDARD_THRESHOLDS)


def format_rule_message(template: str, value: float) -> str:
    # Half-up rounding of the magnitude, so -12.5 kt reads as 13.
    rounded = int(math.floor(abs(value) + 0.5))
    return template.replace("{value}", str(rounded))


def _breaches(operator: RuleOperator, value: float, threshold: float) -> bool:
    return value < threshold if operator == "lt" else value > threshold


def _read_value(rule: VfrConditionRule, criteria: ConditionCriteria) -> float | None:
    try:
        value = rule.get_value(criteria)
        if value is None:
            return None
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(numeric):
        return None
    return numeric


def evaluate_rule(rule: VfrConditionRule, criteria: ConditionCriteria, is_terminal: bool) -> RuleResult | None:
    """Return the rule's verdict, or ``None`` when it does not apply."""

    if rule.terminal_only and not is_terminal:
        return None
    if rule.skip_for_terminal and is_terminal:
        return None
    value = _read_value(rule, criteria)
    if value is None:
        return None
    if _breaches(rule.operator, value, rule.poor_threshold):
        return RuleResult(SegmentCondition.POOR, format_rule_message(rule.poor_message, value))
    if _breaches(rule.operator, value, rule.marginal_threshold):
        return RuleResult(SegmentCondition.MARGINAL, format_rule_message(rule.marginal_message, value))
    return RuleResult(SegmentCondition.GOOD)


def evaluate_all_rules(
    criteria: ConditionCriteria,
    is_terminal: bool,
    rules: Sequence[VfrConditionRule] = DEFAULT_RULES,
) -> RulesEvaluation:
    """Aggregate every applicable rule into one verdict.

    Any poor rule makes the verdict poor, otherwise any marginal rule makes it
    marginal. Reasons from every firing rule are kept in rule-table order and
    are empty for a good verdict.
    """

    worst = SegmentCondition.GOOD
    reasons: list[str] = []
    for rule in rules:
        result = evaluate_rule(rule, criteria, is_terminal)
        if result is None or result.reason is None:
            continue
        reasons.append(result.reason)
        if result.condition > worst:
            worst = result.condition

    if worst is not SegmentCondition.GOOD:
        return RulesEvaluation(worst, reasons)
    return RulesEvaluation(SegmentCondition.GOOD, [])


__all__ = [
    "CLEAR_SKY_SENTINEL",
    "ConditionCriteria",
    "DEFAULT_RULES",
    "RuleOperator",
    "RuleResult",
    "RulesEvaluation",
    "VfrConditionRule",
    "build_rules_from_thresholds",
    "evaluate_all_rules",
    "evaluate_rule",
    "format_rule_message",
]
