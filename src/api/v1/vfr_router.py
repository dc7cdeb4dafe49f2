from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Literal

from fastapi import APIRouter, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field, field_validator

from services.jobs import new_job_id
from services.vfr_windows import (
    VfrWindowSearchOptions,
    VfrWindowSearchResult,
    detail_rows_to_csv,
    format_vfr_window,
    vfr_window_service,
)
from vfr.conditions import SegmentCondition
from vfr.models import ProfilePoint, Runway, RunwayEnd, Waypoint, WaypointWeather
from vfr.rules import ConditionCriteria, build_rules_from_thresholds, evaluate_all_rules
from vfr.runway import find_best_runway
from vfr.segment import evaluate_segment_condition
from vfr.thresholds import (
    THRESHOLD_PRESETS,
    ThresholdPreset,
    VfrConditionThresholds,
    get_thresholds_for_preset,
    threshold_violations,
)

logger = logging.getLogger("vfrplanner.api.vfr")

router = APIRouter(prefix="/vfr", tags=["vfr"])


class RunwayEndModel(BaseModel):
    ident: str = Field(..., min_length=1, max_length=8)
    heading: float = Field(..., ge=0.0, le=360.0, description="True heading in degrees")


class RunwayModel(BaseModel):
    id: str = Field(..., min_length=1, max_length=16)
    low_end: RunwayEndModel
    high_end: RunwayEndModel
    length_ft: float | None = Field(default=None, gt=0.0)
    surface: str | None = None
    closed: bool = False

    def to_domain(self) -> Runway:
        return Runway(
            id=self.id,
            low_end=RunwayEnd(ident=self.low_end.ident, heading_true=self.low_end.heading),
            high_end=RunwayEnd(ident=self.high_end.ident, heading_true=self.high_end.heading),
            length_ft=self.length_ft,
            surface=self.surface,
            closed=self.closed,
        )


class WaypointModel(BaseModel):
    id: str | None = None
    name: str = Field(..., min_length=1, max_length=64)
    lat: float = Field(..., ge=-90.0, le=90.0)
    lon: float = Field(..., ge=-180.0, le=180.0)
    altitude: float | None = Field(default=None, ge=0.0, description="Planned altitude in ft MSL")
    elevation: float | None = Field(default=None, description="Ground elevation in ft MSL")
    runways: list[RunwayModel] = Field(default_factory=list)
    distance: float | None = Field(default=None, ge=0.0, description="Leg distance in NM")
    bearing: float | None = Field(default=None, ge=0.0, le=360.0)
    ete: float | None = Field(default=None, ge=0.0, description="Leg time en route in minutes")

    def to_domain(self, index: int) -> Waypoint:
        return Waypoint(
            id=self.id or f"wp-{index}",
            name=self.name,
            lat=self.lat,
            lon=self.lon,
            altitude=self.altitude,
            elevation=self.elevation,
            runways=tuple(runway.to_domain() for runway in self.runways),
            distance=self.distance,
            bearing=self.bearing,
            ete=self.ete,
        )


class WindowSearchRequest(BaseModel):
    waypoints: list[WaypointModel]
    default_altitude: float = Field(..., ge=0.0, le=20000.0, description="Cruise altitude in ft MSL")
    flight_duration_minutes: float = Field(..., ge=0.0, le=24 * 60)
    minimum_condition: Literal["good", "marginal"] = "marginal"
    max_concurrent: int | None = Field(default=None, ge=1, le=32)
    max_windows: int | None = Field(default=None, ge=1, le=50)
    start_from: datetime | None = None
    include_night_flights: bool = False
    route_coordinates: tuple[float, float] | None = None
    threshold_preset: ThresholdPreset = "standard"
    thresholds: dict[str, Any] | None = Field(
        default=None,
        description="Custom poor/marginal pairs keyed by criterion; used with the custom preset.",
    )
    collect_detailed_data: bool = False
    job_id: str | None = Field(default=None, max_length=64)

    @field_validator("start_from")
    @classmethod
    def ensure_timezone(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class VfrWindowModel(BaseModel):
    start_time: datetime
    end_time: datetime
    duration: float
    worst_condition: SegmentCondition
    confidence: Literal["high", "medium", "low"]
    label: dict[str, str]


class SearchRangeModel(BaseModel):
    start: datetime
    end: datetime


class WindowSearchResponse(BaseModel):
    job_id: str
    windows: list[VfrWindowModel]
    search_range: SearchRangeModel
    minimum_condition: Literal["good", "marginal"]
    flight_duration: float
    limited_by: str | None = None
    detail_rows: list[dict[str, Any]] = Field(default_factory=list)


class WeatherSnapshotModel(BaseModel):
    wind_speed: float | None = Field(default=None, ge=0.0, description="Wind at altitude in kt")
    wind_dir: float | None = Field(default=None, ge=0.0, le=360.0)
    wind_gust: float | None = Field(default=None, ge=0.0)
    surface_wind_speed: float | None = Field(default=None, ge=0.0)
    surface_wind_dir: float | None = Field(default=None, ge=0.0, le=360.0)
    cloud_base: float | None = Field(default=None, description="Cloud base in metres AGL")
    visibility: float | None = Field(default=None, ge=0.0, description="Visibility in km")
    precipitation: float | None = Field(default=None, ge=0.0, description="Precipitation in mm")


class SegmentEvaluationRequest(BaseModel):
    altitude: float = Field(..., ge=0.0, description="Flight altitude in ft MSL")
    terrain_elevation: float = Field(default=0.0, description="Ground elevation in ft MSL")
    cloud_base: float | None = Field(default=None, description="Cloud base in ft MSL")
    wind_speed: float | None = Field(default=None, ge=0.0)
    wind_dir: float | None = Field(default=None, ge=0.0, le=360.0)
    is_terminal: bool = False
    runways: list[RunwayModel] = Field(default_factory=list)
    weather: WeatherSnapshotModel | None = None
    threshold_preset: ThresholdPreset = "standard"
    thresholds: dict[str, Any] | None = None


class BestRunwayModel(BaseModel):
    runway_ident: str
    runway_id: str
    heading: float
    headwind: float
    crosswind: float
    gust_crosswind: float | None = None
    is_tailwind: bool


class SegmentEvaluationResponse(BaseModel):
    condition: SegmentCondition
    reasons: list[str]
    best_runway: BestRunwayModel | None = None


class RuleEvaluationRequest(BaseModel):
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
    is_terminal: bool = False
    threshold_preset: ThresholdPreset = "standard"
    thresholds: dict[str, Any] | None = None


class RuleEvaluationResponse(BaseModel):
    condition: SegmentCondition
    reasons: list[str]


class BestRunwayRequest(BaseModel):
    runways: list[RunwayModel]
    wind_dir: float = Field(..., ge=0.0, le=360.0)
    wind_speed: float = Field(..., ge=0.0)
    gust_speed: float | None = Field(default=None, ge=0.0)

    @field_validator("runways")
    @classmethod
    def ensure_runways(cls, value: list[RunwayModel]) -> list[RunwayModel]:
        if not value:
            raise ValueError("At least one runway is required")
        return value


class ThresholdValidationRequest(BaseModel):
    thresholds: dict[str, Any]


class ThresholdValidationResponse(BaseModel):
    valid: bool
    violations: list[str]


def _resolve_thresholds(preset: ThresholdPreset, custom: dict[str, Any] | None) -> VfrConditionThresholds:
    parsed: VfrConditionThresholds | None = None
    if custom is not None:
        try:
            parsed = VfrConditionThresholds.from_payload(custom)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        preset = "custom"
    thresholds = get_thresholds_for_preset(preset, parsed)
    violations = threshold_violations(thresholds)
    if violations:
        raise HTTPException(
            status_code=422,
            detail={"message": "Marginal and poor thresholds are inverted", "violations": violations},
        )
    return thresholds


def _search_options(request: WindowSearchRequest) -> VfrWindowSearchOptions:
    return VfrWindowSearchOptions(
        minimum_condition=request.minimum_condition,
        max_concurrent=request.max_concurrent,
        max_windows=request.max_windows,
        start_from=request.start_from,
        include_night_flights=request.include_night_flights,
        route_coordinates=request.route_coordinates,
        thresholds=_resolve_thresholds(request.threshold_preset, request.thresholds),
        collect_detailed_data=request.collect_detailed_data,
    )


async def _run_search(request: WindowSearchRequest, job_id: str) -> VfrWindowSearchResult:
    options = _search_options(request)
    waypoints = [model.to_domain(index) for index, model in enumerate(request.waypoints)]
    logger.info(
        "Window search %s: %s waypoints, %.0f min flight, minimum=%s",
        job_id,
        len(waypoints),
        request.flight_duration_minutes,
        request.minimum_condition,
    )
    return await vfr_window_service.search(
        waypoints,
        request.default_altitude,
        request.flight_duration_minutes,
        options,
        job_id=job_id,
    )


@router.post("/windows", response_model=WindowSearchResponse)
async def search_windows(request: WindowSearchRequest) -> WindowSearchResponse:
    job_id = request.job_id or new_job_id()
    result = await _run_search(request, job_id)
    windows = [
        VfrWindowModel(
            start_time=window.start_time,
            end_time=window.end_time,
            duration=window.duration,
            worst_condition=window.worst_condition,
            confidence=window.confidence,
            label=format_vfr_window(window),
        )
        for window in result.windows
    ]
    return WindowSearchResponse(
        job_id=job_id,
        windows=windows,
        search_range=SearchRangeModel(start=result.search_range.start, end=result.search_range.end),
        minimum_condition=result.minimum_condition,
        flight_duration=result.flight_duration,
        limited_by=result.limited_by,
        detail_rows=[row.to_payload() for row in result.detail_rows],
    )


@router.post("/windows/export", response_class=PlainTextResponse)
async def export_window_evaluations(request: WindowSearchRequest) -> PlainTextResponse:
    """Run a search and return every waypoint evaluation as CSV."""

    request = request.model_copy(update={"collect_detailed_data": True})
    job_id = request.job_id or new_job_id()
    result = await _run_search(request, job_id)
    headers = {
        "Content-Disposition": f'attachment; filename="vfr-evaluations-{job_id}.csv"',
        "X-Job-Id": job_id,
    }
    return PlainTextResponse(detail_rows_to_csv(result.detail_rows), media_type="text/csv", headers=headers)


@router.post("/conditions/evaluate", response_model=SegmentEvaluationResponse)
async def evaluate_conditions(request: SegmentEvaluationRequest) -> SegmentEvaluationResponse:
    thresholds = _resolve_thresholds(request.threshold_preset, request.thresholds)
    point = ProfilePoint(
        altitude=request.altitude,
        terrain_elevation=request.terrain_elevation,
        cloud_base=request.cloud_base,
        wind_speed=request.wind_speed,
        wind_dir=request.wind_dir,
    )
    weather: WaypointWeather | None = None
    if request.weather is not None:
        weather = WaypointWeather(timestamp=datetime.now(timezone.utc), **request.weather.model_dump())
    waypoint: Waypoint | None = None
    if request.runways:
        waypoint = Waypoint(
            id="preview",
            name="preview",
            lat=0.0,
            lon=0.0,
            elevation=request.terrain_elevation,
            runways=tuple(runway.to_domain() for runway in request.runways),
        )
    verdict = evaluate_segment_condition(
        point,
        request.altitude,
        weather,
        request.is_terminal,
        waypoint,
        build_rules_from_thresholds(thresholds),
    )
    return SegmentEvaluationResponse(**verdict.to_payload())


@router.post("/conditions/rules", response_model=RuleEvaluationResponse)
async def evaluate_rules(request: RuleEvaluationRequest) -> RuleEvaluationResponse:
    thresholds = _resolve_thresholds(request.threshold_preset, request.thresholds)
    criteria = ConditionCriteria(
        **request.model_dump(exclude={"is_terminal", "threshold_preset", "thresholds"}),
    )
    result = evaluate_all_rules(criteria, request.is_terminal, build_rules_from_thresholds(thresholds))
    return RuleEvaluationResponse(condition=result.condition, reasons=result.reasons)


@router.post("/runways/best", response_model=BestRunwayModel)
async def best_runway(request: BestRunwayRequest) -> BestRunwayModel:
    result = find_best_runway(
        [runway.to_domain() for runway in request.runways],
        request.wind_dir,
        request.wind_speed,
        request.gust_speed,
    )
    if result is None:
        raise HTTPException(status_code=404, detail="No runway ends available")
    return BestRunwayModel(**result.to_payload())


@router.get("/thresholds/presets")
async def threshold_presets() -> dict[str, dict[str, dict[str, float]]]:
    return {name: thresholds.to_payload() for name, thresholds in THRESHOLD_PRESETS.items()}


@router.post("/thresholds/validate", response_model=ThresholdValidationResponse)
async def validate_threshold_set(request: ThresholdValidationRequest) -> ThresholdValidationResponse:
    try:
        thresholds = VfrConditionThresholds.from_payload(request.thresholds)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    violations = threshold_violations(thresholds)
    return ThresholdValidationResponse(valid=not violations, violations=violations)


__all__ = ["router"]
