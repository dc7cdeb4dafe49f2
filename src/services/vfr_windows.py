from __future__ import annotations

import asyncio
import csv
import inspect
import io
import logging
import math
import time as time_utils
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence

from config import settings
from vfr.conditions import (
    Confidence,
    MinimumConditionLevel,
    SegmentCondition,
    calculate_confidence,
    meets_minimum_condition,
    worse_condition,
)
from vfr.models import ForecastTimeRange, Waypoint, WaypointWeather
from vfr.rules import VfrConditionRule, build_rules_from_thresholds
from vfr.segment import build_profile_point, evaluate_segment_condition
from vfr.sun import filter_to_daylight_hours
from vfr.thresholds import STANDARD_THRESHOLDS, VfrConditionThresholds

from .forecast_cache import ForecastCache, WeatherCache
from .forecast_source import ForecastSource, fetch_with_deadline, forecast_source
from .jobs import new_job_id, run_job

logger = logging.getLogger("vfrplanner.search")

ProgressCallback = Callable[[float], Optional[Awaitable[None]]]
DepartureEvaluator = Callable[[datetime], Awaitable["DepartureTimeEvaluation"]]

PREFETCH_PROGRESS = 0.05
SCAN_PROGRESS_END = 0.65
REFINE_PROGRESS_END = 0.95
NO_WEATHER_REASON = "Unable to fetch weather data"


@dataclass(slots=True)
class VfrWindowSearchOptions:
    minimum_condition: MinimumConditionLevel = "marginal"
    max_concurrent: int | None = None
    max_windows: int | None = None
    start_from: datetime | None = None
    include_night_flights: bool = False
    route_coordinates: tuple[float, float] | None = None
    thresholds: VfrConditionThresholds | None = None
    collect_detailed_data: bool = False


@dataclass(frozen=True, slots=True)
class WaypointTiming:
    index: int
    waypoint: Waypoint
    altitude: float
    arrival_time: datetime
    is_terminal: bool


@dataclass(frozen=True, slots=True)
class DepartureTimeEvaluation:
    departure_time: datetime
    is_acceptable: bool
    worst_condition: SegmentCondition
    limiting_waypoint: str | None = None
    limiting_reasons: tuple[str, ...] = ()

    def to_payload(self) -> dict[str, Any]:
        return {
            "departure_time": self.departure_time.isoformat(),
            "is_acceptable": self.is_acceptable,
            "worst_condition": self.worst_condition.value,
            "limiting_waypoint": self.limiting_waypoint,
            "limiting_reasons": list(self.limiting_reasons),
        }


@dataclass(frozen=True, slots=True)
class WaypointEvaluationDetail:
    """One waypoint evaluated at one departure time, for tabular export."""

    departure_time: datetime
    waypoint_name: str
    waypoint_index: int
    arrival_time: datetime
    altitude: float
    terrain_elevation: float
    condition: SegmentCondition
    condition_reasons: str
    is_terminal: bool
    wind_speed: float | None = None
    wind_dir: float | None = None
    wind_gust: float | None = None
    temperature: float | None = None
    dew_point: float | None = None
    cloud_base_ft: float | None = None
    visibility: float | None = None

    def to_payload(self) -> dict[str, Any]:
        data = asdict(self)
        data["departure_time"] = self.departure_time.isoformat()
        data["arrival_time"] = self.arrival_time.isoformat()
        data["condition"] = self.condition.value
        return data


@dataclass(frozen=True, slots=True)
class VfrWindow:
    """A span of acceptable departure times.

    Attributes:
        start_time: Earliest acceptable departure.
        end_time: Latest acceptable departure.
        duration: Length of the span [min].
        worst_condition: Worst verdict observed inside the span.
        confidence: Forecast lead-time bucket of the start.
    """

    start_time: datetime
    end_time: datetime
    duration: float
    worst_condition: SegmentCondition
    confidence: Confidence

    def to_payload(self) -> dict[str, Any]:
        return {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration": self.duration,
            "worst_condition": self.worst_condition.value,
            "confidence": self.confidence,
        }


@dataclass(slots=True)
class VfrWindowSearchResult:
    windows: list[VfrWindow]
    search_range: ForecastTimeRange
    minimum_condition: MinimumConditionLevel
    flight_duration: float
    limited_by: str | None = None
    detail_rows: list[WaypointEvaluationDetail] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "windows": [window.to_payload() for window in self.windows],
            "search_range": {
                "start": self.search_range.start.isoformat(),
                "end": self.search_range.end.isoformat(),
            },
            "minimum_condition": self.minimum_condition,
            "flight_duration": self.flight_duration,
            "limited_by": self.limited_by,
            "detail_rows": [row.to_payload() for row in self.detail_rows],
        }


def calculate_waypoint_timings(
    departure_time: datetime,
    waypoints: Sequence[Waypoint],
    default_altitude: float,
) -> list[WaypointTiming]:
    """Project arrival times from the cumulative ETE of the preceding legs."""

    timings: list[WaypointTiming] = []
    cumulative_minutes = 0.0
    last_index = len(waypoints) - 1
    for index, waypoint in enumerate(waypoints):
        timings.append(
            WaypointTiming(
                index=index,
                waypoint=waypoint,
                altitude=waypoint.altitude if waypoint.altitude is not None else default_altitude,
                arrival_time=departure_time + timedelta(minutes=cumulative_minutes),
                is_terminal=index == 0 or index == last_index,
            )
        )
        cumulative_minutes += waypoint.ete or 0.0
    return timings


class SearchContext:
    """Per-search state: caches, rule table and every evaluation made so far.

    Created for one call of :func:`find_vfr_windows` and cleared when it ends,
    so concurrent searches never share cached weather.
    """

    def __init__(
        self,
        source: ForecastSource,
        waypoints: Sequence[Waypoint],
        default_altitude: float,
        minimum_condition: MinimumConditionLevel,
        rules: Sequence[VfrConditionRule],
        *,
        forecast_cache: ForecastCache | None = None,
        weather_cache: WeatherCache | None = None,
        collect_details: bool = False,
    ) -> None:
        self.source = source
        self.waypoints = list(waypoints)
        self.default_altitude = default_altitude
        self.minimum_condition = minimum_condition
        self.rules = tuple(rules)
        self.forecast_cache = forecast_cache if forecast_cache is not None else ForecastCache(source)
        self.weather_cache = weather_cache if weather_cache is not None else WeatherCache()
        self.collect_details = collect_details
        self.detail_rows: list[WaypointEvaluationDetail] = []
        self.evaluations: dict[datetime, DepartureTimeEvaluation] = {}

    async def weather_for(self, timing: WaypointTiming) -> WaypointWeather | None:
        wp = timing.waypoint
        if self.weather_cache.has(wp.lat, wp.lon, timing.arrival_time):
            return self.weather_cache.get(wp.lat, wp.lon, timing.arrival_time)
        weather = self.forecast_cache.extract_weather(wp.lat, wp.lon, timing.arrival_time, timing.altitude)
        if weather is None:
            weather = await fetch_with_deadline(
                self.source.fetch_waypoint_weather(wp.lat, wp.lon, timing.arrival_time, timing.altitude),
                settings.forecast_point_timeout,
                f"Point weather for {wp.name or wp.id}",
            )
        self.weather_cache.set(wp.lat, wp.lon, timing.arrival_time, weather)
        return weather

    async def evaluate(self, departure_time: datetime) -> DepartureTimeEvaluation:
        evaluation = await evaluate_departure_time(self, departure_time)
        self.evaluations[departure_time] = evaluation
        return evaluation

    def worst_condition_between(
        self, start: datetime, end: datetime, default: SegmentCondition
    ) -> SegmentCondition:
        worst: SegmentCondition | None = None
        for departure_time, evaluation in self.evaluations.items():
            if evaluation.is_acceptable and start <= departure_time <= end:
                worst = evaluation.worst_condition if worst is None else worse_condition(worst, evaluation.worst_condition)
        return worst if worst is not None else default

    def clear(self) -> None:
        self.forecast_cache.clear()
        self.weather_cache.clear()


async def evaluate_departure_time(ctx: SearchContext, departure_time: datetime) -> DepartureTimeEvaluation:
    """Evaluate the whole route for one departure time.

    Weather for every waypoint is gathered concurrently, then waypoints are
    checked in route order and the first unacceptable one ends the check.
    Detailed evaluations check every waypoint.
    """

    timings = calculate_waypoint_timings(departure_time, ctx.waypoints, ctx.default_altitude)
    weathers = await asyncio.gather(*(ctx.weather_for(timing) for timing in timings))

    worst = SegmentCondition.GOOD
    limiting_waypoint: str | None = None
    limiting_reasons: tuple[str, ...] = ()
    rejected: DepartureTimeEvaluation | None = None
    for timing, weather in zip(timings, weathers):
        wp = timing.waypoint
        if weather is None:
            condition = SegmentCondition.UNKNOWN
            reasons: list[str] = [NO_WEATHER_REASON]
            point = None
        else:
            point = build_profile_point(wp, timing.altitude, weather)
            verdict = evaluate_segment_condition(point, timing.altitude, weather, timing.is_terminal, wp, ctx.rules)
            condition, reasons = verdict.condition, verdict.reasons

        if ctx.collect_details:
            ctx.detail_rows.append(
                WaypointEvaluationDetail(
                    departure_time=departure_time,
                    waypoint_name=wp.name or f"WP{timing.index}",
                    waypoint_index=timing.index,
                    arrival_time=timing.arrival_time,
                    altitude=timing.altitude,
                    terrain_elevation=wp.elevation or 0.0,
                    condition=condition,
                    condition_reasons="; ".join(reasons),
                    is_terminal=timing.is_terminal,
                    wind_speed=weather.wind_speed if weather else None,
                    wind_dir=weather.wind_dir if weather else None,
                    wind_gust=weather.wind_gust if weather else None,
                    temperature=weather.temperature if weather else None,
                    dew_point=weather.dew_point if weather else None,
                    cloud_base_ft=point.cloud_base if point else None,
                    visibility=weather.visibility if weather else None,
                )
            )

        if condition >= worst:
            worst = condition
            if reasons:
                limiting_waypoint = wp.name
                limiting_reasons = tuple(reasons)

        if rejected is None and not meets_minimum_condition(condition, ctx.minimum_condition):
            rejected = DepartureTimeEvaluation(
                departure_time=departure_time,
                is_acceptable=False,
                worst_condition=condition,
                limiting_waypoint=wp.name,
                limiting_reasons=tuple(reasons),
            )
            if not ctx.collect_details:
                return rejected

    if rejected is not None:
        return rejected
    return DepartureTimeEvaluation(
        departure_time=departure_time,
        is_acceptable=True,
        worst_condition=worst,
        limiting_waypoint=limiting_waypoint,
        limiting_reasons=limiting_reasons,
    )


def find_contiguous_ranges(evaluations: Sequence[DepartureTimeEvaluation]) -> list[tuple[datetime, datetime]]:
    """Collect maximal runs of acceptable departure times as ``(first, last)`` pairs."""

    ranges: list[tuple[datetime, datetime]] = []
    run_start: datetime | None = None
    run_end: datetime | None = None
    for evaluation in sorted(evaluations, key=lambda item: item.departure_time):
        if evaluation.is_acceptable:
            if run_start is None:
                run_start = evaluation.departure_time
            run_end = evaluation.departure_time
        elif run_start is not None and run_end is not None:
            ranges.append((run_start, run_end))
            run_start = run_end = None
    if run_start is not None and run_end is not None:
        ranges.append((run_start, run_end))
    return ranges


async def refine_window_boundary(
    known_good: datetime,
    known_bad: datetime,
    evaluate: DepartureEvaluator,
    precision: timedelta,
) -> datetime:
    """Binary-search the boundary between an acceptable and an unacceptable time."""

    good, bad = known_good, known_bad
    while abs(bad - good) > precision:
        mid = good + (bad - good) / 2
        mid = mid.replace(microsecond=0)
        if mid in (good, bad):
            break
        evaluation = await evaluate(mid)
        logger.debug("Refine %s: %s", mid.isoformat(), "acceptable" if evaluation.is_acceptable else "rejected")
        if evaluation.is_acceptable:
            good = mid
        else:
            bad = mid
    return good


def scan_timestamps(start: datetime, end: datetime, step: timedelta) -> list[datetime]:
    timestamps: list[datetime] = []
    current = start
    while current <= end:
        timestamps.append(current)
        current += step
    return timestamps


def resolve_search_start(start_from: datetime | None, forecast_range: ForecastTimeRange, step: timedelta) -> datetime:
    """Align ``start_from`` up to the scan grid when it lies inside the forecast."""

    if start_from is None:
        return forecast_range.start
    if start_from.tzinfo is None:
        start_from = start_from.replace(tzinfo=timezone.utc)
    if not (forecast_range.start <= start_from <= forecast_range.end):
        return forecast_range.start
    epoch = datetime(1970, 1, 1, tzinfo=timezone.utc)
    aligned = epoch + math.ceil((start_from - epoch) / step) * step
    return aligned if aligned <= forecast_range.end else forecast_range.start


async def _report(on_progress: ProgressCallback | None, value: float) -> None:
    if on_progress is None:
        return
    result = on_progress(min(max(value, 0.0), 1.0))
    if inspect.isawaitable(result):
        await result


async def coarse_scan(
    ctx: SearchContext,
    timestamps: Sequence[datetime],
    max_concurrent: int,
    on_progress: ProgressCallback | None = None,
) -> list[DepartureTimeEvaluation]:
    """Evaluate every timestamp in sequential batches of ``max_concurrent``.

    Results keep the position of their timestamp regardless of completion order.
    """

    total = len(timestamps)
    batch_size = max(1, max_concurrent)
    results: list[DepartureTimeEvaluation] = []
    for offset in range(0, total, batch_size):
        batch = timestamps[offset : offset + batch_size]
        results.extend(await asyncio.gather(*(ctx.evaluate(ts) for ts in batch)))
        fraction = len(results) / total
        await _report(on_progress, PREFETCH_PROGRESS + (SCAN_PROGRESS_END - PREFETCH_PROGRESS) * fraction)
    acceptable = sum(1 for item in results if item.is_acceptable)
    logger.debug("Scan complete: %s/%s timestamps acceptable", acceptable, total)
    return results


def _duration_minutes(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60.0


def _limited_result(
    reason: str,
    now: datetime,
    options: VfrWindowSearchOptions,
    flight_duration_minutes: float,
) -> VfrWindowSearchResult:
    return VfrWindowSearchResult(
        windows=[],
        search_range=ForecastTimeRange(start=now, end=now),
        minimum_condition=options.minimum_condition,
        flight_duration=flight_duration_minutes,
        limited_by=reason,
    )


async def find_vfr_windows(
    waypoints: Sequence[Waypoint],
    default_altitude: float,
    flight_duration_minutes: float,
    options: VfrWindowSearchOptions | None = None,
    on_progress: ProgressCallback | None = None,
    *,
    source: ForecastSource | None = None,
    now: datetime | None = None,
) -> VfrWindowSearchResult:
    """Find departure windows in which the whole route meets the minimum condition.

    The forecast horizon is scanned on a coarse grid, acceptable runs are
    refined at both edges by binary search, windows shorter than the flight
    are dropped and, unless night flights are allowed, each window is clipped
    to daylight at the route origin. Missing data and upstream failures are
    reported through ``limited_by`` rather than raised.
    """

    options = options or VfrWindowSearchOptions()
    if flight_duration_minutes < 0:
        raise ValueError("flight_duration_minutes must be non-negative")
    now = now or datetime.now(timezone.utc)
    if not waypoints:
        return _limited_result("No waypoints in flight plan", now, options, flight_duration_minutes)

    thresholds = options.thresholds or STANDARD_THRESHOLDS
    max_concurrent = options.max_concurrent or settings.vfr_max_concurrent
    max_windows = options.max_windows or settings.vfr_max_windows
    step = timedelta(minutes=settings.vfr_scan_interval_minutes)
    precision = timedelta(minutes=settings.vfr_refine_precision_minutes)
    origin_lat, origin_lon = options.route_coordinates or (waypoints[0].lat, waypoints[0].lon)

    ctx = SearchContext(
        source or forecast_source,
        waypoints,
        default_altitude,
        options.minimum_condition,
        build_rules_from_thresholds(thresholds),
        collect_details=options.collect_detailed_data,
    )
    started = time_utils.perf_counter()
    try:
        await ctx.forecast_cache.prefetch_locations(waypoints, default_altitude)
        first = waypoints[0]
        forecast_range = ctx.forecast_cache.forecast_time_range(first.lat, first.lon)
        if forecast_range is None:
            forecast_range = await fetch_with_deadline(
                ctx.source.get_forecast_time_range(first.lat, first.lon),
                settings.forecast_request_timeout,
                "Forecast time range",
            )
        if forecast_range is None:
            return _limited_result("Unable to fetch forecast time range", now, options, flight_duration_minutes)
        await _report(on_progress, PREFETCH_PROGRESS)

        search_start = resolve_search_start(options.start_from, forecast_range, step)
        timestamps = scan_timestamps(search_start, forecast_range.end, step)
        logger.info(
            "Scanning %s departure times from %s to %s (%s waypoints, minimum=%s)",
            len(timestamps),
            search_start.isoformat(),
            forecast_range.end.isoformat(),
            len(waypoints),
            options.minimum_condition,
        )
        evaluations = await coarse_scan(ctx, timestamps, max_concurrent, on_progress)
        candidate_ranges = find_contiguous_ranges(evaluations)

        windows: list[VfrWindow] = []
        long_enough = 0
        refinement_work = max(1, len(candidate_ranges) * 2)
        refinement_done = 0
        default_worst = SegmentCondition(options.minimum_condition)
        for range_start, range_end in candidate_ranges:
            if len(windows) >= max_windows:
                break

            refined_start = range_start
            if range_start > search_start:
                refined_start = await refine_window_boundary(range_start, range_start - step, ctx.evaluate, precision)
            refinement_done += 1
            await _report(
                on_progress,
                SCAN_PROGRESS_END + (REFINE_PROGRESS_END - SCAN_PROGRESS_END) * refinement_done / refinement_work,
            )

            refined_end = range_end
            if range_end < forecast_range.end:
                next_bad = min(range_end + step, forecast_range.end)
                refined_end = await refine_window_boundary(range_end, next_bad, ctx.evaluate, precision)
            refinement_done += 1
            await _report(
                on_progress,
                SCAN_PROGRESS_END + (REFINE_PROGRESS_END - SCAN_PROGRESS_END) * refinement_done / refinement_work,
            )

            if _duration_minutes(refined_start, refined_end) < flight_duration_minutes:
                logger.debug(
                    "Skipping window %s - %s: shorter than %s min",
                    refined_start.isoformat(),
                    refined_end.isoformat(),
                    flight_duration_minutes,
                )
                continue
            long_enough += 1

            if options.include_night_flights:
                segments = [(refined_start, refined_end)]
            else:
                segments = filter_to_daylight_hours(refined_start, refined_end, origin_lat, origin_lon)
            for segment_start, segment_end in segments:
                duration = _duration_minutes(segment_start, segment_end)
                if duration < flight_duration_minutes:
                    continue
                windows.append(
                    VfrWindow(
                        start_time=segment_start,
                        end_time=segment_end,
                        duration=duration,
                        worst_condition=ctx.worst_condition_between(segment_start, segment_end, default_worst),
                        confidence=calculate_confidence(segment_start, now),
                    )
                )
                if len(windows) >= max_windows:
                    break

        await _report(on_progress, 1.0)

        limited_by: str | None = None
        if not windows:
            if not candidate_ranges:
                limited_by = "No departure times meet the minimum conditions"
            elif long_enough == 0:
                limited_by = f"All candidate windows shorter than {flight_duration_minutes:g} min flight duration"
            else:
                limited_by = "No candidate windows fall within daylight hours"
        elif len(windows) >= max_windows:
            limited_by = f"Limited to first {max_windows} windows"

        logger.info(
            "Search complete in %.1f ms: %s windows from %s candidate ranges (%s evaluations)",
            (time_utils.perf_counter() - started) * 1000.0,
            len(windows),
            len(candidate_ranges),
            len(ctx.evaluations),
        )
        return VfrWindowSearchResult(
            windows=windows,
            search_range=ForecastTimeRange(start=search_start, end=forecast_range.end),
            minimum_condition=options.minimum_condition,
            flight_duration=flight_duration_minutes,
            limited_by=limited_by,
            detail_rows=list(ctx.detail_rows),
        )
    finally:
        ctx.clear()


def format_vfr_window(window: VfrWindow) -> dict[str, str]:
    """Human-readable labels for a window (UTC)."""

    def _date(value: datetime) -> str:
        return f"{value:%a %b} {value.day}"

    start = window.start_time.astimezone(timezone.utc)
    end = window.end_time.astimezone(timezone.utc)
    date = _date(start) if start.date() == end.date() else f"{_date(start)} - {_date(end)}"
    hours = int(window.duration // 60)
    minutes = int(math.floor(window.duration % 60 + 0.5))
    duration = f"{hours}h {minutes}m window" if hours > 0 else f"{minutes}m window"
    return {
        "date": date,
        "time_range": f"{start:%H:%M} - {end:%H:%M}",
        "duration": duration,
        "confidence": f"{window.confidence.capitalize()} confidence",
    }


DETAIL_CSV_COLUMNS = (
    "departure_time",
    "waypoint_name",
    "waypoint_index",
    "arrival_time",
    "altitude",
    "terrain_elevation",
    "wind_speed",
    "wind_dir",
    "wind_gust",
    "temperature",
    "dew_point",
    "cloud_base_ft",
    "visibility",
    "condition",
    "condition_reasons",
    "is_terminal",
)


def detail_rows_to_csv(rows: Sequence[WaypointEvaluationDetail]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=DETAIL_CSV_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow(row.to_payload())
    return buffer.getvalue()


class VfrWindowService:
    """Runs window searches as tracked jobs against one forecast source."""

    def __init__(self, source: ForecastSource | None = None) -> None:
        self._source = source

    @property
    def source(self) -> ForecastSource:
        return self._source or forecast_source

    async def search(
        self,
        waypoints: Sequence[Waypoint],
        default_altitude: float,
        flight_duration_minutes: float,
        options: VfrWindowSearchOptions | None = None,
        *,
        job_id: str | None = None,
        now: datetime | None = None,
    ) -> VfrWindowSearchResult:
        async def _work(on_progress: ProgressCallback) -> VfrWindowSearchResult:
            return await find_vfr_windows(
                waypoints,
                default_altitude,
                flight_duration_minutes,
                options,
                on_progress,
                source=self.source,
                now=now,
            )

        return await run_job(job_id or new_job_id(), _work, summarize=_summarize)

    async def close(self) -> None:
        await self.source.close()


def _summarize(result: VfrWindowSearchResult) -> dict[str, Any]:
    return {"windowCount": len(result.windows), "limitedBy": result.limited_by}


vfr_window_service = VfrWindowService()


__all__ = [
    "DepartureTimeEvaluation",
    "SearchContext",
    "VfrWindow",
    "VfrWindowSearchOptions",
    "VfrWindowSearchResult",
    "VfrWindowService",
    "WaypointEvaluationDetail",
    "WaypointTiming",
    "calculate_waypoint_timings",
    "coarse_scan",
    "detail_rows_to_csv",
    "evaluate_departure_time",
    "find_contiguous_ranges",
    "find_vfr_windows",
    "format_vfr_window",
    "refine_window_boundary",
    "resolve_search_start",
    "scan_timestamps",
    "vfr_window_service",
]
