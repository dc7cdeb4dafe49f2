from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Final, Optional, TypeVar

import httpx

from config import settings
from vfr.interpolation import (
    estimate_visibility_km,
    get_interpolation_indices,
    interpolate_value,
)
from vfr.models import ForecastTimeRange, WaypointWeather
from vfr.units import kelvin_to_celsius, ms_to_knots

logger = logging.getLogger("vfrplanner.forecast")

T = TypeVar("T")

SURFACE_WIND_MAX_ALTITUDE_FT: Final[float] = 500.0
# Cloud base rises roughly 125 m per degC of temperature/dew point spread.
CLOUD_BASE_M_PER_DEG_SPREAD: Final[float] = 125.0
LOW_CLOUD_COVER_CEILING_PCT: Final[float] = 50.0


@dataclass(frozen=True, slots=True)
class PressureLevel:
    level: str
    altitude_ft: float


# Standard atmosphere altitudes of the levels requested from the provider.
PRESSURE_LEVELS: Final[tuple[PressureLevel, ...]] = (
    PressureLevel("1000h", 330),
    PressureLevel("950h", 1600),
    PressureLevel("900h", 3300),
    PressureLevel("850h", 5000),
    PressureLevel("700h", 10000),
    PressureLevel("500h", 18000),
    PressureLevel("300h", 30000),
    PressureLevel("200h", 39000),
)
PRESSURE_LEVEL_FIELDS: Final[dict[str, tuple[str, str]]] = {
    entry.level: (f"wind_u-{entry.level}", f"wind_v-{entry.level}") for entry in PRESSURE_LEVELS
}
SURFACE_FIELDS: Final[dict[str, str]] = {
    "wind_u": "wind_u-surface",
    "wind_v": "wind_v-surface",
    "gust": "gust-surface",
    "temperature": "temp-surface",
    "dew_point": "dewpoint-surface",
    "humidity": "rh-surface",
    "precipitation": "past3hprecip-surface",
    "low_clouds": "lclouds-surface",
    "cloud_base": "cbase-surface",
}
REQUEST_PARAMETERS: Final[tuple[str, ...]] = ("wind", "windGust", "temp", "dewpoint", "rh", "precip", "lclouds")
_LEVEL_KEY_PATTERN = re.compile(r"^wind_u-(\d+h)$")


class ForecastSourceError(RuntimeError):
    """Raised when the forecast provider returns an unusable payload."""


@dataclass(frozen=True, slots=True)
class LevelWindSeries:
    level: str
    altitude_ft: float
    wind_u: tuple[float | None, ...]
    wind_v: tuple[float | None, ...]


@dataclass(slots=True)
class ForecastSeries:
    """Full-horizon forecast at one location.

    Winds are stored as u/v components in m/s, temperatures in degC,
    precipitation in mm and cloud base in metres above ground.
    """

    lat: float
    lon: float
    timestamps: list[datetime]
    wind_u: list[float | None] = field(default_factory=list)
    wind_v: list[float | None] = field(default_factory=list)
    gust: list[float | None] = field(default_factory=list)
    temperature: list[float | None] = field(default_factory=list)
    dew_point: list[float | None] = field(default_factory=list)
    humidity: list[float | None] = field(default_factory=list)
    precipitation: list[float | None] = field(default_factory=list)
    low_clouds: list[float | None] = field(default_factory=list)
    cloud_base: list[float | None] = field(default_factory=list)
    levels: list[LevelWindSeries] = field(default_factory=list)
    model: str | None = None

    def time_range(self) -> ForecastTimeRange | None:
        if not self.timestamps:
            return None
        return ForecastTimeRange(start=self.timestamps[0], end=self.timestamps[-1])


def _coerce_series(raw: Any, length: int) -> list[float | None]:
    values: list[float | None] = []
    if not isinstance(raw, list):
        return [None] * length
    for item in raw[:length]:
        try:
            numeric = float(item)
        except (TypeError, ValueError):
            values.append(None)
            continue
        values.append(numeric if math.isfinite(numeric) else None)
    values.extend([None] * (length - len(values)))
    return values


def _convert(values: list[float | None], unit: Any, kind: str) -> list[float | None]:
    if not isinstance(unit, str):
        unit = None
    if kind in ("temperature", "dew_point") and (unit is None or unit.upper() == "K"):
        return [kelvin_to_celsius(v) if v is not None else None for v in values]
    if kind == "precipitation" and unit == "m":
        return [v * 1000.0 if v is not None else None for v in values]
    return values


def _discover_level_fields(payload: dict[str, Any]) -> dict[str, tuple[str, str]]:
    # Provider schemas without the expected level keys still expose wind_u-<level>/wind_v-<level> pairs.
    discovered: dict[str, tuple[str, str]] = {}
    for key in payload:
        match = _LEVEL_KEY_PATTERN.match(key)
        if match and f"wind_v-{match.group(1)}" in payload:
            discovered[match.group(1)] = (key, f"wind_v-{match.group(1)}")
    return discovered


def _level_altitude(level: str) -> float | None:
    for entry in PRESSURE_LEVELS:
        if entry.level == level:
            return entry.altitude_ft
    try:
        hpa = float(level.rstrip("h"))
    except ValueError:
        return None
    if hpa <= 0:
        return None
    # Standard atmosphere pressure altitude.
    return 145366.45 * (1 - (hpa / 1013.25) ** 0.190284)


def decode_point_forecast(payload: dict[str, Any], lat: float, lon: float, model: str | None = None) -> ForecastSeries:
    """Decode a point-forecast response into a typed series."""

    raw_ts = payload.get("ts")
    if not isinstance(raw_ts, list) or not raw_ts:
        raise ForecastSourceError("Forecast response has no timestamps")
    try:
        timestamps = [datetime.fromtimestamp(float(ts) / 1000.0, tz=timezone.utc) for ts in raw_ts]
    except (TypeError, ValueError, OverflowError) as exc:
        raise ForecastSourceError("Forecast response has invalid timestamps") from exc
    length = len(timestamps)
    units = payload.get("units") if isinstance(payload.get("units"), dict) else {}

    surface: dict[str, list[float | None]] = {}
    for name, key in SURFACE_FIELDS.items():
        surface[name] = _convert(_coerce_series(payload.get(key), length), units.get(key), name)

    level_fields = {
        level: keys for level, keys in PRESSURE_LEVEL_FIELDS.items() if keys[0] in payload and keys[1] in payload
    }
    if not level_fields:
        level_fields = _discover_level_fields(payload)
    levels: list[LevelWindSeries] = []
    for level, (u_key, v_key) in level_fields.items():
        altitude = _level_altitude(level)
        if altitude is None:
            continue
        levels.append(
            LevelWindSeries(
                level=level,
                altitude_ft=altitude,
                wind_u=tuple(_coerce_series(payload.get(u_key), length)),
                wind_v=tuple(_coerce_series(payload.get(v_key), length)),
            )
        )
    levels.sort(key=lambda entry: entry.altitude_ft)

    return ForecastSeries(lat=lat, lon=lon, timestamps=timestamps, levels=levels, model=model, **surface)


def _wind_from_components(u: float | None, v: float | None) -> tuple[float | None, float | None]:
    """Return ``(speed_kt, direction_from_deg)`` for u/v components in m/s."""

    if u is None or v is None:
        return None, None
    speed = ms_to_knots(math.hypot(u, v))
    direction = (math.degrees(math.atan2(-u, -v)) + 360.0) % 360.0
    return speed, direction


def _altitude_wind(
    series: ForecastSeries, altitude: float, lower: int, upper: int, fraction: float
) -> tuple[float | None, float | None, str | None]:
    samples: list[tuple[LevelWindSeries, float, float]] = []
    for entry in series.levels:
        u = interpolate_value(entry.wind_u, lower, upper, fraction)
        v = interpolate_value(entry.wind_v, lower, upper, fraction)
        if u is not None and v is not None:
            samples.append((entry, u, v))
    if not samples:
        return None, None, None

    below = [sample for sample in samples if sample[0].altitude_ft <= altitude]
    above = [sample for sample in samples if sample[0].altitude_ft >= altitude]
    if not below or not above:
        nearest = below[-1] if below else above[0]
        speed, direction = _wind_from_components(nearest[1], nearest[2])
        return speed, direction, nearest[0].level

    low, high = below[-1], above[0]
    if low[0].level == high[0].level:
        speed, direction = _wind_from_components(low[1], low[2])
        return speed, direction, low[0].level
    ratio = (altitude - low[0].altitude_ft) / (high[0].altitude_ft - low[0].altitude_ft)
    u = low[1] + (high[1] - low[1]) * ratio
    v = low[2] + (high[2] - low[2]) * ratio
    speed, direction = _wind_from_components(u, v)
    return speed, direction, f"{low[0].level}-{high[0].level}"


def _estimated_cloud_base(
    temperature: float | None, dew_point: float | None, low_clouds: float | None
) -> float | None:
    if low_clouds is None or low_clouds < LOW_CLOUD_COVER_CEILING_PCT:
        return None
    if temperature is None or dew_point is None:
        return None
    return max(temperature - dew_point, 0.0) * CLOUD_BASE_M_PER_DEG_SPREAD


def extract_weather_at_timestamp(series: ForecastSeries, timestamp: datetime, altitude: float) -> WaypointWeather | None:
    """Interpolate a weather snapshot at ``timestamp`` and ``altitude`` [ft MSL].

    Returns ``None`` when the series has no timestamps or no wind at all,
    which callers treat as an extraction failure.
    """

    if not series.timestamps:
        return None
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    lower, upper, fraction = get_interpolation_indices(series.timestamps, timestamp)

    def _at(values: list[float | None]) -> float | None:
        return interpolate_value(values, lower, upper, fraction)

    surface_speed, surface_dir = _wind_from_components(_at(series.wind_u), _at(series.wind_v))
    wind_speed, wind_dir, wind_level = surface_speed, surface_dir, "surface"
    if altitude > SURFACE_WIND_MAX_ALTITUDE_FT and series.levels:
        level_speed, level_dir, level_name = _altitude_wind(series, altitude, lower, upper, fraction)
        if level_speed is not None:
            wind_speed, wind_dir, wind_level = level_speed, level_dir, level_name or "surface"
    if wind_speed is None:
        return None

    gust_ms = _at(series.gust)
    temperature = _at(series.temperature)
    dew_point = _at(series.dew_point)
    humidity = _at(series.humidity)
    cloud_base = _at(series.cloud_base)
    if cloud_base is None:
        cloud_base = _estimated_cloud_base(temperature, dew_point, _at(series.low_clouds))

    return WaypointWeather(
        timestamp=timestamp,
        wind_speed=wind_speed,
        wind_dir=wind_dir,
        wind_gust=ms_to_knots(gust_ms) if gust_ms is not None else None,
        wind_level=wind_level,
        surface_wind_speed=surface_speed,
        surface_wind_dir=surface_dir,
        temperature=temperature,
        dew_point=dew_point,
        cloud_base=cloud_base,
        visibility=estimate_visibility_km(humidity),
        humidity=humidity,
        precipitation=_at(series.precipitation),
    )


async def fetch_with_deadline(awaitable: Awaitable[T], timeout: float, label: str) -> T | None:
    """Await ``awaitable`` within ``timeout`` seconds.

    Timeouts and upstream failures are logged and reported as ``None``.
    Cancellation of the calling task still propagates.
    """

    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("%s exceeded %.1fs deadline", label, timeout)
    except (httpx.HTTPError, ForecastSourceError) as exc:
        logger.warning("%s failed: %s", label, exc)
    return None


class ForecastSource:
    """Upstream collaborator that supplies forecast series and point weather."""

    async def fetch_full_forecast(self, lat: float, lon: float, altitude: float) -> ForecastSeries:
        raise NotImplementedError

    async def fetch_waypoint_weather(
        self, lat: float, lon: float, timestamp: datetime, altitude: float
    ) -> WaypointWeather | None:
        series = await fetch_with_deadline(
            self.fetch_full_forecast(lat, lon, altitude),
            settings.forecast_point_timeout,
            f"Point forecast {lat:.4f},{lon:.4f}",
        )
        if series is None:
            return None
        return extract_weather_at_timestamp(series, timestamp, altitude)

    async def get_forecast_time_range(self, lat: float, lon: float) -> ForecastTimeRange | None:
        series = await fetch_with_deadline(
            self.fetch_full_forecast(lat, lon, 0.0),
            settings.forecast_request_timeout,
            f"Forecast range {lat:.4f},{lon:.4f}",
        )
        return series.time_range() if series is not None else None

    async def close(self) -> None:
        return None


class WindyForecastSource(ForecastSource):
    """Point forecast client for the Windy point-forecast v2 API."""

    def __init__(self) -> None:
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {
                "User-Agent": settings.forecast_user_agent,
                "Accept": "application/json",
            }
            self._client = httpx.AsyncClient(headers=headers, timeout=settings.forecast_request_timeout)
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_full_forecast(self, lat: float, lon: float, altitude: float) -> ForecastSeries:
        if not settings.forecast_api_key:
            raise ForecastSourceError("Forecast API key is not configured")
        client = await self._get_client()
        body = {
            "lat": round(lat, 4),
            "lon": round(lon, 4),
            "model": settings.forecast_model,
            "parameters": list(REQUEST_PARAMETERS),
            "levels": ["surface", *PRESSURE_LEVEL_FIELDS],
            "key": settings.forecast_api_key,
        }
        logger.debug("Fetching point forecast for %.4f,%.4f (model=%s)", lat, lon, settings.forecast_model)
        response: httpx.Response | None = None
        max_attempts = 3
        for attempt in range(1, max_attempts + 1):
            try:
                response = await client.post(settings.forecast_base_url, json=body)
                response.raise_for_status()
                break
            except httpx.TimeoutException as exc:
                logger.warning(
                    "Point forecast request timed out (attempt %s/%s): %s",
                    attempt,
                    max_attempts,
                    exc,
                )
                if attempt >= max_attempts:
                    raise
                await asyncio.sleep(0.5 * attempt)
            except httpx.HTTPStatusError as exc:
                problem_text: str | None = None
                try:
                    problem_json = response.json() if response is not None else None
                    problem_text = json.dumps(problem_json) if problem_json is not None else None
                except ValueError:
                    problem_text = response.text[:2_048] if (response is not None and response.text) else None
                logger.error("Point forecast request failed (%s): body=%s", exc, problem_text)
                raise
        else:
            raise httpx.TimeoutException("Point forecast request exceeded retry attempts")
        assert response is not None
        try:
            payload = response.json()
        except ValueError as exc:
            raise ForecastSourceError("Forecast response is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise ForecastSourceError("Forecast response is not an object")
        try:
            return decode_point_forecast(payload, lat, lon, settings.forecast_model)
        except (AttributeError, TypeError, ValueError) as exc:
            raise ForecastSourceError(f"Forecast response is malformed: {exc}") from exc


forecast_source = WindyForecastSource()

__all__ = [
    "ForecastSeries",
    "ForecastSource",
    "ForecastSourceError",
    "LevelWindSeries",
    "PRESSURE_LEVELS",
    "PRESSURE_LEVEL_FIELDS",
    "WindyForecastSource",
    "decode_point_forecast",
    "extract_weather_at_timestamp",
    "fetch_with_deadline",
    "forecast_source",
]
