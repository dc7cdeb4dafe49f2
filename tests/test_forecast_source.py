import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from services.forecast_source import (
    ForecastSourceError,
    WindyForecastSource,
    decode_point_forecast,
    extract_weather_at_timestamp,
    fetch_with_deadline,
)

BASE = datetime(2025, 6, 21, 0, tzinfo=timezone.utc)
TS = [int((BASE + timedelta(hours=3 * index)).timestamp() * 1000) for index in range(3)]


def _payload(**overrides):
    payload = {
        "ts": TS,
        "units": {
            "temp-surface": "K",
            "dewpoint-surface": "K",
            "past3hprecip-surface": "m",
            "wind_u-surface": "m*s-1",
        },
        "wind_u-surface": [0.0, 0.0, 0.0],
        "wind_v-surface": [-5.0, -5.0, -10.0],
        "gust-surface": [8.0, 8.0, 12.0],
        "temp-surface": [288.15, 289.15, 290.15],
        "dewpoint-surface": [283.15, 283.15, 283.15],
        "rh-surface": [60.0, 85.0, 96.0],
        "past3hprecip-surface": [0.0, 0.001, 0.004],
        "lclouds-surface": [10.0, 60.0, 80.0],
        "wind_u-900h": [10.0, 10.0, 10.0],
        "wind_v-900h": [0.0, 0.0, 0.0],
        "wind_u-850h": [20.0, 20.0, 20.0],
        "wind_v-850h": [0.0, 0.0, 0.0],
    }
    payload.update(overrides)
    return payload


def test_decode_converts_units_and_sorts_levels():
    series = decode_point_forecast(_payload(), 40.0, -75.0, "gfs")
    assert series.timestamps[0] == BASE
    assert series.temperature[0] == pytest.approx(15.0)
    assert series.dew_point[0] == pytest.approx(10.0)
    assert series.precipitation[1] == pytest.approx(1.0)
    assert [level.level for level in series.levels] == ["900h", "850h"]
    assert series.time_range().end == BASE + timedelta(hours=6)


def test_decode_rejects_payload_without_timestamps():
    with pytest.raises(ForecastSourceError):
        decode_point_forecast({"ts": []}, 0.0, 0.0)
    with pytest.raises(ForecastSourceError):
        decode_point_forecast({"ts": ["not-a-time"]}, 0.0, 0.0)


def test_decode_tolerates_short_and_invalid_series():
    series = decode_point_forecast(_payload(**{"gust-surface": [5.0], "rh-surface": "bad"}), 0.0, 0.0)
    assert series.gust == [5.0, None, None]
    assert series.humidity == [None, None, None]


def test_decode_discovers_unlisted_pressure_levels():
    payload = {
        "ts": TS,
        "wind_u-surface": [1.0, 1.0, 1.0],
        "wind_v-surface": [1.0, 1.0, 1.0],
        "wind_u-800h": [5.0, 5.0, 5.0],
        "wind_v-800h": [0.0, 0.0, 0.0],
    }
    series = decode_point_forecast(payload, 0.0, 0.0)
    assert [level.level for level in series.levels] == ["800h"]
    assert 6000 < series.levels[0].altitude_ft < 7000


def test_extract_surface_weather_below_level_altitude():
    series = decode_point_forecast(_payload(), 40.0, -75.0)
    weather = extract_weather_at_timestamp(series, BASE, 300.0)
    assert weather is not None
    assert weather.wind_level == "surface"
    assert weather.wind_speed == pytest.approx(9.72, abs=0.01)
    assert weather.wind_dir == pytest.approx(0.0, abs=1e-6)
    assert weather.wind_gust == pytest.approx(15.55, abs=0.01)
    assert weather.visibility == 20.0
    assert weather.cloud_base is None


def test_extract_interpolates_between_pressure_levels():
    series = decode_point_forecast(_payload(), 40.0, -75.0)
    weather = extract_weather_at_timestamp(series, BASE, 4150.0)
    assert weather is not None
    assert weather.wind_level == "900h-850h"
    assert weather.wind_speed == pytest.approx(15.0 * 1.94384, abs=0.01)
    assert weather.wind_dir == pytest.approx(270.0)
    assert weather.surface_wind_speed == pytest.approx(9.72, abs=0.01)


def test_extract_interpolates_in_time_and_estimates_cloud_base():
    series = decode_point_forecast(_payload(), 40.0, -75.0)
    weather = extract_weather_at_timestamp(series, BASE + timedelta(hours=3), 300.0)
    assert weather is not None
    # 60 % low cloud with a 6 degC spread.
    assert weather.cloud_base == pytest.approx(750.0)
    assert weather.visibility == 10.0


def test_extract_prefers_reported_cloud_base():
    series = decode_point_forecast(_payload(**{"cbase-surface": [400.0, 400.0, 400.0]}), 40.0, -75.0)
    weather = extract_weather_at_timestamp(series, BASE, 300.0)
    assert weather is not None
    assert weather.cloud_base == pytest.approx(400.0)


def test_extract_without_wind_returns_none():
    payload = _payload(**{"wind_u-surface": None, "wind_v-surface": None})
    for key in ("wind_u-900h", "wind_v-900h", "wind_u-850h", "wind_v-850h"):
        payload.pop(key)
    series = decode_point_forecast(payload, 40.0, -75.0)
    assert extract_weather_at_timestamp(series, BASE, 3000.0) is None


@pytest.mark.anyio
async def test_fetch_with_deadline_converts_timeouts_and_upstream_errors():
    async def _slow():
        await asyncio.sleep(1.0)
        return "late"

    async def _broken():
        raise ForecastSourceError("bad payload")

    async def _ok():
        return "ok"

    assert await fetch_with_deadline(_slow(), 0.01, "slow") is None
    assert await fetch_with_deadline(_broken(), 1.0, "broken") is None
    assert await fetch_with_deadline(_ok(), 1.0, "ok") == "ok"


@pytest.mark.anyio
async def test_windy_source_posts_request_and_decodes(settings_override):
    settings_override(forecast_api_key="test-key", forecast_model="gfs")
    seen: list[dict] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json=_payload())

    source = WindyForecastSource()
    source._client = httpx.AsyncClient(transport=httpx.MockTransport(_handler))  # type: ignore[attr-defined]
    try:
        series = await source.fetch_full_forecast(40.12346, -75.54321, 3000.0)
        time_range = await source.get_forecast_time_range(40.12346, -75.54321)
    finally:
        await source.close()

    assert len(series.timestamps) == 3
    assert seen[0]["lat"] == 40.1235
    assert seen[0]["lon"] == -75.5432
    assert seen[0]["key"] == "test-key"
    assert "surface" in seen[0]["levels"]
    assert "850h" in seen[0]["levels"]
    assert time_range is not None
    assert time_range.start == BASE


@pytest.mark.anyio
async def test_windy_source_raises_on_http_error(settings_override):
    settings_override(forecast_api_key="test-key")

    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"message": "boom"})

    source = WindyForecastSource()
    source._client = httpx.AsyncClient(transport=httpx.MockTransport(_handler))  # type: ignore[attr-defined]
    try:
        with pytest.raises(httpx.HTTPStatusError):
            await source.fetch_full_forecast(40.0, -75.0, 3000.0)
        assert await source.fetch_waypoint_weather(40.0, -75.0, BASE, 3000.0) is None
    finally:
        await source.close()


@pytest.mark.anyio
async def test_windy_source_requires_api_key(settings_override):
    settings_override(forecast_api_key=None)
    source = WindyForecastSource()
    with pytest.raises(ForecastSourceError):
        await source.fetch_full_forecast(40.0, -75.0, 3000.0)
    assert await source.get_forecast_time_range(40.0, -75.0) is None


def test_wind_direction_crosses_north_without_spinning():
    # Wind from 350 deg at the first sample and from 10 deg at the second.
    u_350, v_350 = 5.0 * 0.17365, -5.0 * 0.98481
    u_010, v_010 = -5.0 * 0.17365, -5.0 * 0.98481
    payload = _payload(**{"wind_u-surface": [u_350, u_010, u_010], "wind_v-surface": [v_350, v_010, v_010]})
    series = decode_point_forecast(payload, 40.0, -75.0)
    weather = extract_weather_at_timestamp(series, BASE + timedelta(minutes=90), 300.0)
    assert weather is not None
    assert min(weather.wind_dir, 360.0 - weather.wind_dir) == pytest.approx(0.0, abs=1e-6)


def test_decode_ignores_non_string_units():
    series = decode_point_forecast(_payload(units={"temp-surface": 5, "past3hprecip-surface": ["m"]}), 40.0, -75.0)
    assert series.temperature[0] == pytest.approx(15.0)
    assert series.precipitation[1] == pytest.approx(0.001)


@pytest.mark.anyio
async def test_windy_source_reports_malformed_payload_as_source_error(settings_override, monkeypatch):
    settings_override(forecast_api_key="test-key")

    def _broken_decode(*args, **kwargs):
        raise AttributeError("'int' object has no attribute 'upper'")

    monkeypatch.setattr("services.forecast_source.decode_point_forecast", _broken_decode)

    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_payload())

    source = WindyForecastSource()
    source._client = httpx.AsyncClient(transport=httpx.MockTransport(_handler))  # type: ignore[attr-defined]
    try:
        with pytest.raises(ForecastSourceError):
            await source.fetch_full_forecast(40.0, -75.0, 3000.0)
        assert await source.fetch_waypoint_weather(40.0, -75.0, BASE, 3000.0) is None
    finally:
        await source.close()
