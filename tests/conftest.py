import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from fastapi.testclient import TestClient  # noqa: E402

from config import settings  # noqa: E402
from main import create_app  # noqa: E402
from services.forecast_source import ForecastSeries, ForecastSource, ForecastSourceError  # noqa: E402
from services.jobs import job_registry  # noqa: E402
from vfr.models import ForecastTimeRange, Waypoint, WaypointWeather  # noqa: E402

BASE_TIME = datetime(2025, 6, 21, 0, 0, tzinfo=timezone.utc)


class StubForecastSource(ForecastSource):
    """Deterministic source driven by a ``weather(lat, lon, timestamp)`` function.

    Full forecasts cover ``hours`` hourly steps from ``start``; the cache path
    is bypassed by returning no series so every lookup goes through
    ``fetch_waypoint_weather``, where the weather function is applied.
    """

    def __init__(
        self,
        weather: Callable[[float, float, datetime], WaypointWeather | None],
        *,
        start: datetime = BASE_TIME,
        hours: int = 24,
        fail_full_forecast: bool = False,
    ) -> None:
        self._weather = weather
        self.start = start
        self.end = start + timedelta(hours=hours)
        self.fail_full_forecast = fail_full_forecast
        self.full_forecast_calls: list[tuple[float, float]] = []
        self.point_calls: list[tuple[float, float, datetime]] = []
        self.closed = False

    async def fetch_full_forecast(self, lat: float, lon: float, altitude: float) -> ForecastSeries:
        self.full_forecast_calls.append((lat, lon))
        if self.fail_full_forecast:
            raise ForecastSourceError("full forecast unavailable")
        # No samples: the cached series yields no range and no weather.
        return ForecastSeries(lat=lat, lon=lon, timestamps=[])

    async def fetch_waypoint_weather(
        self, lat: float, lon: float, timestamp: datetime, altitude: float
    ) -> WaypointWeather | None:
        self.point_calls.append((lat, lon, timestamp))
        return self._weather(lat, lon, timestamp)

    async def get_forecast_time_range(self, lat: float, lon: float) -> ForecastTimeRange | None:
        return ForecastTimeRange(start=self.start, end=self.end)

    async def close(self) -> None:
        self.closed = True


def good_weather(timestamp: datetime) -> WaypointWeather:
    return WaypointWeather(
        timestamp=timestamp,
        wind_speed=8.0,
        wind_dir=270.0,
        wind_gust=12.0,
        surface_wind_speed=6.0,
        surface_wind_dir=270.0,
        temperature=18.0,
        dew_point=8.0,
        cloud_base=None,
        visibility=20.0,
        humidity=50.0,
        precipitation=0.0,
    )


def poor_weather(timestamp: datetime) -> WaypointWeather:
    return WaypointWeather(
        timestamp=timestamp,
        wind_speed=8.0,
        wind_dir=270.0,
        visibility=3.0,
        precipitation=0.0,
    )


def make_waypoint(name: str, lat: float, lon: float, *, ete: float | None = None, **extra: Any) -> Waypoint:
    return Waypoint(id=name.lower(), name=name, lat=lat, lon=lon, ete=ete, **extra)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_job_registry() -> None:
    job_registry._jobs.clear()  # type: ignore[attr-defined]
    yield
    job_registry._jobs.clear()  # type: ignore[attr-defined]


@pytest.fixture
def settings_override() -> Callable[..., None]:
    original: Dict[str, Any] = {}

    def _apply(**overrides: Any) -> None:
        for key, value in overrides.items():
            if key not in original:
                original[key] = getattr(settings, key)
            setattr(settings, key, value)

    yield _apply

    for key, value in original.items():
        setattr(settings, key, value)


@pytest.fixture
def client() -> TestClient:
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client
