from __future__ import annotations

import asyncio
import logging
import math
import time as time_utils
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Final, Iterable

from config import settings
from vfr.models import ForecastTimeRange, Waypoint, WaypointWeather

from .forecast_source import ForecastSeries, ForecastSource, extract_weather_at_timestamp, fetch_with_deadline

logger = logging.getLogger("vfrplanner.forecast_cache")

EVICTION_FRACTION: Final[float] = 0.2

LocationKey = tuple[float, float]
WeatherKey = tuple[float, float, datetime]


def location_key(lat: float, lon: float) -> LocationKey:
    return (round(lat, 4), round(lon, 4))


@dataclass
class CachedForecast:
    series: ForecastSeries
    expires_at: float


class ForecastCache:
    """Full forecast series per rounded location for the lifetime of one search.

    Concurrent requests for a location that is already being fetched await
    the same future instead of issuing another upstream call.
    """

    def __init__(
        self,
        source: ForecastSource,
        *,
        ttl: float | None = None,
        max_entries: int | None = None,
        timeout: float | None = None,
    ) -> None:
        self._source = source
        self._ttl = settings.forecast_cache_ttl if ttl is None else ttl
        self._max_entries = max(1, settings.forecast_cache_max_entries if max_entries is None else max_entries)
        self._timeout = settings.forecast_request_timeout if timeout is None else timeout
        self._entries: dict[LocationKey, CachedForecast] = {}
        self._in_flight: dict[LocationKey, asyncio.Future[ForecastSeries | None]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, lat: float, lon: float) -> ForecastSeries | None:
        cached = self._entries.get(location_key(lat, lon))
        if cached is None:
            return None
        if cached.expires_at <= time_utils.monotonic():
            self._entries.pop(location_key(lat, lon), None)
            return None
        return cached.series

    async def get_or_fetch(self, lat: float, lon: float, altitude: float) -> ForecastSeries | None:
        """Return the cached series, fetching it once per location when missing.

        Upstream failures and deadline overruns are logged and yield ``None``;
        they are not cached so a later call may retry.
        """

        key = location_key(lat, lon)
        cached = self.get(lat, lon)
        if cached is not None:
            return cached

        pending = self._in_flight.get(key)
        if pending is not None:
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                if not pending.cancelled():
                    raise
                # The fetching caller was cancelled, this one was not.
                logger.debug("In-flight fetch for %s cancelled, fetching again", key)
                return await self.get_or_fetch(lat, lon, altitude)

        future: asyncio.Future[ForecastSeries | None] = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            series = await fetch_with_deadline(
                self._source.fetch_full_forecast(key[0], key[1], altitude),
                self._timeout,
                f"Forecast fetch {key[0]:.4f},{key[1]:.4f}",
            )
            if series is not None:
                self._store(key, series)
            future.set_result(series)
            return series
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so an unobserved failure is not reported at shutdown.
            future.exception()
            raise
        finally:
            self._in_flight.pop(key, None)

    async def prefetch_locations(self, waypoints: Iterable[Waypoint], altitude: float) -> int:
        """Fetch every distinct waypoint location in parallel; returns the count."""

        distinct: dict[LocationKey, float] = {}
        for waypoint in waypoints:
            key = location_key(waypoint.lat, waypoint.lon)
            distinct.setdefault(key, waypoint.altitude if waypoint.altitude is not None else altitude)
        if not distinct:
            return 0
        started = time_utils.perf_counter()
        results = await asyncio.gather(
            *(self.get_or_fetch(lat, lon, alt) for (lat, lon), alt in distinct.items())
        )
        fetched = sum(1 for item in results if item is not None)
        logger.info(
            "Prefetched %s/%s forecast locations in %.1f ms",
            fetched,
            len(distinct),
            (time_utils.perf_counter() - started) * 1000.0,
        )
        return len(distinct)

    def extract_weather(
        self, lat: float, lon: float, timestamp: datetime, altitude: float
    ) -> WaypointWeather | None:
        """Interpolate from the cached series; ``None`` when not cached or extraction fails."""

        series = self.get(lat, lon)
        if series is None:
            return None
        return extract_weather_at_timestamp(series, timestamp, altitude)

    def forecast_time_range(self, lat: float, lon: float) -> ForecastTimeRange | None:
        series = self.get(lat, lon)
        return series.time_range() if series is not None else None

    def clear(self) -> None:
        self._entries.clear()
        for future in self._in_flight.values():
            if not future.done():
                future.cancel()
        self._in_flight.clear()

    def _store(self, key: LocationKey, series: ForecastSeries) -> None:
        now = time_utils.monotonic()
        if key not in self._entries and len(self._entries) >= self._max_entries:
            self._evict(now)
        self._entries[key] = CachedForecast(series=series, expires_at=now + self._ttl)

    def _evict(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            self._entries.pop(key, None)
        if len(self._entries) < self._max_entries:
            return
        surplus = max(1, int(len(self._entries) * EVICTION_FRACTION))
        oldest = sorted(self._entries.items(), key=lambda item: item[1].expires_at)[:surplus]
        for key, _ in oldest:
            self._entries.pop(key, None)
        logger.debug("Evicted %s forecast entries (max=%s)", surplus, self._max_entries)


class WeatherCache:
    """Derived weather per (location, rounded timestamp), including ``None`` results."""

    def __init__(self, *, interval_minutes: int | None = None) -> None:
        minutes = settings.weather_cache_interval_minutes if interval_minutes is None else interval_minutes
        self._interval = timedelta(minutes=max(1, minutes))
        self._entries: dict[WeatherKey, WaypointWeather | None] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def key(self, lat: float, lon: float, timestamp: datetime) -> WeatherKey:
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        epoch = datetime(1970, 1, 1, tzinfo=timezone.utc)
        slots = math.floor((timestamp - epoch) / self._interval + 0.5)
        return (round(lat, 4), round(lon, 4), epoch + slots * self._interval)

    def has(self, lat: float, lon: float, timestamp: datetime) -> bool:
        return self.key(lat, lon, timestamp) in self._entries

    def get(self, lat: float, lon: float, timestamp: datetime) -> WaypointWeather | None:
        return self._entries.get(self.key(lat, lon, timestamp))

    def set(self, lat: float, lon: float, timestamp: datetime, weather: WaypointWeather | None) -> None:
        self._entries[self.key(lat, lon, timestamp)] = weather

    def clear(self) -> None:
        self._entries.clear()


__all__ = ["CachedForecast", "ForecastCache", "WeatherCache", "location_key"]
