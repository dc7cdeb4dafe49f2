"""Sunrise, sunset and daylight clipping in UTC, backed by ``astral``."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from astral import Observer
from astral.sun import elevation, noon, sunrise, sunset

DaylightPeriod = tuple[datetime, datetime]


@dataclass(frozen=True, slots=True)
class SunTimes:
    """Sunrise and sunset falling on one UTC date.

    West of roughly 100 deg W the sunset on a UTC date belongs to the previous
    local evening, so ``sunset`` can precede ``sunrise``.
    """

    sunrise: datetime
    sunset: datetime


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _midnight(day: date) -> datetime:
    return datetime.combine(day, time(0, 0), tzinfo=timezone.utc)


def get_sun_times(lat: float, lon: float, when: datetime) -> SunTimes | None:
    """Return sunrise and sunset on the UTC date of ``when``.

    ``None`` when the sun does not both rise and set that day (polar day or
    night, or the day the sun first stays up or down).
    """

    observer = Observer(latitude=lat, longitude=lon)
    day = _as_utc(when).date()
    try:
        rise = sunrise(observer, date=day, tzinfo=timezone.utc)
        fall = sunset(observer, date=day, tzinfo=timezone.utc)
    except ValueError:
        return None
    return SunTimes(sunrise=rise, sunset=fall)


def is_polar_day(lat: float, when: datetime) -> bool:
    """True when the sun is above the horizon at solar noon.

    Only meaningful when the sun does not rise or set on that date.
    """

    observer = Observer(latitude=lat, longitude=0.0)
    solar_noon = noon(observer, date=_as_utc(when).date(), tzinfo=timezone.utc)
    return elevation(observer, solar_noon) > 0


def daylight_periods(lat: float, lon: float, day: date) -> list[DaylightPeriod]:
    """Daylight on one UTC date as half-open ``[start, end)`` periods."""

    day_start = _midnight(day)
    day_end = day_start + timedelta(days=1)
    sun_times = get_sun_times(lat, lon, day_start)
    if sun_times is None:
        return [(day_start, day_end)] if is_polar_day(lat, day_start) else []
    if sun_times.sunrise <= sun_times.sunset:
        return [(sun_times.sunrise, sun_times.sunset)]
    # daylight spans UTC midnight: previous evening, then this afternoon
    return [(day_start, sun_times.sunset), (sun_times.sunrise, day_end)]


def is_daylight(when: datetime, lat: float, lon: float) -> bool:
    when = _as_utc(when)
    days = (when.date() - timedelta(days=1), when.date())
    return any(start <= when <= end for day in days for start, end in daylight_periods(lat, lon, day))


def filter_to_daylight_hours(
    start: datetime,
    end: datetime,
    lat: float,
    lon: float,
) -> list[DaylightPeriod]:
    """Clip ``[start, end]`` to daylight, one range per continuous daylight period."""

    start = _as_utc(start)
    end = _as_utc(end)
    merged: list[DaylightPeriod] = []
    # the previous day can still contribute evening daylight after 00:00 UTC
    day = start.date() - timedelta(days=1)
    while day <= end.date():
        for period_start, period_end in daylight_periods(lat, lon, day):
            if merged and period_start <= merged[-1][1]:
                merged[-1] = (merged[-1][0], max(merged[-1][1], period_end))
            else:
                merged.append((period_start, period_end))
        day += timedelta(days=1)

    ranges: list[DaylightPeriod] = []
    for period_start, period_end in merged:
        clipped_start = max(start, period_start)
        clipped_end = min(end, period_end)
        if clipped_start < clipped_end:
            ranges.append((clipped_start, clipped_end))
    return ranges


__all__ = [
    "DaylightPeriod",
    "SunTimes",
    "daylight_periods",
    "filter_to_daylight_hours",
    "get_sun_times",
    "is_daylight",
    "is_polar_day",
]
