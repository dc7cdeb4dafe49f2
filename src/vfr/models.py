"""Route, runway and weather snapshot models shared by the VFR components."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True, slots=True)
class RunwayEnd:
    ident: str
    heading_true: float


@dataclass(frozen=True, slots=True)
class Runway:
    """A physical runway with its two landing directions."""

    id: str
    low_end: RunwayEnd
    high_end: RunwayEnd
    length_ft: float | None = None
    surface: str | None = None
    closed: bool = False

    @property
    def ends(self) -> tuple[RunwayEnd, RunwayEnd]:
        return (self.low_end, self.high_end)


@dataclass(frozen=True, slots=True)
class Waypoint:
    """A point on the planned route.

    Attributes:
        altitude: Planned altitude at this point [ft MSL]. ``None`` uses the route default.
        elevation: Ground elevation [ft MSL].
        distance: Leg distance to the next waypoint [NM].
        bearing: Leg bearing to the next waypoint [deg true].
        ete: Estimated time en route to the next waypoint [min].
    """

    id: str
    name: str
    lat: float
    lon: float
    altitude: float | None = None
    elevation: float | None = None
    runways: tuple[Runway, ...] = ()
    distance: float | None = None
    bearing: float | None = None
    ete: float | None = None


@dataclass(frozen=True, slots=True)
class WaypointWeather:
    """Point-in-time weather at a waypoint.

    Attributes:
        wind_speed: Wind speed at flight altitude [kt].
        wind_dir: Direction the wind blows from at flight altitude [deg].
        wind_gust: Surface gust speed [kt].
        wind_level: Source level of the altitude wind (``surface`` or a pressure level).
        surface_wind_speed: 10 m wind speed [kt].
        surface_wind_dir: 10 m wind direction [deg].
        temperature: Surface air temperature [degC].
        dew_point: Surface dew point [degC].
        cloud_base: Cloud base above ground [m]. ``None`` means clear sky.
        visibility: Horizontal visibility [km].
        humidity: Relative humidity [%].
        precipitation: Precipitation amount [mm].
    """

    timestamp: datetime
    wind_speed: float | None = None
    wind_dir: float | None = None
    wind_gust: float | None = None
    wind_level: str = "surface"
    surface_wind_speed: float | None = None
    surface_wind_dir: float | None = None
    temperature: float | None = None
    dew_point: float | None = None
    cloud_base: float | None = None
    visibility: float | None = None
    humidity: float | None = None
    precipitation: float | None = None

    def to_payload(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass(frozen=True, slots=True)
class ProfilePoint:
    """Inputs of one segment evaluation along the vertical profile.

    Attributes:
        altitude: Aircraft altitude [ft MSL].
        terrain_elevation: Ground elevation below the aircraft [ft MSL].
        cloud_base: Cloud base [ft MSL]. ``None`` means clear sky.
        wind_speed: Wind speed at altitude [kt].
        wind_dir: Wind direction at altitude [deg].
    """

    altitude: float
    terrain_elevation: float = 0.0
    cloud_base: float | None = None
    wind_speed: float | None = None
    wind_dir: float | None = None


@dataclass(frozen=True, slots=True)
class ForecastTimeRange:
    start: datetime
    end: datetime


__all__ = [
    "ForecastTimeRange",
    "ProfilePoint",
    "Runway",
    "RunwayEnd",
    "Waypoint",
    "WaypointWeather",
]
