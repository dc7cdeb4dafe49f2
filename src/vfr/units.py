"""Unit conversions used by the forecast adapter and the condition evaluator."""

from typing import Final

METERS_TO_FEET: Final[float] = 3.28084
MS_TO_KNOTS: Final[float] = 1.94384
KELVIN_OFFSET: Final[float] = 273.15


def meters_to_feet(meters: float) -> float:
    """Return ``meters`` expressed in feet [ft]."""

    return meters * METERS_TO_FEET


def feet_to_meters(feet: float) -> float:
    """Return ``feet`` expressed in metres [m]."""

    return feet / METERS_TO_FEET


def ms_to_knots(speed_ms: float) -> float:
    """Return a speed in m/s expressed in knots [kt]."""

    return speed_ms * MS_TO_KNOTS


def kelvin_to_celsius(temp_k: float) -> float:
    """Return a Kelvin temperature in degrees Celsius [degC]."""

    return temp_k - KELVIN_OFFSET
