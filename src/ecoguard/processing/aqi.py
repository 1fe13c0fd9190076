"""Air Quality Index computation from raw pollutant concentrations.

Each pollutant has its own unit-conversion rule and an independent
piecewise-linear breakpoint table (US EPA style, simplified for NO2/SO2).
The overall AQI is the maximum across pollutants.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from ecoguard.core.geo import clamp

# Only locations above this AQI become events
AQI_EVENT_THRESHOLD = 100

# AQI reported above the top breakpoint of pollutants without an open-ended segment
_CEILING_AQI = 301.0
_MAX_AQI = 500.0

# (concentration low, concentration high, index low, index high)
_Breakpoint = tuple[float, float, float, float]


@dataclass(frozen=True)
class Measurement:
    """One pollutant reading at a location."""

    parameter: str
    value: float
    unit: str


@dataclass(frozen=True)
class AQIResult:
    """Overall AQI with its category and dominant pollutant."""

    aqi: int
    category: str
    primary_pollutant: str
    pollutant_aqis: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class _Scale:
    convert: Callable[[float, str], float]
    breakpoints: tuple[_Breakpoint, ...]
    # Segment extrapolated (and capped at 500) above the table; None => flat 301
    overflow: _Breakpoint | None = None


def _normalize_unit(unit: str) -> str:
    """Fold unit spellings: 'µg/m³', 'μg/m³' and 'ug/m3' all become 'ug/m3'."""
    return unit.strip().lower().replace("µ", "u").replace("μ", "u").replace("³", "3")


def _ppm_times(factor: float) -> Callable[[float, str], float]:
    def convert(value: float, unit: str) -> float:
        return value * factor if _normalize_unit(unit) == "ppm" else value

    return convert


def _ugm3_divided_by(factor: float) -> Callable[[float, str], float]:
    def convert(value: float, unit: str) -> float:
        return value / factor if _normalize_unit(unit) == "ug/m3" else value

    return convert


_SCALES: dict[str, _Scale] = {
    # ug/m3
    "pm25": _Scale(
        convert=_ppm_times(1000),
        breakpoints=(
            (0.0, 12.0, 0, 50),
            (12.1, 35.4, 51, 100),
            (35.5, 55.4, 101, 150),
            (55.5, 150.4, 151, 200),
            (150.5, 250.4, 201, 300),
            (250.5, 350.4, 301, 400),
        ),
        overflow=(350.5, 500.4, 401, 500),
    ),
    # ug/m3
    "pm10": _Scale(
        convert=_ppm_times(1000),
        breakpoints=(
            (0, 54, 0, 50),
            (55, 154, 51, 100),
            (155, 254, 101, 150),
            (255, 354, 151, 200),
            (355, 424, 201, 300),
            (425, 504, 301, 400),
        ),
        overflow=(505, 604, 401, 500),
    ),
    # ppm, 8-hour average
    "o3": _Scale(
        convert=_ugm3_divided_by(1960),
        breakpoints=(
            (0.0, 0.054, 0, 50),
            (0.055, 0.070, 51, 100),
            (0.071, 0.085, 101, 150),
            (0.086, 0.105, 151, 200),
            (0.106, 0.200, 201, 300),
        ),
    ),
    # ug/m3
    "no2": _Scale(
        convert=_ppm_times(1880),
        breakpoints=(
            (0, 40, 0, 50),
            (41, 80, 51, 100),
            (81, 180, 101, 150),
            (181, 280, 151, 200),
            (281, 400, 201, 300),
        ),
    ),
    # ug/m3
    "so2": _Scale(
        convert=_ppm_times(2620),
        breakpoints=(
            (0, 35, 0, 50),
            (36, 75, 51, 100),
            (76, 185, 101, 150),
            (186, 304, 151, 200),
            (305, 604, 201, 300),
        ),
    ),
    # ppm
    "co": _Scale(
        convert=_ugm3_divided_by(1150),
        breakpoints=(
            (0, 4.4, 0, 50),
            (4.5, 9.4, 51, 100),
            (9.5, 12.4, 101, 150),
            (12.5, 15.4, 151, 200),
            (15.5, 30.4, 201, 300),
        ),
    ),
}

SUPPORTED_POLLUTANTS = tuple(_SCALES)


def _interpolate(c: float, segment: _Breakpoint) -> float:
    c_low, c_high, i_low, i_high = segment
    return ((i_high - i_low) / (c_high - c_low)) * (c - c_low) + i_low


def pollutant_aqi(parameter: str, value: float, unit: str) -> float:
    """Sub-index for a single pollutant reading. Unknown pollutants score 0."""
    scale = _SCALES.get(parameter.lower())
    if scale is None:
        return 0.0

    c = scale.convert(value, unit)
    for segment in scale.breakpoints:
        if c <= segment[1]:
            return _interpolate(c, segment)

    if scale.overflow is None:
        return _CEILING_AQI
    return min(_MAX_AQI, _interpolate(c, scale.overflow))


def aqi_category(aqi: float) -> str:
    if aqi <= 50:
        return "Good"
    if aqi <= 100:
        return "Moderate"
    if aqi <= 150:
        return "Unhealthy for Sensitive Groups"
    if aqi <= 200:
        return "Unhealthy"
    if aqi <= 300:
        return "Very Unhealthy"
    return "Hazardous"


def compute_aqi(measurements: Iterable[Measurement]) -> AQIResult:
    """Overall AQI: the maximum pollutant sub-index, rounded."""
    max_aqi = 0.0
    primary = "pm25"
    pollutant_aqis: dict[str, float] = {}

    for m in measurements:
        parameter = m.parameter.lower()
        sub_index = pollutant_aqi(parameter, m.value, m.unit)
        pollutant_aqis[parameter] = sub_index
        if sub_index > max_aqi:
            max_aqi = sub_index
            primary = parameter

    return AQIResult(
        aqi=round(max_aqi),
        category=aqi_category(max_aqi),
        primary_pollutant=primary,
        pollutant_aqis=pollutant_aqis,
    )


def aqi_severity(aqi: float) -> float:
    """Stepwise severity from 2.0 (good) to 10.0 (hazardous)."""
    if aqi <= 50:
        return 2.0
    if aqi <= 100:
        return 4.0
    if aqi <= 150:
        return 6.0
    if aqi <= 200:
        return 7.5
    if aqi <= 300:
        return 9.0
    return 10.0


def aqi_radius_km(aqi: float) -> float:
    """Higher AQI => larger affected area, between 5 and 50 km."""
    return clamp(aqi / 4, 5.0, 50.0)
