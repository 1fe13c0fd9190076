"""Severity classification rules for every source adapter.

Deterministic, pure functions mapping raw measurements to a normalized
0-10 severity and a footprint radius (km). Air-quality rules live in
``ecoguard.processing.aqi``.
"""

from __future__ import annotations

from typing import Any

from ecoguard.core.geo import bbox_around, bbox_of_ring, clamp
from ecoguard.core.types import BBox, GeometryType, HazardType

MIN_SEVERITY = 0.0
MAX_SEVERITY = 10.0

# ---------------------------------------------------------------------------
# Seismic
# ---------------------------------------------------------------------------

SEISMIC_MIN_MAGNITUDE = 2.5


def seismic_severity(magnitude: float) -> float:
    """Severity equals magnitude, clamped to the 0-10 domain."""
    return clamp(magnitude, MIN_SEVERITY, MAX_SEVERITY)


def seismic_radius_km(magnitude: float) -> float:
    """Roughly 50 km of impact per magnitude unit, never below 10 km."""
    return max(10.0, magnitude * 50)


# ---------------------------------------------------------------------------
# Fire detection
# ---------------------------------------------------------------------------

FIRE_MIN_CONFIDENCE = 30.0


def fire_severity(brightness: float, confidence: float) -> float:
    """Stepwise severity from brightness temperature (K) and confidence (%)."""
    severity = 3.0

    if brightness > 380:
        severity += 3.0
    elif brightness > 350:
        severity += 2.0
    elif brightness > 320:
        severity += 1.0

    if confidence > 80:
        severity += 1.0
    elif confidence < 50:
        severity -= 1.0

    return clamp(severity, 1.0, MAX_SEVERITY)


def fire_radius_km(brightness: float) -> float:
    """Hotter fires get a larger footprint, never below 2 km."""
    return max(2.0, (brightness - 300) / 20)


# ---------------------------------------------------------------------------
# Weather alerts and ambient severe weather
# ---------------------------------------------------------------------------


def weather_alert_severity(event_name: str, description: str) -> float:
    """Keyword-based severity for a published weather alert."""
    text = f"{event_name} {description}".lower()

    if any(word in text for word in ("extreme", "severe", "major")):
        return 8.0
    if any(word in text for word in ("moderate", "warning")):
        return 6.0
    if any(word in text for word in ("minor", "watch")):
        return 4.0
    return 5.0


def weather_alert_type(event_name: str) -> HazardType:
    """Map a weather alert name onto a hazard type."""
    name = event_name.lower()
    if "flood" in name or "rain" in name:
        return HazardType.FLOOD
    if "fire" in name or "smoke" in name:
        return HazardType.FIRE
    if "air" in name or "pollution" in name:
        return HazardType.AQI
    return HazardType.STORM


def weather_alert_radius_km(severity: float) -> float:
    return max(5.0, severity * 10)


def is_severe_weather(wind_speed_ms: float, temperature_c: float, humidity_pct: float) -> bool:
    """Ambient conditions that warrant a synthetic storm event."""
    return (
        wind_speed_ms > 15  # > 54 km/h
        or temperature_c > 40
        or temperature_c < -10
        or humidity_pct > 90
    )


def ambient_weather_severity(wind_speed_ms: float, temperature_c: float) -> float:
    """Severity of ambient severe weather, escalating with wind and temperature."""
    severity = 3.0

    if wind_speed_ms > 25:
        severity += 2.0
    elif wind_speed_ms > 15:
        severity += 1.0

    if temperature_c > 45 or temperature_c < -20:
        severity += 2.0
    elif temperature_c > 40 or temperature_c < -10:
        severity += 1.0

    return min(severity, MAX_SEVERITY)


# ---------------------------------------------------------------------------
# Orbital multi-category events
# ---------------------------------------------------------------------------

_DEFAULT_CATEGORY: tuple[HazardType, float] = (HazardType.STORM, 5.0)

# Category id -> (hazard type, base severity). Numeric ids come from the
# legacy feed, string ids from the current one.
_EONET_CATEGORIES: dict[int | str, tuple[HazardType, float]] = {
    6: (HazardType.EARTHQUAKE, 7.0),
    8: (HazardType.FIRE, 6.5),
    9: (HazardType.FLOOD, 7.5),
    10: (HazardType.STORM, 6.0),
    12: (HazardType.STORM, 8.0),
    13: (HazardType.AQI, 5.0),
    14: (HazardType.AQI, 5.0),
    "earthquakes": (HazardType.EARTHQUAKE, 7.0),
    "wildfires": (HazardType.FIRE, 6.5),
    "floods": (HazardType.FLOOD, 7.5),
    "severeStorms": (HazardType.STORM, 6.0),
    "volcanoes": (HazardType.STORM, 8.0),
    "dustHaze": (HazardType.AQI, 5.0),
}

# Point geometries get a fixed ~11 km footprint
EONET_POINT_RADIUS_DEG = 0.1


def _category_key(category_id: Any) -> int | str:
    if isinstance(category_id, str) and category_id.isdigit():
        return int(category_id)
    return category_id


def eonet_hazard_type(category_id: Any) -> HazardType:
    return _EONET_CATEGORIES.get(_category_key(category_id), _DEFAULT_CATEGORY)[0]


def eonet_severity(category_id: Any, title: str) -> float:
    """Category base severity adjusted by cue words in the title."""
    severity = _EONET_CATEGORIES.get(_category_key(category_id), _DEFAULT_CATEGORY)[1]

    title_lower = title.lower()
    if "major" in title_lower or "severe" in title_lower:
        severity += 1.0
    if "extreme" in title_lower or "catastrophic" in title_lower:
        severity += 2.0
    if "minor" in title_lower or "small" in title_lower:
        severity -= 1.0

    return clamp(severity, 1.0, MAX_SEVERITY)


def eonet_bbox(geometry_type: str, coordinates: Any) -> BBox:
    """Footprint from the feed's own geometry."""
    if geometry_type == GeometryType.POINT.value:
        lng, lat = coordinates[0], coordinates[1]
        r = EONET_POINT_RADIUS_DEG
        return (lng - r, lat - r, lng + r, lat + r)

    if geometry_type == GeometryType.POLYGON.value:
        return bbox_of_ring(coordinates[0])

    return (0.0, 0.0, 0.0, 0.0)


def point_footprint(lng: float, lat: float, radius_km: float) -> BBox:
    """Square footprint around a point; thin wrapper kept for adapter readability."""
    return bbox_around(lng, lat, radius_km)
