"""Shared geospatial helpers: haversine distance and bounding-box math.

All footprint radii convert kilometers to degrees with a flat 111 km/degree
factor on both axes. This is not valid near the poles.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence

from ecoguard.core.types import BBox

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE = 111.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometers between two WGS84 points."""
    lat1_r = math.radians(lat1)
    lat2_r = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def km_to_degrees(km: float) -> float:
    return km / KM_PER_DEGREE


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def bbox_around(lng: float, lat: float, radius_km: float) -> BBox:
    """Square footprint of ``radius_km`` around a point."""
    radius_deg = km_to_degrees(radius_km)
    return (lng - radius_deg, lat - radius_deg, lng + radius_deg, lat + radius_deg)


def bbox_of_ring(ring: Iterable[Sequence[float]]) -> BBox:
    """Coordinate extent of a polygon ring."""
    coords = list(ring)
    lngs = [c[0] for c in coords]
    lats = [c[1] for c in coords]
    return (min(lngs), min(lats), max(lngs), max(lats))


def bbox_contains(bbox: Sequence[float], lng: float, lat: float) -> bool:
    """Inclusive point-in-box test; points on the boundary are inside."""
    min_lng, min_lat, max_lng, max_lat = bbox
    return min_lng <= lng <= max_lng and min_lat <= lat <= max_lat


def search_window(lng: float, lat: float, radius_km: float) -> BBox | None:
    """Padded lon/lat window guaranteed to contain every point within ``radius_km``.

    Used as a coarse SQL prefilter before exact haversine filtering. Returns
    ``None`` when the window would wrap the antimeridian or a pole, in which
    case callers should scan without a spatial prefilter.
    """
    # 50% margin over the flat conversion, plus longitude widening by latitude
    lat_pad = km_to_degrees(radius_km) * 1.5
    cos_lat = math.cos(math.radians(min(abs(lat) + lat_pad, 90.0)))
    if cos_lat < 0.01:
        return None
    lng_pad = lat_pad / cos_lat

    window = (lng - lng_pad, lat - lat_pad, lng + lng_pad, lat + lat_pad)
    if window[0] < -180.0 or window[2] > 180.0 or window[1] < -90.0 or window[3] > 90.0:
        return None
    return window
