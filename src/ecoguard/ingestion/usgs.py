"""USGS earthquake feed adapter.

Pulls the all-hour GeoJSON summary feed and persists every earthquake of
magnitude 2.5 or above as an ``earthquake`` event whose footprint grows
with magnitude.
"""

from __future__ import annotations

import logging
from typing import Any

from ecoguard.core.errors import UpstreamError
from ecoguard.core.types import Event, Geometry, GeometryType, HazardType, IngestResult, Source, utcnow
from ecoguard.ingestion.base import SourceAdapter, from_epoch_ms
from ecoguard.processing.severity import (
    SEISMIC_MIN_MAGNITUDE,
    point_footprint,
    seismic_radius_km,
    seismic_severity,
)

logger = logging.getLogger(__name__)

FEED_URL = "https://earthquake.usgs.gov/earthquakes/feed/v1.0/summary/all_hour.geojson"

_CONFIDENCE = 0.95


class USGSAdapter(SourceAdapter):
    """Adapter for the USGS real-time earthquake GeoJSON feed."""

    source = Source.USGS

    def __init__(self, *args: Any, feed_url: str = FEED_URL, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._feed_url = feed_url

    async def ingest(self) -> IngestResult:
        payload = await self._get_json(self._feed_url)
        features = payload.get("features") if isinstance(payload, dict) else None
        if not isinstance(features, list):
            raise UpstreamError(self.name, "payload has no 'features' list")

        result = IngestResult()
        for feature in features:
            if not isinstance(feature, dict):
                logger.warning("Skipping non-object USGS feature: %r", feature)
                continue
            try:
                event = self.normalize(feature)
            except (KeyError, TypeError, ValueError, IndexError) as exc:
                logger.warning("Skipping malformed USGS feature %s: %s", feature.get("id"), exc)
                continue
            if event is None:
                continue
            await self._store_event(event, result)

        self._log_result(result)
        return result

    @staticmethod
    def normalize(feature: dict[str, Any]) -> Event | None:
        """Convert one GeoJSON feature to an Event, or None below the magnitude threshold."""
        props = feature["properties"]
        magnitude = props.get("mag")
        if magnitude is None or magnitude < SEISMIC_MIN_MAGNITUDE:
            return None

        coords = feature["geometry"]["coordinates"]
        lng, lat = float(coords[0]), float(coords[1])
        depth_km = coords[2] if len(coords) > 2 else None

        return Event(
            id=f"usgs-{feature['id']}",
            source=Source.USGS,
            type=HazardType.EARTHQUAKE,
            severity=seismic_severity(magnitude),
            confidence=_CONFIDENCE,
            geometry=Geometry(type=GeometryType.POINT, coordinates=[lng, lat]),
            area_bbox=point_footprint(lng, lat, seismic_radius_km(magnitude)),
            starts_at=from_epoch_ms(props["time"]),
            ingested_at=utcnow(),
            properties={
                "place": props.get("place"),
                "depth_km": depth_km,
                "mag_type": props.get("magType"),
                "alert": props.get("alert"),
                "tsunami": props.get("tsunami"),
                "url": props.get("url"),
                "felt_reports": props.get("felt"),
                "significance": props.get("sig"),
            },
        )
