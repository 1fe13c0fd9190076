"""NASA EONET adapter for open natural events (storms, floods, wildfires, volcanoes, ...).

Each EONET event carries a geometry history; the latest entry positions the
event. Category and title cues drive type and severity.
"""

from __future__ import annotations

import logging
from typing import Any

from ecoguard.core.errors import UpstreamError
from ecoguard.core.types import Event, Geometry, GeometryType, IngestResult, Source, utcnow
from ecoguard.ingestion.base import SourceAdapter, parse_iso
from ecoguard.processing.severity import eonet_bbox, eonet_hazard_type, eonet_severity

logger = logging.getLogger(__name__)

EONET_URL = "https://eonet.gsfc.nasa.gov/api/v3/events"

_CONFIDENCE = 0.90
_EVENT_LIMIT = 100


class EONETAdapter(SourceAdapter):
    """Adapter for the NASA Earth Observatory Natural Event Tracker."""

    source = Source.NASA_EONET

    async def ingest(self) -> IngestResult:
        payload = await self._get_json(EONET_URL, params={"status": "open", "limit": _EVENT_LIMIT})
        events = payload.get("events") if isinstance(payload, dict) else None
        if not isinstance(events, list):
            raise UpstreamError(self.name, "payload has no 'events' list")

        result = IngestResult()
        for raw in events:
            if not isinstance(raw, dict):
                logger.warning("Skipping non-object EONET event: %r", raw)
                continue
            try:
                event = self.normalize(raw)
            except (KeyError, TypeError, ValueError, IndexError) as exc:
                logger.warning("Skipping malformed EONET event %s: %s", raw.get("id"), exc)
                continue
            if event is None:
                continue
            await self._store_event(event, result)

        self._log_result(result)
        return result

    @staticmethod
    def normalize(raw: dict[str, Any]) -> Event | None:
        """Convert one EONET event to an Event, or None when it has no geometry."""
        geometries = raw.get("geometry") or []
        if not geometries:
            return None

        latest = geometries[-1]
        category = raw["categories"][0]
        category_id = category["id"]
        title = raw.get("title", "")

        return Event(
            id=f"nasa-eonet-{raw['id']}",
            source=Source.NASA_EONET,
            type=eonet_hazard_type(category_id),
            severity=eonet_severity(category_id, title),
            confidence=_CONFIDENCE,
            geometry=Geometry(
                type=GeometryType(latest["type"]),
                coordinates=latest["coordinates"],
            ),
            area_bbox=eonet_bbox(latest["type"], latest["coordinates"]),
            starts_at=parse_iso(latest["date"]),
            ingested_at=utcnow(),
            properties={
                "title": title,
                "description": raw.get("description") or "",
                "category": category.get("title"),
                "category_id": category_id,
                "link": raw.get("link"),
                "closed": raw.get("closed"),
                "magnitude_value": latest.get("magnitudeValue"),
                "magnitude_unit": latest.get("magnitudeUnit"),
            },
        )
