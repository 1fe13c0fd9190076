"""OpenAQ adapter for ground-station air quality measurements.

Pulls the latest pollutant readings per country, groups them by station
location, computes an overall AQI and persists an ``aqi`` event for every
location whose AQI exceeds 100. Event ids carry the UTC day, so a location
yields at most one event per day, refreshed on every run.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from ecoguard.core.errors import UpstreamError
from ecoguard.core.types import Event, Geometry, GeometryType, HazardType, IngestResult, Source, utcnow
from ecoguard.ingestion.base import SourceAdapter, parse_iso
from ecoguard.processing.aqi import (
    AQI_EVENT_THRESHOLD,
    SUPPORTED_POLLUTANTS,
    Measurement,
    aqi_radius_km,
    aqi_severity,
    compute_aqi,
)
from ecoguard.processing.severity import point_footprint

logger = logging.getLogger(__name__)

LATEST_URL = "https://api.openaq.org/v2/latest"

DEFAULT_COUNTRIES = ("MY", "SG", "ID", "TH")

_CONFIDENCE = 0.85
_PAGE_LIMIT = 1000


class OpenAQAdapter(SourceAdapter):
    """Adapter for the OpenAQ latest-measurements endpoint."""

    source = Source.OPENAQ

    def __init__(
        self,
        *args: Any,
        api_key: str = "",
        countries: list[str] | tuple[str, ...] = DEFAULT_COUNTRIES,
        request_delay_s: float = 1.0,
        max_pages: int = 5,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._api_key = api_key
        self._countries = list(countries)
        self._request_delay_s = request_delay_s
        self._max_pages = max_pages

    async def ingest(self) -> IngestResult:
        """Ingest every configured country; one failing country does not stop the rest.

        Raises:
            UpstreamError: If every country request failed.
        """
        result = IngestResult()
        failures = 0

        for index, country in enumerate(self._countries):
            if index:
                await self._pause(self._request_delay_s)
            try:
                readings = await self._fetch_country(country)
                events = self.normalize(readings, country)
            except (UpstreamError, KeyError, TypeError, ValueError) as exc:
                failures += 1
                logger.error("OpenAQ ingestion failed for %s: %s", country, exc)
                continue

            for event in events:
                await self._store_event(event, result)

        if self._countries and failures == len(self._countries):
            raise UpstreamError(self.name, f"all {failures} country requests failed")

        self._log_result(result)
        return result

    async def _fetch_country(self, country: str) -> list[dict[str, Any]]:
        """All result rows for a country, following pages until a short page."""
        headers = {"X-API-Key": self._api_key} if self._api_key else None
        rows: list[dict[str, Any]] = []

        for page in range(1, self._max_pages + 1):
            payload = await self._get_json(
                LATEST_URL,
                params={
                    "limit": _PAGE_LIMIT,
                    "page": page,
                    "country": country,
                    "parameter": ",".join(SUPPORTED_POLLUTANTS),
                },
                headers=headers,
            )
            results = payload.get("results") if isinstance(payload, dict) else None
            if not isinstance(results, list):
                raise UpstreamError(self.name, f"payload for {country} has no 'results' list")

            rows.extend(results)
            if len(results) < _PAGE_LIMIT:
                break
        return rows

    @classmethod
    def normalize(
        cls,
        results: list[dict[str, Any]],
        country: str,
        now: datetime | None = None,
    ) -> list[Event]:
        """Group readings by location and build events for unhealthy locations."""
        now = now or utcnow()
        groups: dict[str, list[dict[str, Any]]] = {}

        for reading in _flatten(results):
            coords = reading.get("coordinates")
            value = reading.get("value")
            if not coords or value is None or value <= 0:
                continue
            key = f"{coords['latitude']:.4f}-{coords['longitude']:.4f}"
            groups.setdefault(key, []).append(reading)

        events: list[Event] = []
        for key, readings in groups.items():
            event = cls._location_event(key, readings, country, now)
            if event is not None:
                events.append(event)
        return events

    @staticmethod
    def _location_event(
        key: str,
        readings: list[dict[str, Any]],
        country: str,
        now: datetime,
    ) -> Event | None:
        aqi = compute_aqi(
            Measurement(parameter=r["parameter"], value=float(r["value"]), unit=r.get("unit", ""))
            for r in readings
        )
        if aqi.aqi <= AQI_EVENT_THRESHOLD:
            return None

        primary = readings[0]
        lat = float(primary["coordinates"]["latitude"])
        lng = float(primary["coordinates"]["longitude"])
        observed = _observed_at(primary)

        return Event(
            id=f"openaq-{country}-{key}-{now:%Y-%m-%d}",
            source=Source.OPENAQ,
            type=HazardType.AQI,
            severity=aqi_severity(aqi.aqi),
            confidence=_CONFIDENCE,
            geometry=Geometry(type=GeometryType.POINT, coordinates=[lng, lat]),
            area_bbox=point_footprint(lng, lat, aqi_radius_km(aqi.aqi)),
            starts_at=parse_iso(observed) if observed else now,
            ingested_at=now,
            properties={
                "aqi": aqi.aqi,
                "aqi_category": aqi.category,
                "primary_pollutant": aqi.primary_pollutant,
                "location_name": primary.get("location"),
                "city": primary.get("city"),
                "country": primary.get("country"),
                "measurements": {
                    r["parameter"]: {
                        "value": r["value"],
                        "unit": r.get("unit"),
                        "last_updated": _observed_at(r),
                    }
                    for r in readings
                },
                "source_name": primary.get("sourceName"),
                "mobile": bool(primary.get("mobile", False)),
            },
        )


def _flatten(results: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Expand grouped rows (a ``measurements`` list per location) into flat readings."""
    flat: list[dict[str, Any]] = []
    for row in results:
        if not isinstance(row, dict):
            continue
        measurements = row.get("measurements")
        if isinstance(measurements, list):
            parent = {k: v for k, v in row.items() if k != "measurements"}
            flat.extend({**parent, **m} for m in measurements if isinstance(m, dict))
        else:
            flat.append(row)
    return flat


def _observed_at(reading: dict[str, Any]) -> str | None:
    date_info = reading.get("date")
    if isinstance(date_info, dict) and date_info.get("utc"):
        return date_info["utc"]
    return reading.get("lastUpdated")
