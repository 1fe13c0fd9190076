"""NASA FIRMS country-feed adapter for satellite fire detections.

Fetches yesterday's VIIRS (SNPP NRT) detections per configured country as
CSV and persists each sufficiently confident detection as a ``fire`` event.
Countries are fetched sequentially with a pause between requests.
"""

from __future__ import annotations

import csv
import io
import logging
from datetime import date, datetime, time, timedelta
from typing import Any

from ecoguard.core.errors import UpstreamError
from ecoguard.core.types import Event, Geometry, GeometryType, HazardType, IngestResult, Source, utcnow
from ecoguard.ingestion.base import SourceAdapter
from ecoguard.processing.severity import (
    FIRE_MIN_CONFIDENCE,
    fire_radius_km,
    fire_severity,
    point_footprint,
)

logger = logging.getLogger(__name__)

# FIRMS country API base URL
_BASE_URL = "https://firms.modaps.eosdis.nasa.gov/api/country/csv"

_PRODUCT = "VIIRS_SNPP_NRT"
_DAY_RANGE = 1

DEFAULT_COUNTRIES = ("MYS", "SGP", "IDN", "THA")

# VIIRS reports confidence as a letter (low / nominal / high)
_VIIRS_CONFIDENCE = {"l": 30.0, "n": 60.0, "h": 90.0}

_DEFAULT_CONFIDENCE = 50.0
_DEFAULT_BRIGHTNESS_K = 300.0


class FIRMSAdapter(SourceAdapter):
    """Adapter for the NASA FIRMS fire detection country feed."""

    source = Source.NASA_FIRMS

    def __init__(
        self,
        *args: Any,
        map_key: str,
        countries: list[str] | tuple[str, ...] = DEFAULT_COUNTRIES,
        request_delay_s: float = 1.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._map_key = map_key
        self._countries = list(countries)
        self._request_delay_s = request_delay_s

    async def ingest(self) -> IngestResult:
        """Ingest every configured country; one failing country does not stop the rest.

        Raises:
            UpstreamError: If every country request failed.
        """
        day = (utcnow() - timedelta(days=1)).date()
        result = IngestResult()
        failures = 0

        for index, country in enumerate(self._countries):
            if index:
                await self._pause(self._request_delay_s)
            try:
                csv_text = await self._fetch_country(country, day)
            except UpstreamError as exc:
                failures += 1
                logger.error("FIRMS ingestion failed for %s: %s", country, exc)
                continue

            for event in self.parse_csv(csv_text, country):
                await self._store_event(event, result)

        if self._countries and failures == len(self._countries):
            raise UpstreamError(self.name, f"all {failures} country requests failed")

        self._log_result(result)
        return result

    async def _fetch_country(self, country: str, day: date) -> str:
        url = f"{_BASE_URL}/{self._map_key}/{_PRODUCT}/{country}/{_DAY_RANGE}/{day.isoformat()}"
        response = await self._get(url)
        return response.text

    @classmethod
    def parse_csv(cls, csv_text: str, country: str) -> list[Event]:
        """Parse a FIRMS CSV body into fire events, skipping unusable rows."""
        if "No data" in csv_text:
            logger.info("FIRMS: no detections for %s", country)
            return []

        reader = csv.DictReader(io.StringIO(csv_text.strip()))
        events: list[Event] = []
        for row in reader:
            try:
                event = cls._parse_row(row, country)
            except (ValueError, KeyError, TypeError) as exc:
                logger.debug("Skipping malformed row: %s -- %s", row, exc)
                continue
            if event is not None:
                events.append(event)
        return events

    @staticmethod
    def _parse_row(row: dict[str, str], country: str) -> Event | None:
        """Parse one CSV row; None if coordinates are missing or confidence is too low."""
        lat_raw = (row.get("latitude") or "").strip()
        lng_raw = (row.get("longitude") or "").strip()
        if not lat_raw or not lng_raw:
            return None
        lat = float(lat_raw)
        lng = float(lng_raw)

        confidence = _parse_confidence(row.get("confidence"))
        if confidence < FIRE_MIN_CONFIDENCE:
            return None

        brightness = _float_or(row.get("brightness") or row.get("bright_ti4"), _DEFAULT_BRIGHTNESS_K)
        acq_date = row["acq_date"].strip()

        return Event(
            id=f"nasa-firms-{country}-{acq_date}-{lat:.4f}-{lng:.4f}",
            source=Source.NASA_FIRMS,
            type=HazardType.FIRE,
            severity=fire_severity(brightness, confidence),
            confidence=confidence / 100,
            geometry=Geometry(type=GeometryType.POINT, coordinates=[lng, lat]),
            area_bbox=point_footprint(lng, lat, fire_radius_km(brightness)),
            starts_at=datetime.combine(_parse_date(acq_date), _parse_time(row.get("acq_time"))),
            ingested_at=utcnow(),
            properties={
                "brightness": brightness,
                "scan": _float_or(row.get("scan"), 1.0),
                "track": _float_or(row.get("track"), 1.0),
                "satellite": (row.get("satellite") or "VIIRS").strip(),
                "instrument": (row.get("instrument") or "VIIRS").strip(),
                "version": (row.get("version") or "2.0NRT").strip(),
                "bright_t31": _float_or(row.get("bright_t31") or row.get("bright_ti5"), 0.0),
                "frp": _float_or(row.get("frp"), 0.0),
                "daynight": (row.get("daynight") or "D").strip(),
                "country_code": country,
            },
        )


def _float_or(raw: str | None, default: float) -> float:
    raw = (raw or "").strip()
    return float(raw) if raw else default


def _parse_confidence(raw: str | None) -> float:
    """Numeric percentage, or VIIRS letter confidence mapped to a percentage."""
    value = (raw or "").strip().lower()
    if not value:
        return _DEFAULT_CONFIDENCE
    if value[0] in _VIIRS_CONFIDENCE:
        return _VIIRS_CONFIDENCE[value[0]]
    return float(value)


def _parse_date(date_str: str) -> date:
    """Parse FIRMS date string (YYYY-MM-DD) into a date object."""
    parts = date_str.strip().split("-")
    return date(int(parts[0]), int(parts[1]), int(parts[2]))


def _parse_time(time_str: str | None) -> time:
    """Parse FIRMS time string (HHMM) into a time object; noon when absent."""
    raw = (time_str or "").strip()
    if not raw:
        return time(12, 0)
    if ":" in raw:
        return time.fromisoformat(raw)
    raw = raw.zfill(4)
    return time(int(raw[:2]), int(raw[2:]))
