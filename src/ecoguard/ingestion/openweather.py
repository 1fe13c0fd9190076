"""OpenWeather One Call 3.0 adapter for weather alerts and ambient severe weather.

For every monitoring location the adapter persists:

- one event per published weather alert (type mapped from the alert name), and
- one synthetic ``storm`` event per location and hour when the current
  conditions cross the severe-weather thresholds.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ecoguard.core.errors import UpstreamError
from ecoguard.core.types import Event, Geometry, GeometryType, HazardType, IngestResult, Source, utcnow
from ecoguard.ingestion.base import SourceAdapter, from_epoch_s
from ecoguard.processing.severity import (
    ambient_weather_severity,
    is_severe_weather,
    point_footprint,
    weather_alert_radius_km,
    weather_alert_severity,
    weather_alert_type,
)

logger = logging.getLogger(__name__)

ONECALL_URL = "https://api.openweathermap.org/data/3.0/onecall"

_ALERT_CONFIDENCE = 0.85
_AMBIENT_CONFIDENCE = 0.80

_KELVIN_OFFSET = 273.15
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class MonitoringLocation:
    """A named point polled for weather conditions."""

    name: str
    lat: float
    lng: float


DEFAULT_LOCATIONS: tuple[MonitoringLocation, ...] = (
    MonitoringLocation("kuala-lumpur", 3.1390, 101.6869),
    MonitoringLocation("singapore", 1.3521, 103.8198),
    MonitoringLocation("penang", 5.4164, 100.3327),
    MonitoringLocation("johor-bahru", 1.4927, 103.7414),
    MonitoringLocation("kuantan", 3.8077, 103.3260),
    MonitoringLocation("kota-kinabalu", 5.9804, 116.0735),
    MonitoringLocation("kuching", 1.5553, 110.3592),
    MonitoringLocation("ipoh", 4.2105, 101.9758),
    MonitoringLocation("melaka", 2.1896, 102.2501),
    MonitoringLocation("kota-bharu", 6.1254, 102.2386),
)


class OpenWeatherAdapter(SourceAdapter):
    """Adapter for OpenWeather alerts and current conditions."""

    source = Source.OPENWEATHER

    def __init__(
        self,
        *args: Any,
        api_key: str,
        locations: list[MonitoringLocation] | tuple[MonitoringLocation, ...] = DEFAULT_LOCATIONS,
        request_delay_s: float = 0.1,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._api_key = api_key
        self._locations = list(locations)
        self._request_delay_s = request_delay_s

    async def ingest(self) -> IngestResult:
        """Poll every monitoring location; a failing location does not stop the rest.

        Raises:
            UpstreamError: If no API key is configured or every location failed.
        """
        if not self._api_key:
            raise UpstreamError(self.name, "OpenWeather API key not configured")

        result = IngestResult()
        failures = 0

        for index, location in enumerate(self._locations):
            if index:
                await self._pause(self._request_delay_s)
            try:
                data = await self._get_json(
                    ONECALL_URL,
                    params={
                        "lat": location.lat,
                        "lon": location.lng,
                        "appid": self._api_key,
                        "exclude": "minutely,daily",
                    },
                )
                events = self.normalize(data, location)
            except (UpstreamError, KeyError, TypeError, ValueError, IndexError) as exc:
                failures += 1
                logger.error("OpenWeather ingestion failed for %s: %s", location.name, exc)
                continue

            for event in events:
                await self._store_event(event, result)

        if self._locations and failures == len(self._locations):
            raise UpstreamError(self.name, f"all {failures} location requests failed")

        self._log_result(result)
        return result

    @classmethod
    def normalize(
        cls,
        data: dict[str, Any],
        location: MonitoringLocation,
        now: datetime | None = None,
    ) -> list[Event]:
        """Events for one location's One Call response."""
        now = now or utcnow()
        events = [cls._alert_event(alert, location, now) for alert in data.get("alerts") or []]

        current = data.get("current")
        if current:
            ambient = cls._ambient_event(current, location, now)
            if ambient is not None:
                events.append(ambient)
        return events

    @staticmethod
    def _alert_event(alert: dict[str, Any], location: MonitoringLocation, now: datetime) -> Event:
        event_name = alert["event"]
        description = alert.get("description") or ""
        severity = weather_alert_severity(event_name, description)
        end = alert.get("end")

        return Event(
            id=f"openweather-{location.name}-{alert['start']}-{_WHITESPACE.sub('-', event_name)}",
            source=Source.OPENWEATHER,
            type=weather_alert_type(event_name),
            severity=severity,
            confidence=_ALERT_CONFIDENCE,
            geometry=Geometry(type=GeometryType.POINT, coordinates=[location.lng, location.lat]),
            area_bbox=point_footprint(location.lng, location.lat, weather_alert_radius_km(severity)),
            starts_at=from_epoch_s(alert["start"]),
            ends_at=from_epoch_s(end) if end is not None else None,
            ingested_at=now,
            properties={
                "event_name": event_name,
                "description": description,
                "sender_name": alert.get("sender_name"),
                "tags": alert.get("tags") or [],
                "location_name": location.name,
            },
        )

    @staticmethod
    def _ambient_event(
        current: dict[str, Any], location: MonitoringLocation, now: datetime
    ) -> Event | None:
        wind_speed = current.get("wind_speed") or 0.0
        humidity = current.get("humidity") or 0.0
        temperature_c = current["temp"] - _KELVIN_OFFSET

        if not is_severe_weather(wind_speed, temperature_c, humidity):
            return None

        severity = ambient_weather_severity(wind_speed, temperature_c)
        weather = (current.get("weather") or [{}])[0]
        feels_like = current.get("feels_like")

        return Event(
            # One synthetic event per location per hour
            id=f"openweather-severe-{location.name}-{now:%Y-%m-%dT%H}",
            source=Source.OPENWEATHER,
            type=HazardType.STORM,
            severity=severity,
            confidence=_AMBIENT_CONFIDENCE,
            geometry=Geometry(type=GeometryType.POINT, coordinates=[location.lng, location.lat]),
            area_bbox=point_footprint(location.lng, location.lat, weather_alert_radius_km(severity)),
            starts_at=now,
            ingested_at=now,
            properties={
                "temperature": temperature_c,
                "feels_like": feels_like - _KELVIN_OFFSET if feels_like is not None else None,
                "humidity": humidity,
                "pressure": current.get("pressure"),
                "wind_speed": wind_speed,
                "wind_deg": current.get("wind_deg"),
                "weather_main": weather.get("main"),
                "weather_description": weather.get("description"),
                "location_name": location.name,
            },
        )
