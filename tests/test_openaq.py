"""Tests for the OpenAQ latest-measurements adapter."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

import pytest
import respx
from conftest import NOW
from httpx import AsyncClient, Response

from ecoguard.core.errors import UpstreamError
from ecoguard.core.types import HazardType, Source
from ecoguard.db.store import EventStore
from ecoguard.ingestion.openaq import LATEST_URL, OpenAQAdapter


def _reading(
    parameter: str = "pm25",
    value: float = 100.0,
    lat: float = 3.15,
    lng: float = 101.7,
    location: str = "Cheras",
) -> dict[str, Any]:
    return {
        "location": location,
        "parameter": parameter,
        "value": value,
        "unit": "µg/m³",
        "date": {"utc": "2025-03-10T11:00:00Z", "local": "2025-03-10T19:00:00+08:00"},
        "coordinates": {"latitude": lat, "longitude": lng},
        "country": "MY",
        "city": "Kuala Lumpur",
        "sourceName": "DOE Malaysia",
        "mobile": False,
    }


def _adapter(store, http_client: AsyncClient, **kwargs: Any) -> OpenAQAdapter:
    kwargs.setdefault("countries", ["MY"])
    return OpenAQAdapter(store, client=http_client, request_delay_s=0, **kwargs)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def test_unhealthy_location_becomes_event() -> None:
    events = OpenAQAdapter.normalize(
        [_reading(), _reading(parameter="pm10", value=40.0)], "MY", NOW
    )

    assert len(events) == 1
    event = events[0]
    assert event.id == "openaq-MY-3.1500-101.7000-2025-03-10"
    assert event.source == Source.OPENAQ
    assert event.type == HazardType.AQI
    assert event.severity == pytest.approx(7.5)
    assert event.confidence == pytest.approx(0.85)
    assert event.properties["aqi"] == 174
    assert event.properties["aqi_category"] == "Unhealthy"
    assert event.properties["primary_pollutant"] == "pm25"
    assert set(event.properties["measurements"]) == {"pm25", "pm10"}
    assert event.starts_at.hour == 11


def test_aqi_at_or_below_100_is_suppressed() -> None:
    assert OpenAQAdapter.normalize([_reading(value=28.3)], "MY", NOW) == []


def test_invalid_readings_are_ignored() -> None:
    readings = [
        _reading(value=0.0),
        _reading(value=-5.0),
        {**_reading(), "coordinates": None},
    ]
    assert OpenAQAdapter.normalize(readings, "MY", NOW) == []


def test_non_object_rows_are_ignored() -> None:
    grouped = {
        "location": "Jurong",
        "coordinates": {"latitude": 1.33, "longitude": 103.7},
        "measurements": [None],
    }
    events = OpenAQAdapter.normalize([None, grouped, _reading()], "MY", NOW)

    assert [e.id for e in events] == ["openaq-MY-3.1500-101.7000-2025-03-10"]


def test_grouped_measurements_shape() -> None:
    row = {
        "location": "Jurong",
        "city": "Singapore",
        "country": "SG",
        "coordinates": {"latitude": 1.33, "longitude": 103.7},
        "measurements": [
            {"parameter": "pm25", "value": 60.0, "unit": "µg/m³", "lastUpdated": "2025-03-10T10:00:00Z"},
            {"parameter": "o3", "value": 50.0, "unit": "µg/m³", "lastUpdated": "2025-03-10T10:00:00Z"},
        ],
    }

    events = OpenAQAdapter.normalize([row], "SG", NOW)

    assert len(events) == 1
    assert events[0].properties["location_name"] == "Jurong"
    assert events[0].properties["primary_pollutant"] == "pm25"


def test_locations_are_grouped_separately() -> None:
    readings = [
        _reading(lat=3.15, lng=101.7),
        _reading(lat=1.35, lng=103.8, value=10.0),
        _reading(lat=5.41, lng=100.33, value=150.0),
    ]

    events = OpenAQAdapter.normalize(readings, "MY", NOW)

    assert {e.id for e in events} == {
        "openaq-MY-3.1500-101.7000-2025-03-10",
        "openaq-MY-5.4100-100.3300-2025-03-10",
    }


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


@respx.mock
async def test_ingest_follows_pages(event_store: EventStore) -> None:
    full_page = [_reading(location=f"station-{i}", value=5.0) for i in range(1000)]
    route = respx.get(LATEST_URL).mock(
        side_effect=[
            Response(200, json={"results": full_page}),
            Response(200, json={"results": [_reading()]}),
        ]
    )

    async with AsyncClient() as http_client:
        result = await _adapter(event_store, http_client, api_key="aq-key", max_pages=3).ingest()

    assert route.call_count == 2
    assert route.calls[1].request.url.params["page"] == "2"
    assert route.calls[0].request.headers["X-API-Key"] == "aq-key"
    assert result.inserted == 1


@respx.mock
async def test_missing_results_fails_country() -> None:
    respx.get(LATEST_URL).mock(return_value=Response(200, json={"meta": {}}))

    async with AsyncClient() as http_client:
        adapter = _adapter(AsyncMock(), http_client)
        with pytest.raises(UpstreamError, match="all 1 country requests failed"):
            await adapter.ingest()


@respx.mock
async def test_one_country_failing_does_not_stop_others() -> None:
    store = AsyncMock()
    store.upsert.return_value.inserted = True
    respx.get(LATEST_URL).mock(
        side_effect=[Response(502), Response(200, json={"results": [_reading()]})]
    )

    async with AsyncClient() as http_client:
        result = await _adapter(store, http_client, countries=["MY", "SG"]).ingest()

    assert result.inserted == 1
