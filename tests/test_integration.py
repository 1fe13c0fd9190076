"""End-to-end ingestion and alerting cycle.

Real SQLite stores, real adapters against respx-mocked feeds, and the real
fanout engine with mocked transports: one batch must persist events, alert
the affected subscriber, and publish a global notice.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import respx
from conftest import NOW, RecordingBroadcaster, make_event, make_subscription
from httpx import Response

from ecoguard.alerts.broadcast import GLOBAL_CHANNEL, SocketIOBroadcaster
from ecoguard.alerts.fanout import FanoutEngine, FanoutQueue
from ecoguard.config import Settings, YAMLConfig
from ecoguard.core.errors import ValidationError
from ecoguard.core.pipeline import IngestionPipeline
from ecoguard.core.types import Source
from ecoguard.db.store import EventStore, SubscriptionStore
from ecoguard.ingestion.eonet import EONET_URL, EONETAdapter
from ecoguard.ingestion.usgs import FEED_URL, USGSAdapter
from ecoguard.main import (
    build_adapters,
    build_broadcast_server,
    build_fanout_engine,
    build_risk_engine,
    parse_args,
)


def _usgs_payload() -> dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "id": "us7000kl01",
                "properties": {
                    "mag": 5.2,
                    "place": "20 km S of Kuala Lumpur, Malaysia",
                    "time": 1741608000000,
                },
                "geometry": {"type": "Point", "coordinates": [101.69, 2.96, 12.0]},
            },
            {
                "id": "us7000tiny",
                "properties": {"mag": 1.8, "place": "Nowhere", "time": 1741608000000},
                "geometry": {"type": "Point", "coordinates": [120.0, 10.0, 5.0]},
            },
        ],
    }


def _eonet_payload() -> dict[str, Any]:
    return {
        "events": [
            {
                "id": "EONET_1",
                "title": "Tropical Storm Far Away",
                "categories": [{"id": "severeStorms", "title": "Severe Storms"}],
                "geometry": [
                    {"date": "2025-03-10T06:00:00Z", "type": "Point", "coordinates": [140.0, 15.0]}
                ],
            }
        ]
    }


@respx.mock
async def test_full_cycle_alerts_affected_subscriber(
    event_store: EventStore, subscription_store: SubscriptionStore
) -> None:
    respx.get(FEED_URL).mock(return_value=Response(200, json=_usgs_payload()))
    respx.get(EONET_URL).mock(return_value=Response(200, json=_eonet_payload()))

    await subscription_store.upsert_by_contact(
        make_subscription(lat=3.139, lng=101.687, email="kl@example.com")
    )
    await subscription_store.upsert_by_contact(
        make_subscription(lat=5.98, lng=116.07, email="kk@example.com", phone=None)
    )

    email = AsyncMock()
    email.send.return_value = True
    broadcaster = RecordingBroadcaster()
    queue = FanoutQueue(
        FanoutEngine(event_store, subscription_store, broadcaster, email=email)
    )

    async with httpx.AsyncClient() as client:
        pipeline = IngestionPipeline(
            {
                Source.USGS: USGSAdapter(event_store, client=client),
                Source.NASA_EONET: EONETAdapter(event_store, client=client),
            },
            fanout_queue=queue,
        )
        batch = await pipeline.ingest_all()
        await queue.join()

    assert batch.total_inserted == 2
    assert await event_store.get("usgs-us7000kl01") is not None
    assert await event_store.get("usgs-us7000tiny") is None

    email.send.assert_awaited_once()
    assert email.send.await_args.args[0] == "kl@example.com"

    notices = broadcaster.on(GLOBAL_CHANNEL)
    assert {n["event"]["id"] for n in notices} == {"usgs-us7000kl01", "nasa-eonet-EONET_1"}


@respx.mock
async def test_second_cycle_updates_without_realerting(
    event_store: EventStore, subscription_store: SubscriptionStore
) -> None:
    respx.get(FEED_URL).mock(return_value=Response(200, json=_usgs_payload()))
    queue = MagicMock()

    async with httpx.AsyncClient() as client:
        pipeline = IngestionPipeline(
            {Source.USGS: USGSAdapter(event_store, client=client)}, fanout_queue=queue
        )
        first = await pipeline.ingest_all()
        second = await pipeline.ingest_all()

    assert first.total_inserted == 1
    assert second.total_inserted == 0
    assert second.total_updated == 1
    assert queue.submit.call_count == 1


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def test_parse_args() -> None:
    assert parse_args(["--once"]).once is True
    assert parse_args(["--source", "openaq"]).source == "openaq"
    assert parse_args([]).source is None


async def test_build_adapters_respects_enabled_sources(event_store: EventStore) -> None:
    yaml_config = YAMLConfig.model_validate({"ingestion": {"sources": ["usgs", "nasa-firms"]}})

    async with httpx.AsyncClient() as client:
        adapters = build_adapters(event_store, client, Settings(_env_file=None), yaml_config)

    assert set(adapters) == {Source.USGS, Source.NASA_FIRMS}


async def test_build_fanout_engine_without_credentials(
    event_store: EventStore, subscription_store: SubscriptionStore
) -> None:
    settings = Settings(_env_file=None, smtp_host="", twilio_account_sid="")

    async with httpx.AsyncClient() as client:
        engine = build_fanout_engine(
            event_store, subscription_store, RecordingBroadcaster(), client, settings, YAMLConfig()
        )

    assert engine._sms is None
    assert engine._email is None
    assert engine._webpush is not None


def test_parse_args_assess() -> None:
    assert parse_args(["--assess", "3.14", "101.69"]).assess == [3.14, 101.69]
    assert parse_args([]).assess is None


async def test_build_risk_engine_uses_risk_config(event_store: EventStore) -> None:
    yaml_config = YAMLConfig.model_validate(
        {"risk": {"default_radius_km": 5, "heatmap_max_cells": 4}}
    )
    engine = build_risk_engine(event_store, yaml_config)
    # About 20 km north of the query point: outside 5 km, inside the 50 km default
    await event_store.upsert(make_event("usgs-near", lat=3.18, lng=101.0, severity=6.0))

    assessment = await engine.assess(3.0, 101.0, now=NOW)

    assert assessment.active_events == 0
    assert (await engine.assess(3.0, 101.0, radius_km=50, now=NOW)).active_events == 1
    with pytest.raises(ValidationError, match="Grid too large"):
        await engine.heatmap((100.0, 3.0, 100.2, 3.2), resolution=0.1, now=NOW)


def test_build_broadcast_server_serves_socketio_app() -> None:
    broadcaster = SocketIOBroadcaster()
    settings = Settings(_env_file=None, broadcast_host="127.0.0.1", broadcast_port=9100)

    server = build_broadcast_server(broadcaster, settings)

    assert server.config.app is broadcaster.app
    assert (server.config.host, server.config.port) == ("127.0.0.1", 9100)
