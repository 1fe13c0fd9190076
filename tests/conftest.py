"""Pytest fixtures for the EcoGuard test suite.

Provides a temporary database with both stores, sample events and
subscriptions, and a recording broadcaster for fanout tests.
"""

from __future__ import annotations

import base64
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, AsyncGenerator

import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ecoguard.config import reset_config
from ecoguard.core.geo import bbox_around
from ecoguard.core.types import (
    AlertChannel,
    Event,
    Geometry,
    GeometryType,
    HazardType,
    PushSubscription,
    Source,
    Subscription,
)
from ecoguard.db.engine import get_engine, get_session_factory, init_db
from ecoguard.db.store import EventStore, SubscriptionStore

# Fixed reference time used across tests (naive UTC)
NOW = datetime(2025, 3, 10, 12, 0, 0)

# Browser-side push keys: a real P-256 key pair so payloads can be encrypted and decrypted
PUSH_PRIVATE_KEY = ec.generate_private_key(ec.SECP256R1())
PUSH_AUTH_SECRET = b"0123456789abcdef"
PUSH_P256DH = (
    base64.urlsafe_b64encode(
        PUSH_PRIVATE_KEY.public_key().public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)
    )
    .rstrip(b"=")
    .decode()
)
PUSH_AUTH = base64.urlsafe_b64encode(PUSH_AUTH_SECRET).rstrip(b"=").decode()


@pytest.fixture
async def session_factory(tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create a temporary SQLite database with all tables.

    Yields a session factory for test use, then disposes the engine.
    """
    engine = get_engine(str(tmp_path / "test.db"))
    await init_db(engine)
    yield get_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def event_store(session_factory: async_sessionmaker[AsyncSession]) -> EventStore:
    return EventStore(session_factory)


@pytest.fixture
def subscription_store(session_factory: async_sessionmaker[AsyncSession]) -> SubscriptionStore:
    return SubscriptionStore(session_factory)


@pytest.fixture(autouse=True)
def _reset_config() -> None:
    reset_config()


class RecordingBroadcaster:
    """Broadcaster stub that remembers every publish call."""

    def __init__(self, fail: bool = False) -> None:
        self.messages: list[tuple[str, str, dict[str, Any]]] = []
        self.fail = fail

    async def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        if self.fail:
            msg = "socket server unavailable"
            raise RuntimeError(msg)
        self.messages.append((channel, event, payload))

    def on(self, channel: str) -> list[dict[str, Any]]:
        return [payload for ch, _, payload in self.messages if ch == channel]


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_event(
    event_id: str = "usgs-test1",
    *,
    hazard_type: HazardType = HazardType.EARTHQUAKE,
    source: Source = Source.USGS,
    severity: float = 5.2,
    lat: float = 3.0,
    lng: float = 101.0,
    radius_km: float = 26.0,
    starts_at: datetime | None = None,
    ingested_at: datetime | None = None,
    properties: dict[str, Any] | None = None,
) -> Event:
    """Point event with a square footprint of ``radius_km`` around it."""
    return Event(
        id=event_id,
        source=source,
        type=hazard_type,
        severity=severity,
        confidence=0.9,
        geometry=Geometry(type=GeometryType.POINT, coordinates=[lng, lat]),
        area_bbox=bbox_around(lng, lat, radius_km),
        starts_at=starts_at or NOW - timedelta(hours=1),
        ingested_at=ingested_at or NOW,
        properties=properties if properties is not None else {"place": "Test Place"},
    )


def make_subscription(
    *,
    lat: float = 3.0,
    lng: float = 101.0,
    radius_km: float = 25.0,
    channels: list[AlertChannel] | None = None,
    email: str | None = "user@example.com",
    phone: str | None = "+60123456789",
    push: PushSubscription | None = None,
    language: str = "en",
) -> Subscription:
    return Subscription(
        id="",
        lat=lat,
        lng=lng,
        radius_km=radius_km,
        channels=channels if channels is not None else [AlertChannel.EMAIL],
        language=language,
        email=email,
        phone=phone,
        push=push,
    )


def make_push(endpoint: str = "https://push.example.com/send/abc123") -> PushSubscription:
    return PushSubscription(endpoint=endpoint, p256dh=PUSH_P256DH, auth=PUSH_AUTH)
