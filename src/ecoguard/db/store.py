"""Event and subscription persistence over the async SQLAlchemy session factory.

``EventStore`` upserts normalized events keyed by their deterministic id and
serves the proximity, recency and bounding-box reads used by the risk and
fanout engines. ``SubscriptionStore`` keeps the standing location
subscriptions, upserted by contact identity.

Proximity reads use a padded lon/lat window as a coarse SQL prefilter and
apply exact haversine filtering in Python.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Literal

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ecoguard.core.errors import StoreError
from ecoguard.core.geo import haversine_km, search_window
from ecoguard.core.types import (
    AlertChannel,
    BBox,
    Event,
    Geometry,
    HazardType,
    PushSubscription,
    Source,
    Subscription,
    SubscriptionStats,
    UpsertResult,
    utcnow,
)
from ecoguard.db.models import EventRecord, SubscriptionRecord

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

NearOrder = Literal["severity", "recent", "distance"]

# Radius histogram boundaries for subscription stats, in km
_RADIUS_BUCKETS = (0, 10, 25, 50, 100, 200)


@dataclass(frozen=True)
class NearbyEvent:
    """An event returned by a proximity query with its distance to the query point."""

    event: Event
    distance_km: float


# ---------------------------------------------------------------------------
# Row <-> dataclass conversion
# ---------------------------------------------------------------------------


def _event_values(event: Event) -> dict[str, Any]:
    lng, lat = event.geometry.point
    return {
        "source": event.source.value,
        "type": event.type.value,
        "severity": event.severity,
        "confidence": event.confidence,
        "geometry": event.geometry.to_dict(),
        "lon": lng,
        "lat": lat,
        "area_bbox": list(event.area_bbox),
        "starts_at": event.starts_at,
        "ends_at": event.ends_at,
        "properties": event.properties or None,
        "ingested_at": event.ingested_at,
    }


def _to_event(row: EventRecord) -> Event:
    return Event(
        id=row.id,
        source=Source(row.source),
        type=HazardType(row.type),
        severity=row.severity,
        confidence=row.confidence,
        geometry=Geometry.from_dict(row.geometry),
        area_bbox=tuple(row.area_bbox),  # type: ignore[arg-type]
        starts_at=row.starts_at,
        ends_at=row.ends_at,
        properties=dict(row.properties or {}),
        ingested_at=row.ingested_at,
    )


def _subscription_values(sub: Subscription) -> dict[str, Any]:
    return {
        "email": sub.email,
        "phone": sub.phone,
        "push_endpoint": sub.push.endpoint if sub.push else None,
        "push_p256dh": sub.push.p256dh if sub.push else None,
        "push_auth": sub.push.auth if sub.push else None,
        "lat": sub.lat,
        "lng": sub.lng,
        "radius_km": sub.radius_km,
        "channels": [AlertChannel(c).value for c in sub.channels],
        "language": sub.language,
    }


def _to_subscription(row: SubscriptionRecord) -> Subscription:
    push = None
    if row.push_endpoint:
        push = PushSubscription(
            endpoint=row.push_endpoint,
            p256dh=row.push_p256dh or "",
            auth=row.push_auth or "",
        )
    return Subscription(
        id=row.id,
        lat=row.lat,
        lng=row.lng,
        radius_km=row.radius_km,
        channels=[AlertChannel(c) for c in row.channels],
        language=row.language,
        email=row.email,
        phone=row.phone,
        push=push,
        created_at=row.created_at,
    )


# ---------------------------------------------------------------------------
# Event store
# ---------------------------------------------------------------------------


class EventStore:
    """Persistence and spatial/temporal reads for normalized events."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def upsert(self, event: Event) -> UpsertResult:
        """Insert the event, or replace every field of the existing row with the same id.

        Returns:
            UpsertResult whose ``inserted`` flag is False when a row already existed.

        Raises:
            StoreError: If the write fails.
        """
        try:
            return await self._upsert_once(event)
        except IntegrityError:
            # A concurrent writer inserted the same id first; the retry updates it
            logger.debug("Concurrent insert for %s, retrying as update", event.id)
            try:
                return await self._upsert_once(event)
            except SQLAlchemyError as exc:
                raise StoreError(f"Failed to upsert event {event.id}: {exc}") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to upsert event {event.id}: {exc}") from exc

    async def _upsert_once(self, event: Event) -> UpsertResult:
        values = _event_values(event)
        async with self._session_factory() as session:
            row = await session.get(EventRecord, event.id)
            if row is None:
                session.add(EventRecord(id=event.id, **values))
                inserted = True
            else:
                for key, value in values.items():
                    setattr(row, key, value)
                inserted = False
            await session.commit()
        return UpsertResult(event=event, inserted=inserted)

    async def get(self, event_id: str) -> Event | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(EventRecord, event_id)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to load event {event_id}: {exc}") from exc
        return _to_event(row) if row is not None else None

    async def near(
        self,
        lat: float,
        lng: float,
        radius_km: float,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        hazard_type: HazardType | None = None,
        min_severity: float | None = None,
        limit: int | None = None,
        order: NearOrder = "severity",
    ) -> list[NearbyEvent]:
        """Events whose representative point lies within ``radius_km`` of (lat, lng).

        ``since``/``until`` bound ``starts_at``. Results are sorted by
        severity (descending, the default), start time (newest first) or
        distance, and truncated to ``limit`` after exact distance filtering.
        """
        conditions = []
        window = search_window(lng, lat, radius_km)
        if window is not None:
            min_lon, min_lat, max_lon, max_lat = window
            conditions += [
                EventRecord.lon >= min_lon,
                EventRecord.lon <= max_lon,
                EventRecord.lat >= min_lat,
                EventRecord.lat <= max_lat,
            ]
        if since is not None:
            conditions.append(EventRecord.starts_at >= since)
        if until is not None:
            conditions.append(EventRecord.starts_at <= until)
        if hazard_type is not None:
            conditions.append(EventRecord.type == HazardType(hazard_type).value)
        if min_severity is not None:
            conditions.append(EventRecord.severity >= min_severity)

        rows = await self._select(conditions)

        nearby: list[NearbyEvent] = []
        for row in rows:
            distance = haversine_km(lat, lng, row.lat, row.lon)
            if distance <= radius_km:
                nearby.append(NearbyEvent(event=_to_event(row), distance_km=distance))

        if order == "distance":
            nearby.sort(key=lambda n: n.distance_km)
        elif order == "recent":
            nearby.sort(key=lambda n: n.event.starts_at, reverse=True)
        else:
            nearby.sort(key=lambda n: n.event.severity, reverse=True)

        return nearby[:limit] if limit is not None else nearby

    async def recently_ingested(
        self,
        since: datetime,
        min_severity: float,
        hazard_type: HazardType | None = None,
    ) -> list[Event]:
        """Events written at or after ``since`` with severity >= ``min_severity``."""
        conditions = [
            EventRecord.ingested_at >= since,
            EventRecord.severity >= min_severity,
        ]
        if hazard_type is not None:
            conditions.append(EventRecord.type == HazardType(hazard_type).value)

        rows = await self._select(conditions, EventRecord.ingested_at.desc())
        return [_to_event(row) for row in rows]

    async def within_bbox(
        self,
        bbox: BBox,
        *,
        since: datetime | None = None,
        hazard_type: HazardType | None = None,
        limit: int | None = None,
    ) -> list[Event]:
        """Events whose representative point lies inside ``bbox`` (inclusive)."""
        min_lon, min_lat, max_lon, max_lat = bbox
        conditions = [
            EventRecord.lon >= min_lon,
            EventRecord.lon <= max_lon,
            EventRecord.lat >= min_lat,
            EventRecord.lat <= max_lat,
        ]
        if since is not None:
            conditions.append(EventRecord.starts_at >= since)
        if hazard_type is not None:
            conditions.append(EventRecord.type == HazardType(hazard_type).value)

        rows = await self._select(conditions, EventRecord.severity.desc(), limit=limit)
        return [_to_event(row) for row in rows]

    async def query(
        self,
        *,
        hazard_type: HazardType | None = None,
        source: Source | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        min_severity: float | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Event]:
        """Filtered event listing, newest ``starts_at`` first."""
        conditions = []
        if hazard_type is not None:
            conditions.append(EventRecord.type == HazardType(hazard_type).value)
        if source is not None:
            conditions.append(EventRecord.source == Source(source).value)
        if since is not None:
            conditions.append(EventRecord.starts_at >= since)
        if until is not None:
            conditions.append(EventRecord.starts_at <= until)
        if min_severity is not None:
            conditions.append(EventRecord.severity >= min_severity)

        rows = await self._select(
            conditions, EventRecord.starts_at.desc(), limit=limit, offset=offset
        )
        return [_to_event(row) for row in rows]

    async def count_by_type(self, since: datetime | None = None) -> dict[str, int]:
        return await self._count_by(EventRecord.type, since)

    async def count_by_source(self, since: datetime | None = None) -> dict[str, int]:
        return await self._count_by(EventRecord.source, since)

    async def _count_by(self, column: Any, since: datetime | None) -> dict[str, int]:
        stmt = select(column, func.count()).group_by(column)
        if since is not None:
            stmt = stmt.where(EventRecord.starts_at >= since)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return {key: count for key, count in result.all()}
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to count events: {exc}") from exc

    async def _select(
        self,
        conditions: list[Any],
        *order_by: Any,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[EventRecord]:
        stmt = select(EventRecord)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise StoreError(f"Event query failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Subscription store
# ---------------------------------------------------------------------------


class SubscriptionStore:
    """Persistence for standing location subscriptions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def upsert_by_contact(self, subscription: Subscription) -> tuple[Subscription, bool]:
        """Create a subscription, or overwrite the one sharing its contact identity.

        Contact identity is the email when present, otherwise the phone,
        otherwise the push endpoint. An existing match keeps its id and
        ``created_at``.

        Returns:
            The stored subscription and True if it was newly created.
        """
        values = _subscription_values(subscription)
        try:
            async with self._session_factory() as session:
                row = await self._find_by_contact(session, subscription)
                created = row is None
                if row is None:
                    row = SubscriptionRecord(
                        id=subscription.id or str(uuid.uuid4()),
                        created_at=subscription.created_at or utcnow(),
                        **values,
                    )
                    session.add(row)
                else:
                    for key, value in values.items():
                        setattr(row, key, value)
                await session.commit()
                stored = _to_subscription(row)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to save subscription: {exc}") from exc

        logger.info(
            "Subscription %s %s (%d channels)",
            stored.id,
            "created" if created else "updated",
            len(stored.channels),
        )
        return stored, created

    @staticmethod
    async def _find_by_contact(
        session: AsyncSession, subscription: Subscription
    ) -> SubscriptionRecord | None:
        if subscription.email:
            clause = SubscriptionRecord.email == subscription.email
        elif subscription.phone:
            clause = SubscriptionRecord.phone == subscription.phone
        elif subscription.push is not None and subscription.push.endpoint:
            clause = SubscriptionRecord.push_endpoint == subscription.push.endpoint
        else:
            return None
        result = await session.execute(select(SubscriptionRecord).where(clause).limit(1))
        return result.scalars().first()

    async def get(self, subscription_id: str) -> Subscription | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(SubscriptionRecord, subscription_id)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to load subscription {subscription_id}: {exc}") from exc
        return _to_subscription(row) if row is not None else None

    async def update(self, subscription: Subscription) -> Subscription | None:
        """Overwrite the subscription with ``subscription.id``. Returns None if it does not exist."""
        try:
            async with self._session_factory() as session:
                row = await session.get(SubscriptionRecord, subscription.id)
                if row is None:
                    return None
                for key, value in _subscription_values(subscription).items():
                    setattr(row, key, value)
                await session.commit()
                return _to_subscription(row)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to update subscription {subscription.id}: {exc}") from exc

    async def delete(self, subscription_id: str) -> bool:
        try:
            async with self._session_factory() as session:
                row = await session.get(SubscriptionRecord, subscription_id)
                if row is None:
                    return False
                await session.delete(row)
                await session.commit()
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to delete subscription {subscription_id}: {exc}") from exc
        logger.info("Subscription %s deleted", subscription_id)
        return True

    async def in_bbox(self, bbox: BBox) -> list[Subscription]:
        """Subscriptions located inside ``bbox`` (inclusive bounds) with at least one channel."""
        min_lon, min_lat, max_lon, max_lat = bbox
        stmt = select(SubscriptionRecord).where(
            and_(
                SubscriptionRecord.lng >= min_lon,
                SubscriptionRecord.lng <= max_lon,
                SubscriptionRecord.lat >= min_lat,
                SubscriptionRecord.lat <= max_lat,
            )
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise StoreError(f"Subscription query failed: {exc}") from exc

        return [_to_subscription(row) for row in rows if row.channels]

    async def stats(self, now: datetime | None = None) -> SubscriptionStats:
        """Totals plus channel, language and radius distributions."""
        now = now or utcnow()
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(SubscriptionRecord))
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise StoreError(f"Subscription stats failed: {exc}") from exc

        recent_cutoff = now - timedelta(days=7)
        by_channel: dict[str, int] = {}
        by_language: dict[str, int] = {}
        by_radius: dict[str, int] = {}
        for row in rows:
            for channel in row.channels:
                by_channel[channel] = by_channel.get(channel, 0) + 1
            by_language[row.language] = by_language.get(row.language, 0) + 1
            bucket = _radius_bucket(row.radius_km)
            by_radius[bucket] = by_radius.get(bucket, 0) + 1

        return SubscriptionStats(
            total=len(rows),
            recent_7d=sum(1 for row in rows if row.created_at >= recent_cutoff),
            by_channel=by_channel,
            by_language=by_language,
            by_radius=by_radius,
        )


def _radius_bucket(radius_km: float) -> str:
    for low, high in zip(_RADIUS_BUCKETS, _RADIUS_BUCKETS[1:]):
        if low <= radius_km < high:
            return f"{low}-{high}"
    return "other"

