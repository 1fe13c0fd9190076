"""SQLAlchemy 2.0 ORM models for hazard events and alert subscriptions.

Primary keys are strings (SQLite compatibility). JSON columns store
geometry, bounding boxes, free-form properties and channel lists.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all EcoGuard models."""


class EventRecord(Base):
    """A normalized hazard event from any upstream source.

    ``lon``/``lat`` hold the representative point of the geometry (the
    point itself, or the polygon ring centroid) and back the proximity
    prefilter.
    """

    __tablename__ = "events"
    __table_args__ = (
        Index("ix_events_lon_lat", "lon", "lat"),
        Index("ix_events_starts_at", "starts_at"),
        Index("ix_events_ingested_at", "ingested_at"),
    )

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    severity: Mapped[float] = mapped_column(Float, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    geometry: Mapped[dict] = mapped_column(JSON, nullable=False)
    lon: Mapped[float] = mapped_column(Float, nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    area_bbox: Mapped[list] = mapped_column(JSON, nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    properties: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    ingested_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class SubscriptionRecord(Base):
    """A standing location subscription for hazard alerts."""

    __tablename__ = "subscriptions"
    __table_args__ = (Index("ix_subscriptions_lng_lat", "lng", "lat"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(254), nullable=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    push_endpoint: Mapped[str | None] = mapped_column(Text, nullable=True)
    push_p256dh: Mapped[str | None] = mapped_column(Text, nullable=True)
    push_auth: Mapped[str | None] = mapped_column(Text, nullable=True)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    radius_km: Mapped[float] = mapped_column(Float, nullable=False)
    channels: Mapped[list] = mapped_column(JSON, nullable=False)
    language: Mapped[str] = mapped_column(String(10), nullable=False, default="en")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
