"""Shared dataclass contracts between all EcoGuard modules.

These types define the boundaries between pipeline stages: adapters produce
``Event`` instances, the stores persist them, the risk engine and the fanout
engine consume them. All modules import from here -- no module imports from
a peer's internals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

# [minLon, minLat, maxLon, maxLat]
BBox = tuple[float, float, float, float]


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the store's timestamp convention)."""
    return datetime.now(tz=UTC).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Source(str, Enum):
    """Upstream feed identifiers."""

    USGS = "usgs"
    NASA_EONET = "nasa-eonet"
    NASA_FIRMS = "nasa-firms"
    OPENWEATHER = "openweather"
    OPENAQ = "openaq"


class HazardType(str, Enum):
    """Normalized hazard categories."""

    EARTHQUAKE = "earthquake"
    FLOOD = "flood"
    STORM = "storm"
    FIRE = "fire"
    AQI = "aqi"


class GeometryType(str, Enum):
    """GeoJSON geometry types accepted for event footprints."""

    POINT = "Point"
    POLYGON = "Polygon"


class AlertChannel(str, Enum):
    """Supported alert delivery channels."""

    WEBPUSH = "webpush"
    EMAIL = "email"
    SMS = "sms"


class RiskLevel(str, Enum):
    """Risk level labels derived from a 0-10 score."""

    VERY_HIGH = "very high"
    HIGH = "high"
    MODERATE = "moderate"
    LOW = "low"
    VERY_LOW = "very low"
    UNKNOWN = "unknown"


class Trend(str, Enum):
    """Recent-activity trend used by the heuristic forecast."""

    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Geometry:
    """GeoJSON-style footprint with longitude-first coordinates.

    Points carry ``[lng, lat]``; polygons carry a list of linear rings, the
    first of which is the outer boundary.
    """

    type: GeometryType
    coordinates: list[Any]

    @property
    def point(self) -> tuple[float, float]:
        """Representative ``(lng, lat)``: the point itself or the ring centroid."""
        if self.type == GeometryType.POINT:
            return float(self.coordinates[0]), float(self.coordinates[1])

        ring = [tuple(c[:2]) for c in self.coordinates[0]]
        if len(ring) > 1 and ring[0] == ring[-1]:
            ring = ring[:-1]
        lng = sum(c[0] for c in ring) / len(ring)
        lat = sum(c[1] for c in ring) / len(ring)
        return float(lng), float(lat)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "coordinates": self.coordinates}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Geometry:
        return cls(type=GeometryType(data["type"]), coordinates=data["coordinates"])


@dataclass
class Event:
    """An observed or forecast hazard occurrence in canonical form."""

    id: str
    source: Source
    type: HazardType
    severity: float
    confidence: float
    geometry: Geometry
    area_bbox: BBox
    starts_at: datetime
    ingested_at: datetime
    ends_at: datetime | None = None
    properties: dict[str, Any] = field(default_factory=dict)

    @property
    def lng(self) -> float:
        return self.geometry.point[0]

    @property
    def lat(self) -> float:
        return self.geometry.point[1]


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of a single event upsert. ``inserted`` is False for updates."""

    event: Event
    inserted: bool


@dataclass
class IngestResult:
    """Per-adapter insert/update counters."""

    inserted: int = 0
    updated: int = 0
    failed: int = 0

    def record(self, inserted: bool) -> None:
        if inserted:
            self.inserted += 1
        else:
            self.updated += 1


@dataclass
class SourceOutcome:
    """Result of ingesting one source, successful or not."""

    source: Source
    success: bool
    inserted: int = 0
    updated: int = 0
    error: str | None = None
    duration_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"source": self.source.value, "success": self.success}
        if self.success:
            data["inserted"] = self.inserted
            data["updated"] = self.updated
        else:
            data["error"] = self.error
        if self.duration_ms is not None:
            data["duration_ms"] = self.duration_ms
        return data


@dataclass
class BatchIngestResult:
    """Aggregate result of ingesting every source concurrently."""

    results: list[SourceOutcome]
    duration_ms: int
    timestamp: datetime

    @property
    def total_inserted(self) -> int:
        return sum(r.inserted for r in self.results if r.success)

    @property
    def total_updated(self) -> int:
        return sum(r.updated for r in self.results if r.success)

    @property
    def succeeded(self) -> list[SourceOutcome]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> list[SourceOutcome]:
        return [r for r in self.results if not r.success]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_sources": len(self.results),
            "total_inserted": self.total_inserted,
            "total_updated": self.total_updated,
            "duration_ms": self.duration_ms,
            "results": [r.to_dict() for r in self.results],
            "timestamp": self.timestamp.isoformat(),
        }


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PushSubscription:
    """Browser push subscription (endpoint plus encryption keys)."""

    endpoint: str
    p256dh: str
    auth: str

    def to_subscription_info(self) -> dict[str, Any]:
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}


@dataclass
class Subscription:
    """A standing alert registration for a location and radius."""

    id: str
    lat: float
    lng: float
    radius_km: float
    channels: list[AlertChannel]
    language: str = "en"
    email: str | None = None
    phone: str | None = None
    push: PushSubscription | None = None
    created_at: datetime | None = None


@dataclass
class SubscriptionStats:
    """Aggregate subscription counts."""

    total: int
    recent_7d: int
    by_channel: dict[str, int]
    by_language: dict[str, int]
    by_radius: dict[str, int]


# ---------------------------------------------------------------------------
# Risk assessment
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContributingEvent:
    """An event that contributed to a hazard risk score."""

    id: str
    severity: float
    distance_km: int
    age_hours: int


@dataclass
class HazardRisk:
    """Risk for one hazard type at a location."""

    level: RiskLevel = RiskLevel.VERY_LOW
    score: float = 0.0
    events: list[ContributingEvent] = field(default_factory=list)


@dataclass
class RiskAssessment:
    """Point-in-time risk view for a location. Derived, never persisted."""

    lat: float
    lng: float
    timestamp: datetime
    overall_risk: RiskLevel
    risk_score: float
    active_events: int
    risks: dict[HazardType, HazardRisk]

    @property
    def dominant_risk(self) -> HazardType:
        """Hazard type with the highest score (first declared wins ties)."""
        return max(self.risks, key=lambda t: self.risks[t].score)

    def to_dict(self) -> dict[str, Any]:
        return {
            "location": {"lat": self.lat, "lng": self.lng},
            "timestamp": self.timestamp.isoformat(),
            "overall_risk": self.overall_risk.value,
            "risk_score": self.risk_score,
            "active_events": self.active_events,
            "risks": {
                hazard.value: {
                    "level": risk.level.value,
                    "score": risk.score,
                    "events": [
                        {
                            "id": e.id,
                            "severity": e.severity,
                            "distance_km": e.distance_km,
                            "age_hours": e.age_hours,
                        }
                        for e in risk.events
                    ],
                }
                for hazard, risk in self.risks.items()
            },
        }


@dataclass(frozen=True)
class HeatmapCell:
    """Risk summary for one grid point."""

    lat: float
    lng: float
    risk_score: float
    risk_level: RiskLevel
    dominant_risk: str


@dataclass
class Heatmap:
    """Grid of risk cells over a bounding box."""

    bbox: BBox
    resolution: float
    cells: list[HeatmapCell]


@dataclass(frozen=True)
class HazardForecast:
    """Trend-based short-horizon outlook for one hazard type."""

    type: HazardType
    probability: float
    confidence: float
    expected_severity: float
    trend: Trend
    recent_events: int
    valid_until: datetime


@dataclass
class DailyRisk:
    """Per-day maximum risk contribution by hazard type."""

    day: date
    risks: dict[HazardType, float]

    @property
    def overall_risk(self) -> float:
        return max(self.risks.values())


@dataclass
class RiskTrends:
    """Daily risk time series around a location."""

    lat: float
    lng: float
    period_days: int
    days: list[DailyRisk]
    total_events: int

    @property
    def avg_risk(self) -> float:
        if not self.days:
            return 0.0
        return sum(d.overall_risk for d in self.days) / len(self.days)

    @property
    def max_risk(self) -> float:
        return max((d.overall_risk for d in self.days), default=0.0)


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AlertContent:
    """Human-readable alert text for one event."""

    title: str
    body: str
    action: str


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of sending one alert over one channel to one subscription."""

    event_id: str
    subscription_id: str
    channel: AlertChannel
    delivered: bool
    error: str | None = None


@dataclass
class FanoutReport:
    """Summary of one fanout run."""

    events_processed: int = 0
    events_alerted: int = 0
    dispatches: list[DispatchOutcome] = field(default_factory=list)

    @property
    def delivered(self) -> int:
        return sum(1 for d in self.dispatches if d.delivered)

    @property
    def failed(self) -> int:
        return sum(1 for d in self.dispatches if not d.delivered)
