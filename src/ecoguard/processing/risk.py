"""Risk assessment: time- and distance-decayed hazard scoring around a location.

The core operation is ``RiskEngine.assess``. Nearby events from the last
``window_hours`` contribute ``severity x time_decay x distance_decay``; each
hazard type scores the maximum contribution, and the overall score is the
maximum over types.

Three supplementary read paths reuse the same store queries:

- ``heatmap``: independent assessments over a lon/lat grid.
- ``forecast``: a trend heuristic over the last week of nearby activity.
- ``trends``: a daily time series of distance-decayed risk.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from ecoguard.core.errors import QueryError, StoreError, ValidationError
from ecoguard.core.types import (
    BBox,
    ContributingEvent,
    DailyRisk,
    HazardForecast,
    HazardRisk,
    HazardType,
    Heatmap,
    HeatmapCell,
    RiskAssessment,
    RiskLevel,
    RiskTrends,
    Trend,
    utcnow,
)

if TYPE_CHECKING:
    from ecoguard.db.store import EventStore, NearbyEvent

logger = logging.getLogger(__name__)

# Decay constants
TIME_DECAY_HOURS = 12.0
DECAY_FLOOR = 0.1

# Level thresholds, checked highest first
_LEVEL_THRESHOLDS: tuple[tuple[float, RiskLevel], ...] = (
    (7.0, RiskLevel.VERY_HIGH),
    (5.5, RiskLevel.HIGH),
    (4.0, RiskLevel.MODERATE),
    (2.0, RiskLevel.LOW),
)

# Forecast heuristic
FORECAST_RADIUS_KM = 100.0
FORECAST_LOOKBACK_DAYS = 7
FORECAST_MAX_EVENTS = 20
FORECAST_CONFIDENCE = 0.6

# Trend series
TRENDS_RADIUS_KM = 50.0


def time_decay(hours_ago: float) -> float:
    """Exponential decay over 12 hours, floored at 0.1."""
    return max(DECAY_FLOOR, math.exp(-hours_ago / TIME_DECAY_HOURS))


def distance_decay(distance_km: float, radius_km: float) -> float:
    """Linear falloff to the edge of the search radius, floored at 0.1."""
    return max(DECAY_FLOOR, 1 - distance_km / radius_km)


def score_to_level(score: float) -> RiskLevel:
    for threshold, level in _LEVEL_THRESHOLDS:
        if score >= threshold:
            return level
    return RiskLevel.VERY_LOW


def _hours_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / 3600


class RiskEngine:
    """Read-only risk computations over the event store."""

    def __init__(
        self,
        event_store: EventStore,
        *,
        default_radius_km: float = 50.0,
        window_hours: int = 24,
        max_events: int = 10,
        heatmap_max_cells: int = 1000,
        heatmap_cell_radius_km: float = 25.0,
        heatmap_concurrency: int = 10,
    ) -> None:
        self._store = event_store
        self._default_radius_km = default_radius_km
        self._window_hours = window_hours
        self._max_events = max_events
        self._heatmap_max_cells = heatmap_max_cells
        self._heatmap_cell_radius_km = heatmap_cell_radius_km
        self._heatmap_concurrency = heatmap_concurrency

    async def _near(self, lat: float, lng: float, radius_km: float, **filters) -> list[NearbyEvent]:
        try:
            return await self._store.near(lat, lng, radius_km, **filters)
        except StoreError as exc:
            raise QueryError(f"Risk query at ({lat:.4f}, {lng:.4f}) failed: {exc}") from exc

    # -----------------------------------------------------------------
    # Point assessment
    # -----------------------------------------------------------------

    async def assess(
        self,
        lat: float,
        lng: float,
        radius_km: float | None = None,
        now: datetime | None = None,
    ) -> RiskAssessment:
        """Assess current risk at a location.

        Args:
            lat: Latitude of the location.
            lng: Longitude of the location.
            radius_km: Search radius; defaults to the configured radius (50 km).
            now: Reference time (naive UTC). Defaults to the current time.

        Returns:
            RiskAssessment with all five hazard types present.

        Raises:
            QueryError: If the event store cannot be read.
        """
        radius = radius_km if radius_km is not None else self._default_radius_km
        if radius <= 0:
            raise ValidationError("radius_km must be positive", field="radius_km")
        now = now or utcnow()

        nearby = await self._near(
            lat,
            lng,
            radius,
            since=now - timedelta(hours=self._window_hours),
            limit=self._max_events,
            order="severity",
        )

        risks = {hazard: HazardRisk() for hazard in HazardType}
        for item in nearby:
            event = item.event
            hours_ago = max(0.0, _hours_between(event.starts_at, now))
            adjusted = (
                event.severity
                * time_decay(hours_ago)
                * distance_decay(item.distance_km, radius)
            )

            risk = risks[event.type]
            risk.events.append(
                ContributingEvent(
                    id=event.id,
                    severity=event.severity,
                    distance_km=round(item.distance_km),
                    age_hours=round(hours_ago),
                )
            )
            risk.score = max(risk.score, adjusted)

        max_score = 0.0
        for risk in risks.values():
            risk.level = score_to_level(risk.score)
            max_score = max(max_score, risk.score)

        return RiskAssessment(
            lat=lat,
            lng=lng,
            timestamp=now,
            overall_risk=score_to_level(max_score),
            risk_score=round(max_score, 1),
            active_events=len(nearby),
            risks=risks,
        )

    # -----------------------------------------------------------------
    # Heatmap
    # -----------------------------------------------------------------

    async def heatmap(
        self,
        bbox: BBox,
        resolution: float = 0.1,
        now: datetime | None = None,
    ) -> Heatmap:
        """Assess risk on a grid over ``bbox`` = (west, south, east, north).

        Grid points run from south to north and west to east, stepping by
        ``resolution`` degrees and including the max edge. A cell whose
        assessment fails is reported with score 0 and level ``unknown``.

        Raises:
            ValidationError: If the bbox is malformed or the grid exceeds the cell limit.
        """
        west, south, east, north = bbox
        if resolution <= 0:
            raise ValidationError("resolution must be positive", field="resolution")
        if west > east or south > north:
            raise ValidationError(
                "Invalid bounding box format. Use: west,south,east,north", field="bbox"
            )

        # Small epsilon so an edge that is an exact multiple of the step is included
        lat_steps = math.floor((north - south) / resolution + 1e-9) + 1
        lng_steps = math.floor((east - west) / resolution + 1e-9) + 1
        if lat_steps * lng_steps > self._heatmap_max_cells:
            raise ValidationError(
                "Grid too large. Reduce area or increase resolution.", field="bbox"
            )

        points = [
            (south + i * resolution, west + j * resolution)
            for i in range(lat_steps)
            for j in range(lng_steps)
        ]
        now = now or utcnow()
        semaphore = asyncio.Semaphore(self._heatmap_concurrency)

        async def _cell(lat: float, lng: float) -> HeatmapCell:
            async with semaphore:
                assessment = await self.assess(lat, lng, self._heatmap_cell_radius_km, now)
            return HeatmapCell(
                lat=lat,
                lng=lng,
                risk_score=assessment.risk_score,
                risk_level=assessment.overall_risk,
                dominant_risk=assessment.dominant_risk.value,
            )

        results = await asyncio.gather(
            *[_cell(lat, lng) for lat, lng in points], return_exceptions=True
        )

        cells: list[HeatmapCell] = []
        failed = 0
        for (lat, lng), result in zip(points, results):
            if isinstance(result, BaseException):
                failed += 1
                cells.append(
                    HeatmapCell(
                        lat=lat,
                        lng=lng,
                        risk_score=0.0,
                        risk_level=RiskLevel.UNKNOWN,
                        dominant_risk="none",
                    )
                )
            else:
                cells.append(result)

        if failed:
            logger.warning("Heatmap: %d of %d cells failed to assess", failed, len(points))

        return Heatmap(bbox=(west, south, east, north), resolution=resolution, cells=cells)

    # -----------------------------------------------------------------
    # Forecast
    # -----------------------------------------------------------------

    async def forecast(
        self,
        lat: float,
        lng: float,
        hazard_type: HazardType | None = None,
        horizon_hours: int = 6,
        now: datetime | None = None,
    ) -> list[HazardForecast]:
        """Trend-based outlook from the last week of nearby activity, one entry per type seen."""
        now = now or utcnow()
        nearby = await self._near(
            lat,
            lng,
            FORECAST_RADIUS_KM,
            since=now - timedelta(days=FORECAST_LOOKBACK_DAYS),
            hazard_type=hazard_type,
            limit=FORECAST_MAX_EVENTS,
            order="distance",
        )

        by_type: dict[HazardType, list[float]] = {}
        for item in nearby:
            by_type.setdefault(item.event.type, []).append(item.event.severity)

        valid_until = now + timedelta(hours=horizon_hours)
        forecasts: list[HazardForecast] = []
        for hazard, severities in by_type.items():
            count = len(severities)
            if count > 5:
                trend = Trend.INCREASING
            elif count > 2:
                trend = Trend.STABLE
            else:
                trend = Trend.DECREASING

            probability = min(0.8, count * 0.1)
            if trend == Trend.INCREASING:
                probability *= 1.2
            elif trend == Trend.DECREASING:
                probability *= 0.8

            forecasts.append(
                HazardForecast(
                    type=hazard,
                    probability=round(probability, 2),
                    confidence=FORECAST_CONFIDENCE,
                    expected_severity=round(sum(severities) / count, 1),
                    trend=trend,
                    recent_events=count,
                    valid_until=valid_until,
                )
            )
        return forecasts

    # -----------------------------------------------------------------
    # Trends
    # -----------------------------------------------------------------

    async def trends(
        self,
        lat: float,
        lng: float,
        days: int = 7,
        now: datetime | None = None,
    ) -> RiskTrends:
        """Daily maximum distance-decayed severity per hazard type over the last ``days`` days."""
        if days < 1:
            raise ValidationError("days must be at least 1", field="days")
        now = now or utcnow()

        nearby = await self._near(
            lat,
            lng,
            TRENDS_RADIUS_KM,
            since=now - timedelta(days=days),
            order="recent",
        )

        buckets: dict[date, dict[HazardType, float]] = {
            (now - timedelta(days=i)).date(): {hazard: 0.0 for hazard in HazardType}
            for i in range(days)
        }
        for item in nearby:
            day_risks = buckets.get(item.event.starts_at.date())
            if day_risks is None:
                continue
            contribution = item.event.severity * distance_decay(item.distance_km, TRENDS_RADIUS_KM)
            day_risks[item.event.type] = max(day_risks[item.event.type], contribution)

        series = [DailyRisk(day=day, risks=risks) for day, risks in sorted(buckets.items())]
        return RiskTrends(
            lat=lat,
            lng=lng,
            period_days=days,
            days=series,
            total_events=len(nearby),
        )
