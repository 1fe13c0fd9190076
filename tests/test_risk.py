"""Tests for the risk engine: point assessment, heatmap, forecast and trends."""

from __future__ import annotations

import math
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from conftest import NOW, make_event

from ecoguard.core.errors import QueryError, StoreError, ValidationError
from ecoguard.core.geo import haversine_km
from ecoguard.core.types import HazardType, RiskLevel, Trend
from ecoguard.db.store import EventStore
from ecoguard.processing.risk import RiskEngine, distance_decay, score_to_level, time_decay


@pytest.fixture
def engine(event_store: EventStore) -> RiskEngine:
    return RiskEngine(event_store)


# ---------------------------------------------------------------------------
# Decay and level functions
# ---------------------------------------------------------------------------


def test_time_decay() -> None:
    assert time_decay(0) == pytest.approx(1.0)
    assert time_decay(12) == pytest.approx(math.exp(-1))
    assert time_decay(100) == pytest.approx(0.1)


def test_distance_decay() -> None:
    assert distance_decay(0, 50) == pytest.approx(1.0)
    assert distance_decay(25, 50) == pytest.approx(0.5)
    assert distance_decay(49, 50) == pytest.approx(0.1)
    assert distance_decay(50, 50) == 0.1
    assert distance_decay(80, 50) == 0.1


@pytest.mark.parametrize(
    ("score", "level"),
    [
        (7.0, RiskLevel.VERY_HIGH),
        (6.9, RiskLevel.HIGH),
        (5.5, RiskLevel.HIGH),
        (4.0, RiskLevel.MODERATE),
        (2.0, RiskLevel.LOW),
        (1.99, RiskLevel.VERY_LOW),
        (0.0, RiskLevel.VERY_LOW),
    ],
)
def test_score_to_level_thresholds(score: float, level: RiskLevel) -> None:
    assert score_to_level(score) == level


# ---------------------------------------------------------------------------
# Point assessment
# ---------------------------------------------------------------------------


async def test_assess_recent_nearby_earthquake(
    engine: RiskEngine, event_store: EventStore
) -> None:
    await event_store.upsert(make_event("usgs-q", severity=5.2, starts_at=NOW - timedelta(hours=1)))

    assessment = await engine.assess(3.0, 101.0, now=NOW)

    expected = 5.2 * math.exp(-1 / 12)
    quake = assessment.risks[HazardType.EARTHQUAKE]
    assert quake.score == pytest.approx(expected)
    assert quake.level == RiskLevel.MODERATE
    assert quake.events[0].id == "usgs-q"
    assert quake.events[0].age_hours == 1
    assert assessment.risk_score == round(expected, 1)
    assert assessment.overall_risk == RiskLevel.MODERATE
    assert assessment.active_events == 1
    assert assessment.dominant_risk == HazardType.EARTHQUAKE


async def test_event_exactly_at_radius_counts_at_decay_floor(
    engine: RiskEngine, event_store: EventStore
) -> None:
    await event_store.upsert(
        make_event("usgs-edge", lat=3.2, lng=101.0, severity=8.0, starts_at=NOW)
    )
    radius = haversine_km(3.0, 101.0, 3.2, 101.0)

    assessment = await engine.assess(3.0, 101.0, radius_km=radius, now=NOW)

    quake = assessment.risks[HazardType.EARTHQUAKE]
    assert assessment.active_events == 1
    assert quake.events[0].distance_km == round(radius)
    assert quake.score == pytest.approx(8.0 * 0.1)
    assert quake.level == RiskLevel.VERY_LOW


async def test_assess_with_no_events(engine: RiskEngine) -> None:
    assessment = await engine.assess(3.0, 101.0, now=NOW)

    assert set(assessment.risks) == set(HazardType)
    assert assessment.risk_score == 0.0
    assert assessment.overall_risk == RiskLevel.VERY_LOW
    assert assessment.active_events == 0


async def test_assess_applies_distance_decay(engine: RiskEngine, event_store: EventStore) -> None:
    await event_store.upsert(
        make_event("fire-1", hazard_type=HazardType.FIRE, severity=8.0, lat=3.25, starts_at=NOW)
    )

    assessment = await engine.assess(3.0, 101.0, now=NOW)

    distance = haversine_km(3.0, 101.0, 3.25, 101.0)
    fire = assessment.risks[HazardType.FIRE]
    assert fire.score == pytest.approx(8.0 * (1 - distance / 50))
    assert fire.events[0].distance_km == round(distance)


async def test_assess_takes_max_per_type(engine: RiskEngine, event_store: EventStore) -> None:
    await event_store.upsert(make_event("weak", severity=3.0, starts_at=NOW))
    await event_store.upsert(make_event("strong", severity=7.5, starts_at=NOW))
    await event_store.upsert(
        make_event("flood", hazard_type=HazardType.FLOOD, severity=4.0, starts_at=NOW)
    )

    assessment = await engine.assess(3.0, 101.0, now=NOW)

    assert assessment.risks[HazardType.EARTHQUAKE].score == pytest.approx(7.5)
    assert len(assessment.risks[HazardType.EARTHQUAKE].events) == 2
    assert assessment.overall_risk == RiskLevel.VERY_HIGH
    assert assessment.active_events == 3


async def test_assess_ignores_old_and_distant_events(
    engine: RiskEngine, event_store: EventStore
) -> None:
    await event_store.upsert(make_event("old", severity=9.0, starts_at=NOW - timedelta(hours=30)))
    await event_store.upsert(make_event("far", severity=9.0, lat=4.0, starts_at=NOW))

    assessment = await engine.assess(3.0, 101.0, now=NOW)

    assert assessment.active_events == 0


async def test_assess_caps_event_count(event_store: EventStore) -> None:
    for i in range(5):
        await event_store.upsert(make_event(f"q{i}", severity=3.0 + i, starts_at=NOW))

    assessment = await RiskEngine(event_store, max_events=2).assess(3.0, 101.0, now=NOW)

    assert assessment.active_events == 2
    assert {e.id for e in assessment.risks[HazardType.EARTHQUAKE].events} == {"q3", "q4"}


async def test_assess_rejects_non_positive_radius(engine: RiskEngine) -> None:
    with pytest.raises(ValidationError):
        await engine.assess(3.0, 101.0, radius_km=0)


async def test_assess_wraps_store_failures() -> None:
    store = AsyncMock()
    store.near.side_effect = StoreError("database is locked")

    with pytest.raises(QueryError, match="database is locked"):
        await RiskEngine(store).assess(3.0, 101.0, now=NOW)


# ---------------------------------------------------------------------------
# Heatmap
# ---------------------------------------------------------------------------


async def test_heatmap_grid_includes_edges(engine: RiskEngine, event_store: EventStore) -> None:
    await event_store.upsert(make_event("q", severity=6.0, lat=3.1, lng=101.1, starts_at=NOW))

    heatmap = await engine.heatmap((101.0, 3.0, 101.2, 3.2), resolution=0.1, now=NOW)

    assert len(heatmap.cells) == 9
    assert heatmap.cells[0].lat == pytest.approx(3.0)
    assert heatmap.cells[0].lng == pytest.approx(101.0)
    assert heatmap.cells[-1].lat == pytest.approx(3.2)
    assert heatmap.cells[-1].lng == pytest.approx(101.2)
    center = heatmap.cells[4]
    assert center.risk_score == pytest.approx(6.0)
    assert center.dominant_risk == "earthquake"


async def test_heatmap_rejects_inverted_bbox(engine: RiskEngine) -> None:
    with pytest.raises(ValidationError, match="west,south,east,north"):
        await engine.heatmap((102.0, 3.0, 101.0, 4.0))


async def test_heatmap_rejects_oversized_grid(event_store: EventStore) -> None:
    engine = RiskEngine(event_store, heatmap_max_cells=4)

    with pytest.raises(ValidationError, match="Grid too large"):
        await engine.heatmap((101.0, 3.0, 101.2, 3.2), resolution=0.1)


async def test_heatmap_marks_failed_cells_unknown() -> None:
    store = AsyncMock()
    store.near.side_effect = StoreError("boom")

    heatmap = await RiskEngine(store).heatmap((101.0, 3.0, 101.1, 3.0), resolution=0.1, now=NOW)

    assert len(heatmap.cells) == 2
    assert all(c.risk_level == RiskLevel.UNKNOWN for c in heatmap.cells)
    assert all(c.risk_score == 0.0 for c in heatmap.cells)


# ---------------------------------------------------------------------------
# Forecast and trends
# ---------------------------------------------------------------------------


async def test_forecast_trend_per_type(engine: RiskEngine, event_store: EventStore) -> None:
    for i, severity in enumerate((4.0, 5.0, 6.0)):
        await event_store.upsert(
            make_event(f"q{i}", severity=severity, starts_at=NOW - timedelta(days=i + 1))
        )
    await event_store.upsert(
        make_event("f", hazard_type=HazardType.FIRE, severity=3.0, starts_at=NOW)
    )

    forecasts = {f.type: f for f in await engine.forecast(3.0, 101.0, now=NOW)}

    quake = forecasts[HazardType.EARTHQUAKE]
    assert quake.trend == Trend.STABLE
    assert quake.probability == pytest.approx(0.3)
    assert quake.expected_severity == pytest.approx(5.0)
    assert quake.recent_events == 3
    assert quake.valid_until == NOW + timedelta(hours=6)

    fire = forecasts[HazardType.FIRE]
    assert fire.trend == Trend.DECREASING
    assert fire.probability == pytest.approx(0.08)


async def test_forecast_increasing_trend(engine: RiskEngine, event_store: EventStore) -> None:
    for i in range(6):
        await event_store.upsert(make_event(f"q{i}", starts_at=NOW - timedelta(hours=i)))

    [forecast] = await engine.forecast(3.0, 101.0, now=NOW)

    assert forecast.trend == Trend.INCREASING
    assert forecast.probability == pytest.approx(0.6 * 1.2)


async def test_trends_daily_buckets(engine: RiskEngine, event_store: EventStore) -> None:
    await event_store.upsert(make_event("today", severity=6.0, starts_at=NOW - timedelta(hours=1)))
    await event_store.upsert(
        make_event(
            "yesterday",
            hazard_type=HazardType.FLOOD,
            severity=4.0,
            starts_at=NOW - timedelta(days=1),
        )
    )

    trends = await engine.trends(3.0, 101.0, days=3, now=NOW)

    assert [d.day for d in trends.days] == [
        (NOW - timedelta(days=2)).date(),
        (NOW - timedelta(days=1)).date(),
        NOW.date(),
    ]
    assert trends.days[-1].risks[HazardType.EARTHQUAKE] == pytest.approx(6.0)
    assert trends.days[1].risks[HazardType.FLOOD] == pytest.approx(4.0)
    assert trends.days[0].overall_risk == 0.0
    assert trends.max_risk == pytest.approx(6.0)
    assert trends.avg_risk == pytest.approx(10.0 / 3)
    assert trends.total_events == 2


async def test_trends_rejects_zero_days(engine: RiskEngine) -> None:
    with pytest.raises(ValidationError):
        await engine.trends(3.0, 101.0, days=0)
