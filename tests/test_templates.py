"""Tests for alert content generation and per-channel rendering."""

from __future__ import annotations

import pytest
from conftest import NOW, make_event

from ecoguard.alerts.templates import (
    build_event_notice,
    build_realtime_alert,
    earthquake_guidance,
    flood_guidance,
    format_email_alert,
    format_sms_alert,
    generate_alert_content,
    location_description,
)
from ecoguard.core.types import AlertContent, HazardType

# ---------------------------------------------------------------------------
# Location phrases
# ---------------------------------------------------------------------------


def test_location_prefers_place() -> None:
    event = make_event(properties={"place": "10 km N of Ipoh", "city": "Ipoh"})
    assert location_description(event) == "near 10 km N of Ipoh"


def test_location_falls_back_to_named_location_then_city() -> None:
    assert location_description(make_event(properties={"location_name": "Cheras"})) == "in Cheras"
    assert location_description(make_event(properties={"city": "Kuching"})) == "in Kuching"


def test_location_falls_back_to_coordinates() -> None:
    event = make_event(lat=3.139, lng=101.6869, properties={})
    assert location_description(event) == "at 3.14°N, 101.69°E"


# ---------------------------------------------------------------------------
# Content per hazard type
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("magnitude", "phrase"),
    [
        (7.2, "Major earthquake"),
        (6.0, "Strong earthquake"),
        (5.2, "Moderate earthquake"),
        (4.1, "Light earthquake"),
    ],
)
def test_earthquake_guidance(magnitude: float, phrase: str) -> None:
    assert earthquake_guidance(magnitude).startswith(phrase)


def test_flood_guidance() -> None:
    assert flood_guidance(8.5).startswith("Severe flooding")
    assert flood_guidance(6.0).startswith("Significant flooding")
    assert flood_guidance(4.0).startswith("Minor flooding")


def test_earthquake_content() -> None:
    content = generate_alert_content(make_event(severity=5.2))

    assert content.title == "M5.2 Earthquake near Test Place"
    assert content.body.startswith("A magnitude 5.2 earthquake occurred near Test Place.")
    assert content.action == "Stay alert for aftershocks"


def test_strong_earthquake_asks_for_shelter() -> None:
    content = generate_alert_content(make_event(severity=6.4))
    assert content.action == "Take immediate shelter"


def test_storm_content_uses_wind_speed() -> None:
    event = make_event(
        hazard_type=HazardType.STORM,
        properties={"location_name": "penang", "wind_speed": 27.0},
    )

    content = generate_alert_content(event)

    assert content.title == "Severe Weather in penang"
    assert "Hurricane-force winds possible." in content.body
    assert content.action == "Stay indoors and avoid travel"


def test_fire_content() -> None:
    event = make_event(hazard_type=HazardType.FIRE, properties={"brightness": 390.0})

    content = generate_alert_content(event)

    assert content.title.startswith("Wildfire Alert")
    assert "High-intensity fire detected." in content.body


def test_aqi_content_reads_properties() -> None:
    event = make_event(
        hazard_type=HazardType.AQI,
        severity=7.5,
        properties={"city": "Kuala Lumpur", "aqi": 174, "aqi_category": "Unhealthy"},
    )

    content = generate_alert_content(event)

    assert content.title == "Air Quality Alert in Kuala Lumpur"
    assert content.body == "Air quality is Unhealthy (AQI: 174) in Kuala Lumpur"


def test_aqi_content_estimates_missing_index() -> None:
    event = make_event(hazard_type=HazardType.AQI, severity=6.0, properties={})
    assert "(AQI: 150)" in generate_alert_content(event).body


# ---------------------------------------------------------------------------
# Channel renderings
# ---------------------------------------------------------------------------


def test_sms_is_truncated() -> None:
    content = AlertContent(title="Flood Alert", body="x" * 600, action="Move to higher ground")

    text = format_sms_alert(content)

    assert len(text) == 480
    assert text.endswith("...")


def test_sms_short_message_untouched() -> None:
    content = AlertContent(title="T", body="B", action="A")
    assert format_sms_alert(content) == "T\nB\nAction: A"


def test_email_subject_and_body() -> None:
    event = make_event(severity=5.2)
    subject, body = format_email_alert(event, generate_alert_content(event))

    assert subject == "[EcoGuard] M5.2 Earthquake near Test Place"
    assert "Severity: 5.2/10" in body
    assert "Started: 2025-03-10 11:00 UTC" in body
    assert "https://www.google.com/maps?q=3.0,101.0" in body


def test_realtime_alert_payload() -> None:
    event = make_event("usgs-q", severity=5.2)
    content = generate_alert_content(event)

    payload = build_realtime_alert(event, content, "sub-1", now=NOW)

    assert payload["id"] == "alert-usgs-q-sub-1-1741608000000"
    assert payload["type"] == "earthquake"
    assert payload["location"] == [101.0, 3.0]
    assert payload["timestamp"] == "2025-03-10T12:00:00"
    assert payload["require_interaction"] is False


def test_event_notice_payload() -> None:
    event = make_event("usgs-q")
    notice = build_event_notice(event, generate_alert_content(event))

    assert notice == {
        "type": "new_event",
        "event": {
            "id": "usgs-q",
            "type": "earthquake",
            "severity": 5.2,
            "location": [101.0, 3.0],
            "message": "M5.2 Earthquake near Test Place",
        },
    }
