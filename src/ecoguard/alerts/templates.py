"""Alert message content for hazard events.

Converts an ``Event`` into a title/body/action triple and into the
per-channel renderings (SMS text, email subject and body, push and real-time
payloads).

No external dependencies -- pure string formatting only.
Imports only from ecoguard.core.types.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from ecoguard.core.types import AlertContent, Event, HazardType, utcnow

# ---------------------------------------------------------------------------
# Guidance phrases
# ---------------------------------------------------------------------------

# (minimum magnitude, phrase), highest first
_EARTHQUAKE_GUIDANCE: tuple[tuple[float, str], ...] = (
    (7.0, "Major earthquake - expect significant damage."),
    (6.0, "Strong earthquake - potential for damage."),
    (5.0, "Moderate earthquake - may be widely felt."),
)
_EARTHQUAKE_DEFAULT = "Light earthquake - minimal damage expected."

_FLOOD_GUIDANCE: tuple[tuple[float, str], ...] = (
    (8.0, "Severe flooding expected - evacuate if advised."),
    (6.0, "Significant flooding possible - avoid travel."),
)
_FLOOD_DEFAULT = "Minor flooding possible - exercise caution."

_ACTIONS: dict[HazardType, str] = {
    HazardType.FLOOD: "Avoid low-lying areas and flooded roads",
    HazardType.STORM: "Stay indoors and avoid travel",
    HazardType.FIRE: "Monitor evacuation routes and air quality",
    HazardType.AQI: "Limit outdoor activities, use masks if necessary",
}

# Severity at which browser notifications stay on screen until dismissed
_REQUIRE_INTERACTION_SEVERITY = 7.0

# Three 160-character SMS segments
_SMS_MAX_CHARS = 480


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def location_description(event: Event) -> str:
    """Human phrase for where the event is: place, named location, city or coordinates."""
    props = event.properties
    if props.get("place"):
        return f"near {props['place']}"
    if props.get("location_name"):
        return f"in {props['location_name']}"
    if props.get("city"):
        return f"in {props['city']}"
    return f"at {event.lat:.2f}°N, {event.lng:.2f}°E"


def earthquake_guidance(magnitude: float) -> str:
    for threshold, phrase in _EARTHQUAKE_GUIDANCE:
        if magnitude >= threshold:
            return phrase
    return _EARTHQUAKE_DEFAULT


def flood_guidance(severity: float) -> str:
    for threshold, phrase in _FLOOD_GUIDANCE:
        if severity >= threshold:
            return phrase
    return _FLOOD_DEFAULT


def storm_guidance(properties: dict[str, Any]) -> str:
    wind_speed = properties.get("wind_speed")
    if wind_speed and wind_speed > 25:
        return "Hurricane-force winds possible."
    if wind_speed and wind_speed > 15:
        return "Strong winds and heavy rain expected."
    return "Severe weather conditions developing."


def fire_guidance(properties: dict[str, Any]) -> str:
    brightness = properties.get("brightness")
    if brightness and brightness > 380:
        return "High-intensity fire detected."
    return "Active fire in the area."


def generate_alert_content(event: Event) -> AlertContent:
    """Build the title, body and recommended action for an event."""
    location = location_description(event)
    severity = event.severity

    if event.type == HazardType.EARTHQUAKE:
        magnitude = f"{severity:.1f}"
        return AlertContent(
            title=f"M{magnitude} Earthquake {location}",
            body=(
                f"A magnitude {magnitude} earthquake occurred {location}. "
                f"{earthquake_guidance(severity)}"
            ),
            action="Take immediate shelter" if severity >= 6.0 else "Stay alert for aftershocks",
        )

    if event.type == HazardType.FLOOD:
        return AlertContent(
            title=f"Flood Alert {location}",
            body=f"Flooding conditions detected {location}. {flood_guidance(severity)}",
            action=_ACTIONS[HazardType.FLOOD],
        )

    if event.type == HazardType.STORM:
        return AlertContent(
            title=f"Severe Weather {location}",
            body=f"Severe weather conditions {location}. {storm_guidance(event.properties)}",
            action=_ACTIONS[HazardType.STORM],
        )

    if event.type == HazardType.FIRE:
        return AlertContent(
            title=f"Wildfire Alert {location}",
            body=f"Active wildfire detected {location}. {fire_guidance(event.properties)}",
            action=_ACTIONS[HazardType.FIRE],
        )

    if event.type == HazardType.AQI:
        aqi = event.properties.get("aqi") or round(severity * 25)
        category = event.properties.get("aqi_category") or "unhealthy"
        return AlertContent(
            title=f"Air Quality Alert {location}",
            body=f"Air quality is {category} (AQI: {aqi}) {location}",
            action=_ACTIONS[HazardType.AQI],
        )

    return AlertContent(
        title=f"Environmental Alert {location}",
        body=f"Environmental hazard detected {location}",
        action="Stay informed and follow local guidance",
    )


def format_sms_alert(content: AlertContent) -> str:
    """Plain-text SMS: title, body and action, truncated to a few segments."""
    text = f"{content.title}\n{content.body}\nAction: {content.action}"
    if len(text) > _SMS_MAX_CHARS:
        text = text[: _SMS_MAX_CHARS - 3] + "..."
    return text


def format_email_alert(event: Event, content: AlertContent) -> tuple[str, str]:
    """Return ``(subject, body)`` for a plain-text email alert."""
    subject = f"[EcoGuard] {content.title}"
    starts = event.starts_at.strftime("%Y-%m-%d %H:%M UTC")
    parts = [
        content.title,
        "",
        content.body,
        "",
        f"Recommended action: {content.action}",
        "",
        f"Hazard: {event.type.value} | Severity: {event.severity:.1f}/10",
        f"Started: {starts}",
        f"Location: {event.lat:.4f}, {event.lng:.4f}",
        f"Map: https://www.google.com/maps?q={event.lat},{event.lng}",
        "",
        "You are receiving this because you subscribed to EcoGuard alerts for this area.",
    ]
    return subject, "\n".join(parts)


def build_realtime_alert(
    event: Event,
    content: AlertContent,
    subscription_id: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Payload for the per-subscription ``alert`` broadcast."""
    now = now or utcnow()
    stamp_ms = int(now.replace(tzinfo=UTC).timestamp() * 1000)
    return {
        "id": f"alert-{event.id}-{subscription_id}-{stamp_ms}",
        "type": event.type.value,
        "severity": event.severity,
        "title": content.title,
        "body": content.body,
        "action": content.action,
        "location": [event.lng, event.lat],
        "timestamp": now.isoformat(),
        "require_interaction": event.severity >= _REQUIRE_INTERACTION_SEVERITY,
    }


def build_push_payload(event: Event, content: AlertContent) -> dict[str, Any]:
    """Notification shown by the service worker for a web push alert."""
    return {
        "title": content.title,
        "body": content.body,
        "icon": "/icons/alert-icon.png",
        "badge": "/icons/badge-icon.png",
        "tag": f"ecoguard-{event.type.value}",
        "data": {
            "event_id": event.id,
            "event_type": event.type.value,
            "severity": event.severity,
            "action": content.action,
            "url": f"/?event={event.id}",
        },
        "actions": [
            {"action": "view", "title": "View Details"},
            {"action": "dismiss", "title": "Dismiss"},
        ],
        "require_interaction": event.severity >= _REQUIRE_INTERACTION_SEVERITY,
    }


def build_event_notice(event: Event, content: AlertContent | None) -> dict[str, Any]:
    """Coarse ``new_event`` notice published on the global channel."""
    return {
        "type": "new_event",
        "event": {
            "id": event.id,
            "type": event.type.value,
            "severity": event.severity,
            "location": [event.lng, event.lat],
            "message": content.title if content is not None else None,
        },
    }
