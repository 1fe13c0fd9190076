"""Subscription registration: validation in front of the subscription store.

Every create or update is validated completely before the store is touched.
Validation failures raise ``ValidationError`` naming the offending field.
"""

from __future__ import annotations

import dataclasses
import logging
import math
from typing import TYPE_CHECKING, Any

from ecoguard.core.errors import ValidationError
from ecoguard.core.types import AlertChannel, PushSubscription, Subscription

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ecoguard.core.types import SubscriptionStats
    from ecoguard.db.store import SubscriptionStore

logger = logging.getLogger(__name__)

MIN_RADIUS_KM = 1.0
MAX_RADIUS_KM = 100.0

# Fields a caller may change through ``update``
_UPDATABLE = frozenset({"lat", "lng", "radius_km", "channels", "language", "email", "phone", "push"})


# ---------------------------------------------------------------------------
# Input coercion
# ---------------------------------------------------------------------------


def parse_channels(channels: Iterable[str | AlertChannel] | None) -> list[AlertChannel]:
    """Coerce channel names to ``AlertChannel`` values, dropping duplicates."""
    if not channels:
        raise ValidationError("At least one notification channel is required", field="channels")

    parsed: list[AlertChannel] = []
    for raw in channels:
        try:
            channel = AlertChannel(raw)
        except ValueError:
            raise ValidationError(f"Unknown notification channel '{raw}'", field="channels") from None
        if channel not in parsed:
            parsed.append(channel)
    return parsed


def parse_push(push: PushSubscription | dict[str, Any] | None) -> PushSubscription | None:
    """Accept a ``PushSubscription`` or the browser's JSON shape (``endpoint`` plus ``keys``)."""
    if push is None or isinstance(push, PushSubscription):
        return push
    keys = push.get("keys") or {}
    return PushSubscription(
        endpoint=push.get("endpoint") or "",
        p256dh=keys.get("p256dh") or "",
        auth=keys.get("auth") or "",
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_subscription(subscription: Subscription) -> None:
    """Check every subscription invariant.

    Raises:
        ValidationError: On the first violated rule.
    """
    if not _is_number(subscription.lat) or not _is_number(subscription.lng):
        raise ValidationError("Location (lat, lng) is required", field="location")
    if not -90.0 <= subscription.lat <= 90.0 or not -180.0 <= subscription.lng <= 180.0:
        raise ValidationError("Location is outside valid coordinate ranges", field="location")

    if not subscription.channels:
        raise ValidationError("At least one notification channel is required", field="channels")

    if not _is_number(subscription.radius_km) or not (
        MIN_RADIUS_KM <= subscription.radius_km <= MAX_RADIUS_KM
    ):
        raise ValidationError("Radius must be between 1 and 100 km", field="radius_km")

    if AlertChannel.EMAIL in subscription.channels and not subscription.email:
        raise ValidationError("Email is required for email notifications", field="email")
    if AlertChannel.SMS in subscription.channels and not subscription.phone:
        raise ValidationError("Phone number is required for SMS notifications", field="phone")
    if AlertChannel.WEBPUSH in subscription.channels:
        push = subscription.push
        if push is None:
            raise ValidationError(
                "Push subscription is required for web push notifications", field="push"
            )
        if not push.endpoint or not push.p256dh or not push.auth:
            raise ValidationError(
                "Push subscription needs an endpoint and p256dh/auth keys", field="push"
            )


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class SubscriptionService:
    """Validated create, update and delete for subscriptions."""

    def __init__(self, store: SubscriptionStore) -> None:
        self._store = store

    async def subscribe(
        self,
        *,
        lat: float,
        lng: float,
        radius_km: float,
        channels: Iterable[str | AlertChannel],
        email: str | None = None,
        phone: str | None = None,
        push: PushSubscription | dict[str, Any] | None = None,
        language: str = "en",
    ) -> tuple[Subscription, bool]:
        """Create a subscription, or update the one with the same contact details.

        Returns:
            The stored subscription and True if it was newly created.

        Raises:
            ValidationError: If the input breaks a subscription rule.
        """
        subscription = Subscription(
            id="",
            lat=lat,
            lng=lng,
            radius_km=radius_km,
            channels=parse_channels(channels),
            language=language or "en",
            email=email or None,
            phone=phone or None,
            push=parse_push(push),
        )
        validate_subscription(subscription)
        return await self._store.upsert_by_contact(subscription)

    async def update(self, subscription_id: str, **changes: Any) -> Subscription | None:
        """Apply partial changes to an existing subscription.

        Returns:
            The updated subscription, or None if the id is unknown.

        Raises:
            ValidationError: If a field is not updatable or the result is invalid.
        """
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        current = await self._store.get(subscription_id)
        if current is None:
            return None

        if "channels" in changes:
            changes["channels"] = parse_channels(changes["channels"])
        if "push" in changes:
            changes["push"] = parse_push(changes["push"])

        updated = dataclasses.replace(current, **changes)
        validate_subscription(updated)
        return await self._store.update(updated)

    async def get(self, subscription_id: str) -> Subscription | None:
        return await self._store.get(subscription_id)

    async def unsubscribe(self, subscription_id: str) -> bool:
        return await self._store.delete(subscription_id)

    async def stats(self) -> SubscriptionStats:
        return await self._store.stats()
