"""Browser web-push client.

Encrypts the notification payload for the subscription's keys (RFC 8291,
``aes128gcm``) with pywebpush and POSTs it to the push service endpoint.
Requests are signed with a VAPID token when a private key is configured.
"""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import urlsplit

import httpx
from py_vapid import Vapid
from pywebpush import WebPusher, WebPushException

from ecoguard.core.types import PushSubscription

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 86400

CONTENT_ENCODING = "aes128gcm"

# Push services answer 404/410 for subscriptions that no longer exist
_GONE_STATUSES = (404, 410)


class WebPushClient:
    """Async client for the Web Push protocol."""

    def __init__(
        self,
        vapid_private_key: str = "",
        vapid_subject: str = "mailto:alerts@ecoguard.local",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._vapid = Vapid.from_string(private_key=vapid_private_key) if vapid_private_key else None
        self._subject = vapid_subject
        self._client = client or httpx.AsyncClient(timeout=30.0)

    def _headers(self, endpoint: str, ttl: int, urgency: str) -> dict[str, str]:
        headers = {
            "TTL": str(ttl),
            "Urgency": urgency,
            "Content-Type": "application/octet-stream",
            "Content-Encoding": CONTENT_ENCODING,
        }
        if self._vapid is not None:
            parts = urlsplit(endpoint)
            claims = {"sub": self._subject, "aud": f"{parts.scheme}://{parts.netloc}"}
            headers.update(self._vapid.sign(claims))
        return headers

    @staticmethod
    def encrypt(subscription: PushSubscription, payload: dict[str, Any]) -> bytes:
        """Encrypt *payload* as JSON for the browser that owns *subscription*.

        Raises:
            WebPushException: If the subscription keys are missing or invalid.
            ValueError: If a key is not valid base64url or not a P-256 point.
        """
        data = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        pusher = WebPusher(subscription.to_subscription_info())
        return pusher.encode(data, content_encoding=CONTENT_ENCODING)["body"]

    async def send(
        self,
        subscription: PushSubscription,
        payload: dict[str, Any],
        ttl: int = DEFAULT_TTL_SECONDS,
        urgency: str = "normal",
    ) -> bool:
        """Deliver *payload* as a notification to the browser behind *subscription*.

        Returns:
            ``True`` if the push service accepted the message, ``False`` otherwise.
        """
        endpoint = subscription.endpoint
        try:
            body = self.encrypt(subscription, payload)
        except (WebPushException, ValueError) as exc:
            logger.error("Cannot encrypt web push for %s: %s", endpoint, exc)
            return False

        try:
            response = await self._client.post(
                endpoint,
                content=body,
                headers=self._headers(endpoint, ttl, urgency),
            )
        except httpx.HTTPError as exc:
            logger.error("Web push HTTP error for %s: %s", endpoint, exc)
            return False

        if response.status_code in (200, 201, 202):
            logger.info("Web push accepted by %s", urlsplit(endpoint).netloc)
            return True

        if response.status_code in _GONE_STATUSES:
            logger.warning("Web push subscription expired: %s", endpoint)
        else:
            logger.error(
                "Web push failed: endpoint=%s, status=%d, body=%s",
                endpoint,
                response.status_code,
                response.text,
            )
        return False

    async def close(self) -> None:
        """Close the underlying httpx client."""
        await self._client.aclose()
