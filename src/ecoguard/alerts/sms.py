"""SMS alert client using the Twilio REST API.

Uses httpx with Basic authentication for raw Twilio API calls.
Send failures are logged and reported as ``False``; nothing is raised.
"""

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)

_TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


class SMSClient:
    """Async client for sending plain SMS messages via Twilio."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._from_number = from_number
        self._url = _TWILIO_MESSAGES_URL.format(sid=account_sid)
        self._auth = (account_sid, auth_token)
        self._client = client or httpx.AsyncClient(timeout=30.0)

    async def send_message(self, to_number: str, text: str) -> bool:
        """Send an SMS via Twilio.

        Args:
            to_number: Recipient phone number in E.164 form.
            text: Plain-text message body.

        Returns:
            ``True`` if Twilio accepted the message, ``False`` otherwise.
        """
        form_data = {
            "From": self._from_number,
            "To": to_number,
            "Body": text,
        }

        try:
            response = await self._client.post(self._url, data=form_data, auth=self._auth)

            if response.status_code == 201:
                logger.info("SMS sent to %s", to_number)
                return True

            logger.error(
                "SMS send failed: to=%s, status=%d, body=%s",
                to_number,
                response.status_code,
                response.text,
            )
            return False

        except httpx.HTTPError as exc:
            logger.error("SMS HTTP error for to=%s: %s", to_number, exc)
            return False

    async def close(self) -> None:
        """Close the underlying httpx client."""
        await self._client.aclose()
