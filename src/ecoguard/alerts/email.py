"""Email alert client over SMTP.

``smtplib`` is blocking, so every send runs in a worker thread via
``asyncio.to_thread``. Failures are logged and reported as ``False``.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage

logger = logging.getLogger(__name__)


class EmailClient:
    """Plain-text email sender."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        from_address: str = "alerts@ecoguard.local",
        start_tls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._from_address = from_address
        self._start_tls = start_tls
        self._timeout = timeout

    async def send(self, to_address: str, subject: str, body: str) -> bool:
        """Send one plain-text email.

        Returns:
            ``True`` if the SMTP server accepted the message, ``False`` otherwise.
        """
        message = EmailMessage()
        message["From"] = self._from_address
        message["To"] = to_address
        message["Subject"] = subject
        message.set_content(body)

        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email send failed: to=%s: %s", to_address, exc)
            return False

        logger.info("Email sent to %s", to_address)
        return True

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
            if self._start_tls:
                smtp.starttls()
            if self._username:
                smtp.login(self._username, self._password)
            smtp.send_message(message)
