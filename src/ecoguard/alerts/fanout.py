"""Alert fanout: route freshly ingested hazard events to affected subscriptions.

For each recent, severe event the engine:

1. Finds subscriptions whose location falls inside the event's ``area_bbox``.
2. Generates alert content once per event.
3. Dispatches to every (subscription, channel) pair concurrently; one failing
   recipient never cancels its siblings.
4. Publishes a ``new_event`` notice on the global broadcast channel, whether
   or not any subscription matched.

There are no delivery receipts: running the same window twice sends twice.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from ecoguard.alerts.broadcast import GLOBAL_CHANNEL, subscription_channel
from ecoguard.alerts.templates import (
    build_event_notice,
    build_push_payload,
    build_realtime_alert,
    format_email_alert,
    format_sms_alert,
    generate_alert_content,
)
from ecoguard.core.errors import DispatchError, StoreError
from ecoguard.core.types import (
    AlertChannel,
    DispatchOutcome,
    FanoutReport,
    HazardType,
    utcnow,
)

if TYPE_CHECKING:
    from ecoguard.alerts.broadcast import Broadcaster
    from ecoguard.alerts.email import EmailClient
    from ecoguard.alerts.sms import SMSClient
    from ecoguard.alerts.webpush import WebPushClient
    from ecoguard.core.types import AlertContent, Event, Subscription
    from ecoguard.db.store import EventStore, SubscriptionStore

logger = logging.getLogger(__name__)

DEFAULT_RECENT_WINDOW_MINUTES = 10
DEFAULT_MIN_SEVERITY = 4.0

# Severity at which web push is marked urgent
_HIGH_URGENCY_SEVERITY = 7.0


class FanoutEngine:
    """Matches recent events to subscriptions and dispatches alerts."""

    def __init__(
        self,
        event_store: EventStore,
        subscription_store: SubscriptionStore,
        broadcaster: Broadcaster,
        *,
        sms: SMSClient | None = None,
        email: EmailClient | None = None,
        webpush: WebPushClient | None = None,
        recent_window_minutes: int = DEFAULT_RECENT_WINDOW_MINUTES,
        min_severity: float = DEFAULT_MIN_SEVERITY,
    ) -> None:
        self._events = event_store
        self._subscriptions = subscription_store
        self._broadcaster = broadcaster
        self._sms = sms
        self._email = email
        self._webpush = webpush
        self._recent_window = timedelta(minutes=recent_window_minutes)
        self._min_severity = min_severity

    async def process_new_events(
        self,
        hazard_type: HazardType | None = None,
        now: datetime | None = None,
    ) -> FanoutReport:
        """Alert on every event ingested within the recent window.

        Never raises: store failures and dispatch failures are logged and
        reflected in the returned report.

        Args:
            hazard_type: Restrict to one hazard type, or None for all.
            now: Reference time (defaults to the current UTC time).

        Returns:
            Counts of processed and alerted events plus one outcome per dispatch.
        """
        now = now or utcnow()
        report = FanoutReport()

        try:
            events = await self._events.recently_ingested(
                now - self._recent_window,
                self._min_severity,
                hazard_type=hazard_type,
            )
        except StoreError as exc:
            logger.error("Fanout could not load recent events: %s", exc)
            return report

        for event in events:
            report.events_processed += 1
            try:
                outcomes = await self.process_event(event, now=now)
            except StoreError as exc:
                logger.error("Fanout failed for event %s: %s", event.id, exc)
                continue
            if outcomes:
                report.events_alerted += 1
                report.dispatches.extend(outcomes)

        if report.events_processed:
            logger.info(
                "Fanout: %d events, %d alerted, %d delivered, %d failed",
                report.events_processed,
                report.events_alerted,
                report.delivered,
                report.failed,
            )
        return report

    async def process_event(self, event: Event, now: datetime | None = None) -> list[DispatchOutcome]:
        """Dispatch one event to its affected subscriptions and publish its notice.

        Raises:
            StoreError: If affected subscriptions cannot be loaded.
        """
        now = now or utcnow()
        subscriptions = await self._subscriptions.in_bbox(event.area_bbox)

        content: AlertContent | None = None
        outcomes: list[DispatchOutcome] = []
        if subscriptions:
            content = generate_alert_content(event)
            outcomes = await self._dispatch_all(event, content, subscriptions, now)
        else:
            logger.debug("No subscriptions affected by event %s", event.id)

        await self._publish(GLOBAL_CHANNEL, "new_event", build_event_notice(event, content))
        return outcomes

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch_all(
        self,
        event: Event,
        content: AlertContent,
        subscriptions: list[Subscription],
        now: datetime,
    ) -> list[DispatchOutcome]:
        pairs = [(sub, channel) for sub in subscriptions for channel in sub.channels]
        results = await asyncio.gather(
            *(self._send(event, content, sub, channel, now) for sub, channel in pairs),
            return_exceptions=True,
        )

        outcomes: list[DispatchOutcome] = []
        for (sub, channel), result in zip(pairs, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error(
                    "Alert for event %s to subscription %s via %s failed: %s",
                    event.id,
                    sub.id,
                    channel.value,
                    result,
                )
                outcomes.append(
                    DispatchOutcome(event.id, sub.id, channel, delivered=False, error=str(result))
                )
            else:
                outcomes.append(DispatchOutcome(event.id, sub.id, channel, delivered=True))
        return outcomes

    async def _send(
        self,
        event: Event,
        content: AlertContent,
        subscription: Subscription,
        channel: AlertChannel,
        now: datetime,
    ) -> None:
        """Deliver over one channel.

        Raises:
            DispatchError: If the channel is unconfigured, contact data is
                missing, or the transport rejected the message.
        """
        if channel == AlertChannel.WEBPUSH:
            await self._publish(
                subscription_channel(subscription.id),
                "alert",
                build_realtime_alert(event, content, subscription.id, now=now),
            )
            if self._webpush is None or subscription.push is None:
                raise _unavailable(subscription, channel)
            urgency = "high" if event.severity >= _HIGH_URGENCY_SEVERITY else "normal"
            delivered = await self._webpush.send(
                subscription.push, build_push_payload(event, content), urgency=urgency
            )

        elif channel == AlertChannel.EMAIL:
            if self._email is None or not subscription.email:
                raise _unavailable(subscription, channel)
            subject, body = format_email_alert(event, content)
            delivered = await self._email.send(subscription.email, subject, body)

        elif channel == AlertChannel.SMS:
            if self._sms is None or not subscription.phone:
                raise _unavailable(subscription, channel)
            delivered = await self._sms.send_message(subscription.phone, format_sms_alert(content))

        else:
            raise DispatchError(subscription.id, str(channel), "unsupported channel")

        if not delivered:
            raise DispatchError(subscription.id, channel.value, "transport rejected the message")

    async def _publish(self, channel: str, event_name: str, payload: dict[str, Any]) -> None:
        try:
            await self._broadcaster.publish(channel, event_name, payload)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Broadcast of %s on %s failed: %s", event_name, channel, exc)


class FanoutQueue:
    """Runs fanout passes in the background, detached from ingestion.

    ``submit`` returns immediately; ``join`` waits for everything submitted
    so far. Failures inside a pass are logged, never raised to the submitter.
    """

    def __init__(self, engine: FanoutEngine) -> None:
        self._engine = engine
        self._tasks: set[asyncio.Task[FanoutReport | None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, hazard_type: HazardType | None = None) -> asyncio.Task[FanoutReport | None]:
        task = asyncio.create_task(self._run(hazard_type))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, hazard_type: HazardType | None) -> FanoutReport | None:
        try:
            return await self._engine.process_new_events(hazard_type)
        except Exception:
            logger.exception("Background fanout failed (type=%s)", hazard_type)
            return None

    async def join(self) -> None:
        """Wait for every submitted fanout pass to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def _unavailable(subscription: Subscription, channel: AlertChannel) -> DispatchError:
    return DispatchError(
        subscription.id, channel.value, "channel not configured or contact data missing"
    )
