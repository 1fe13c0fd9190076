"""Shared plumbing for the source adapters.

Each adapter pulls one upstream feed over a shared ``httpx.AsyncClient``,
normalizes records into ``Event`` instances and upserts them through the
``EventStore``. This base class supplies the HTTP GET with exponential
backoff on 429 responses, per-record store error isolation, and the
inter-request pause used by sub-unit loops (countries, locations).
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, ClassVar

import httpx

from ecoguard.core.errors import StoreError, UpstreamError
from ecoguard.core.types import Event, IngestResult, Source

if TYPE_CHECKING:
    from ecoguard.db.store import EventStore

logger = logging.getLogger(__name__)

# Exponential backoff settings for 429 responses
_BACKOFF_BASE_SECONDS = 1.0
_BACKOFF_MAX_RETRIES = 3

# Default HTTP request timeout in seconds
DEFAULT_REQUEST_TIMEOUT_S = 30.0


class SourceAdapter(ABC):
    """Base class for upstream feed adapters."""

    source: ClassVar[Source]

    def __init__(
        self,
        store: EventStore,
        client: httpx.AsyncClient | None = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_S,
    ) -> None:
        self._store = store
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=request_timeout)
        self._request_timeout = request_timeout

    @property
    def name(self) -> str:
        return self.source.value

    @abstractmethod
    async def ingest(self) -> IngestResult:
        """Fetch the feed, persist significant records and return insert/update counts.

        Raises:
            UpstreamError: If the feed is unreachable or returns an unparseable payload.
        """

    async def close(self) -> None:
        """Close the underlying HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """HTTP GET with exponential backoff on 429 responses.

        Raises:
            UpstreamError: On transport errors, non-2xx statuses, or persistent 429s.
        """
        for attempt in range(_BACKOFF_MAX_RETRIES + 1):
            try:
                response = await self._client.get(
                    url, params=params, headers=headers, timeout=self._request_timeout
                )
            except httpx.HTTPError as exc:
                raise UpstreamError(self.name, f"request failed: {exc}") from exc

            if response.status_code == 429:
                if attempt == _BACKOFF_MAX_RETRIES:
                    break
                wait = _BACKOFF_BASE_SECONDS * (2**attempt)
                logger.warning(
                    "Rate limited (429) on %s, retrying in %.1fs (attempt %d/%d)",
                    self.name,
                    wait,
                    attempt + 1,
                    _BACKOFF_MAX_RETRIES,
                )
                await asyncio.sleep(wait)
                continue

            if response.is_error:
                raise UpstreamError(self.name, f"HTTP {response.status_code} from {url}")
            return response

        raise UpstreamError(self.name, "exhausted retries after persistent 429 responses")

    async def _get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        response = await self._get(url, params=params, headers=headers)
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(self.name, f"invalid JSON payload: {exc}") from exc

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    async def _store_event(self, event: Event, result: IngestResult) -> None:
        """Upsert one event; a store failure is logged and counted, not raised."""
        try:
            outcome = await self._store.upsert(event)
        except StoreError as exc:
            logger.error("%s: failed to store event %s: %s", self.name, event.id, exc)
            result.failed += 1
            return
        result.record(outcome.inserted)

    @staticmethod
    async def _pause(seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)

    def _log_result(self, result: IngestResult) -> None:
        logger.info(
            "%s ingestion: %d inserted, %d updated, %d failed",
            self.name,
            result.inserted,
            result.updated,
            result.failed,
        )


def from_epoch_ms(value: int | float) -> datetime:
    """Epoch milliseconds to a naive UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=UTC).replace(tzinfo=None)


def from_epoch_s(value: int | float) -> datetime:
    """Epoch seconds to a naive UTC datetime."""
    return datetime.fromtimestamp(value, tz=UTC).replace(tzinfo=None)


def parse_iso(value: str) -> datetime:
    """ISO-8601 timestamp (``Z`` or offset suffix allowed) to a naive UTC datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed
