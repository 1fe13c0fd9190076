"""Ingestion orchestrator for the EcoGuard hazard cycle.

Runs every source adapter concurrently, each bounded by its own timeout.
A failing or slow source is recorded as failed and never affects the
others. Whenever a run inserts new events, an alert fanout pass is
submitted to the background queue; the caller gets the ingestion result
without waiting for it.

This is the only module that wires adapters to the fanout queue.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from ecoguard.core.errors import EcoGuardError, UpstreamError
from ecoguard.core.types import BatchIngestResult, HazardType, Source, SourceOutcome, utcnow

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ecoguard.alerts.fanout import FanoutQueue
    from ecoguard.core.types import IngestResult
    from ecoguard.ingestion.base import SourceAdapter

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_TIMEOUT_S = 120.0

# Hazard type whose fanout a single-source run triggers; None means all types
FANOUT_TYPE_BY_SOURCE: dict[Source, HazardType | None] = {
    Source.USGS: HazardType.EARTHQUAKE,
    Source.NASA_EONET: None,
    Source.NASA_FIRMS: HazardType.FIRE,
    Source.OPENWEATHER: HazardType.STORM,
    Source.OPENAQ: HazardType.AQI,
}


class IngestionPipeline:
    """Runs source adapters and triggers alert fanout for new events."""

    def __init__(
        self,
        adapters: Mapping[Source, SourceAdapter],
        fanout_queue: FanoutQueue | None = None,
        source_timeout_s: float = DEFAULT_SOURCE_TIMEOUT_S,
    ) -> None:
        self._adapters = dict(adapters)
        self._fanout = fanout_queue
        self._source_timeout_s = source_timeout_s

    @property
    def sources(self) -> list[Source]:
        return list(self._adapters)

    async def ingest_source(self, source: Source | str) -> SourceOutcome:
        """Ingest one source and, if it inserted anything, queue a fanout pass.

        Raises:
            ValueError: If the source name is unknown or has no adapter.
        """
        source = Source(source)
        if source not in self._adapters:
            msg = f"No adapter configured for source '{source.value}'"
            raise ValueError(msg)

        outcome = await self._run_adapter(source)
        if outcome.success and outcome.inserted > 0:
            self._submit_fanout(FANOUT_TYPE_BY_SOURCE.get(source))
        return outcome

    async def ingest_all(self) -> BatchIngestResult:
        """Ingest every configured source concurrently.

        Returns:
            Per-source outcomes, totals over successful sources, and timing.
        """
        timestamp = utcnow()
        start_mono = time.monotonic()

        sources = list(self._adapters)
        results = await asyncio.gather(
            *(self._run_adapter(source) for source in sources),
            return_exceptions=True,
        )

        outcomes: list[SourceOutcome] = []
        for source, result in zip(sources, results):
            if isinstance(result, SourceOutcome):
                outcomes.append(result)
            elif isinstance(result, Exception):
                logger.error("Source %s crashed: %s", source.value, result)
                outcomes.append(SourceOutcome(source=source, success=False, error=str(result)))
            else:
                raise result

        batch = BatchIngestResult(
            results=outcomes,
            duration_ms=int((time.monotonic() - start_mono) * 1000),
            timestamp=timestamp,
        )

        logger.info(
            "Batch ingestion complete: %d/%d sources ok, %d inserted, %d updated in %dms",
            len(batch.succeeded),
            len(outcomes),
            batch.total_inserted,
            batch.total_updated,
            batch.duration_ms,
        )
        for failed in batch.failed:
            logger.warning("Source %s failed: %s", failed.source.value, failed.error)

        if batch.total_inserted > 0:
            self._submit_fanout(None)
        return batch

    async def _run_adapter(self, source: Source) -> SourceOutcome:
        """Run one adapter under its timeout; failures become a failed outcome."""
        adapter = self._adapters[source]
        start_mono = time.monotonic()

        try:
            result: IngestResult = await asyncio.wait_for(adapter.ingest(), self._source_timeout_s)
        except TimeoutError:
            error = f"timed out after {self._source_timeout_s:.0f}s"
        except UpstreamError as exc:
            error = exc.message
        except EcoGuardError as exc:
            error = str(exc)
        except Exception as exc:
            logger.exception("Adapter for %s crashed", source.value)
            error = str(exc) or type(exc).__name__
        else:
            return SourceOutcome(
                source=source,
                success=True,
                inserted=result.inserted,
                updated=result.updated,
                duration_ms=_elapsed_ms(start_mono),
            )

        logger.error("Ingestion of %s failed: %s", source.value, error)
        return SourceOutcome(
            source=source,
            success=False,
            error=error,
            duration_ms=_elapsed_ms(start_mono),
        )

    def _submit_fanout(self, hazard_type: HazardType | None) -> None:
        if self._fanout is None:
            return
        logger.info("Queueing alert fanout (type=%s)", hazard_type.value if hazard_type else "all")
        self._fanout.submit(hazard_type)

    async def close(self) -> None:
        """Close every adapter's HTTP client."""
        for adapter in self._adapters.values():
            await adapter.close()


def _elapsed_ms(start_mono: float) -> int:
    return int((time.monotonic() - start_mono) * 1000)
