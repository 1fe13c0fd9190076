"""APScheduler setup for running batch ingestion on a configurable interval.

Provides factory functions for creating a scheduler and for running
a single ingestion batch (useful for testing, manual runs, and the --once flag).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

if TYPE_CHECKING:
    from ecoguard.core.pipeline import IngestionPipeline
    from ecoguard.core.types import BatchIngestResult

logger = logging.getLogger(__name__)

JOB_ID = "ecoguard_ingestion"


def create_scheduler(pipeline: IngestionPipeline, interval_minutes: int) -> AsyncIOScheduler:
    """Create an APScheduler AsyncIOScheduler with batch ingestion as an interval job.

    The scheduler is returned in a stopped state -- the caller must call
    ``scheduler.start()`` to begin execution.

    Args:
        pipeline: The ingestion orchestrator instance.
        interval_minutes: Polling interval in minutes (from monitoring.yml).

    Returns:
        Configured but not-yet-started AsyncIOScheduler.
    """
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        pipeline.ingest_all,
        trigger="interval",
        minutes=interval_minutes,
        id=JOB_ID,
        name="EcoGuard batch ingestion",
        max_instances=1,
        coalesce=True,
    )

    logger.info(
        "Scheduler created: ingestion will run every %d minutes",
        interval_minutes,
    )

    return scheduler


async def run_once(pipeline: IngestionPipeline) -> BatchIngestResult:
    """Run a single ingestion batch and return the result.

    Convenience wrapper for manual runs and the ``--once`` CLI flag.
    """
    logger.info("Running single ingestion batch")
    return await pipeline.ingest_all()
