"""EcoGuard entry point.

Loads configuration, initializes the database, the source adapters and the
alert channels, and either runs a single ingestion batch (--once), ingests
one source (--source), assesses the risk at a point (--assess), or starts
the APScheduler for continuous monitoring while serving the Socket.IO
broadcast channel.

Usage:
    python -m ecoguard.main                    # Start scheduler (runs forever)
    python -m ecoguard.main --once             # Ingest every source once and exit
    python -m ecoguard.main --source usgs      # Ingest one source and exit
    python -m ecoguard.main --assess 3.14 101.69  # Print the risk assessment for a point
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
from typing import TYPE_CHECKING, Any

import httpx
import uvicorn

from ecoguard import __version__
from ecoguard.alerts.broadcast import SocketIOBroadcaster
from ecoguard.alerts.email import EmailClient
from ecoguard.alerts.fanout import FanoutEngine, FanoutQueue
from ecoguard.alerts.sms import SMSClient
from ecoguard.alerts.webpush import WebPushClient
from ecoguard.config import get_settings, get_yaml_config
from ecoguard.core.pipeline import IngestionPipeline
from ecoguard.core.scheduler import create_scheduler, run_once
from ecoguard.core.types import Source
from ecoguard.db.engine import get_engine, get_session_factory, init_db
from ecoguard.db.store import EventStore, SubscriptionStore
from ecoguard.ingestion.eonet import EONETAdapter
from ecoguard.ingestion.firms import FIRMSAdapter
from ecoguard.ingestion.openaq import OpenAQAdapter
from ecoguard.ingestion.openweather import DEFAULT_LOCATIONS, OpenWeatherAdapter
from ecoguard.ingestion.usgs import USGSAdapter
from ecoguard.processing.risk import RiskEngine

if TYPE_CHECKING:
    from ecoguard.config import Settings, YAMLConfig
    from ecoguard.ingestion.base import SourceAdapter

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Arguments to parse. Uses sys.argv if None.

    Returns:
        Parsed namespace with the ``once`` flag, optional ``source`` and
        optional ``assess`` coordinates.
    """
    parser = argparse.ArgumentParser(
        prog="ecoguard",
        description="EcoGuard environmental hazard ingestion and alerting",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Ingest every source once and exit",
    )
    parser.add_argument(
        "--source",
        choices=[s.value for s in Source],
        default=None,
        help="Ingest a single source and exit",
    )
    parser.add_argument(
        "--assess",
        nargs=2,
        type=float,
        metavar=("LAT", "LNG"),
        default=None,
        help="Print the current risk assessment for a location and exit",
    )
    return parser.parse_args(argv)


def build_adapters(
    store: EventStore,
    client: httpx.AsyncClient,
    settings: Settings,
    yaml_config: YAMLConfig,
) -> dict[Source, SourceAdapter]:
    """Create the adapters enabled in monitoring.yml, sharing one HTTP client."""
    ingestion = yaml_config.ingestion
    common: dict[str, Any] = {
        "client": client,
        "request_timeout": ingestion.request_timeout_seconds,
    }
    locations = [loc.to_location() for loc in ingestion.openweather.locations] or list(
        DEFAULT_LOCATIONS
    )

    available: dict[Source, SourceAdapter] = {
        Source.USGS: USGSAdapter(store, **common),
        Source.NASA_EONET: EONETAdapter(store, **common),
        Source.NASA_FIRMS: FIRMSAdapter(
            store,
            map_key=settings.nasa_api_key,
            countries=ingestion.firms.countries,
            request_delay_s=ingestion.firms.request_delay_seconds,
            **common,
        ),
        Source.OPENWEATHER: OpenWeatherAdapter(
            store,
            api_key=settings.openweather_api_key,
            locations=locations,
            request_delay_s=ingestion.openweather.request_delay_seconds,
            **common,
        ),
        Source.OPENAQ: OpenAQAdapter(
            store,
            api_key=settings.openaq_api_key,
            countries=ingestion.openaq.countries,
            request_delay_s=ingestion.openaq.request_delay_seconds,
            max_pages=ingestion.openaq.max_pages,
            **common,
        ),
    }
    enabled = {Source(name) for name in ingestion.sources}
    return {source: adapter for source, adapter in available.items() if source in enabled}


def build_fanout_engine(
    event_store: EventStore,
    subscription_store: SubscriptionStore,
    broadcaster: SocketIOBroadcaster,
    client: httpx.AsyncClient,
    settings: Settings,
    yaml_config: YAMLConfig,
) -> FanoutEngine:
    """Create the fanout engine with every channel that has credentials."""
    sms = None
    if settings.sms_configured:
        sms = SMSClient(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_sms_from,
            client=client,
        )
    email = None
    if settings.email_configured:
        email = EmailClient(
            settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            from_address=settings.smtp_from_email,
            start_tls=settings.smtp_start_tls,
        )
    webpush = WebPushClient(settings.vapid_private_key, settings.vapid_subject, client=client)

    logger.info(
        "Alert channels: webpush=%s, email=%s, sms=%s",
        "vapid" if settings.vapid_private_key else "unsigned",
        email is not None,
        sms is not None,
    )
    return FanoutEngine(
        event_store,
        subscription_store,
        broadcaster,
        sms=sms,
        email=email,
        webpush=webpush,
        recent_window_minutes=yaml_config.alerts.recent_window_minutes,
        min_severity=yaml_config.alerts.min_severity,
    )


def build_risk_engine(event_store: EventStore, yaml_config: YAMLConfig) -> RiskEngine:
    """Create the risk engine with the limits from monitoring.yml."""
    risk = yaml_config.risk
    return RiskEngine(
        event_store,
        default_radius_km=risk.default_radius_km,
        window_hours=risk.window_hours,
        max_events=risk.max_events,
        heatmap_max_cells=risk.heatmap_max_cells,
        heatmap_cell_radius_km=risk.heatmap_cell_radius_km,
        heatmap_concurrency=risk.heatmap_concurrency,
    )


def build_broadcast_server(broadcaster: SocketIOBroadcaster, settings: Settings) -> uvicorn.Server:
    """Create the uvicorn server that exposes the Socket.IO broadcast app."""
    config = uvicorn.Config(
        broadcaster.app,
        host=settings.broadcast_host,
        port=settings.broadcast_port,
        log_level="info",
    )
    return uvicorn.Server(config)


async def async_main(
    once: bool = False,
    source: str | None = None,
    assess: tuple[float, float] | None = None,
) -> None:
    """Async initialization and startup sequence.

    Args:
        once: If True, ingest every source once and exit.
        source: If set, ingest only this source and exit.
        assess: If set, print the risk assessment at ``(lat, lng)`` and exit.
    """
    settings = get_settings()
    yaml_config = get_yaml_config()

    logger.info("EcoGuard v%s initialized", __version__)
    logger.info("Environment: %s", settings.environment)
    logger.info("Database: %s", settings.db_path)

    # Initialize database
    engine = get_engine(settings.db_path)
    await init_db(engine)
    session_factory = get_session_factory(engine)
    event_store = EventStore(session_factory)
    subscription_store = SubscriptionStore(session_factory)
    logger.info("Database initialized")

    # Create shared HTTP client
    http_client = httpx.AsyncClient(timeout=yaml_config.ingestion.request_timeout_seconds)

    broadcaster = SocketIOBroadcaster()
    fanout_engine = build_fanout_engine(
        event_store, subscription_store, broadcaster, http_client, settings, yaml_config
    )
    fanout_queue = FanoutQueue(fanout_engine)

    adapters = build_adapters(event_store, http_client, settings, yaml_config)
    pipeline = IngestionPipeline(
        adapters,
        fanout_queue=fanout_queue,
        source_timeout_s=yaml_config.ingestion.source_timeout_seconds,
    )
    logger.info(
        "Monitoring %d sources, polling every %d minutes",
        len(adapters),
        yaml_config.ingestion.poll_interval_minutes,
    )

    if assess is not None:
        lat, lng = assess
        assessment = await build_risk_engine(event_store, yaml_config).assess(lat, lng)
        print(json.dumps(assessment.to_dict(), indent=2))
    elif source is not None:
        outcome = await pipeline.ingest_source(source)
        logger.info("Single source run complete: %s", outcome.to_dict())
    elif once:
        batch = await run_once(pipeline)
        logger.info(
            "Single batch complete: %d inserted, %d updated, %d failed sources, duration=%dms",
            batch.total_inserted,
            batch.total_updated,
            len(batch.failed),
            batch.duration_ms,
        )
    else:
        # Start the scheduler and run forever
        interval = yaml_config.ingestion.poll_interval_minutes
        scheduler = create_scheduler(pipeline, interval)

        # Set up graceful shutdown on SIGINT/SIGTERM
        shutdown_event = asyncio.Event()

        def _signal_handler(sig: int, frame: Any) -> None:
            logger.info("Received signal %s, initiating shutdown...", sig)
            shutdown_event.set()

        signal.signal(signal.SIGINT, _signal_handler)
        signal.signal(signal.SIGTERM, _signal_handler)

        scheduler.start()
        logger.info("Scheduler started, ingesting every %d minutes", interval)

        # Serve the Socket.IO channels for browser clients
        server = build_broadcast_server(broadcaster, settings)
        server_task = asyncio.create_task(server.serve())
        logger.info(
            "Broadcast server listening on %s:%d",
            settings.broadcast_host,
            settings.broadcast_port,
        )

        # Run first batch immediately
        logger.info("Running initial ingestion batch...")
        await pipeline.ingest_all()

        # uvicorn handles SIGINT/SIGTERM itself while serving, so stop on either
        shutdown_task = asyncio.create_task(shutdown_event.wait())
        await asyncio.wait({server_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
        shutdown_task.cancel()

        logger.info("Shutting down broadcast server and scheduler...")
        server.should_exit = True
        await server_task
        scheduler.shutdown(wait=True)

    # Let queued alert fanout finish before closing clients
    await fanout_queue.join()

    # Cleanup
    await http_client.aclose()
    await engine.dispose()
    logger.info("Shutdown complete")


def main() -> None:
    """Synchronous entry point."""
    args = parse_args()
    assess = tuple(args.assess) if args.assess is not None else None
    asyncio.run(async_main(once=args.once, source=args.source, assess=assess))


if __name__ == "__main__":
    main()
