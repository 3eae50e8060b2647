"""Application bootstrap.

This is the composition root: it loads settings, builds the repository,
reconciliation engine, subscription channel and listener, and keeps the
listener running until SIGINT/SIGTERM or until its channel gives up.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Any

from .chain.subscription import SubscriptionChannel
from .core.clock import IClock
from .core.config import Settings, load_settings
from .core.enums import ChannelHealth
from .core.interfaces import IAccountRepository
from .listener import ListenerLifecycle
from .observability.logger import get_logger, setup_logging
from .reconciliation.engine import ReconciliationEngine

logger = logging.getLogger(__name__)

HEALTH_LOG_INTERVAL_SECONDS = 60.0


def build_listener(
    settings: Settings,
    repository: IAccountRepository,
    *,
    channel: SubscriptionChannel | None = None,
    clock: IClock | None = None,
) -> ListenerLifecycle:
    """Wire one listener from settings and an account repository."""
    return ListenerLifecycle(
        chain_config=settings.chain,
        channel=channel or SubscriptionChannel(reconnect=settings.reconnect),
        engine=ReconciliationEngine(repository, clock=clock),
    )


async def run(
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
    *,
    in_memory: bool = False,
) -> int:
    """Main entry point. Returns a process exit code."""

    # 1. Load settings
    settings = load_settings(config_path=config_path, overrides=overrides)

    # 2. Set up logging
    setup_logging(settings.observability.log_level, settings.observability.log_format)
    get_logger(__name__).info(
        "Starting premium-sync",
        contract=settings.chain.contract_address or None,
        endpoint_configured=settings.chain.resolve_endpoint() is not None,
        storage="memory" if in_memory else "postgres",
    )

    # 3. Metrics
    if settings.observability.metrics_enabled:
        try:
            from .observability.metrics import start_metrics_server

            start_metrics_server(port=settings.observability.metrics_port)
            logger.info("Prometheus metrics server started on port %d", settings.observability.metrics_port)
        except Exception:
            logger.warning("Failed to start metrics server", exc_info=True)

    # 4. Account store
    database = None
    repository: IAccountRepository
    if in_memory:
        from .storage.memory import InMemoryAccountRepository

        repository = InMemoryAccountRepository()
    else:
        from .storage.postgres.connection import Database
        from .storage.postgres.repos import PostgresAccountRepository

        database = Database.from_url(settings.postgres_url)
        if settings.create_tables:
            await database.create_all()
        repository = PostgresAccountRepository(database)

    listener = build_listener(settings, repository)

    # 5. Graceful shutdown
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Received shutdown signal")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    exit_code = 0
    try:
        await listener.start()
        if not listener.is_running:
            logger.info("Listener is disabled; nothing to do")
            return 0

        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=HEALTH_LOG_INTERVAL_SECONDS)
            except asyncio.TimeoutError:
                pass
            health = listener.health()
            logger.info("Listener health: %s", health.model_dump_json())
            if health.channel_health == ChannelHealth.FAILED:
                logger.critical("Log subscription failed permanently; exiting")
                exit_code = 1
                break
    finally:
        await listener.stop()
        if database is not None:
            await database.dispose()
        logger.info("Shutdown complete")

    return exit_code
