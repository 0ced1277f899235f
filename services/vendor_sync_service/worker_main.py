"""
Standalone sync outbox worker process.

Runs the same SyncOutboxWorker as the HTTP service, for deployments that
disable the in-process worker (``VENDOR_SYNC_OUTBOX_WORKER_ENABLED=false``)
and scale replay separately.
"""

from __future__ import annotations

import asyncio
import signal

from sqlalchemy.ext.asyncio import AsyncEngine

from services.vendor_sync_service.config import settings
from services.vendor_sync_service.implementations.outbox_worker import SyncOutboxWorker
from services.vendor_sync_service.logging_utils import (
    configure_service_logging,
    create_service_logger,
)
from services.vendor_sync_service.startup_setup import create_container, initialize_database

logger = create_service_logger("vendor_sync_service.worker_main")


async def main() -> None:
    configure_service_logging(
        f"{settings.SERVICE_NAME}-worker",
        environment=settings.ENVIRONMENT.value,
        log_level=settings.LOG_LEVEL,
    )
    container = create_container()
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await initialize_database(await container.get(AsyncEngine))
        worker = await container.get(SyncOutboxWorker)
        await worker.start()
        logger.info("Sync outbox worker process running")
        await stop_event.wait()
        logger.info("Shutdown signal received")
        await worker.stop()
    finally:
        await container.close()
        logger.info("Sync outbox worker process stopped")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
