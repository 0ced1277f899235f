from __future__ import annotations

from dishka import AsyncContainer, make_async_container
from quart import Quart
from quart_dishka import QuartDishka
from sqlalchemy.ext.asyncio import AsyncEngine

from services.vendor_sync_service.config import Settings
from services.vendor_sync_service.di import CoreProvider, VendorSyncProvider
from services.vendor_sync_service.implementations.outbox_worker import SyncOutboxWorker
from services.vendor_sync_service.logging_utils import (
    configure_service_logging,
    create_service_logger,
)
from services.vendor_sync_service.models_db import Base

logger = create_service_logger("vendor_sync_service.startup")


def create_container() -> AsyncContainer:
    return make_async_container(CoreProvider(), VendorSyncProvider())


async def initialize_database(engine: AsyncEngine) -> None:
    """Create missing tables (safety net for fresh databases; Alembic owns the schema)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def initialize_services(app: Quart, settings: Settings) -> None:
    configure_service_logging(
        settings.SERVICE_NAME,
        environment=settings.ENVIRONMENT.value,
        log_level=settings.LOG_LEVEL,
    )
    logger.info(f"Vendor Sync Service initializing with {settings}")

    container = create_container()
    QuartDishka(app=app, container=container)
    app.extensions["dishka_container"] = container

    database_engine = await container.get(AsyncEngine)
    app.extensions["database_engine"] = database_engine
    await initialize_database(database_engine)

    if settings.OUTBOX_WORKER_ENABLED:
        worker = await container.get(SyncOutboxWorker)
        await worker.start()
        app.extensions["outbox_worker"] = worker
        logger.info("Sync outbox worker started in-process")
    else:
        logger.info("In-process sync outbox worker disabled")


async def shutdown_services(app: Quart) -> None:
    worker = app.extensions.pop("outbox_worker", None)
    if worker is not None:
        await worker.stop()

    container = app.extensions.pop("dishka_container", None)
    if container is not None:
        await container.close()
    logger.info("Vendor Sync Service shutdown complete")
