"""Dishka DI configuration for Vendor Sync Service."""

from __future__ import annotations

from typing import AsyncIterator

from aiohttp import ClientSession
from dishka import Provider, Scope, provide
from prometheus_client import REGISTRY, CollectorRegistry
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from services.vendor_sync_service.config import Settings, settings
from services.vendor_sync_service.enums import IdentityProviderMode
from services.vendor_sync_service.error_handling import raise_configuration_error
from services.vendor_sync_service.implementations.identity_provider_http_impl import (
    HttpIdentityProviderClient,
)
from services.vendor_sync_service.implementations.identity_provider_simulated_impl import (
    SimulatedIdentityProvider,
)
from services.vendor_sync_service.implementations.outbox_replay_handlers import (
    build_replay_handlers,
)
from services.vendor_sync_service.implementations.outbox_repository_impl import (
    PostgresSyncOutboxRepository,
)
from services.vendor_sync_service.implementations.outbox_worker import SyncOutboxWorker
from services.vendor_sync_service.implementations.reconciliation import ReconciliationService
from services.vendor_sync_service.implementations.vendor_repository_sqlalchemy_impl import (
    PostgresVendorRepository,
)
from services.vendor_sync_service.logging_utils import create_service_logger
from services.vendor_sync_service.protocols import (
    IdentityProviderProtocol,
    SyncOutboxRepositoryProtocol,
    VendorRepositoryProtocol,
)
from services.vendor_sync_service.sync_coordinator import VendorSyncCoordinator

logger = create_service_logger("vendor_sync_service.di")


def create_database_engine(settings: Settings) -> AsyncEngine:
    """Engine with pool limits and a per-statement timeout on PostgreSQL."""
    url = settings.DATABASE_URL.get_secret_value()
    if not url.startswith("postgresql"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        echo=False,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=settings.DATABASE_POOL_PRE_PING,
        pool_timeout=settings.DATABASE_POOL_TIMEOUT_SECONDS,
        connect_args={"command_timeout": settings.DATABASE_COMMAND_TIMEOUT_SECONDS},
    )


class CoreProvider(Provider):
    @provide(scope=Scope.APP)
    def provide_settings(self) -> Settings:
        return settings

    @provide(scope=Scope.APP)
    def provide_metrics_registry(self) -> CollectorRegistry:
        return REGISTRY

    @provide(scope=Scope.APP)
    async def provide_database_engine(self, settings: Settings) -> AsyncIterator[AsyncEngine]:
        engine = create_database_engine(settings)
        logger.info(f"Database engine created for {settings.get_database_url_masked()}")
        yield engine
        await engine.dispose()

    @provide(scope=Scope.APP)
    async def provide_http_session(self) -> AsyncIterator[ClientSession]:
        session = ClientSession()
        yield session
        await session.close()

    @provide(scope=Scope.APP)
    def provide_identity_provider(
        self, settings: Settings, session: ClientSession
    ) -> IdentityProviderProtocol:
        if settings.IDENTITY_PROVIDER_MODE is IdentityProviderMode.SIMULATED:
            if settings.is_production():
                raise_configuration_error(
                    service=settings.SERVICE_NAME,
                    operation="provide_identity_provider",
                    config_key="IDENTITY_PROVIDER_MODE",
                    message="The simulated identity provider cannot be used in production",
                )
            logger.warning("Using simulated in-memory identity provider")
            return SimulatedIdentityProvider(service_name=settings.SERVICE_NAME)

        service_key = settings.IDENTITY_PROVIDER_SERVICE_KEY.get_secret_value()
        if not service_key:
            raise_configuration_error(
                service=settings.SERVICE_NAME,
                operation="provide_identity_provider",
                config_key="IDENTITY_PROVIDER_SERVICE_KEY",
                message="Identity provider service key is not configured",
            )
        return HttpIdentityProviderClient(
            session=session,
            base_url=settings.IDENTITY_PROVIDER_URL,
            service_key=service_key,
            timeout_seconds=settings.IDENTITY_PROVIDER_TIMEOUT_SECONDS,
            service_name=settings.SERVICE_NAME,
        )


class VendorSyncProvider(Provider):
    @provide(scope=Scope.APP)
    def provide_vendor_repository(
        self, engine: AsyncEngine, settings: Settings
    ) -> VendorRepositoryProtocol:
        return PostgresVendorRepository(engine, service_name=settings.SERVICE_NAME)

    @provide(scope=Scope.APP)
    def provide_outbox_repository(
        self, engine: AsyncEngine, settings: Settings
    ) -> SyncOutboxRepositoryProtocol:
        return PostgresSyncOutboxRepository(engine, service_name=settings.SERVICE_NAME)

    @provide(scope=Scope.APP)
    def provide_sync_coordinator(
        self,
        identity_provider: IdentityProviderProtocol,
        vendor_repository: VendorRepositoryProtocol,
        outbox_repository: SyncOutboxRepositoryProtocol,
        settings: Settings,
    ) -> VendorSyncCoordinator:
        return VendorSyncCoordinator(
            identity_provider=identity_provider,
            vendor_repository=vendor_repository,
            outbox_repository=outbox_repository,
            service_name=settings.SERVICE_NAME,
        )

    @provide(scope=Scope.APP)
    def provide_outbox_worker(
        self,
        outbox_repository: SyncOutboxRepositoryProtocol,
        vendor_repository: VendorRepositoryProtocol,
        identity_provider: IdentityProviderProtocol,
        settings: Settings,
    ) -> SyncOutboxWorker:
        handlers = build_replay_handlers(vendor_repository, identity_provider)
        return SyncOutboxWorker(outbox_repository, handlers, settings)

    @provide(scope=Scope.APP)
    def provide_reconciliation_service(
        self,
        vendor_repository: VendorRepositoryProtocol,
        identity_provider: IdentityProviderProtocol,
        outbox_repository: SyncOutboxRepositoryProtocol,
        settings: Settings,
    ) -> ReconciliationService:
        return ReconciliationService(
            vendor_repository=vendor_repository,
            identity_provider=identity_provider,
            outbox_repository=outbox_repository,
            stuck_attempts_threshold=settings.OUTBOX_STUCK_ATTEMPTS_THRESHOLD,
            service_name=settings.SERVICE_NAME,
        )
