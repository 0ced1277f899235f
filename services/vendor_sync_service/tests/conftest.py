"""Shared fixtures for Vendor Sync Service tests."""

from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from services.vendor_sync_service.config import Settings
from services.vendor_sync_service.implementations.outbox_repository_impl import (
    PostgresSyncOutboxRepository,
)
from services.vendor_sync_service.implementations.vendor_repository_sqlalchemy_impl import (
    PostgresVendorRepository,
)
from services.vendor_sync_service.models import VendorCreateInput, VendorDocuments
from services.vendor_sync_service.models_db import Base
from services.vendor_sync_service.tests.fakes import FakeOutboxRepository, FlakyIdentityProvider


@pytest.fixture
def test_settings() -> Settings:
    """Settings with a backoff short enough for failed entries to become due within a test."""
    return Settings(
        SERVICE_NAME="test_service",
        OUTBOX_WORKER_ENABLED=False,
        OUTBOX_BATCH_SIZE=10,
        OUTBOX_MAX_ATTEMPTS=3,
        OUTBOX_BACKOFF_BASE_SECONDS=0.0001,
        OUTBOX_BACKOFF_MULTIPLIER=2.0,
        OUTBOX_CLAIM_LEASE_SECONDS=300.0,
        OUTBOX_STUCK_ATTEMPTS_THRESHOLD=2,
    )


@pytest.fixture
def vendor_input() -> VendorCreateInput:
    return VendorCreateInput(
        email="owner@bakery.example",
        password="s3cret-pass",
        phone="+4520000000",
        business_name="Corner Bakery",
        business_category="food",
        business_address="1 Main Street",
        documents=VendorDocuments(government_id="docs/gov.pdf"),
    )


@pytest.fixture
def identity_provider() -> FlakyIdentityProvider:
    return FlakyIdentityProvider()


@pytest.fixture
def fake_outbox() -> FakeOutboxRepository:
    return FakeOutboxRepository()


@pytest.fixture
async def sqlite_engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """File-backed SQLite database with the service schema."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'vendor_sync.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def vendor_repository(sqlite_engine: AsyncEngine) -> PostgresVendorRepository:
    return PostgresVendorRepository(sqlite_engine, service_name="test_service")


@pytest.fixture
def outbox_repository(sqlite_engine: AsyncEngine) -> PostgresSyncOutboxRepository:
    return PostgresSyncOutboxRepository(sqlite_engine, service_name="test_service")
