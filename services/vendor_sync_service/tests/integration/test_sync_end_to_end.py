"""
End-to-end convergence tests.

The coordinator and the outbox worker run against the SQLAlchemy
repositories on SQLite and the flaky simulated identity provider. Each test
injects a failure between the two systems and asserts that replaying the
outbox brings them back in line.
"""

from __future__ import annotations

import asyncio
from typing import Optional
from uuid import UUID

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from services.vendor_sync_service.config import Settings
from services.vendor_sync_service.enums import ErrorCode, SyncOutboxType, VerificationStatus
from services.vendor_sync_service.implementations.outbox_replay_handlers import (
    build_replay_handlers,
)
from services.vendor_sync_service.implementations.outbox_repository_impl import (
    PostgresSyncOutboxRepository,
)
from services.vendor_sync_service.implementations.outbox_worker import SyncOutboxWorker
from services.vendor_sync_service.implementations.vendor_repository_sqlalchemy_impl import (
    PostgresVendorRepository,
)
from services.vendor_sync_service.models import VendorCreateInput, VendorProfileData
from services.vendor_sync_service.sync_coordinator import VendorSyncCoordinator
from services.vendor_sync_service.tests.fakes import FlakyIdentityProvider, make_error


class FlakyVendorRepository(PostgresVendorRepository):
    """Real repository whose next write can be made to fail."""

    def __init__(self, engine: AsyncEngine) -> None:
        super().__init__(engine, service_name="test_service")
        self.fail_writes: dict[str, int] = {}

    def _maybe_fail(self, operation: str) -> None:
        if self.fail_writes.get(operation, 0) > 0:
            self.fail_writes[operation] -= 1
            raise make_error(ErrorCode.LOCAL_STORE_ERROR, operation)

    async def create_vendor_records(
        self, external_identity_id: str, vendor: VendorProfileData
    ) -> tuple[UUID, int]:
        self._maybe_fail("create_vendor_records")
        return await super().create_vendor_records(external_identity_id, vendor)

    async def update_contact(
        self, profile_id: UUID, *, email: Optional[str] = None, phone: Optional[str] = None
    ) -> int:
        self._maybe_fail("update_contact")
        return await super().update_contact(profile_id, email=email, phone=phone)


@pytest.fixture
def flaky_repository(sqlite_engine: AsyncEngine) -> FlakyVendorRepository:
    return FlakyVendorRepository(sqlite_engine)


@pytest.fixture
def coordinator(
    identity_provider: FlakyIdentityProvider,
    flaky_repository: FlakyVendorRepository,
    outbox_repository: PostgresSyncOutboxRepository,
) -> VendorSyncCoordinator:
    return VendorSyncCoordinator(
        identity_provider=identity_provider,
        vendor_repository=flaky_repository,
        outbox_repository=outbox_repository,
        service_name="test_service",
    )


@pytest.fixture
def worker(
    identity_provider: FlakyIdentityProvider,
    flaky_repository: FlakyVendorRepository,
    outbox_repository: PostgresSyncOutboxRepository,
    test_settings: Settings,
) -> SyncOutboxWorker:
    handlers = build_replay_handlers(flaky_repository, identity_provider)
    return SyncOutboxWorker(outbox_repository, handlers, test_settings)


async def _drain(worker: SyncOutboxWorker, rounds: int = 5) -> None:
    for _ in range(rounds):
        await worker.run_once()
        # Test backoff is sub-millisecond
        await asyncio.sleep(0.01)


async def test_create_with_failed_compensation_converges(
    coordinator: VendorSyncCoordinator,
    worker: SyncOutboxWorker,
    identity_provider: FlakyIdentityProvider,
    flaky_repository: FlakyVendorRepository,
    outbox_repository: PostgresSyncOutboxRepository,
    vendor_input: VendorCreateInput,
) -> None:
    flaky_repository.fail_writes["create_vendor_records"] = 1
    identity_provider.fail_next("delete_identity", ErrorCode.IDENTITY_PROVIDER_UNAVAILABLE)

    result = await coordinator.create_vendor(vendor_input)

    assert result.partial is True
    assert result.outbox_used is True
    identity_id = result.external_identity_id
    assert identity_id is not None
    assert await flaky_repository.get_profile_by_external_identity_id(identity_id) is None

    await _drain(worker, rounds=1)

    profile = await flaky_repository.get_profile_by_external_identity_id(identity_id)
    assert profile is not None
    assert profile.email == "owner@bakery.example"
    [business] = await flaky_repository.list_business_records(profile.id)
    assert business.business_name == "Corner Bakery"
    assert business.verification_status == VerificationStatus.PENDING
    assert await outbox_repository.list_entries() == []


async def test_create_replay_is_idempotent(
    coordinator: VendorSyncCoordinator,
    worker: SyncOutboxWorker,
    identity_provider: FlakyIdentityProvider,
    flaky_repository: FlakyVendorRepository,
    outbox_repository: PostgresSyncOutboxRepository,
    vendor_input: VendorCreateInput,
) -> None:
    flaky_repository.fail_writes["create_vendor_records"] = 1
    identity_provider.fail_next("delete_identity", ErrorCode.IDENTITY_PROVIDER_UNAVAILABLE)
    result = await coordinator.create_vendor(vendor_input)
    [entry] = await outbox_repository.list_entries()
    # The same entry delivered twice
    await outbox_repository.add_entry(SyncOutboxType.CREATE_VENDOR_DB_RETRY, entry.payload)

    await _drain(worker, rounds=1)

    profiles = await flaky_repository.list_profiles()
    assert [p.external_identity_id for p in profiles] == [result.external_identity_id]
    assert await outbox_repository.list_entries() == []


async def test_successful_compensation_leaves_both_sides_empty(
    coordinator: VendorSyncCoordinator,
    identity_provider: FlakyIdentityProvider,
    flaky_repository: FlakyVendorRepository,
    outbox_repository: PostgresSyncOutboxRepository,
    vendor_input: VendorCreateInput,
) -> None:
    flaky_repository.fail_writes["create_vendor_records"] = 1

    result = await coordinator.create_vendor(vendor_input)

    assert result.success is False
    assert result.partial is False
    assert identity_provider.identities == {}
    assert await flaky_repository.list_profiles() == []
    assert await outbox_repository.list_entries() == []


async def test_email_update_local_failure_converges(
    coordinator: VendorSyncCoordinator,
    worker: SyncOutboxWorker,
    identity_provider: FlakyIdentityProvider,
    flaky_repository: FlakyVendorRepository,
    vendor_input: VendorCreateInput,
) -> None:
    created = await coordinator.create_vendor(vendor_input)
    assert created.profile_id is not None
    flaky_repository.fail_writes["update_contact"] = 1

    result = await coordinator.update_email(created.profile_id, "moved@bakery.example")

    assert result.success is True
    assert result.partial is True
    assert identity_provider.identities[created.external_identity_id].email == (
        "moved@bakery.example"
    )
    profile = await flaky_repository.get_profile(created.profile_id)
    assert profile is not None and profile.email == "owner@bakery.example"

    await _drain(worker, rounds=1)

    profile = await flaky_repository.get_profile(created.profile_id)
    assert profile is not None and profile.email == "moved@bakery.example"
    [business] = await flaky_repository.list_business_records(created.profile_id)
    assert business.email == "moved@bakery.example"


async def test_status_replay_mirrors_latest_local_status(
    coordinator: VendorSyncCoordinator,
    worker: SyncOutboxWorker,
    identity_provider: FlakyIdentityProvider,
    vendor_input: VendorCreateInput,
) -> None:
    created = await coordinator.create_vendor(vendor_input)
    assert created.profile_id is not None
    identity_provider.fail_next("update_identity", ErrorCode.IDENTITY_PROVIDER_UNAVAILABLE)

    first = await coordinator.set_vendor_status(created.profile_id, "approved")
    assert first.partial is True
    # A later change reaches the provider directly; the stale entry must not undo it
    second = await coordinator.set_vendor_status(created.profile_id, "deactivated")
    assert second.success is True and second.partial is False

    await _drain(worker, rounds=1)

    metadata = identity_provider.identities[created.external_identity_id].metadata
    assert metadata["verification_status"] == "deactivated"
    assert metadata["user_type"] == "business"


async def test_delete_with_provider_failure_converges_once(
    coordinator: VendorSyncCoordinator,
    worker: SyncOutboxWorker,
    identity_provider: FlakyIdentityProvider,
    flaky_repository: FlakyVendorRepository,
    outbox_repository: PostgresSyncOutboxRepository,
    vendor_input: VendorCreateInput,
) -> None:
    created = await coordinator.create_vendor(vendor_input)
    assert created.business_id is not None
    identity_provider.fail_next("delete_identity", ErrorCode.IDENTITY_PROVIDER_UNAVAILABLE)

    result = await coordinator.delete_vendor_fully(created.business_id)

    assert result.success is True
    assert result.partial is True
    assert await flaky_repository.list_profiles() == []
    assert created.external_identity_id in identity_provider.identities

    # Repeating the deletion neither succeeds nor enqueues a second entry
    repeat = await coordinator.delete_vendor_fully(created.business_id)
    assert repeat.success is False
    assert repeat.error_code == ErrorCode.RESOURCE_NOT_FOUND
    assert len(await outbox_repository.list_entries()) == 1

    await _drain(worker, rounds=1)

    assert created.external_identity_id not in identity_provider.identities
    assert await outbox_repository.list_entries() == []


async def test_persistent_failure_stops_at_max_attempts(
    coordinator: VendorSyncCoordinator,
    worker: SyncOutboxWorker,
    identity_provider: FlakyIdentityProvider,
    outbox_repository: PostgresSyncOutboxRepository,
    test_settings: Settings,
    vendor_input: VendorCreateInput,
) -> None:
    created = await coordinator.create_vendor(vendor_input)
    assert created.business_id is not None
    identity_provider.fail_next(
        "delete_identity", ErrorCode.IDENTITY_PROVIDER_UNAVAILABLE, times=10
    )

    await coordinator.delete_vendor_fully(created.business_id)
    await _drain(worker, rounds=test_settings.OUTBOX_MAX_ATTEMPTS + 2)

    [entry] = await outbox_repository.list_entries()
    assert entry.attempts == test_settings.OUTBOX_MAX_ATTEMPTS
    # One failure inline plus one per allowed replay attempt
    assert len(identity_provider.calls_to("delete_identity")) == (
        1 + test_settings.OUTBOX_MAX_ATTEMPTS
    )
    stuck = await outbox_repository.list_stuck_entries(
        test_settings.OUTBOX_STUCK_ATTEMPTS_THRESHOLD
    )
    assert [e.id for e in stuck] == [entry.id]

    # Operator requeue makes it eligible again and the recovered provider converges
    identity_provider.recover()
    assert await outbox_repository.requeue(entry.id) is True
    await _drain(worker, rounds=1)

    assert created.external_identity_id not in identity_provider.identities
    assert await outbox_repository.list_entries() == []
