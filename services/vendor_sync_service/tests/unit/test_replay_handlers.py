"""Unit tests for the per-type sync outbox replay handlers."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from services.vendor_sync_service.enums import ErrorCode, SyncOutboxType, VerificationStatus
from services.vendor_sync_service.error_handling import VendorSyncError
from services.vendor_sync_service.implementations.outbox_replay_handlers import (
    CreateVendorRecordsReplayHandler,
    DeleteIdentityReplayHandler,
    StatusMetadataReplayHandler,
    UpdateContactReplayHandler,
    build_replay_handlers,
)
from services.vendor_sync_service.models import ProfileRecord, SyncOutboxEntry, VendorProfileData
from services.vendor_sync_service.protocols import VendorRepositoryProtocol
from services.vendor_sync_service.tests.fakes import FlakyIdentityProvider, make_error


def _entry(entry_type: SyncOutboxType, payload: dict[str, Any]) -> SyncOutboxEntry:
    now = datetime.now(UTC)
    return SyncOutboxEntry(
        id=1,
        type=entry_type.value,
        payload=payload,
        attempts=0,
        created_at=now,
        updated_at=now,
    )


def _profile(identity_id: str = "identity-1") -> ProfileRecord:
    return ProfileRecord(
        id=uuid4(),
        external_identity_id=identity_id,
        email="owner@bakery.example",
        user_type="business",
    )


@pytest.fixture
def vendor_repo() -> AsyncMock:
    repo = AsyncMock(spec=VendorRepositoryProtocol)
    repo.get_profile_by_external_identity_id.return_value = None
    return repo


VENDOR_PAYLOAD = {
    "email": "owner@bakery.example",
    "phone": None,
    "business_name": "Corner Bakery",
    "business_category": "food",
    "business_address": None,
    "documents": {"government_id": None, "proof_of_address": None, "proof_of_business": None},
}


class TestCreateVendorRecordsReplay:
    async def test_creates_records_for_identity(self, vendor_repo: AsyncMock) -> None:
        handler = CreateVendorRecordsReplayHandler(vendor_repo)
        entry = _entry(
            SyncOutboxType.CREATE_VENDOR_DB_RETRY,
            {"external_identity_id": "identity-1", "vendor": VENDOR_PAYLOAD},
        )

        await handler.replay(entry)

        vendor_repo.create_vendor_records.assert_awaited_once()
        identity_id, vendor = vendor_repo.create_vendor_records.await_args.args
        assert identity_id == "identity-1"
        assert isinstance(vendor, VendorProfileData)
        assert vendor.business_name == "Corner Bakery"

    async def test_existing_profile_makes_replay_a_noop(self, vendor_repo: AsyncMock) -> None:
        vendor_repo.get_profile_by_external_identity_id.return_value = _profile()
        handler = CreateVendorRecordsReplayHandler(vendor_repo)
        entry = _entry(
            SyncOutboxType.CREATE_VENDOR_DB_RETRY,
            {"external_identity_id": "identity-1", "vendor": VENDOR_PAYLOAD},
        )

        await handler.replay(entry)
        await handler.replay(entry)

        vendor_repo.create_vendor_records.assert_not_awaited()

    async def test_lost_insert_race_counts_as_done(self, vendor_repo: AsyncMock) -> None:
        vendor_repo.get_profile_by_external_identity_id.side_effect = [None, _profile()]
        vendor_repo.create_vendor_records.side_effect = make_error(
            ErrorCode.LOCAL_CONSTRAINT_VIOLATION
        )
        handler = CreateVendorRecordsReplayHandler(vendor_repo)

        await handler.replay(
            _entry(
                SyncOutboxType.CREATE_VENDOR_DB_RETRY,
                {"external_identity_id": "identity-1", "vendor": VENDOR_PAYLOAD},
            )
        )

    async def test_store_failure_propagates(self, vendor_repo: AsyncMock) -> None:
        vendor_repo.create_vendor_records.side_effect = make_error(ErrorCode.LOCAL_STORE_ERROR)
        handler = CreateVendorRecordsReplayHandler(vendor_repo)

        with pytest.raises(VendorSyncError):
            await handler.replay(
                _entry(
                    SyncOutboxType.CREATE_VENDOR_DB_RETRY,
                    {"external_identity_id": "identity-1", "vendor": VENDOR_PAYLOAD},
                )
            )

    async def test_missing_payload_key_is_validation_error(self, vendor_repo: AsyncMock) -> None:
        handler = CreateVendorRecordsReplayHandler(vendor_repo)

        with pytest.raises(VendorSyncError) as exc_info:
            await handler.replay(_entry(SyncOutboxType.CREATE_VENDOR_DB_RETRY, {"vendor": {}}))

        assert exc_info.value.has_code(ErrorCode.VALIDATION_ERROR)


class TestUpdateContactReplay:
    async def test_reapplies_email(self, vendor_repo: AsyncMock) -> None:
        profile = _profile()
        vendor_repo.get_profile.return_value = profile
        handler = UpdateContactReplayHandler(vendor_repo, "email")

        await handler.replay(
            _entry(
                SyncOutboxType.UPDATE_EMAIL_DB_RETRY,
                {"profile_id": str(profile.id), "email": "new@bakery.example"},
            )
        )

        vendor_repo.update_contact.assert_awaited_once_with(
            profile.id, email="new@bakery.example"
        )

    async def test_vanished_profile_is_noop(self, vendor_repo: AsyncMock) -> None:
        vendor_repo.get_profile.return_value = None
        handler = UpdateContactReplayHandler(vendor_repo, "phone")

        await handler.replay(
            _entry(
                SyncOutboxType.UPDATE_PHONE_DB_RETRY,
                {"profile_id": str(uuid4()), "phone": "+4511111111"},
            )
        )

        vendor_repo.update_contact.assert_not_awaited()

    def test_unsupported_field_rejected(self, vendor_repo: AsyncMock) -> None:
        with pytest.raises(ValueError):
            UpdateContactReplayHandler(vendor_repo, "password")


class TestStatusMetadataReplay:
    async def test_mirrors_current_local_status(self, vendor_repo: AsyncMock) -> None:
        provider = FlakyIdentityProvider()
        identity_id = await provider.create_identity("owner@bakery.example", "password1")
        vendor_repo.get_external_identity_id.return_value = identity_id
        vendor_repo.get_verification_status.return_value = VerificationStatus.REJECTED
        handler = StatusMetadataReplayHandler(vendor_repo, provider)

        # The entry was written for "approved" but the local store has moved on
        await handler.replay(
            _entry(
                SyncOutboxType.STATUS_METADATA_RETRY,
                {"profile_id": str(uuid4()), "status": "approved"},
            )
        )

        assert provider.identities[identity_id].metadata["verification_status"] == "rejected"

    async def test_missing_profile_is_noop(self, vendor_repo: AsyncMock) -> None:
        provider = FlakyIdentityProvider()
        vendor_repo.get_external_identity_id.return_value = None
        vendor_repo.get_verification_status.return_value = None
        handler = StatusMetadataReplayHandler(vendor_repo, provider)

        await handler.replay(
            _entry(SyncOutboxType.STATUS_METADATA_RETRY, {"profile_id": str(uuid4())})
        )

        assert provider.calls_to("update_identity") == []

    async def test_provider_failure_propagates(self, vendor_repo: AsyncMock) -> None:
        provider = FlakyIdentityProvider()
        identity_id = await provider.create_identity("owner@bakery.example", "password1")
        vendor_repo.get_external_identity_id.return_value = identity_id
        vendor_repo.get_verification_status.return_value = VerificationStatus.APPROVED
        provider.fail_next("update_identity", ErrorCode.IDENTITY_PROVIDER_UNAVAILABLE)
        handler = StatusMetadataReplayHandler(vendor_repo, provider)

        with pytest.raises(VendorSyncError):
            await handler.replay(
                _entry(SyncOutboxType.STATUS_METADATA_RETRY, {"profile_id": str(uuid4())})
            )


class TestDeleteIdentityReplay:
    async def test_deletes_unreferenced_identity(self, vendor_repo: AsyncMock) -> None:
        provider = FlakyIdentityProvider()
        identity_id = await provider.create_identity("owner@bakery.example", "password1")
        handler = DeleteIdentityReplayHandler(vendor_repo, provider)

        await handler.replay(
            _entry(SyncOutboxType.DELETE_IDENTITY_RETRY, {"external_identity_id": identity_id})
        )

        assert identity_id not in provider.identities

    async def test_already_deleted_identity_counts_as_done(self, vendor_repo: AsyncMock) -> None:
        provider = FlakyIdentityProvider()
        handler = DeleteIdentityReplayHandler(vendor_repo, provider)

        await handler.replay(
            _entry(SyncOutboxType.DELETE_IDENTITY_RETRY, {"external_identity_id": "gone"})
        )

        assert len(provider.calls_to("delete_identity")) == 1

    async def test_referenced_identity_is_kept(self, vendor_repo: AsyncMock) -> None:
        provider = FlakyIdentityProvider()
        identity_id = await provider.create_identity("owner@bakery.example", "password1")
        vendor_repo.get_profile_by_external_identity_id.return_value = _profile(identity_id)
        handler = DeleteIdentityReplayHandler(vendor_repo, provider)

        await handler.replay(
            _entry(SyncOutboxType.DELETE_IDENTITY_RETRY, {"external_identity_id": identity_id})
        )

        assert identity_id in provider.identities
        assert provider.calls_to("delete_identity") == []


def test_every_outbox_type_has_a_handler(vendor_repo: AsyncMock) -> None:
    handlers = build_replay_handlers(vendor_repo, FlakyIdentityProvider())

    assert set(handlers) == set(SyncOutboxType)
