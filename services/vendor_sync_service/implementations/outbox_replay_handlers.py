"""
Replay handlers for sync outbox entries, one per SyncOutboxType.

Every handler is idempotent: replaying an entry whose effect already
happened, or whose subject no longer exists, is a successful no-op.
Handlers raise VendorSyncError on failure and the worker records it.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from services.vendor_sync_service.enums import ErrorCode, SyncOutboxType
from services.vendor_sync_service.error_handling import VendorSyncError, raise_validation_error
from services.vendor_sync_service.logging_utils import create_service_logger
from services.vendor_sync_service.models import SyncOutboxEntry, VendorProfileData
from services.vendor_sync_service.protocols import (
    IdentityProviderProtocol,
    OutboxReplayHandlerProtocol,
    VendorRepositoryProtocol,
)
from services.vendor_sync_service.sync_coordinator import status_metadata

logger = create_service_logger("vendor_sync_service.outbox_replay")

SERVICE_NAME = "vendor_sync_service"


def _require(entry: SyncOutboxEntry, key: str) -> Any:
    value = entry.payload.get(key)
    if value in (None, ""):
        raise_validation_error(
            service=SERVICE_NAME,
            operation=f"replay_{entry.type}",
            field=key,
            message=f"Outbox entry {entry.id} payload is missing '{key}'",
            outbox_id=entry.id,
        )
    return value


class CreateVendorRecordsReplayHandler(OutboxReplayHandlerProtocol):
    """Creates the local records for an identity whose local write failed."""

    def __init__(self, vendor_repository: VendorRepositoryProtocol) -> None:
        self.vendor_repository = vendor_repository

    async def replay(self, entry: SyncOutboxEntry) -> None:
        external_identity_id = str(_require(entry, "external_identity_id"))
        vendor = VendorProfileData.model_validate(_require(entry, "vendor"))

        if await self.vendor_repository.get_profile_by_external_identity_id(external_identity_id):
            logger.info(
                "Vendor records already exist, nothing to replay",
                extra={"outbox_id": entry.id, "external_identity_id": external_identity_id},
            )
            return

        try:
            await self.vendor_repository.create_vendor_records(external_identity_id, vendor)
        except VendorSyncError as error:
            # A concurrent replay may have won the unique insert
            if error.has_code(ErrorCode.LOCAL_CONSTRAINT_VIOLATION) and (
                await self.vendor_repository.get_profile_by_external_identity_id(
                    external_identity_id
                )
            ):
                return
            raise


class UpdateContactReplayHandler(OutboxReplayHandlerProtocol):
    """Re-applies an email or phone change to the profile and its business records."""

    def __init__(self, vendor_repository: VendorRepositoryProtocol, field: str) -> None:
        if field not in ("email", "phone"):
            raise ValueError(f"Unsupported contact field: {field}")
        self.vendor_repository = vendor_repository
        self.field = field

    async def replay(self, entry: SyncOutboxEntry) -> None:
        profile_id = UUID(str(_require(entry, "profile_id")))
        value = str(_require(entry, self.field))

        if await self.vendor_repository.get_profile(profile_id) is None:
            logger.info(
                f"Profile gone, skipping {self.field} replay",
                extra={"outbox_id": entry.id, "profile_id": str(profile_id)},
            )
            return

        await self.vendor_repository.update_contact(profile_id, **{self.field: value})


class StatusMetadataReplayHandler(OutboxReplayHandlerProtocol):
    """Mirrors the current local verification status into provider metadata.

    The local status is authoritative, so the value read now wins over the
    one recorded when the entry was written.
    """

    def __init__(
        self,
        vendor_repository: VendorRepositoryProtocol,
        identity_provider: IdentityProviderProtocol,
    ) -> None:
        self.vendor_repository = vendor_repository
        self.identity_provider = identity_provider

    async def replay(self, entry: SyncOutboxEntry) -> None:
        profile_id = UUID(str(_require(entry, "profile_id")))

        identity_id = await self.vendor_repository.get_external_identity_id(profile_id)
        status = await self.vendor_repository.get_verification_status(profile_id)
        if identity_id is None or status is None:
            logger.info(
                "Profile or business gone, skipping status replay",
                extra={"outbox_id": entry.id, "profile_id": str(profile_id)},
            )
            return

        await self.identity_provider.update_identity(identity_id, metadata=status_metadata(status))


class DeleteIdentityReplayHandler(OutboxReplayHandlerProtocol):
    """Deletes an identity that no longer has local records."""

    def __init__(
        self,
        vendor_repository: VendorRepositoryProtocol,
        identity_provider: IdentityProviderProtocol,
    ) -> None:
        self.vendor_repository = vendor_repository
        self.identity_provider = identity_provider

    async def replay(self, entry: SyncOutboxEntry) -> None:
        identity_id = str(_require(entry, "external_identity_id"))

        if await self.vendor_repository.get_profile_by_external_identity_id(identity_id):
            logger.warning(
                "Identity is referenced by a profile again, not deleting",
                extra={"outbox_id": entry.id, "external_identity_id": identity_id},
            )
            return

        try:
            await self.identity_provider.delete_identity(identity_id)
        except VendorSyncError as error:
            if error.has_code(ErrorCode.IDENTITY_NOT_FOUND):
                return
            raise


def build_replay_handlers(
    vendor_repository: VendorRepositoryProtocol,
    identity_provider: IdentityProviderProtocol,
) -> dict[SyncOutboxType, OutboxReplayHandlerProtocol]:
    return {
        SyncOutboxType.CREATE_VENDOR_DB_RETRY: CreateVendorRecordsReplayHandler(vendor_repository),
        SyncOutboxType.UPDATE_EMAIL_DB_RETRY: UpdateContactReplayHandler(
            vendor_repository, "email"
        ),
        SyncOutboxType.UPDATE_PHONE_DB_RETRY: UpdateContactReplayHandler(
            vendor_repository, "phone"
        ),
        SyncOutboxType.STATUS_METADATA_RETRY: StatusMetadataReplayHandler(
            vendor_repository, identity_provider
        ),
        SyncOutboxType.DELETE_IDENTITY_RETRY: DeleteIdentityReplayHandler(
            vendor_repository, identity_provider
        ),
    }
