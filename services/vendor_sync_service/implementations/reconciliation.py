"""
Drift report between local business profiles and provider identities,
and the operator repairs that resolve one reported drift at a time.

Repairs are guarded: each one refuses to act unless the drift it fixes is
still present, so replaying a repair request never removes healthy data.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Optional
from uuid import UUID, uuid4

from services.vendor_sync_service.enums import ReconcileFixMode
from services.vendor_sync_service.error_handling import (
    raise_identity_not_found,
    raise_resource_not_found,
    raise_validation_error,
)
from services.vendor_sync_service.logging_utils import create_service_logger
from services.vendor_sync_service.models import (
    EmailMismatch,
    IdentityRecord,
    ProfileRecord,
    ReconcileFixResult,
    ReconciliationReport,
)
from services.vendor_sync_service.protocols import (
    IdentityProviderProtocol,
    SyncOutboxRepositoryProtocol,
    VendorRepositoryProtocol,
)

logger = create_service_logger("vendor_sync_service.reconciliation")


class ReconciliationService:
    def __init__(
        self,
        vendor_repository: VendorRepositoryProtocol,
        identity_provider: IdentityProviderProtocol,
        outbox_repository: SyncOutboxRepositoryProtocol,
        stuck_attempts_threshold: int,
        page_size: int = 100,
        service_name: str = "vendor_sync_service",
    ) -> None:
        self.vendor_repository = vendor_repository
        self.identity_provider = identity_provider
        self.outbox_repository = outbox_repository
        self.stuck_attempts_threshold = stuck_attempts_threshold
        self.page_size = page_size
        self.service_name = service_name

    async def _business_identities(self) -> list[IdentityRecord]:
        identities: list[IdentityRecord] = []
        page = 1
        while True:
            batch = await self.identity_provider.list_identities(page=page, per_page=self.page_size)
            identities.extend(
                identity
                for identity in batch
                if identity.metadata.get("user_type") == "business"
            )
            if len(batch) < self.page_size:
                return identities
            page += 1

    async def build_report(self) -> ReconciliationReport:
        profiles = await self.vendor_repository.list_profiles(user_type="business")
        identities = await self._business_identities()
        identities_by_id = {identity.id: identity for identity in identities}
        profile_identity_ids = {profile.external_identity_id for profile in profiles}

        report = ReconciliationReport(
            generated_at=datetime.now(UTC),
            profiles_checked=len(profiles),
            identities_checked=len(identities),
        )

        for profile in profiles:
            identity = identities_by_id.get(profile.external_identity_id)
            if identity is None:
                # Identities without business metadata are looked up individually
                identity = await self.identity_provider.get_identity(profile.external_identity_id)
            if identity is None:
                report.profiles_missing_identity.append(profile)
                continue
            if (identity.email or "").lower() != profile.email.lower():
                report.email_mismatches.append(
                    EmailMismatch(
                        profile_id=profile.id,
                        external_identity_id=profile.external_identity_id,
                        profile_email=profile.email,
                        identity_email=identity.email,
                    )
                )

        report.identities_missing_profile = [
            identity for identity in identities if identity.id not in profile_identity_ids
        ]
        report.stuck_outbox_entries = await self.outbox_repository.list_stuck_entries(
            self.stuck_attempts_threshold
        )

        logger.info(
            "Reconciliation report built",
            extra={
                "profiles_checked": report.profiles_checked,
                "identities_checked": report.identities_checked,
                "profiles_missing_identity": len(report.profiles_missing_identity),
                "identities_missing_profile": len(report.identities_missing_profile),
                "email_mismatches": len(report.email_mismatches),
                "stuck_outbox_entries": len(report.stuck_outbox_entries),
            },
        )
        return report

    async def apply_fix(
        self,
        mode: ReconcileFixMode,
        profile_id: Optional[UUID] = None,
        external_identity_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ReconcileFixResult:
        """Apply one operator repair.

        Raises:
            VendorSyncError: VALIDATION_ERROR when a required id is missing or
                the drift is not present, RESOURCE_NOT_FOUND/IDENTITY_NOT_FOUND
                for unknown ids, provider or store errors otherwise
        """
        correlation_id = correlation_id or uuid4()
        operation = f"reconcile_fix.{mode.value}"

        if mode is ReconcileFixMode.DELETE_ORPHAN_IDENTITY:
            identity_id = self._require_identity_id(external_identity_id, mode, correlation_id)
            result = await self._delete_orphan_identity(identity_id, operation, correlation_id)
        elif mode is ReconcileFixMode.DELETE_ORPHAN_PROFILE:
            profile = await self._load_profile(profile_id, mode, operation, correlation_id)
            result = await self._delete_orphan_profile(profile, operation, correlation_id)
        elif mode is ReconcileFixMode.LINK_PROFILE_IDENTITY:
            profile = await self._load_profile(profile_id, mode, operation, correlation_id)
            identity_id = self._require_identity_id(external_identity_id, mode, correlation_id)
            result = await self._link_profile_identity(
                profile, identity_id, operation, correlation_id
            )
        else:
            profile = await self._load_profile(profile_id, mode, operation, correlation_id)
            result = await self._sync_email(
                profile, external_identity_id or profile.external_identity_id
            )

        logger.info(
            result.message,
            extra={
                "mode": mode.value,
                "profile_id": str(result.profile_id) if result.profile_id else None,
                "external_identity_id": result.external_identity_id,
                "correlation_id": str(correlation_id),
            },
        )
        return result

    def _require_identity_id(
        self, external_identity_id: Optional[str], mode: ReconcileFixMode, correlation_id: UUID
    ) -> str:
        if not external_identity_id:
            raise_validation_error(
                service=self.service_name,
                operation=f"reconcile_fix.{mode.value}",
                field="external_identity_id",
                message=f"external_identity_id is required for {mode.value}",
                correlation_id=correlation_id,
            )
        return external_identity_id

    async def _load_profile(
        self,
        profile_id: Optional[UUID],
        mode: ReconcileFixMode,
        operation: str,
        correlation_id: UUID,
    ) -> ProfileRecord:
        if profile_id is None:
            raise_validation_error(
                service=self.service_name,
                operation=operation,
                field="profile_id",
                message=f"profile_id is required for {mode.value}",
                correlation_id=correlation_id,
            )
        profile = await self.vendor_repository.get_profile(profile_id)
        if profile is None:
            raise_resource_not_found(
                service=self.service_name,
                operation=operation,
                resource_type="profile",
                resource_id=str(profile_id),
                correlation_id=correlation_id,
            )
        return profile

    async def _delete_orphan_identity(
        self, identity_id: str, operation: str, correlation_id: UUID
    ) -> ReconcileFixResult:
        owner = await self.vendor_repository.get_profile_by_external_identity_id(identity_id)
        if owner is not None:
            raise_validation_error(
                service=self.service_name,
                operation=operation,
                field="external_identity_id",
                message=f"Identity {identity_id} is still linked to profile {owner.id}",
                correlation_id=correlation_id,
                profile_id=str(owner.id),
            )
        await self.identity_provider.delete_identity(identity_id)
        return ReconcileFixResult(
            mode=ReconcileFixMode.DELETE_ORPHAN_IDENTITY,
            message=f"Deleted orphaned identity {identity_id}",
            external_identity_id=identity_id,
        )

    async def _delete_orphan_profile(
        self, profile: ProfileRecord, operation: str, correlation_id: UUID
    ) -> ReconcileFixResult:
        if await self.identity_provider.get_identity(profile.external_identity_id) is not None:
            raise_validation_error(
                service=self.service_name,
                operation=operation,
                field="profile_id",
                message=(
                    f"Profile {profile.id} still has identity {profile.external_identity_id}"
                ),
                correlation_id=correlation_id,
                external_identity_id=profile.external_identity_id,
            )
        await self.vendor_repository.delete_profile(profile.id)
        return ReconcileFixResult(
            mode=ReconcileFixMode.DELETE_ORPHAN_PROFILE,
            message=f"Deleted orphaned profile {profile.id}",
            profile_id=profile.id,
            external_identity_id=profile.external_identity_id,
        )

    async def _link_profile_identity(
        self,
        profile: ProfileRecord,
        identity_id: str,
        operation: str,
        correlation_id: UUID,
    ) -> ReconcileFixResult:
        if await self.identity_provider.get_identity(identity_id) is None:
            raise_identity_not_found(
                service=self.service_name,
                operation=operation,
                message=f"Identity {identity_id} does not exist",
                correlation_id=correlation_id,
                external_identity_id=identity_id,
            )
        owner = await self.vendor_repository.get_profile_by_external_identity_id(identity_id)
        if owner is not None and owner.id != profile.id:
            raise_validation_error(
                service=self.service_name,
                operation=operation,
                field="external_identity_id",
                message=f"Identity {identity_id} is already linked to profile {owner.id}",
                correlation_id=correlation_id,
                profile_id=str(owner.id),
            )
        await self.vendor_repository.link_external_identity(profile.id, identity_id)
        return ReconcileFixResult(
            mode=ReconcileFixMode.LINK_PROFILE_IDENTITY,
            message=f"Linked profile {profile.id} to identity {identity_id}",
            profile_id=profile.id,
            external_identity_id=identity_id,
        )

    async def _sync_email(self, profile: ProfileRecord, identity_id: str) -> ReconcileFixResult:
        # The local profile email is authoritative
        await self.identity_provider.update_identity(identity_id, email=profile.email)
        return ReconcileFixResult(
            mode=ReconcileFixMode.SYNC_EMAIL,
            message=f"Synced identity {identity_id} email to {profile.email}",
            profile_id=profile.id,
            external_identity_id=identity_id,
        )
