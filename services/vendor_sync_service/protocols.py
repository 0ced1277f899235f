from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Optional, Protocol
from uuid import UUID

from services.vendor_sync_service.enums import SyncOutboxType, VerificationStatus
from services.vendor_sync_service.models import (
    BusinessDeletion,
    BusinessRecordView,
    IdentityRecord,
    ProfileRecord,
    SyncOutboxEntry,
    VendorProfileData,
)


class IdentityProviderProtocol(Protocol):
    """Admin surface of the external authentication provider."""

    async def create_identity(
        self,
        email: str,
        password: str,
        phone: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str: ...

    async def update_identity(
        self,
        identity_id: str,
        *,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        password: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None: ...

    async def delete_identity(self, identity_id: str) -> None: ...

    async def get_identity(self, identity_id: str) -> Optional[IdentityRecord]: ...

    async def list_identities(self, page: int = 1, per_page: int = 100) -> list[IdentityRecord]: ...


class VendorRepositoryProtocol(Protocol):
    async def get_external_identity_id(self, profile_id: UUID) -> Optional[str]: ...

    async def get_profile(self, profile_id: UUID) -> Optional[ProfileRecord]: ...

    async def get_profile_by_external_identity_id(
        self, external_identity_id: str
    ) -> Optional[ProfileRecord]: ...

    async def create_vendor_records(
        self, external_identity_id: str, vendor: VendorProfileData
    ) -> tuple[UUID, int]: ...

    async def update_contact(
        self,
        profile_id: UUID,
        *,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> int: ...

    async def set_verification_status(
        self, profile_id: UUID, status: VerificationStatus
    ) -> int: ...

    async def get_verification_status(self, profile_id: UUID) -> Optional[VerificationStatus]: ...

    async def delete_business_record(self, business_id: int) -> Optional[BusinessDeletion]: ...

    async def list_business_records(self, profile_id: UUID) -> list[BusinessRecordView]: ...

    async def list_profiles(self, user_type: Optional[str] = "business") -> list[ProfileRecord]: ...

    async def link_external_identity(self, profile_id: UUID, external_identity_id: str) -> int: ...

    async def delete_profile(self, profile_id: UUID) -> bool: ...


class SyncOutboxRepositoryProtocol(Protocol):
    async def add_entry(
        self,
        entry_type: SyncOutboxType,
        payload: dict[str, Any],
        error: Optional[str] = None,
    ) -> int: ...

    async def claim_due_entries(
        self, limit: int, max_attempts: int, lease_seconds: float
    ) -> list[SyncOutboxEntry]: ...

    async def mark_resolved(self, entry_id: int) -> None: ...

    async def record_failure(
        self,
        entry_id: int,
        error: str,
        schedule_next_attempt: Callable[[int], datetime],
    ) -> int: ...

    async def get_entry(self, entry_id: int) -> Optional[SyncOutboxEntry]: ...

    async def list_entries(self, limit: int = 100) -> list[SyncOutboxEntry]: ...

    async def list_stuck_entries(self, min_attempts: int) -> list[SyncOutboxEntry]: ...

    async def requeue(self, entry_id: int) -> bool: ...


class OutboxReplayHandlerProtocol(Protocol):
    """Re-applies the step recorded by one outbox entry type. Must be idempotent."""

    async def replay(self, entry: SyncOutboxEntry) -> None: ...
