"""In-memory identity provider for local development and tests.

Selected explicitly with ``IDENTITY_PROVIDER_MODE=simulated``. Never wired
in production.
"""

from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4

from services.vendor_sync_service.error_handling import (
    raise_identity_already_exists,
    raise_identity_not_found,
)
from services.vendor_sync_service.logging_utils import create_service_logger
from services.vendor_sync_service.models import IdentityRecord
from services.vendor_sync_service.protocols import IdentityProviderProtocol

logger = create_service_logger("vendor_sync_service.identity_provider.simulated")


class SimulatedIdentityProvider(IdentityProviderProtocol):
    def __init__(self, service_name: str = "vendor_sync_service") -> None:
        self.service_name = service_name
        self.identities: dict[str, IdentityRecord] = {}
        self.passwords: dict[str, str] = {}

    def _require(self, identity_id: str, operation: str) -> IdentityRecord:
        identity = self.identities.get(identity_id)
        if identity is None:
            raise_identity_not_found(
                service=self.service_name,
                operation=operation,
                message=f"Identity {identity_id} not found",
                external_identity_id=identity_id,
            )
        return identity

    async def create_identity(
        self,
        email: str,
        password: str,
        phone: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        normalized = email.lower()
        if any((i.email or "").lower() == normalized for i in self.identities.values()):
            raise_identity_already_exists(
                service=self.service_name,
                operation="create_identity",
                message="A user with this email address has already been registered",
            )
        identity_id = str(uuid4())
        self.identities[identity_id] = IdentityRecord(
            id=identity_id, email=email, phone=phone, metadata=dict(metadata or {})
        )
        self.passwords[identity_id] = password
        logger.debug("Simulated identity created", extra={"external_identity_id": identity_id})
        return identity_id

    async def update_identity(
        self,
        identity_id: str,
        *,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        password: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        identity = self._require(identity_id, "update_identity")
        updates: dict[str, Any] = {}
        if email is not None:
            updates["email"] = email
        if phone is not None:
            updates["phone"] = phone
        if metadata is not None:
            updates["metadata"] = {**identity.metadata, **metadata}
        if password is not None:
            self.passwords[identity_id] = password
        self.identities[identity_id] = identity.model_copy(update=updates)

    async def delete_identity(self, identity_id: str) -> None:
        self._require(identity_id, "delete_identity")
        del self.identities[identity_id]
        self.passwords.pop(identity_id, None)

    async def get_identity(self, identity_id: str) -> Optional[IdentityRecord]:
        return self.identities.get(identity_id)

    async def list_identities(self, page: int = 1, per_page: int = 100) -> list[IdentityRecord]:
        identities = list(self.identities.values())
        start = (page - 1) * per_page
        return identities[start : start + per_page]
