"""
Enumerations shared across the Vendor Sync Service.
"""

from __future__ import annotations

from enum import Enum


class Environment(str, Enum):
    """Defines application environments."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class VerificationStatus(str, Enum):
    """Verification state of a vendor business record.

    Application-owned: the local store is authoritative, the identity
    provider only carries a mirrored copy in user metadata.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DEACTIVATED = "deactivated"


class SyncOutboxType(str, Enum):
    """Discriminator selecting the replay handler for an outbox entry."""

    CREATE_VENDOR_DB_RETRY = "create_vendor_db_retry"
    UPDATE_EMAIL_DB_RETRY = "update_email_db_retry"
    UPDATE_PHONE_DB_RETRY = "update_phone_db_retry"
    STATUS_METADATA_RETRY = "status_metadata_retry"
    DELETE_IDENTITY_RETRY = "delete_identity_retry"


class ReconcileFixMode(str, Enum):
    """Operator repair applied to one drift found by the reconciliation report."""

    DELETE_ORPHAN_IDENTITY = "delete_orphan_identity"
    DELETE_ORPHAN_PROFILE = "delete_orphan_profile"
    LINK_PROFILE_IDENTITY = "link_profile_identity"
    SYNC_EMAIL = "sync_email"


class IdentityProviderMode(str, Enum):
    """Which identity provider adapter the service is wired with."""

    HTTP = "http"
    SIMULATED = "simulated"


class ErrorCode(str, Enum):
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    # Identity provider
    IDENTITY_NOT_FOUND = "IDENTITY_NOT_FOUND"
    IDENTITY_ALREADY_EXISTS = "IDENTITY_ALREADY_EXISTS"
    IDENTITY_PROVIDER_UNAVAILABLE = "IDENTITY_PROVIDER_UNAVAILABLE"
    IDENTITY_PROVIDER_ERROR = "IDENTITY_PROVIDER_ERROR"

    # Relational store
    LOCAL_STORE_ERROR = "LOCAL_STORE_ERROR"
    LOCAL_CONSTRAINT_VIOLATION = "LOCAL_CONSTRAINT_VIOLATION"
    OUTBOX_STORAGE_ERROR = "OUTBOX_STORAGE_ERROR"


INPUT_ERROR_CODES = frozenset(
    {
        ErrorCode.VALIDATION_ERROR,
        ErrorCode.RESOURCE_NOT_FOUND,
        ErrorCode.IDENTITY_NOT_FOUND,
        ErrorCode.IDENTITY_ALREADY_EXISTS,
    }
)
