"""Structured error handling for the Vendor Sync Service."""

from .error_detail import ErrorDetail, create_error_detail
from .factories import (
    raise_configuration_error,
    raise_identity_already_exists,
    raise_identity_not_found,
    raise_identity_provider_error,
    raise_identity_provider_unavailable,
    raise_local_constraint_violation,
    raise_local_store_error,
    raise_outbox_storage_error,
    raise_resource_not_found,
    raise_validation_error,
)
from .vendor_sync_error import VendorSyncError

__all__ = [
    "ErrorDetail",
    "VendorSyncError",
    "create_error_detail",
    "raise_configuration_error",
    "raise_identity_already_exists",
    "raise_identity_not_found",
    "raise_identity_provider_error",
    "raise_identity_provider_unavailable",
    "raise_local_constraint_violation",
    "raise_local_store_error",
    "raise_outbox_storage_error",
    "raise_resource_not_found",
    "raise_validation_error",
]
