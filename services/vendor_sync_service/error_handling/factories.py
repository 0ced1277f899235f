"""
Factory functions that build an ErrorDetail and raise VendorSyncError.

Every factory takes the service and operation raising the error, a message,
an optional correlation id, and arbitrary keyword context that ends up in
``ErrorDetail.details``.
"""

from __future__ import annotations

from typing import Any, NoReturn
from uuid import UUID

from services.vendor_sync_service.enums import ErrorCode
from services.vendor_sync_service.error_handling.error_detail import create_error_detail
from services.vendor_sync_service.error_handling.vendor_sync_error import VendorSyncError


def _raise(
    error_code: ErrorCode,
    service: str,
    operation: str,
    message: str,
    correlation_id: UUID | None,
    details: dict[str, Any],
) -> NoReturn:
    raise VendorSyncError(
        create_error_detail(
            error_code=error_code,
            message=message,
            service=service,
            operation=operation,
            correlation_id=correlation_id,
            details=details,
        )
    )


def raise_validation_error(
    service: str,
    operation: str,
    field: str,
    message: str,
    correlation_id: UUID | None = None,
    **additional_context: Any,
) -> NoReturn:
    """Raise for malformed caller input."""
    _raise(
        ErrorCode.VALIDATION_ERROR,
        service,
        operation,
        message,
        correlation_id,
        {"field": field, **additional_context},
    )


def raise_resource_not_found(
    service: str,
    operation: str,
    resource_type: str,
    resource_id: str,
    correlation_id: UUID | None = None,
    **additional_context: Any,
) -> NoReturn:
    _raise(
        ErrorCode.RESOURCE_NOT_FOUND,
        service,
        operation,
        f"{resource_type} '{resource_id}' not found",
        correlation_id,
        {"resource_type": resource_type, "resource_id": resource_id, **additional_context},
    )


def raise_identity_not_found(
    service: str,
    operation: str,
    message: str,
    correlation_id: UUID | None = None,
    **additional_context: Any,
) -> NoReturn:
    """Raise when a profile lacks an external identity or the provider has no such identity."""
    _raise(
        ErrorCode.IDENTITY_NOT_FOUND,
        service,
        operation,
        message,
        correlation_id,
        additional_context,
    )


def raise_identity_already_exists(
    service: str,
    operation: str,
    message: str,
    correlation_id: UUID | None = None,
    **additional_context: Any,
) -> NoReturn:
    _raise(
        ErrorCode.IDENTITY_ALREADY_EXISTS,
        service,
        operation,
        message,
        correlation_id,
        additional_context,
    )


def raise_identity_provider_unavailable(
    service: str,
    operation: str,
    message: str,
    correlation_id: UUID | None = None,
    **additional_context: Any,
) -> NoReturn:
    """Raise for timeouts, connection failures and 5xx answers from the provider."""
    _raise(
        ErrorCode.IDENTITY_PROVIDER_UNAVAILABLE,
        service,
        operation,
        message,
        correlation_id,
        additional_context,
    )


def raise_identity_provider_error(
    service: str,
    operation: str,
    message: str,
    correlation_id: UUID | None = None,
    **additional_context: Any,
) -> NoReturn:
    """Raise for provider rejections that are neither not-found nor duplicates."""
    _raise(
        ErrorCode.IDENTITY_PROVIDER_ERROR,
        service,
        operation,
        message,
        correlation_id,
        additional_context,
    )


def raise_local_store_error(
    service: str,
    operation: str,
    message: str,
    correlation_id: UUID | None = None,
    **additional_context: Any,
) -> NoReturn:
    _raise(
        ErrorCode.LOCAL_STORE_ERROR,
        service,
        operation,
        message,
        correlation_id,
        additional_context,
    )


def raise_local_constraint_violation(
    service: str,
    operation: str,
    message: str,
    correlation_id: UUID | None = None,
    **additional_context: Any,
) -> NoReturn:
    """Raise for integrity violations; these are never retried blindly."""
    _raise(
        ErrorCode.LOCAL_CONSTRAINT_VIOLATION,
        service,
        operation,
        message,
        correlation_id,
        additional_context,
    )


def raise_outbox_storage_error(
    service: str,
    operation: str,
    message: str,
    correlation_id: UUID | None = None,
    **additional_context: Any,
) -> NoReturn:
    _raise(
        ErrorCode.OUTBOX_STORAGE_ERROR,
        service,
        operation,
        message,
        correlation_id,
        additional_context,
    )


def raise_configuration_error(
    service: str,
    operation: str,
    config_key: str,
    message: str,
    correlation_id: UUID | None = None,
    **additional_context: Any,
) -> NoReturn:
    _raise(
        ErrorCode.CONFIGURATION_ERROR,
        service,
        operation,
        message,
        correlation_id,
        {"config_key": config_key, **additional_context},
    )
