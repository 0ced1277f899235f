"""ErrorDetail model and factory."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from services.vendor_sync_service.enums import ErrorCode


class ErrorDetail(BaseModel):
    """Immutable description of a failure, carried by VendorSyncError."""

    model_config = ConfigDict(frozen=True)

    error_code: ErrorCode
    message: str
    correlation_id: UUID
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    service: str
    operation: str
    details: dict[str, Any] = Field(default_factory=dict)


def create_error_detail(
    error_code: ErrorCode,
    message: str,
    service: str,
    operation: str,
    correlation_id: UUID | None = None,
    details: dict[str, Any] | None = None,
) -> ErrorDetail:
    """Build an ErrorDetail, generating a correlation id when none is supplied."""
    return ErrorDetail(
        error_code=error_code,
        message=message,
        correlation_id=correlation_id or uuid4(),
        service=service,
        operation=operation,
        details=details or {},
    )
