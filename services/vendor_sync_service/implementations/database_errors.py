"""Translation of SQLAlchemy failures into VendorSyncError."""

from __future__ import annotations

import asyncio
from typing import Any, NoReturn

from sqlalchemy.exc import IntegrityError

from services.vendor_sync_service.error_handling import (
    raise_local_constraint_violation,
    raise_local_store_error,
)


def raise_database_error(
    error: Exception, service: str, operation: str, **additional_context: Any
) -> NoReturn:
    if isinstance(error, IntegrityError):
        raise_local_constraint_violation(
            service=service,
            operation=operation,
            message=f"Constraint violation during {operation}",
            error_type=error.__class__.__name__,
            error_details=str(error.orig),
            **additional_context,
        )
    if isinstance(error, asyncio.TimeoutError):
        message = f"Database call timed out during {operation}"
    else:
        message = f"Database error during {operation}: {error.__class__.__name__}"
    raise_local_store_error(
        service=service,
        operation=operation,
        message=message,
        error_type=error.__class__.__name__,
        error_details=str(error),
        **additional_context,
    )
