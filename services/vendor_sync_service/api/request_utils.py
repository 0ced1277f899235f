"""Helpers shared by the Vendor Sync Service blueprints."""

from __future__ import annotations

import uuid
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from quart import Response, jsonify, request

from services.vendor_sync_service.enums import INPUT_ERROR_CODES, ErrorCode
from services.vendor_sync_service.logging_utils import create_service_logger
from services.vendor_sync_service.models import SyncResult

logger = create_service_logger("vendor_sync_service.api")

PROVIDER_ERROR_CODES = frozenset(
    {ErrorCode.IDENTITY_PROVIDER_UNAVAILABLE, ErrorCode.IDENTITY_PROVIDER_ERROR}
)


def extract_correlation_id() -> UUID:
    """Extract correlation ID from request headers or generate new one."""
    correlation_header = request.headers.get("X-Correlation-ID")
    if correlation_header:
        try:
            return UUID(correlation_header)
        except ValueError:
            logger.warning(
                f"Invalid correlation ID format in header: {correlation_header}, generating new one"
            )
    return uuid.uuid4()


def status_code_for(result: SyncResult) -> int:
    if result.success:
        return 200
    if result.error_code in INPUT_ERROR_CODES:
        return 400
    if result.error_code in PROVIDER_ERROR_CODES:
        return 502
    return 500


def result_response(result: SyncResult, correlation_id: UUID) -> tuple[Response, int]:
    body = result.model_dump(mode="json")
    body["correlation_id"] = str(correlation_id)
    return jsonify(body), status_code_for(result)


def validation_error_response(
    error: ValidationError, correlation_id: UUID
) -> tuple[Response, int]:
    details: list[dict[str, Any]] = [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in error.errors()
    ]
    return (
        jsonify(
            {
                "success": False,
                "partial": False,
                "outbox_used": False,
                "error": "Invalid request body",
                "error_code": ErrorCode.VALIDATION_ERROR.value,
                "details": details,
                "correlation_id": str(correlation_id),
            }
        ),
        400,
    )


def invalid_path_response(
    name: str, value: str, correlation_id: UUID
) -> tuple[Response, int]:
    return (
        jsonify(
            {
                "success": False,
                "partial": False,
                "outbox_used": False,
                "error": f"Invalid {name}: {value}",
                "error_code": ErrorCode.VALIDATION_ERROR.value,
                "correlation_id": str(correlation_id),
            }
        ),
        400,
    )
