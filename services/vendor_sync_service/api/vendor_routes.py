"""Vendor lifecycle endpoints, thin JSON adapters over VendorSyncCoordinator."""

from __future__ import annotations

from uuid import UUID

from dishka import FromDishka
from pydantic import ValidationError
from quart import Blueprint, Response, request
from quart_dishka import inject

from services.vendor_sync_service.api.request_utils import (
    extract_correlation_id,
    invalid_path_response,
    result_response,
    validation_error_response,
)
from services.vendor_sync_service.logging_utils import create_service_logger
from services.vendor_sync_service.models import (
    SetPasswordRequest,
    SetStatusRequest,
    UpdateEmailRequest,
    UpdatePhoneRequest,
    VendorCreateInput,
)
from services.vendor_sync_service.sync_coordinator import VendorSyncCoordinator

bp = Blueprint("vendors", __name__, url_prefix="/v1/vendors")

logger = create_service_logger("vendor_sync_service.vendor_routes")


async def _json_body() -> dict:
    return await request.get_json(silent=True) or {}


def _parse_profile_id(profile_id: str) -> UUID | None:
    try:
        return UUID(profile_id)
    except ValueError:
        return None


@bp.route("", methods=["POST"])
@inject
async def create_vendor(coordinator: FromDishka[VendorSyncCoordinator]) -> tuple[Response, int]:
    correlation_id = extract_correlation_id()
    try:
        vendor = VendorCreateInput.model_validate(await _json_body())
    except ValidationError as e:
        return validation_error_response(e, correlation_id)

    result = await coordinator.create_vendor(vendor, correlation_id=correlation_id)
    return result_response(result, correlation_id)


@bp.route("/<profile_id>/email", methods=["PUT"])
@inject
async def update_email(
    profile_id: str, coordinator: FromDishka[VendorSyncCoordinator]
) -> tuple[Response, int]:
    correlation_id = extract_correlation_id()
    parsed_id = _parse_profile_id(profile_id)
    if parsed_id is None:
        return invalid_path_response("profile_id", profile_id, correlation_id)
    try:
        body = UpdateEmailRequest.model_validate(await _json_body())
    except ValidationError as e:
        return validation_error_response(e, correlation_id)

    result = await coordinator.update_email(parsed_id, str(body.email), correlation_id)
    return result_response(result, correlation_id)


@bp.route("/<profile_id>/phone", methods=["PUT"])
@inject
async def update_phone(
    profile_id: str, coordinator: FromDishka[VendorSyncCoordinator]
) -> tuple[Response, int]:
    correlation_id = extract_correlation_id()
    parsed_id = _parse_profile_id(profile_id)
    if parsed_id is None:
        return invalid_path_response("profile_id", profile_id, correlation_id)
    try:
        body = UpdatePhoneRequest.model_validate(await _json_body())
    except ValidationError as e:
        return validation_error_response(e, correlation_id)

    result = await coordinator.update_phone(parsed_id, body.phone, correlation_id)
    return result_response(result, correlation_id)


@bp.route("/<profile_id>/password", methods=["PUT"])
@inject
async def set_password(
    profile_id: str, coordinator: FromDishka[VendorSyncCoordinator]
) -> tuple[Response, int]:
    correlation_id = extract_correlation_id()
    parsed_id = _parse_profile_id(profile_id)
    if parsed_id is None:
        return invalid_path_response("profile_id", profile_id, correlation_id)
    try:
        body = SetPasswordRequest.model_validate(await _json_body())
    except ValidationError as e:
        return validation_error_response(e, correlation_id)

    result = await coordinator.set_password(
        parsed_id, body.password.get_secret_value(), correlation_id
    )
    return result_response(result, correlation_id)


@bp.route("/<profile_id>/status", methods=["PUT"])
@inject
async def set_status(
    profile_id: str, coordinator: FromDishka[VendorSyncCoordinator]
) -> tuple[Response, int]:
    correlation_id = extract_correlation_id()
    parsed_id = _parse_profile_id(profile_id)
    if parsed_id is None:
        return invalid_path_response("profile_id", profile_id, correlation_id)
    try:
        body = SetStatusRequest.model_validate(await _json_body())
    except ValidationError as e:
        return validation_error_response(e, correlation_id)

    result = await coordinator.set_vendor_status(parsed_id, body.status, correlation_id)
    return result_response(result, correlation_id)


@bp.route("/businesses/<int:business_id>", methods=["DELETE"])
@inject
async def delete_business(
    business_id: int, coordinator: FromDishka[VendorSyncCoordinator]
) -> tuple[Response, int]:
    correlation_id = extract_correlation_id()
    result = await coordinator.delete_vendor_fully(business_id, correlation_id)
    logger.info(
        "Business deletion requested",
        extra={
            "business_id": business_id,
            "success": result.success,
            "correlation_id": str(correlation_id),
        },
    )
    return result_response(result, correlation_id)
