"""Operator endpoints: outbox inspection, requeue and reconciliation."""

from __future__ import annotations

from dishka import FromDishka
from pydantic import ValidationError
from quart import Blueprint, Response, jsonify, request
from quart_dishka import inject

from services.vendor_sync_service.api.request_utils import (
    PROVIDER_ERROR_CODES,
    extract_correlation_id,
    validation_error_response,
)
from services.vendor_sync_service.config import Settings
from services.vendor_sync_service.enums import INPUT_ERROR_CODES
from services.vendor_sync_service.error_handling import VendorSyncError
from services.vendor_sync_service.implementations.reconciliation import ReconciliationService
from services.vendor_sync_service.logging_utils import create_service_logger
from services.vendor_sync_service.models import ReconcileFixRequest
from services.vendor_sync_service.protocols import SyncOutboxRepositoryProtocol

bp = Blueprint("admin", __name__, url_prefix="/v1/admin/sync")

logger = create_service_logger("vendor_sync_service.admin_routes")


def _error_response(error: VendorSyncError, status: int) -> tuple[Response, int]:
    return jsonify({"error": error.to_dict()}), status


@bp.route("/outbox", methods=["GET"])
@inject
async def list_outbox(
    outbox_repository: FromDishka[SyncOutboxRepositoryProtocol],
) -> tuple[Response, int]:
    limit = min(request.args.get("limit", default=100, type=int) or 100, 1000)
    try:
        entries = await outbox_repository.list_entries(limit=limit)
    except VendorSyncError as e:
        logger.error(f"Failed to list outbox entries: {e}")
        return _error_response(e, 500)
    return jsonify({"entries": [entry.model_dump(mode="json") for entry in entries]}), 200


@bp.route("/outbox/stuck", methods=["GET"])
@inject
async def list_stuck_outbox(
    outbox_repository: FromDishka[SyncOutboxRepositoryProtocol],
    settings: FromDishka[Settings],
) -> tuple[Response, int]:
    threshold = request.args.get(
        "min_attempts", default=settings.OUTBOX_STUCK_ATTEMPTS_THRESHOLD, type=int
    )
    try:
        entries = await outbox_repository.list_stuck_entries(threshold)
    except VendorSyncError as e:
        logger.error(f"Failed to list stuck outbox entries: {e}")
        return _error_response(e, 500)
    return (
        jsonify(
            {
                "min_attempts": threshold,
                "max_attempts": settings.OUTBOX_MAX_ATTEMPTS,
                "entries": [entry.model_dump(mode="json") for entry in entries],
            }
        ),
        200,
    )


@bp.route("/outbox/<int:entry_id>/requeue", methods=["POST"])
@inject
async def requeue_outbox_entry(
    entry_id: int,
    outbox_repository: FromDishka[SyncOutboxRepositoryProtocol],
) -> tuple[Response, int]:
    correlation_id = extract_correlation_id()
    try:
        found = await outbox_repository.requeue(entry_id)
    except VendorSyncError as e:
        logger.error(f"Failed to requeue outbox entry {entry_id}: {e}")
        return _error_response(e, 500)
    if not found:
        return jsonify({"error": f"Outbox entry {entry_id} not found"}), 404

    logger.info(
        "Outbox entry requeued by operator",
        extra={"outbox_id": entry_id, "correlation_id": str(correlation_id)},
    )
    return jsonify({"requeued": entry_id}), 200


@bp.route("/reconcile", methods=["GET"])
@inject
async def reconcile(
    reconciliation: FromDishka[ReconciliationService],
) -> tuple[Response, int]:
    try:
        report = await reconciliation.build_report()
    except VendorSyncError as e:
        logger.error(f"Reconciliation failed: {e}")
        return _error_response(e, 502 if e.error_code.startswith("IDENTITY_PROVIDER") else 500)

    body = report.model_dump(mode="json")
    body["is_consistent"] = report.is_consistent
    return jsonify(body), 200


@bp.route("/reconcile/fix", methods=["POST"])
@inject
async def reconcile_fix(
    reconciliation: FromDishka[ReconciliationService],
) -> tuple[Response, int]:
    correlation_id = extract_correlation_id()
    try:
        body = ReconcileFixRequest.model_validate(await request.get_json(silent=True) or {})
    except ValidationError as e:
        return validation_error_response(e, correlation_id)

    try:
        result = await reconciliation.apply_fix(
            body.mode,
            profile_id=body.profile_id,
            external_identity_id=body.external_identity_id,
            correlation_id=correlation_id,
        )
    except VendorSyncError as e:
        code = e.error_detail.error_code
        if code in INPUT_ERROR_CODES:
            return _error_response(e, 400)
        logger.error(f"Reconciliation fix {body.mode.value} failed: {e}")
        return _error_response(e, 502 if code in PROVIDER_ERROR_CODES else 500)

    return jsonify(result.model_dump(mode="json")), 200
