"""
Health check and metrics endpoints for Vendor Sync Service.
"""

from __future__ import annotations

from dishka import FromDishka
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from quart import Blueprint, Response, current_app, jsonify
from quart_dishka import inject
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from services.vendor_sync_service.config import Settings
from services.vendor_sync_service.logging_utils import create_service_logger

bp = Blueprint("health", __name__)
logger = create_service_logger("vendor_sync_service.health_routes")


@bp.route("/healthz")
@inject
async def health_check(settings: FromDishka[Settings]) -> tuple[Response, int]:
    checks = {"service_responsive": True, "dependencies_available": True}
    dependencies: dict[str, dict] = {}

    engine = current_app.extensions.get("database_engine")
    if engine is None:
        dependencies["database"] = {"status": "unhealthy", "error": "engine not initialized"}
        checks["dependencies_available"] = False
    else:
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            dependencies["database"] = {"status": "healthy"}
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Database health check failed: {e}")
            dependencies["database"] = {"status": "unhealthy", "error": str(e)}
            checks["dependencies_available"] = False

    worker = current_app.extensions.get("outbox_worker")
    if worker is None:
        dependencies["outbox_worker"] = {"status": "disabled"}
    elif worker.is_running:
        dependencies["outbox_worker"] = {"status": "running"}
    else:
        dependencies["outbox_worker"] = {"status": "stopped"}
        checks["dependencies_available"] = False

    status = "healthy" if all(checks.values()) else "unhealthy"
    response_data = {
        "service": settings.SERVICE_NAME,
        "status": status,
        "environment": settings.ENVIRONMENT.value,
        "message": f"Vendor Sync Service is {status}",
        "checks": checks,
        "dependencies": dependencies,
    }
    return jsonify(response_data), 200 if status == "healthy" else 503


@bp.route("/metrics")
@inject
async def metrics(registry: FromDishka[CollectorRegistry]) -> Response:
    """Prometheus metrics endpoint."""
    return Response(generate_latest(registry), content_type=CONTENT_TYPE_LATEST)
