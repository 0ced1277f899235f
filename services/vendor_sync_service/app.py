"""
Vendor Sync Service Application - HTTP surface over the vendor sync coordinator.
"""

from __future__ import annotations

from quart import Quart

from services.vendor_sync_service.api.admin_routes import bp as admin_bp
from services.vendor_sync_service.api.health_routes import bp as health_bp
from services.vendor_sync_service.api.vendor_routes import bp as vendor_bp
from services.vendor_sync_service.config import settings
from services.vendor_sync_service.logging_utils import (
    configure_service_logging,
    create_service_logger,
)
from services.vendor_sync_service.startup_setup import initialize_services, shutdown_services

configure_service_logging("vendor-sync-service", log_level=settings.LOG_LEVEL)
logger = create_service_logger("vendor_sync_service.app")


def create_app() -> Quart:
    app = Quart(__name__)

    @app.before_serving
    async def startup() -> None:
        await initialize_services(app, settings)
        logger.info("Vendor Sync Service startup completed successfully")

    @app.after_serving
    async def shutdown() -> None:
        await shutdown_services(app)

    app.register_blueprint(health_bp)  # Health check must be first for monitoring
    app.register_blueprint(vendor_bp)
    app.register_blueprint(admin_bp)
    return app


app = create_app()


if __name__ == "__main__":
    app.run(host=settings.HTTP_HOST, port=settings.HTTP_PORT)
