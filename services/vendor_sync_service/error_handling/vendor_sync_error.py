"""Core exception type for the Vendor Sync Service."""

from __future__ import annotations

from typing import Any

from services.vendor_sync_service.enums import INPUT_ERROR_CODES, ErrorCode
from services.vendor_sync_service.error_handling.error_detail import ErrorDetail


class VendorSyncError(Exception):
    """Exception wrapping a structured ErrorDetail."""

    def __init__(self, error_detail: ErrorDetail) -> None:
        super().__init__(error_detail.message)
        self.error_detail = error_detail

    def __str__(self) -> str:
        return f"[{self.error_detail.error_code.value}] {self.error_detail.message}"

    @property
    def error_code(self) -> str:
        return self.error_detail.error_code.value

    @property
    def correlation_id(self) -> str:
        return str(self.error_detail.correlation_id)

    @property
    def service(self) -> str:
        return self.error_detail.service

    @property
    def operation(self) -> str:
        return self.error_detail.operation

    @property
    def is_input_error(self) -> bool:
        """True for errors that retrying can never fix."""
        return self.error_detail.error_code in INPUT_ERROR_CODES

    def has_code(self, code: ErrorCode) -> bool:
        return self.error_detail.error_code == code

    def to_dict(self) -> dict[str, Any]:
        return self.error_detail.model_dump(mode="json")
