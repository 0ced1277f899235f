"""Identity provider client for the GoTrue (Supabase Auth) admin API."""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, NoReturn, Optional
from uuid import UUID

import aiohttp

from services.vendor_sync_service.enums import ErrorCode
from services.vendor_sync_service.error_handling import (
    VendorSyncError,
    raise_identity_already_exists,
    raise_identity_not_found,
    raise_identity_provider_error,
    raise_identity_provider_unavailable,
)
from services.vendor_sync_service.logging_utils import create_service_logger
from services.vendor_sync_service.metrics import IDENTITY_PROVIDER_LATENCY
from services.vendor_sync_service.models import IdentityRecord
from services.vendor_sync_service.protocols import IdentityProviderProtocol

logger = create_service_logger("vendor_sync_service.identity_provider")

_DUPLICATE_MARKERS = ("already registered", "already been registered", "already exists")


def _identity_from_body(body: dict[str, Any]) -> IdentityRecord:
    return IdentityRecord(
        id=str(body["id"]),
        email=body.get("email") or None,
        phone=body.get("phone") or None,
        metadata=body.get("user_metadata") or {},
    )


class HttpIdentityProviderClient(IdentityProviderProtocol):
    """aiohttp client bound to one service-role key.

    Every call carries a total timeout. A timed-out write is reported as a
    failure, even though the provider may have applied it.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        service_key: str,
        timeout_seconds: float = 10.0,
        service_name: str = "vendor_sync_service",
    ) -> None:
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.service_name = service_name
        self._headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }

    def _users_url(self, identity_id: Optional[str] = None) -> str:
        url = f"{self.base_url}/auth/v1/admin/users"
        return f"{url}/{identity_id}" if identity_id else url

    async def _request(
        self,
        operation: str,
        method: str,
        url: str,
        *,
        json_body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Any:
        started = time.perf_counter()
        try:
            async with self.session.request(
                method,
                url,
                json=json_body,
                params=params,
                headers=self._headers,
                timeout=self.timeout,
            ) as response:
                response_text = await response.text()
                status = response.status
        except asyncio.TimeoutError:
            raise_identity_provider_unavailable(
                service=self.service_name,
                operation=operation,
                message=f"Identity provider timed out after {self.timeout.total}s",
                correlation_id=correlation_id,
                url=url,
            )
        except aiohttp.ClientError as e:
            raise_identity_provider_unavailable(
                service=self.service_name,
                operation=operation,
                message=f"Identity provider connection failed: {e}",
                correlation_id=correlation_id,
                url=url,
            )
        finally:
            IDENTITY_PROVIDER_LATENCY.labels(operation=operation).observe(
                time.perf_counter() - started
            )

        if 200 <= status < 300:
            if not response_text:
                return None
            try:
                return json.loads(response_text)
            except json.JSONDecodeError as e:
                raise_identity_provider_error(
                    service=self.service_name,
                    operation=operation,
                    message=f"Invalid JSON from identity provider: {e}",
                    correlation_id=correlation_id,
                    status_code=status,
                )

        self._raise_for_status(operation, status, response_text, url, correlation_id)

    def _raise_for_status(
        self,
        operation: str,
        status: int,
        response_text: str,
        url: str,
        correlation_id: Optional[UUID],
    ) -> NoReturn:
        message = response_text
        try:
            body = json.loads(response_text) if response_text else {}
            if isinstance(body, dict):
                message = str(body.get("msg") or body.get("message") or body.get("error") or body)
        except json.JSONDecodeError:
            pass

        logger.warning(
            "Identity provider rejected request",
            extra={
                "operation": operation,
                "status_code": status,
                "response": message,
                "correlation_id": str(correlation_id) if correlation_id else None,
            },
        )

        if status >= 500:
            raise_identity_provider_unavailable(
                service=self.service_name,
                operation=operation,
                message=f"Identity provider error {status}: {message}",
                correlation_id=correlation_id,
                status_code=status,
            )
        if status == 404:
            raise_identity_not_found(
                service=self.service_name,
                operation=operation,
                message=f"Identity not found: {message}",
                correlation_id=correlation_id,
                url=url,
            )
        if status == 409 or (
            status == 422 and any(marker in message.lower() for marker in _DUPLICATE_MARKERS)
        ):
            raise_identity_already_exists(
                service=self.service_name,
                operation=operation,
                message=message,
                correlation_id=correlation_id,
                status_code=status,
            )
        raise_identity_provider_error(
            service=self.service_name,
            operation=operation,
            message=f"Identity provider rejected request ({status}): {message}",
            correlation_id=correlation_id,
            status_code=status,
        )

    async def create_identity(
        self,
        email: str,
        password: str,
        phone: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        body: dict[str, Any] = {
            "email": email,
            "password": password,
            "email_confirm": True,
            "user_metadata": metadata or {},
        }
        if phone:
            body["phone"] = phone
            body["phone_confirm"] = True

        data = await self._request("create_identity", "POST", self._users_url(), json_body=body)
        identity_id = (data or {}).get("id")
        if not identity_id:
            raise_identity_provider_error(
                service=self.service_name,
                operation="create_identity",
                message="Identity provider response did not contain an id",
            )
        logger.info("Identity created", extra={"external_identity_id": identity_id})
        return str(identity_id)

    async def update_identity(
        self,
        identity_id: str,
        *,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        password: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        body: dict[str, Any] = {}
        if email is not None:
            body["email"] = email
            body["email_confirm"] = True
        if phone is not None:
            body["phone"] = phone
            body["phone_confirm"] = True
        if password is not None:
            body["password"] = password
        if metadata is not None:
            body["user_metadata"] = metadata
        if not body:
            return

        await self._request(
            "update_identity", "PUT", self._users_url(identity_id), json_body=body
        )

    async def delete_identity(self, identity_id: str) -> None:
        await self._request("delete_identity", "DELETE", self._users_url(identity_id))
        logger.info("Identity deleted", extra={"external_identity_id": identity_id})

    async def get_identity(self, identity_id: str) -> Optional[IdentityRecord]:
        try:
            data = await self._request("get_identity", "GET", self._users_url(identity_id))
        except VendorSyncError as e:
            if e.has_code(ErrorCode.IDENTITY_NOT_FOUND):
                return None
            raise
        return _identity_from_body(data) if data else None

    async def list_identities(self, page: int = 1, per_page: int = 100) -> list[IdentityRecord]:
        data = await self._request(
            "list_identities",
            "GET",
            self._users_url(),
            params={"page": page, "per_page": per_page},
        )
        users = (data or {}).get("users", []) if isinstance(data, dict) else data or []
        return [_identity_from_body(user) for user in users]
