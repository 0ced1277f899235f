"""
Vendor lifecycle operations spanning the identity provider and the local store.

There is no shared transaction between the two systems. Each operation is
a saga whose step order is declared in the module-level tables below:

- provider failures before any local write are fatal and leave no trace;
- local failures after a provider write are compensated, and recorded in
  the outbox when compensation fails;
- provider failures after a local write are recorded in the outbox and the
  local write is never undone.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Optional, Union
from uuid import UUID, uuid4

from pydantic import EmailStr, TypeAdapter, ValidationError

from services.vendor_sync_service.enums import ErrorCode, SyncOutboxType, VerificationStatus
from services.vendor_sync_service.error_handling import (
    VendorSyncError,
    raise_identity_not_found,
    raise_resource_not_found,
    raise_validation_error,
)
from services.vendor_sync_service.logging_utils import bind_sync_context, create_service_logger
from services.vendor_sync_service.metrics import SYNC_OPERATIONS
from services.vendor_sync_service.models import BusinessDeletion, SyncResult, VendorCreateInput
from services.vendor_sync_service.protocols import (
    IdentityProviderProtocol,
    SyncOutboxRepositoryProtocol,
    VendorRepositoryProtocol,
)
from services.vendor_sync_service.saga import (
    FailurePolicy,
    OutboxFallback,
    SagaOutcome,
    SagaRunner,
    SagaStep,
)

logger = create_service_logger("vendor_sync_service.coordinator")

_email_adapter = TypeAdapter(EmailStr)

# Local contact-update errors that a replay cannot fix
UNRETRIED_LOCAL_ERRORS = frozenset(
    {ErrorCode.LOCAL_CONSTRAINT_VIOLATION, ErrorCode.RESOURCE_NOT_FOUND}
)


def business_identity_metadata(business_name: str) -> dict[str, str]:
    return {"user_type": "business", "business_name": business_name}


def status_metadata(status: VerificationStatus, updated_at: Optional[datetime] = None) -> dict:
    """Provider metadata mirroring the local verification status."""
    return {
        "verification_status": status.value,
        "updated_at": (updated_at or datetime.now(UTC)).isoformat(),
    }


def parse_verification_status(
    value: Union[str, VerificationStatus], service: str, correlation_id: UUID
) -> VerificationStatus:
    if isinstance(value, VerificationStatus):
        return value
    try:
        return VerificationStatus(value)
    except ValueError:
        raise_validation_error(
            service=service,
            operation="set_vendor_status",
            field="status",
            message=f"Unknown verification status '{value}'",
            correlation_id=correlation_id,
            allowed=[status.value for status in VerificationStatus],
        )


@dataclass
class SyncContext:
    """Dependencies, inputs and intermediate results shared by one saga run."""

    identity_provider: IdentityProviderProtocol
    vendors: VendorRepositoryProtocol
    service_name: str
    operation: str
    correlation_id: UUID
    vendor: Optional[VendorCreateInput] = None
    profile_id: Optional[UUID] = None
    business_id: Optional[int] = None
    external_identity_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None
    status: Optional[VerificationStatus] = None
    deletion: Optional[BusinessDeletion] = None


# Step actions


async def _resolve_identity(ctx: SyncContext) -> None:
    assert ctx.profile_id is not None
    identity_id = await ctx.vendors.get_external_identity_id(ctx.profile_id)
    if identity_id is None:
        raise_identity_not_found(
            service=ctx.service_name,
            operation=ctx.operation,
            message=f"Profile {ctx.profile_id} has no external identity",
            correlation_id=ctx.correlation_id,
            profile_id=str(ctx.profile_id),
        )
    ctx.external_identity_id = identity_id


async def _create_identity(ctx: SyncContext) -> None:
    assert ctx.vendor is not None
    ctx.external_identity_id = await ctx.identity_provider.create_identity(
        email=str(ctx.vendor.email),
        password=ctx.vendor.password.get_secret_value(),
        phone=ctx.vendor.phone,
        metadata=business_identity_metadata(ctx.vendor.business_name),
    )


async def _delete_created_identity(ctx: SyncContext) -> None:
    assert ctx.external_identity_id is not None
    try:
        await ctx.identity_provider.delete_identity(ctx.external_identity_id)
    except VendorSyncError as error:
        if not error.has_code(ErrorCode.IDENTITY_NOT_FOUND):
            raise


async def _create_local_records(ctx: SyncContext) -> None:
    assert ctx.vendor is not None and ctx.external_identity_id is not None
    ctx.profile_id, ctx.business_id = await ctx.vendors.create_vendor_records(
        ctx.external_identity_id, ctx.vendor
    )


def _create_vendor_fallback(ctx: SyncContext, error: VendorSyncError) -> OutboxFallback:
    assert ctx.vendor is not None and ctx.external_identity_id is not None
    if error.has_code(ErrorCode.LOCAL_CONSTRAINT_VIOLATION):
        # Retrying the insert cannot succeed, so the orphaned identity has to go
        return OutboxFallback(
            SyncOutboxType.DELETE_IDENTITY_RETRY,
            {"external_identity_id": ctx.external_identity_id},
        )
    return OutboxFallback(
        SyncOutboxType.CREATE_VENDOR_DB_RETRY,
        {
            "external_identity_id": ctx.external_identity_id,
            "vendor": ctx.vendor.to_replay_payload(),
        },
    )


def _require_profile_row(ctx: SyncContext, updated: int) -> None:
    if updated == 0:
        raise_resource_not_found(
            service=ctx.service_name,
            operation=ctx.operation,
            resource_type="profile",
            resource_id=str(ctx.profile_id),
            correlation_id=ctx.correlation_id,
        )


async def _update_identity_email(ctx: SyncContext) -> None:
    assert ctx.external_identity_id is not None
    await ctx.identity_provider.update_identity(ctx.external_identity_id, email=ctx.email)


async def _update_local_email(ctx: SyncContext) -> None:
    assert ctx.profile_id is not None
    updated = await ctx.vendors.update_contact(ctx.profile_id, email=ctx.email)
    _require_profile_row(ctx, updated)


def _update_email_fallback(ctx: SyncContext, error: VendorSyncError) -> Optional[OutboxFallback]:
    if error.error_detail.error_code in UNRETRIED_LOCAL_ERRORS:
        return None
    return OutboxFallback(
        SyncOutboxType.UPDATE_EMAIL_DB_RETRY,
        {"profile_id": str(ctx.profile_id), "email": ctx.email},
    )


async def _update_identity_phone(ctx: SyncContext) -> None:
    assert ctx.external_identity_id is not None
    await ctx.identity_provider.update_identity(ctx.external_identity_id, phone=ctx.phone)


async def _update_local_phone(ctx: SyncContext) -> None:
    assert ctx.profile_id is not None
    updated = await ctx.vendors.update_contact(ctx.profile_id, phone=ctx.phone)
    _require_profile_row(ctx, updated)


def _update_phone_fallback(ctx: SyncContext, error: VendorSyncError) -> Optional[OutboxFallback]:
    if error.error_detail.error_code in UNRETRIED_LOCAL_ERRORS:
        return None
    return OutboxFallback(
        SyncOutboxType.UPDATE_PHONE_DB_RETRY,
        {"profile_id": str(ctx.profile_id), "phone": ctx.phone},
    )


async def _update_identity_password(ctx: SyncContext) -> None:
    assert ctx.external_identity_id is not None
    await ctx.identity_provider.update_identity(ctx.external_identity_id, password=ctx.password)


async def _update_local_status(ctx: SyncContext) -> None:
    assert ctx.profile_id is not None and ctx.status is not None
    updated = await ctx.vendors.set_verification_status(ctx.profile_id, ctx.status)
    if updated == 0:
        raise_resource_not_found(
            service=ctx.service_name,
            operation=ctx.operation,
            resource_type="business_record",
            resource_id=str(ctx.profile_id),
            correlation_id=ctx.correlation_id,
        )


async def _mirror_status_metadata(ctx: SyncContext) -> None:
    assert ctx.external_identity_id is not None and ctx.status is not None
    await ctx.identity_provider.update_identity(
        ctx.external_identity_id, metadata=status_metadata(ctx.status)
    )


def _status_fallback(ctx: SyncContext, error: VendorSyncError) -> OutboxFallback:
    assert ctx.status is not None
    return OutboxFallback(
        SyncOutboxType.STATUS_METADATA_RETRY,
        {"profile_id": str(ctx.profile_id), "status": ctx.status.value},
    )


async def _delete_local_records(ctx: SyncContext) -> None:
    assert ctx.business_id is not None
    deletion = await ctx.vendors.delete_business_record(ctx.business_id)
    if deletion is None:
        raise_resource_not_found(
            service=ctx.service_name,
            operation=ctx.operation,
            resource_type="business_record",
            resource_id=str(ctx.business_id),
            correlation_id=ctx.correlation_id,
        )
    ctx.deletion = deletion
    ctx.profile_id = deletion.profile_id
    ctx.external_identity_id = deletion.external_identity_id


async def _delete_orphaned_identity(ctx: SyncContext) -> None:
    assert ctx.deletion is not None
    if not ctx.deletion.profile_deleted or ctx.deletion.external_identity_id is None:
        return
    try:
        await ctx.identity_provider.delete_identity(ctx.deletion.external_identity_id)
    except VendorSyncError as error:
        if not error.has_code(ErrorCode.IDENTITY_NOT_FOUND):
            raise


def _delete_identity_fallback(ctx: SyncContext, error: VendorSyncError) -> OutboxFallback:
    return OutboxFallback(
        SyncOutboxType.DELETE_IDENTITY_RETRY,
        {"external_identity_id": ctx.external_identity_id},
    )


# Step tables

CREATE_VENDOR_STEPS: tuple[SagaStep[SyncContext], ...] = (
    SagaStep("create_identity", _create_identity, compensation=_delete_created_identity),
    SagaStep(
        "create_local_records",
        _create_local_records,
        on_failure=FailurePolicy.ABORT,
        fallback=_create_vendor_fallback,
    ),
)

UPDATE_EMAIL_STEPS: tuple[SagaStep[SyncContext], ...] = (
    SagaStep("resolve_identity", _resolve_identity),
    SagaStep("update_identity_email", _update_identity_email),
    SagaStep(
        "update_local_email",
        _update_local_email,
        on_failure=FailurePolicy.DEFER,
        fallback=_update_email_fallback,
    ),
)

UPDATE_PHONE_STEPS: tuple[SagaStep[SyncContext], ...] = (
    SagaStep("resolve_identity", _resolve_identity),
    SagaStep("update_identity_phone", _update_identity_phone),
    SagaStep(
        "update_local_phone",
        _update_local_phone,
        on_failure=FailurePolicy.DEFER,
        fallback=_update_phone_fallback,
    ),
)

SET_PASSWORD_STEPS: tuple[SagaStep[SyncContext], ...] = (
    SagaStep("resolve_identity", _resolve_identity),
    SagaStep("update_identity_password", _update_identity_password),
)

SET_STATUS_STEPS: tuple[SagaStep[SyncContext], ...] = (
    SagaStep("resolve_identity", _resolve_identity),
    SagaStep("update_local_status", _update_local_status),
    SagaStep(
        "mirror_status_metadata",
        _mirror_status_metadata,
        on_failure=FailurePolicy.DEFER,
        fallback=_status_fallback,
    ),
)

DELETE_VENDOR_STEPS: tuple[SagaStep[SyncContext], ...] = (
    SagaStep("delete_local_records", _delete_local_records),
    SagaStep(
        "delete_identity",
        _delete_orphaned_identity,
        on_failure=FailurePolicy.DEFER,
        fallback=_delete_identity_fallback,
    ),
)


class VendorSyncCoordinator:
    """Runs vendor lifecycle sagas and reports each as a SyncResult."""

    def __init__(
        self,
        identity_provider: IdentityProviderProtocol,
        vendor_repository: VendorRepositoryProtocol,
        outbox_repository: SyncOutboxRepositoryProtocol,
        service_name: str = "vendor_sync_service",
    ) -> None:
        self.identity_provider = identity_provider
        self.vendor_repository = vendor_repository
        self.service_name = service_name
        self.runner = SagaRunner(outbox_repository, service_name)

    def _context(self, operation: str, correlation_id: UUID, **values) -> SyncContext:
        return SyncContext(
            identity_provider=self.identity_provider,
            vendors=self.vendor_repository,
            service_name=self.service_name,
            operation=operation,
            correlation_id=correlation_id,
            **values,
        )

    async def create_vendor(
        self, vendor: VendorCreateInput, correlation_id: Optional[UUID] = None
    ) -> SyncResult:
        correlation_id = correlation_id or uuid4()
        bind_sync_context("create_vendor", correlation_id, email=vendor.email)

        ctx = self._context("create_vendor", correlation_id, vendor=vendor)
        outcome = await self.runner.run("create_vendor", CREATE_VENDOR_STEPS, ctx, correlation_id)

        if outcome.completed:
            logger.info(
                "Vendor created",
                extra={
                    "profile_id": str(ctx.profile_id),
                    "business_id": ctx.business_id,
                    "external_identity_id": ctx.external_identity_id,
                },
            )
            return self._finish("create_vendor", ctx, SyncResult(success=True))

        assert outcome.error is not None
        # Identity created but local records missing and the identity could not be removed
        partial = outcome.failed_step == "create_local_records" and not outcome.compensated
        if not partial:
            ctx.external_identity_id = None
        return self._finish(
            "create_vendor",
            ctx,
            self._failure(outcome, partial=partial),
            include_local_ids=False,
        )

    async def update_email(
        self, profile_id: UUID, new_email: str, correlation_id: Optional[UUID] = None
    ) -> SyncResult:
        correlation_id = correlation_id or uuid4()
        bind_sync_context("update_email", correlation_id, profile_id=profile_id)
        try:
            email = str(_email_adapter.validate_python(new_email))
        except ValidationError:
            return self._rejected(
                "update_email",
                profile_id,
                correlation_id,
                field="email",
                message=f"'{new_email}' is not a valid email address",
            )

        ctx = self._context("update_email", correlation_id, profile_id=profile_id, email=email)
        outcome = await self.runner.run("update_email", UPDATE_EMAIL_STEPS, ctx, correlation_id)
        return self._finish("update_email", ctx, self._provider_first_result(outcome))

    async def update_phone(
        self, profile_id: UUID, new_phone: str, correlation_id: Optional[UUID] = None
    ) -> SyncResult:
        correlation_id = correlation_id or uuid4()
        bind_sync_context("update_phone", correlation_id, profile_id=profile_id)
        phone = (new_phone or "").strip()
        if not phone:
            return self._rejected(
                "update_phone",
                profile_id,
                correlation_id,
                field="phone",
                message="Phone number must not be empty",
            )

        ctx = self._context("update_phone", correlation_id, profile_id=profile_id, phone=phone)
        outcome = await self.runner.run("update_phone", UPDATE_PHONE_STEPS, ctx, correlation_id)
        return self._finish("update_phone", ctx, self._provider_first_result(outcome))

    async def set_password(
        self, profile_id: UUID, new_password: str, correlation_id: Optional[UUID] = None
    ) -> SyncResult:
        correlation_id = correlation_id or uuid4()
        bind_sync_context("set_password", correlation_id, profile_id=profile_id)
        if not new_password:
            return self._rejected(
                "set_password",
                profile_id,
                correlation_id,
                field="password",
                message="Password must not be empty",
            )

        ctx = self._context(
            "set_password", correlation_id, profile_id=profile_id, password=new_password
        )
        outcome = await self.runner.run("set_password", SET_PASSWORD_STEPS, ctx, correlation_id)
        result = SyncResult(success=True) if outcome.completed else self._failure(outcome)
        return self._finish("set_password", ctx, result)

    async def set_vendor_status(
        self,
        profile_id: UUID,
        status: Union[str, VerificationStatus],
        correlation_id: Optional[UUID] = None,
    ) -> SyncResult:
        correlation_id = correlation_id or uuid4()
        bind_sync_context("set_vendor_status", correlation_id, profile_id=profile_id)
        try:
            parsed = parse_verification_status(status, self.service_name, correlation_id)
        except VendorSyncError as error:
            SYNC_OPERATIONS.labels(operation="set_vendor_status", outcome="rejected").inc()
            return SyncResult(
                success=False,
                profile_id=profile_id,
                error=error.error_detail.message,
                error_code=error.error_detail.error_code,
            )

        ctx = self._context(
            "set_vendor_status", correlation_id, profile_id=profile_id, status=parsed
        )
        outcome = await self.runner.run("set_vendor_status", SET_STATUS_STEPS, ctx, correlation_id)
        return self._finish("set_vendor_status", ctx, self._local_first_result(outcome))

    async def delete_vendor_fully(
        self, business_id: int, correlation_id: Optional[UUID] = None
    ) -> SyncResult:
        correlation_id = correlation_id or uuid4()
        bind_sync_context("delete_vendor_fully", correlation_id, business_id=business_id)

        ctx = self._context("delete_vendor_fully", correlation_id, business_id=business_id)
        outcome = await self.runner.run(
            "delete_vendor_fully", DELETE_VENDOR_STEPS, ctx, correlation_id
        )
        if outcome.completed and ctx.deletion is not None:
            logger.info(
                "Business record deleted",
                extra={
                    "business_id": business_id,
                    "profile_deleted": ctx.deletion.profile_deleted,
                },
            )
        return self._finish("delete_vendor_fully", ctx, self._local_first_result(outcome))

    # Outcome mapping

    @staticmethod
    def _failure(outcome: SagaOutcome, partial: bool = False) -> SyncResult:
        assert outcome.error is not None
        return SyncResult(
            success=False,
            partial=partial,
            outbox_used=outcome.outbox_used,
            error=outcome.error.error_detail.message,
            error_code=outcome.error.error_detail.error_code,
        )

    @staticmethod
    def _deferred(outcome: SagaOutcome) -> SyncResult:
        """Primary write done, follow-up recorded (or attempted) in the outbox."""
        assert outcome.error is not None
        error = outcome.outbox_error or outcome.error
        return SyncResult(
            success=True,
            partial=True,
            outbox_used=outcome.outbox_used,
            error=error.error_detail.message,
            error_code=error.error_detail.error_code,
        )

    def _provider_first_result(self, outcome: SagaOutcome) -> SyncResult:
        if outcome.completed:
            return SyncResult(success=True)
        assert outcome.error is not None
        retryable = outcome.error.error_detail.error_code not in UNRETRIED_LOCAL_ERRORS
        if outcome.deferred and retryable:
            return self._deferred(outcome)
        # Not retried; the provider already holds the new value
        return self._failure(outcome, partial=outcome.deferred)

    def _local_first_result(self, outcome: SagaOutcome) -> SyncResult:
        if outcome.completed:
            return SyncResult(success=True)
        if outcome.deferred:
            return self._deferred(outcome)
        return self._failure(outcome)

    def _rejected(
        self,
        operation: str,
        profile_id: UUID,
        correlation_id: UUID,
        field: str,
        message: str,
    ) -> SyncResult:
        try:
            raise_validation_error(
                service=self.service_name,
                operation=operation,
                field=field,
                message=message,
                correlation_id=correlation_id,
            )
        except VendorSyncError as error:
            logger.info(f"Rejected {operation}: {error}")
            SYNC_OPERATIONS.labels(operation=operation, outcome="rejected").inc()
            return SyncResult(
                success=False,
                profile_id=profile_id,
                error=error.error_detail.message,
                error_code=error.error_detail.error_code,
            )

    @staticmethod
    def _finish(
        operation: str,
        ctx: SyncContext,
        result: SyncResult,
        include_local_ids: bool = True,
    ) -> SyncResult:
        updates: dict = {"external_identity_id": ctx.external_identity_id}
        if include_local_ids:
            updates["profile_id"] = ctx.profile_id
            updates["business_id"] = ctx.business_id
        result = result.model_copy(update=updates)

        if result.success and not result.partial:
            outcome = "success"
        elif result.success or result.partial:
            outcome = "partial"
        else:
            outcome = "failed"
        SYNC_OPERATIONS.labels(operation=operation, outcome=outcome).inc()

        if outcome != "success":
            logger.warning(
                f"{operation} finished with outcome {outcome}",
                extra={
                    "error_code": result.error_code.value if result.error_code else None,
                    "error": result.error,
                    "outbox_used": result.outbox_used,
                },
            )
        return result
