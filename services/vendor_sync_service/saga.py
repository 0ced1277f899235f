"""
Ordered dual-write execution with compensation and outbox fallback.

A saga is a tuple of ``SagaStep`` entries executed strictly in order.
Each step names its forward action, an optional compensation, what to do
when the action fails, and which outbox entry records the unfinished work
when the failure cannot be resolved in-line:

- ``ABORT``: completed steps are compensated in reverse order. If any
  compensation fails the failing step's outbox fallback is written.
- ``DEFER``: earlier steps stay committed and the failing step's outbox
  fallback is written so the worker can finish it later.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, TypeVar
from uuid import UUID

from services.vendor_sync_service.enums import ErrorCode, SyncOutboxType
from services.vendor_sync_service.error_handling import VendorSyncError, create_error_detail
from services.vendor_sync_service.logging_utils import create_service_logger
from services.vendor_sync_service.metrics import COMPENSATIONS, OUTBOX_ENTRIES_ENQUEUED
from services.vendor_sync_service.protocols import SyncOutboxRepositoryProtocol

logger = create_service_logger("vendor_sync_service.saga")

ContextT = TypeVar("ContextT")


class FailurePolicy(str, Enum):
    ABORT = "abort"
    DEFER = "defer"


@dataclass(frozen=True)
class OutboxFallback:
    entry_type: SyncOutboxType
    payload: dict[str, Any]


@dataclass(frozen=True)
class SagaStep(Generic[ContextT]):
    name: str
    action: Callable[[ContextT], Awaitable[None]]
    compensation: Optional[Callable[[ContextT], Awaitable[None]]] = None
    on_failure: FailurePolicy = FailurePolicy.ABORT
    fallback: Optional[Callable[[ContextT, VendorSyncError], Optional[OutboxFallback]]] = None


@dataclass
class SagaOutcome:
    completed: bool
    failed_step: Optional[str] = None
    error: Optional[VendorSyncError] = None
    compensated: bool = False
    deferred: bool = False
    outbox_entry_id: Optional[int] = None
    outbox_error: Optional[VendorSyncError] = None

    @property
    def outbox_used(self) -> bool:
        return self.outbox_entry_id is not None


def as_sync_error(
    error: Exception, service: str, operation: str, correlation_id: UUID
) -> VendorSyncError:
    """Wrap anything that is not already a VendorSyncError as UNKNOWN_ERROR."""
    if isinstance(error, VendorSyncError):
        return error
    return VendorSyncError(
        create_error_detail(
            error_code=ErrorCode.UNKNOWN_ERROR,
            message=f"Unexpected error: {error}",
            service=service,
            operation=operation,
            correlation_id=correlation_id,
            details={"exception_type": type(error).__name__},
        )
    )


class SagaRunner:
    """Executes saga step tables against one outbox repository."""

    def __init__(self, outbox_repository: SyncOutboxRepositoryProtocol, service_name: str) -> None:
        self.outbox_repository = outbox_repository
        self.service_name = service_name

    async def run(
        self,
        saga_name: str,
        steps: Sequence[SagaStep[ContextT]],
        context: ContextT,
        correlation_id: UUID,
    ) -> SagaOutcome:
        completed: list[SagaStep[ContextT]] = []

        for step in steps:
            try:
                await step.action(context)
            except Exception as exc:
                error = as_sync_error(exc, self.service_name, step.name, correlation_id)
                logger.warning(
                    f"Saga step failed: {saga_name}.{step.name}",
                    extra={
                        "saga": saga_name,
                        "step": step.name,
                        "error_code": error.error_code,
                        "policy": step.on_failure.value,
                        "correlation_id": str(correlation_id),
                    },
                )
                if step.on_failure is FailurePolicy.DEFER:
                    return await self._defer(saga_name, step, context, error, correlation_id)
                return await self._abort(saga_name, step, completed, context, error, correlation_id)

            completed.append(step)

        return SagaOutcome(completed=True)

    async def _defer(
        self,
        saga_name: str,
        step: SagaStep[ContextT],
        context: ContextT,
        error: VendorSyncError,
        correlation_id: UUID,
    ) -> SagaOutcome:
        outcome = SagaOutcome(completed=False, failed_step=step.name, error=error, deferred=True)
        await self._write_fallback(saga_name, step, context, error, correlation_id, outcome)
        return outcome

    async def _abort(
        self,
        saga_name: str,
        failed: SagaStep[ContextT],
        completed: list[SagaStep[ContextT]],
        context: ContextT,
        error: VendorSyncError,
        correlation_id: UUID,
    ) -> SagaOutcome:
        all_compensated = True
        for step in reversed(completed):
            if step.compensation is None:
                continue
            try:
                await step.compensation(context)
            except Exception as exc:
                all_compensated = False
                comp_error = as_sync_error(exc, self.service_name, step.name, correlation_id)
                COMPENSATIONS.labels(step=step.name, outcome="failed").inc()
                logger.error(
                    f"Compensation failed: {saga_name}.{step.name}",
                    extra={
                        "saga": saga_name,
                        "step": step.name,
                        "error": str(comp_error),
                        "correlation_id": str(correlation_id),
                    },
                )
            else:
                COMPENSATIONS.labels(step=step.name, outcome="succeeded").inc()
                logger.info(
                    f"Compensated {saga_name}.{step.name}",
                    extra={"saga": saga_name, "step": step.name},
                )

        outcome = SagaOutcome(
            completed=False,
            failed_step=failed.name,
            error=error,
            compensated=all_compensated,
        )
        if not all_compensated:
            await self._write_fallback(saga_name, failed, context, error, correlation_id, outcome)
        return outcome

    async def _write_fallback(
        self,
        saga_name: str,
        step: SagaStep[ContextT],
        context: ContextT,
        error: VendorSyncError,
        correlation_id: UUID,
        outcome: SagaOutcome,
    ) -> None:
        fallback = step.fallback(context, error) if step.fallback is not None else None
        if fallback is None:
            return

        try:
            entry_id = await self.outbox_repository.add_entry(
                fallback.entry_type,
                {**fallback.payload, "correlation_id": str(correlation_id)},
                error=str(error),
            )
        except Exception as exc:
            outcome.outbox_error = as_sync_error(
                exc, self.service_name, f"{saga_name}.outbox", correlation_id
            )
            logger.critical(
                f"Could not record outbox entry for {saga_name}.{step.name}; "
                "identity provider and local store may stay inconsistent",
                extra={
                    "saga": saga_name,
                    "entry_type": fallback.entry_type.value,
                    "payload": fallback.payload,
                    "error": str(outcome.outbox_error),
                    "correlation_id": str(correlation_id),
                },
            )
            return

        outcome.outbox_entry_id = entry_id
        OUTBOX_ENTRIES_ENQUEUED.labels(entry_type=fallback.entry_type.value).inc()
        logger.info(
            f"Outbox entry {entry_id} recorded for {saga_name}.{step.name}",
            extra={
                "outbox_id": entry_id,
                "entry_type": fallback.entry_type.value,
                "correlation_id": str(correlation_id),
            },
        )
