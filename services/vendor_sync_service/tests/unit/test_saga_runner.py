"""Unit tests for SagaRunner step ordering, compensation and outbox fallback."""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import uuid4

import pytest

from services.vendor_sync_service.enums import ErrorCode, SyncOutboxType
from services.vendor_sync_service.saga import (
    FailurePolicy,
    OutboxFallback,
    SagaRunner,
    SagaStep,
)
from services.vendor_sync_service.tests.fakes import FakeOutboxRepository, make_error


@dataclass
class RecordingContext:
    log: list[str] = field(default_factory=list)


def ok(name: str):
    async def action(ctx: RecordingContext) -> None:
        ctx.log.append(name)

    return action


def failing(name: str, code: ErrorCode = ErrorCode.LOCAL_STORE_ERROR):
    async def action(ctx: RecordingContext) -> None:
        ctx.log.append(name)
        raise make_error(code, name)

    return action


def crashing(name: str):
    async def action(ctx: RecordingContext) -> None:
        ctx.log.append(name)
        raise RuntimeError("boom")

    return action


def fallback_to(entry_type: SyncOutboxType):
    def build(ctx: RecordingContext, error) -> OutboxFallback:
        return OutboxFallback(entry_type, {"reason": error.error_code})

    return build


@pytest.fixture
def runner(fake_outbox: FakeOutboxRepository) -> SagaRunner:
    return SagaRunner(fake_outbox, service_name="test_service")


class TestSagaRunner:
    async def test_runs_all_steps_in_order(self, runner: SagaRunner) -> None:
        ctx = RecordingContext()
        steps = (SagaStep("a", ok("a")), SagaStep("b", ok("b")), SagaStep("c", ok("c")))

        outcome = await runner.run("ordered", steps, ctx, uuid4())

        assert outcome.completed is True
        assert ctx.log == ["a", "b", "c"]
        assert outcome.outbox_used is False

    async def test_abort_compensates_completed_steps_in_reverse(
        self, runner: SagaRunner, fake_outbox: FakeOutboxRepository
    ) -> None:
        ctx = RecordingContext()
        steps = (
            SagaStep("a", ok("a"), compensation=ok("undo_a")),
            SagaStep("b", ok("b"), compensation=ok("undo_b")),
            SagaStep(
                "c", failing("c"), fallback=fallback_to(SyncOutboxType.CREATE_VENDOR_DB_RETRY)
            ),
        )

        outcome = await runner.run("abort", steps, ctx, uuid4())

        assert outcome.completed is False
        assert outcome.failed_step == "c"
        assert outcome.compensated is True
        assert ctx.log == ["a", "b", "c", "undo_b", "undo_a"]
        # Successful compensation leaves nothing to converge
        assert fake_outbox.entries == {}

    async def test_failed_compensation_writes_fallback_entry(
        self, runner: SagaRunner, fake_outbox: FakeOutboxRepository
    ) -> None:
        ctx = RecordingContext()
        correlation_id = uuid4()
        steps = (
            SagaStep(
                "a",
                ok("a"),
                compensation=failing("undo_a", ErrorCode.IDENTITY_PROVIDER_UNAVAILABLE),
            ),
            SagaStep(
                "b", failing("b"), fallback=fallback_to(SyncOutboxType.CREATE_VENDOR_DB_RETRY)
            ),
        )

        outcome = await runner.run("abort", steps, ctx, correlation_id)

        assert outcome.compensated is False
        assert outcome.outbox_used is True
        entries = fake_outbox.of_type(SyncOutboxType.CREATE_VENDOR_DB_RETRY)
        assert len(entries) == 1
        assert entries[0].payload["reason"] == ErrorCode.LOCAL_STORE_ERROR.value
        assert entries[0].payload["correlation_id"] == str(correlation_id)

    async def test_defer_keeps_earlier_steps_and_writes_entry(
        self, runner: SagaRunner, fake_outbox: FakeOutboxRepository
    ) -> None:
        ctx = RecordingContext()
        steps = (
            SagaStep("local", ok("local"), compensation=ok("undo_local")),
            SagaStep(
                "remote",
                failing("remote", ErrorCode.IDENTITY_PROVIDER_UNAVAILABLE),
                on_failure=FailurePolicy.DEFER,
                fallback=fallback_to(SyncOutboxType.STATUS_METADATA_RETRY),
            ),
        )

        outcome = await runner.run("defer", steps, ctx, uuid4())

        assert outcome.deferred is True
        assert outcome.outbox_used is True
        assert "undo_local" not in ctx.log
        assert len(fake_outbox.of_type(SyncOutboxType.STATUS_METADATA_RETRY)) == 1

    async def test_first_step_failure_has_no_side_effects(
        self, runner: SagaRunner, fake_outbox: FakeOutboxRepository
    ) -> None:
        ctx = RecordingContext()
        steps = (
            SagaStep(
                "a",
                failing("a", ErrorCode.IDENTITY_PROVIDER_ERROR),
                compensation=ok("undo_a"),
            ),
            SagaStep("b", ok("b")),
        )

        outcome = await runner.run("first", steps, ctx, uuid4())

        assert outcome.completed is False
        assert outcome.error is not None
        assert outcome.error.error_code == ErrorCode.IDENTITY_PROVIDER_ERROR.value
        assert ctx.log == ["a"]
        assert fake_outbox.entries == {}

    async def test_unexpected_exception_is_wrapped_as_unknown_error(
        self, runner: SagaRunner
    ) -> None:
        steps = (SagaStep("a", crashing("a")),)

        outcome = await runner.run("crash", steps, RecordingContext(), uuid4())

        assert outcome.error is not None
        assert outcome.error.error_code == ErrorCode.UNKNOWN_ERROR.value
        assert outcome.error.error_detail.details["exception_type"] == "RuntimeError"

    async def test_outbox_write_failure_is_reported_on_outcome(
        self, runner: SagaRunner, fake_outbox: FakeOutboxRepository
    ) -> None:
        fake_outbox.should_fail_add = True
        steps = (
            SagaStep(
                "remote",
                failing("remote", ErrorCode.IDENTITY_PROVIDER_UNAVAILABLE),
                on_failure=FailurePolicy.DEFER,
                fallback=fallback_to(SyncOutboxType.DELETE_IDENTITY_RETRY),
            ),
        )

        outcome = await runner.run("defer", steps, RecordingContext(), uuid4())

        assert outcome.deferred is True
        assert outcome.outbox_used is False
        assert outcome.outbox_error is not None
        assert outcome.outbox_error.error_code == ErrorCode.OUTBOX_STORAGE_ERROR.value
