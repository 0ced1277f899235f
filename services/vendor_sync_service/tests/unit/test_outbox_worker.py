"""
Unit tests for SyncOutboxWorker.

Uses the in-memory outbox repository and scripted replay handlers so the
worker's claim, resolve and backoff bookkeeping can be asserted directly.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest

from services.vendor_sync_service.config import Settings
from services.vendor_sync_service.enums import ErrorCode, SyncOutboxType
from services.vendor_sync_service.implementations.outbox_worker import SyncOutboxWorker
from services.vendor_sync_service.models import SyncOutboxEntry
from services.vendor_sync_service.tests.fakes import FakeOutboxRepository, make_error


class ScriptedHandler:
    """Replay handler that fails a fixed number of times before succeeding."""

    def __init__(self, failures: int = 0, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or make_error(ErrorCode.IDENTITY_PROVIDER_UNAVAILABLE, "replay")
        self.replayed: list[int] = []

    async def replay(self, entry: SyncOutboxEntry) -> None:
        self.replayed.append(entry.id)
        if self.failures > 0:
            self.failures -= 1
            raise self.error


@pytest.fixture
def worker_settings() -> Settings:
    return Settings(
        OUTBOX_WORKER_ENABLED=True,
        OUTBOX_POLL_INTERVAL_SECONDS=0.01,
        OUTBOX_ERROR_RETRY_INTERVAL_SECONDS=0.01,
        OUTBOX_BATCH_SIZE=10,
        OUTBOX_MAX_ATTEMPTS=3,
        OUTBOX_BACKOFF_BASE_SECONDS=60.0,
        OUTBOX_BACKOFF_MULTIPLIER=2.0,
    )


def _worker(
    outbox: FakeOutboxRepository, settings: Settings, **handlers: ScriptedHandler
) -> SyncOutboxWorker:
    return SyncOutboxWorker(
        outbox_repository=outbox,
        handlers={SyncOutboxType(name): handler for name, handler in handlers.items()},
        settings=settings,
    )


class TestRunOnce:
    async def test_successful_replay_resolves_entry(
        self, fake_outbox: FakeOutboxRepository, worker_settings: Settings
    ) -> None:
        handler = ScriptedHandler()
        entry_id = await fake_outbox.add_entry(
            SyncOutboxType.DELETE_IDENTITY_RETRY, {"external_identity_id": "abc"}
        )
        worker = _worker(fake_outbox, worker_settings, delete_identity_retry=handler)

        result = await worker.run_once()

        assert result.claimed == 1
        assert result.resolved == 1
        assert handler.replayed == [entry_id]
        assert fake_outbox.resolved == [entry_id]
        assert fake_outbox.entries == {}

    async def test_failed_replay_schedules_backoff(
        self, fake_outbox: FakeOutboxRepository, worker_settings: Settings
    ) -> None:
        handler = ScriptedHandler(failures=1)
        entry_id = await fake_outbox.add_entry(
            SyncOutboxType.STATUS_METADATA_RETRY, {"profile_id": "p"}
        )
        worker = _worker(fake_outbox, worker_settings, status_metadata_retry=handler)

        before = datetime.now(UTC)
        result = await worker.run_once()

        assert result.failed == 1
        assert result.exhausted == 0
        entry = fake_outbox.entries[entry_id]
        assert entry.attempts == 1
        assert "IDENTITY_PROVIDER_UNAVAILABLE" in (entry.last_error or "")
        # First failure waits base * multiplier ** 1
        assert entry.next_attempt_at is not None
        delay = (entry.next_attempt_at - before).total_seconds()
        assert 119 <= delay <= 121

    async def test_entry_not_reclaimed_before_backoff_elapses(
        self, fake_outbox: FakeOutboxRepository, worker_settings: Settings
    ) -> None:
        handler = ScriptedHandler(failures=1)
        await fake_outbox.add_entry(SyncOutboxType.STATUS_METADATA_RETRY, {"profile_id": "p"})
        worker = _worker(fake_outbox, worker_settings, status_metadata_retry=handler)

        await worker.run_once()
        second = await worker.run_once()

        assert second.claimed == 0
        assert len(handler.replayed) == 1

    async def test_unknown_type_is_recorded_as_failure(
        self, fake_outbox: FakeOutboxRepository, worker_settings: Settings
    ) -> None:
        entry_id = fake_outbox.add_raw("legacy_sync_job", {"anything": 1})
        worker = _worker(fake_outbox, worker_settings)

        result = await worker.run_once()

        assert result.failed == 1
        assert fake_outbox.resolved == []
        entry = fake_outbox.entries[entry_id]
        assert entry.attempts == 1
        assert "legacy_sync_job" in (entry.last_error or "")

    async def test_last_attempt_marks_entry_exhausted(
        self, fake_outbox: FakeOutboxRepository, worker_settings: Settings
    ) -> None:
        handler = ScriptedHandler(failures=5)
        entry_id = fake_outbox.add_raw(
            SyncOutboxType.UPDATE_EMAIL_DB_RETRY.value,
            {"profile_id": "p", "email": "a@b.example"},
            attempts=worker_settings.OUTBOX_MAX_ATTEMPTS - 1,
        )
        worker = _worker(fake_outbox, worker_settings, update_email_db_retry=handler)

        result = await worker.run_once()

        assert result.exhausted == 1
        assert fake_outbox.entries[entry_id].attempts == worker_settings.OUTBOX_MAX_ATTEMPTS
        # Exhausted entries are never claimed again
        fake_outbox.entries[entry_id] = fake_outbox.entries[entry_id].model_copy(
            update={"next_attempt_at": None}
        )
        assert (await worker.run_once()).claimed == 0

    async def test_one_failing_entry_does_not_block_others(
        self, fake_outbox: FakeOutboxRepository, worker_settings: Settings
    ) -> None:
        failing = ScriptedHandler(failures=1)
        succeeding = ScriptedHandler()
        bad_id = await fake_outbox.add_entry(
            SyncOutboxType.STATUS_METADATA_RETRY, {"profile_id": "p"}
        )
        good_id = await fake_outbox.add_entry(
            SyncOutboxType.DELETE_IDENTITY_RETRY, {"external_identity_id": "abc"}
        )
        worker = _worker(
            fake_outbox,
            worker_settings,
            status_metadata_retry=failing,
            delete_identity_retry=succeeding,
        )

        result = await worker.run_once()

        assert result.claimed == 2
        assert result.resolved == 1
        assert result.failed == 1
        assert fake_outbox.resolved == [good_id]
        assert bad_id in fake_outbox.entries

    async def test_resolve_error_does_not_skip_rest_of_batch(
        self, fake_outbox: FakeOutboxRepository, worker_settings: Settings
    ) -> None:
        handler = ScriptedHandler()
        ids = [
            await fake_outbox.add_entry(
                SyncOutboxType.DELETE_IDENTITY_RETRY, {"external_identity_id": str(n)}
            )
            for n in range(3)
        ]
        fake_outbox.fail_resolve_ids.add(ids[0])
        worker = _worker(fake_outbox, worker_settings, delete_identity_retry=handler)

        result = await worker.run_once()

        assert handler.replayed == ids
        assert result.resolved == 2
        assert result.errored == 1
        assert fake_outbox.resolved == ids[1:]
        assert list(fake_outbox.entries) == [ids[0]]

    async def test_failure_bookkeeping_error_does_not_skip_rest_of_batch(
        self, fake_outbox: FakeOutboxRepository, worker_settings: Settings
    ) -> None:
        failing = ScriptedHandler(failures=1)
        succeeding = ScriptedHandler()
        bad_id = await fake_outbox.add_entry(
            SyncOutboxType.STATUS_METADATA_RETRY, {"profile_id": "p"}
        )
        good_id = await fake_outbox.add_entry(
            SyncOutboxType.DELETE_IDENTITY_RETRY, {"external_identity_id": "abc"}
        )
        fake_outbox.fail_record_ids.add(bad_id)
        worker = _worker(
            fake_outbox,
            worker_settings,
            status_metadata_retry=failing,
            delete_identity_retry=succeeding,
        )

        result = await worker.run_once()

        assert result.errored == 1
        assert result.failed == 0
        assert fake_outbox.resolved == [good_id]
        assert fake_outbox.entries[bad_id].attempts == 0

    async def test_backoff_uses_stored_attempts_after_requeue_in_flight(
        self, fake_outbox: FakeOutboxRepository, worker_settings: Settings
    ) -> None:
        entry_id = fake_outbox.add_raw(
            SyncOutboxType.STATUS_METADATA_RETRY.value,
            {"profile_id": "p"},
            attempts=worker_settings.OUTBOX_MAX_ATTEMPTS - 1,
        )

        class RequeueingHandler:
            async def replay(self, entry: SyncOutboxEntry) -> None:
                await fake_outbox.requeue(entry.id)
                raise make_error(ErrorCode.IDENTITY_PROVIDER_UNAVAILABLE, "replay")

        worker = SyncOutboxWorker(
            outbox_repository=fake_outbox,
            handlers={SyncOutboxType.STATUS_METADATA_RETRY: RequeueingHandler()},
            settings=worker_settings,
        )

        before = datetime.now(UTC)
        result = await worker.run_once()

        assert result.failed == 1
        assert result.exhausted == 0
        entry = fake_outbox.entries[entry_id]
        assert entry.attempts == 1
        assert entry.next_attempt_at is not None
        delay = (entry.next_attempt_at - before).total_seconds()
        assert 119 <= delay <= 121

    async def test_batch_size_limits_claim(
        self, fake_outbox: FakeOutboxRepository, worker_settings: Settings
    ) -> None:
        settings = worker_settings.model_copy(update={"OUTBOX_BATCH_SIZE": 2})
        for n in range(5):
            await fake_outbox.add_entry(
                SyncOutboxType.DELETE_IDENTITY_RETRY, {"external_identity_id": str(n)}
            )
        worker = _worker(fake_outbox, settings, delete_identity_retry=ScriptedHandler())

        result = await worker.run_once()

        assert result.claimed == 2
        assert len(fake_outbox.entries) == 3


class TestLifecycle:
    async def test_start_drains_outbox_and_stop_cancels(
        self, fake_outbox: FakeOutboxRepository, worker_settings: Settings
    ) -> None:
        handler = ScriptedHandler()
        await fake_outbox.add_entry(
            SyncOutboxType.DELETE_IDENTITY_RETRY, {"external_identity_id": "abc"}
        )
        worker = _worker(fake_outbox, worker_settings, delete_identity_retry=handler)

        await worker.start()
        assert worker.is_running is True
        for _ in range(50):
            if not fake_outbox.entries:
                break
            await asyncio.sleep(0.01)
        await worker.stop()

        assert fake_outbox.entries == {}
        assert worker.is_running is False

    async def test_stop_without_start_is_noop(
        self, fake_outbox: FakeOutboxRepository, worker_settings: Settings
    ) -> None:
        worker = _worker(fake_outbox, worker_settings)

        await worker.stop()

        assert worker.is_running is False
