"""
Sync outbox worker.

Periodically claims due outbox entries and hands each one to the replay
handler registered for its type. Successful replays delete the entry;
failures are recorded with an exponentially growing delay until the entry
reaches the maximum number of attempts and is left for operators.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Mapping

from services.vendor_sync_service.backoff import backoff_delay, compute_next_eligible_at
from services.vendor_sync_service.enums import SyncOutboxType
from services.vendor_sync_service.logging_utils import create_service_logger
from services.vendor_sync_service.metrics import OUTBOX_EXHAUSTED, OUTBOX_REPLAYS

if TYPE_CHECKING:
    from services.vendor_sync_service.config import Settings
    from services.vendor_sync_service.models import SyncOutboxEntry
    from services.vendor_sync_service.protocols import (
        OutboxReplayHandlerProtocol,
        SyncOutboxRepositoryProtocol,
    )

logger = create_service_logger("vendor_sync_service.outbox_worker")


@dataclass
class ReplayBatchResult:
    claimed: int = 0
    resolved: int = 0
    failed: int = 0
    exhausted: int = 0
    errored: int = 0


class SyncOutboxWorker:
    """Background task draining the sync outbox."""

    def __init__(
        self,
        outbox_repository: SyncOutboxRepositoryProtocol,
        handlers: Mapping[SyncOutboxType, OutboxReplayHandlerProtocol],
        settings: Settings,
    ) -> None:
        self.outbox_repository = outbox_repository
        self.handlers = dict(handlers)
        self.settings = settings
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the worker background task."""
        if self._running:
            logger.warning("Sync outbox worker already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("Sync outbox worker started")

    async def stop(self) -> None:
        """Stop the worker, letting the batch in flight be cancelled."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Sync outbox worker stopped")

    async def _run(self) -> None:
        logger.info(
            "Sync outbox worker loop starting",
            extra={
                "poll_interval": self.settings.OUTBOX_POLL_INTERVAL_SECONDS,
                "batch_size": self.settings.OUTBOX_BATCH_SIZE,
                "max_attempts": self.settings.OUTBOX_MAX_ATTEMPTS,
            },
        )

        while self._running:
            try:
                await self.run_once()
                await asyncio.sleep(self.settings.OUTBOX_POLL_INTERVAL_SECONDS)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(
                    "Error in sync outbox worker loop",
                    extra={"error": str(e)},
                    exc_info=True,
                )
                await asyncio.sleep(self.settings.OUTBOX_ERROR_RETRY_INTERVAL_SECONDS)

    async def run_once(self) -> ReplayBatchResult:
        """Claim one batch of due entries and replay each of them."""
        entries = await self.outbox_repository.claim_due_entries(
            limit=self.settings.OUTBOX_BATCH_SIZE,
            max_attempts=self.settings.OUTBOX_MAX_ATTEMPTS,
            lease_seconds=self.settings.OUTBOX_CLAIM_LEASE_SECONDS,
        )
        result = ReplayBatchResult(claimed=len(entries))
        if not entries:
            return result

        logger.info(
            f"Replaying {len(entries)} sync outbox entries",
            extra={"entry_count": len(entries)},
        )
        for entry in entries:
            try:
                await self._process_entry(entry, result)
            except Exception as e:
                # Bookkeeping failed; the lease expires and the entry is claimed again later
                result.errored += 1
                logger.error(
                    "Could not record sync outbox replay outcome",
                    extra={"outbox_id": entry.id, "entry_type": entry.type, "error": str(e)},
                    exc_info=True,
                )
        return result

    async def _process_entry(self, entry: SyncOutboxEntry, result: ReplayBatchResult) -> None:
        entry_type = entry.outbox_type
        handler = self.handlers.get(entry_type) if entry_type is not None else None
        if handler is None:
            await self._record_failure(
                entry, f"No replay handler registered for outbox type '{entry.type}'", result
            )
            return

        try:
            await handler.replay(entry)
        except Exception as e:
            await self._record_failure(entry, str(e), result)
            return

        await self.outbox_repository.mark_resolved(entry.id)
        result.resolved += 1
        OUTBOX_REPLAYS.labels(entry_type=entry.type, outcome="resolved").inc()
        logger.info(
            "Sync outbox entry replayed",
            extra={"outbox_id": entry.id, "entry_type": entry.type, "attempts": entry.attempts},
        )

    def _schedule_next_attempt(self, attempts: int) -> datetime:
        return compute_next_eligible_at(
            datetime.now(UTC),
            attempts,
            self.settings.OUTBOX_BACKOFF_BASE_SECONDS,
            self.settings.OUTBOX_BACKOFF_MULTIPLIER,
        )

    async def _record_failure(
        self, entry: SyncOutboxEntry, error: str, result: ReplayBatchResult
    ) -> None:
        attempts = await self.outbox_repository.record_failure(
            entry.id, error, self._schedule_next_attempt
        )
        result.failed += 1
        OUTBOX_REPLAYS.labels(entry_type=entry.type, outcome="failed").inc()

        if attempts == 0:
            logger.info(
                "Sync outbox entry removed while being replayed",
                extra={"outbox_id": entry.id, "entry_type": entry.type, "error": error},
            )
            return

        if attempts >= self.settings.OUTBOX_MAX_ATTEMPTS:
            result.exhausted += 1
            OUTBOX_EXHAUSTED.labels(entry_type=entry.type).inc()
            logger.error(
                "Sync outbox entry exhausted its attempts, manual intervention required",
                extra={
                    "outbox_id": entry.id,
                    "entry_type": entry.type,
                    "attempts": attempts,
                    "last_error": error,
                    "payload": entry.payload,
                },
            )
            return

        logger.warning(
            "Sync outbox replay failed",
            extra={
                "outbox_id": entry.id,
                "entry_type": entry.type,
                "attempts": attempts,
                "retry_in_seconds": backoff_delay(
                    attempts,
                    self.settings.OUTBOX_BACKOFF_BASE_SECONDS,
                    self.settings.OUTBOX_BACKOFF_MULTIPLIER,
                ).total_seconds(),
                "error": error,
            },
        )
