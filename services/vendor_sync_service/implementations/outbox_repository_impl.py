"""
SQLAlchemy implementation of SyncOutboxRepositoryProtocol.

Rows are claimed with ``SELECT ... FOR UPDATE SKIP LOCKED`` and a
``claimed_until`` lease, so concurrent worker instances never replay the
same entry at the same time.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from services.vendor_sync_service.enums import SyncOutboxType
from services.vendor_sync_service.error_handling import raise_outbox_storage_error
from services.vendor_sync_service.implementations.database_errors import raise_database_error
from services.vendor_sync_service.logging_utils import create_service_logger
from services.vendor_sync_service.models import SyncOutboxEntry
from services.vendor_sync_service.models_db import SyncOutbox
from services.vendor_sync_service.protocols import SyncOutboxRepositoryProtocol

logger = create_service_logger("vendor_sync_service.outbox_repository")

MAX_ERROR_LENGTH = 2000

_DB_ERRORS = (SQLAlchemyError, asyncio.TimeoutError)


class PostgresSyncOutboxRepository(SyncOutboxRepositoryProtocol):
    def __init__(self, engine: AsyncEngine, service_name: str = "vendor_sync_service") -> None:
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)
        self.service_name = service_name

    async def add_entry(
        self,
        entry_type: SyncOutboxType,
        payload: dict[str, Any],
        error: Optional[str] = None,
    ) -> int:
        """
        Persist a new entry, immediately eligible for replay.

        Args:
            entry_type: Replay handler discriminator
            payload: JSON payload for the handler; never contains passwords
            error: The failure that made the entry necessary

        Returns:
            Id of the created row
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = SyncOutbox(
                        type=entry_type.value,
                        payload=payload,
                        attempts=0,
                        last_error=error[:MAX_ERROR_LENGTH] if error else None,
                    )
                    session.add(row)
                    await session.flush()
                    entry_id = row.id
        except _DB_ERRORS as e:
            raise_outbox_storage_error(
                service=self.service_name,
                operation="add_outbox_entry",
                message=f"Failed to add outbox entry: {e.__class__.__name__}",
                entry_type=entry_type.value,
                error_details=str(e),
            )

        logger.info(
            "Added sync outbox entry",
            extra={"outbox_id": entry_id, "entry_type": entry_type.value},
        )
        return entry_id

    async def claim_due_entries(
        self, limit: int, max_attempts: int, lease_seconds: float
    ) -> list[SyncOutboxEntry]:
        """Lock, lease and return up to ``limit`` entries that are due for replay."""
        now = datetime.now(UTC)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    stmt = (
                        select(SyncOutbox)
                        .where(
                            SyncOutbox.attempts < max_attempts,
                            or_(
                                SyncOutbox.next_attempt_at.is_(None),
                                SyncOutbox.next_attempt_at <= now,
                            ),
                            or_(
                                SyncOutbox.claimed_until.is_(None),
                                SyncOutbox.claimed_until < now,
                            ),
                        )
                        .order_by(SyncOutbox.created_at, SyncOutbox.id)
                        .limit(limit)
                        .with_for_update(skip_locked=True)
                    )
                    rows = (await session.execute(stmt)).scalars().all()
                    lease_end = now + timedelta(seconds=lease_seconds)
                    for row in rows:
                        row.claimed_until = lease_end
                    await session.flush()
                    return [SyncOutboxEntry.model_validate(row) for row in rows]
        except _DB_ERRORS as e:
            raise_database_error(e, self.service_name, "claim_due_entries", limit=limit)

    async def mark_resolved(self, entry_id: int) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(SyncOutbox, entry_id)
                    if row is not None:
                        await session.delete(row)
        except _DB_ERRORS as e:
            raise_database_error(e, self.service_name, "mark_resolved", outbox_id=entry_id)

    async def record_failure(
        self,
        entry_id: int,
        error: str,
        schedule_next_attempt: Callable[[int], datetime],
    ) -> int:
        """Count a failed replay, schedule the next attempt and release the lease.

        ``schedule_next_attempt`` receives the attempt count stored after this
        failure, so an entry requeued while in flight backs off from zero.

        Returns:
            The entry's attempt count after this failure, or 0 if it no longer exists
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(SyncOutbox, entry_id, with_for_update=True)
                    if row is None:
                        return 0
                    row.attempts = row.attempts + 1
                    row.last_error = error[:MAX_ERROR_LENGTH]
                    row.updated_at = datetime.now(UTC)
                    row.next_attempt_at = schedule_next_attempt(row.attempts)
                    row.claimed_until = None
                    return row.attempts
        except _DB_ERRORS as e:
            raise_database_error(e, self.service_name, "record_failure", outbox_id=entry_id)

    async def get_entry(self, entry_id: int) -> Optional[SyncOutboxEntry]:
        try:
            async with self._session_factory() as session:
                row = await session.get(SyncOutbox, entry_id)
                return SyncOutboxEntry.model_validate(row) if row else None
        except _DB_ERRORS as e:
            raise_database_error(e, self.service_name, "get_entry", outbox_id=entry_id)

    async def list_entries(self, limit: int = 100) -> list[SyncOutboxEntry]:
        try:
            async with self._session_factory() as session:
                stmt = (
                    select(SyncOutbox)
                    .order_by(SyncOutbox.created_at, SyncOutbox.id)
                    .limit(limit)
                )
                rows = (await session.execute(stmt)).scalars().all()
                return [SyncOutboxEntry.model_validate(row) for row in rows]
        except _DB_ERRORS as e:
            raise_database_error(e, self.service_name, "list_entries")

    async def list_stuck_entries(self, min_attempts: int) -> list[SyncOutboxEntry]:
        try:
            async with self._session_factory() as session:
                stmt = (
                    select(SyncOutbox)
                    .where(SyncOutbox.attempts >= min_attempts)
                    .order_by(SyncOutbox.attempts.desc(), SyncOutbox.created_at)
                )
                rows = (await session.execute(stmt)).scalars().all()
                return [SyncOutboxEntry.model_validate(row) for row in rows]
        except _DB_ERRORS as e:
            raise_database_error(e, self.service_name, "list_stuck_entries")

    async def requeue(self, entry_id: int) -> bool:
        """Operator reset: make an exhausted entry eligible again right away."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(SyncOutbox, entry_id, with_for_update=True)
                    if row is None:
                        return False
                    row.attempts = 0
                    row.next_attempt_at = None
                    row.claimed_until = None
                    row.updated_at = datetime.now(UTC)
        except _DB_ERRORS as e:
            raise_database_error(e, self.service_name, "requeue", outbox_id=entry_id)

        logger.info("Requeued sync outbox entry", extra={"outbox_id": entry_id})
        return True
