"""Retry scheduling for sync outbox entries."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps (SQLite returns them without tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def backoff_delay(attempts: int, base_seconds: float, multiplier: float) -> timedelta:
    """Delay before the entry becomes eligible again after ``attempts`` failures."""
    if attempts < 0:
        raise ValueError("attempts must be non-negative")
    return timedelta(seconds=base_seconds * multiplier**attempts)


def compute_next_eligible_at(
    updated_at: datetime,
    attempts: int,
    base_seconds: float,
    multiplier: float,
) -> datetime:
    """
    Earliest time an outbox entry may be retried.

    ``updated_at + base_seconds * multiplier ** attempts``. With
    ``multiplier > 1`` the schedule is strictly increasing in ``attempts``.
    """
    return ensure_utc(updated_at) + backoff_delay(attempts, base_seconds, multiplier)
