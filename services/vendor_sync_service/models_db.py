"""SQLAlchemy models for Vendor Sync Service."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from services.vendor_sync_service.enums import VerificationStatus

# SQLite only autoincrements INTEGER PRIMARY KEY columns
AutoIncrementId = BigInteger().with_variant(Integer, "sqlite")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all SQLAlchemy models in Vendor Sync Service."""

    pass


class Profile(Base):
    """Local account row, always created together with its external identity."""

    __tablename__ = "profiles"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    external_identity_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    user_type: Mapped[str] = mapped_column(
        String(32), nullable=False, server_default=text("'business'")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.current_timestamp(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.current_timestamp(),
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Profile id={self.id} identity={self.external_identity_id} email={self.email}>"


class BusinessRecord(Base):
    """Vendor business data owned by a profile."""

    __tablename__ = "business_records"

    id: Mapped[int] = mapped_column(AutoIncrementId, primary_key=True, autoincrement=True)
    profile_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    verification_status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=VerificationStatus.PENDING.value,
        server_default=text(f"'{VerificationStatus.PENDING.value}'"),
    )

    # Opaque document references, never inspected by this service
    government_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    proof_of_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    proof_of_business: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.current_timestamp(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.current_timestamp(),
    )

    __table_args__ = (Index("ix_business_records_profile_id", "profile_id"),)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return (
            f"<BusinessRecord id={self.id} profile={self.profile_id} "
            f"status={self.verification_status}>"
        )


class SyncOutbox(Base):
    """Durable record of a provider/store step that still has to converge."""

    __tablename__ = "sync_outbox"

    id: Mapped[int] = mapped_column(AutoIncrementId, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.current_timestamp(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.current_timestamp(),
    )
    next_attempt_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    claimed_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_sync_outbox_due", "attempts", "next_attempt_at"),
        Index("ix_sync_outbox_created_at", "created_at"),
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<SyncOutbox id={self.id} type={self.type} attempts={self.attempts}>"
