"""Pydantic request, result and read models for the Vendor Sync Service."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, SecretStr, field_validator

from services.vendor_sync_service.enums import (
    ErrorCode,
    ReconcileFixMode,
    SyncOutboxType,
    VerificationStatus,
)

MIN_PASSWORD_LENGTH = 6


def _check_password_length(value: SecretStr) -> SecretStr:
    if len(value.get_secret_value()) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return value


class VendorDocuments(BaseModel):
    """Opaque document references passed through to the business record."""

    government_id: Optional[str] = None
    proof_of_address: Optional[str] = None
    proof_of_business: Optional[str] = None


class VendorProfileData(BaseModel):
    """Vendor data kept locally. Everything in VendorCreateInput except the password."""

    email: EmailStr
    phone: Optional[str] = None
    business_name: str = Field(min_length=1, max_length=255)
    business_category: str = Field(min_length=1, max_length=100)
    business_address: Optional[str] = None
    documents: VendorDocuments = Field(default_factory=VendorDocuments)

    @field_validator("phone")
    @classmethod
    def blank_phone_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value


class VendorCreateInput(VendorProfileData):
    password: SecretStr

    @field_validator("password")
    @classmethod
    def password_min_length(cls, value: SecretStr) -> SecretStr:
        return _check_password_length(value)

    def to_replay_payload(self) -> dict[str, Any]:
        """Everything needed to recreate local records, without the password."""
        return self.model_dump(mode="json", exclude={"password"})


class SyncResult(BaseModel):
    """Outcome of a coordinator operation.

    ``partial`` means the external identity and the local store may
    disagree for now. ``outbox_used`` means a durable entry was written so
    the worker can converge them later.
    """

    success: bool
    partial: bool = False
    outbox_used: bool = False
    profile_id: Optional[UUID] = None
    business_id: Optional[int] = None
    external_identity_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None


class IdentityRecord(BaseModel):
    """Read model of an identity held by the external provider."""

    id: str
    email: Optional[str] = None
    phone: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ProfileRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    external_identity_id: str
    email: str
    phone: Optional[str] = None
    user_type: str


class BusinessRecordView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    profile_id: UUID
    business_name: str
    category: str
    email: str
    phone: Optional[str] = None
    verification_status: VerificationStatus


class BusinessDeletion(BaseModel):
    """What a local business deletion removed."""

    business_id: int
    profile_id: UUID
    profile_deleted: bool
    external_identity_id: Optional[str] = None


class SyncOutboxEntry(BaseModel):
    """Read model of a sync_outbox row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    payload: dict[str, Any]
    attempts: int
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    next_attempt_at: Optional[datetime] = None
    claimed_until: Optional[datetime] = None

    @property
    def outbox_type(self) -> Optional[SyncOutboxType]:
        """Parsed discriminator, or None for a type this build does not know."""
        try:
            return SyncOutboxType(self.type)
        except ValueError:
            return None


class EmailMismatch(BaseModel):
    profile_id: UUID
    external_identity_id: str
    profile_email: str
    identity_email: Optional[str] = None


class ReconciliationReport(BaseModel):
    """Drift between local business profiles and provider identities."""

    generated_at: datetime
    profiles_checked: int
    identities_checked: int
    profiles_missing_identity: list[ProfileRecord] = Field(default_factory=list)
    identities_missing_profile: list[IdentityRecord] = Field(default_factory=list)
    email_mismatches: list[EmailMismatch] = Field(default_factory=list)
    stuck_outbox_entries: list[SyncOutboxEntry] = Field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not (
            self.profiles_missing_identity
            or self.identities_missing_profile
            or self.email_mismatches
            or self.stuck_outbox_entries
        )


class ReconcileFixResult(BaseModel):
    mode: ReconcileFixMode
    message: str
    profile_id: Optional[UUID] = None
    external_identity_id: Optional[str] = None


# HTTP request bodies


class UpdateEmailRequest(BaseModel):
    email: EmailStr


class UpdatePhoneRequest(BaseModel):
    phone: str = Field(min_length=1, max_length=32)


class SetPasswordRequest(BaseModel):
    password: SecretStr

    @field_validator("password")
    @classmethod
    def password_min_length(cls, value: SecretStr) -> SecretStr:
        return _check_password_length(value)


class SetStatusRequest(BaseModel):
    status: str


class ReconcileFixRequest(BaseModel):
    mode: ReconcileFixMode
    profile_id: Optional[UUID] = None
    external_identity_id: Optional[str] = Field(default=None, min_length=1)
