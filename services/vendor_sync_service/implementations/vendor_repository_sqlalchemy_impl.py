"""
SQLAlchemy implementation of VendorRepositoryProtocol.

Each method is one unit of work: its own session, wrapped in a single
transaction that commits on success and rolls back on failure.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from services.vendor_sync_service.enums import VerificationStatus
from services.vendor_sync_service.implementations.database_errors import raise_database_error
from services.vendor_sync_service.logging_utils import create_service_logger
from services.vendor_sync_service.models import (
    BusinessDeletion,
    BusinessRecordView,
    ProfileRecord,
    VendorProfileData,
)
from services.vendor_sync_service.models_db import BusinessRecord, Profile
from services.vendor_sync_service.protocols import VendorRepositoryProtocol

logger = create_service_logger("vendor_sync_service.vendor_repository")

_DB_ERRORS = (SQLAlchemyError, asyncio.TimeoutError)


class PostgresVendorRepository(VendorRepositoryProtocol):
    def __init__(self, engine: AsyncEngine, service_name: str = "vendor_sync_service") -> None:
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)
        self.service_name = service_name

    async def get_external_identity_id(self, profile_id: UUID) -> Optional[str]:
        try:
            async with self._session_factory() as session:
                stmt = select(Profile.external_identity_id).where(Profile.id == profile_id)
                return (await session.execute(stmt)).scalar_one_or_none()
        except _DB_ERRORS as e:
            raise_database_error(
                e, self.service_name, "get_external_identity_id", profile_id=str(profile_id)
            )

    async def get_profile(self, profile_id: UUID) -> Optional[ProfileRecord]:
        try:
            async with self._session_factory() as session:
                profile = await session.get(Profile, profile_id)
                return ProfileRecord.model_validate(profile) if profile else None
        except _DB_ERRORS as e:
            raise_database_error(e, self.service_name, "get_profile", profile_id=str(profile_id))

    async def get_profile_by_external_identity_id(
        self, external_identity_id: str
    ) -> Optional[ProfileRecord]:
        try:
            async with self._session_factory() as session:
                stmt = select(Profile).where(Profile.external_identity_id == external_identity_id)
                profile = (await session.execute(stmt)).scalar_one_or_none()
                return ProfileRecord.model_validate(profile) if profile else None
        except _DB_ERRORS as e:
            raise_database_error(
                e,
                self.service_name,
                "get_profile_by_external_identity_id",
                external_identity_id=external_identity_id,
            )

    async def create_vendor_records(
        self, external_identity_id: str, vendor: VendorProfileData
    ) -> tuple[UUID, int]:
        """Insert the profile and its first business record in one transaction."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    profile = Profile(
                        id=uuid4(),
                        external_identity_id=external_identity_id,
                        email=str(vendor.email),
                        phone=vendor.phone,
                        user_type="business",
                    )
                    session.add(profile)
                    await session.flush()

                    business = BusinessRecord(
                        profile_id=profile.id,
                        business_name=vendor.business_name,
                        category=vendor.business_category,
                        address=vendor.business_address,
                        email=str(vendor.email),
                        phone=vendor.phone,
                        verification_status=VerificationStatus.PENDING.value,
                        government_id=vendor.documents.government_id,
                        proof_of_address=vendor.documents.proof_of_address,
                        proof_of_business=vendor.documents.proof_of_business,
                    )
                    session.add(business)
                    await session.flush()
                    profile_id, business_id = profile.id, business.id
        except _DB_ERRORS as e:
            raise_database_error(
                e,
                self.service_name,
                "create_vendor_records",
                external_identity_id=external_identity_id,
            )

        logger.info(
            "Created vendor records",
            extra={
                "profile_id": str(profile_id),
                "business_id": business_id,
                "external_identity_id": external_identity_id,
            },
        )
        return profile_id, business_id

    async def update_contact(
        self,
        profile_id: UUID,
        *,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> int:
        """Write email/phone to the profile and every business record it owns."""
        values: dict[str, object] = {}
        if email is not None:
            values["email"] = email
        if phone is not None:
            values["phone"] = phone
        if not values:
            return 0

        now = datetime.now(UTC)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(Profile)
                        .where(Profile.id == profile_id)
                        .values(**values, updated_at=now)
                    )
                    await session.execute(
                        update(BusinessRecord)
                        .where(BusinessRecord.profile_id == profile_id)
                        .values(**values, updated_at=now)
                    )
                    return result.rowcount
        except _DB_ERRORS as e:
            raise_database_error(
                e,
                self.service_name,
                "update_contact",
                profile_id=str(profile_id),
                fields=sorted(values),
            )

    async def set_verification_status(self, profile_id: UUID, status: VerificationStatus) -> int:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(BusinessRecord)
                        .where(BusinessRecord.profile_id == profile_id)
                        .values(verification_status=status.value, updated_at=datetime.now(UTC))
                    )
                    return result.rowcount
        except _DB_ERRORS as e:
            raise_database_error(
                e,
                self.service_name,
                "set_verification_status",
                profile_id=str(profile_id),
                status=status.value,
            )

    async def get_verification_status(self, profile_id: UUID) -> Optional[VerificationStatus]:
        try:
            async with self._session_factory() as session:
                stmt = (
                    select(BusinessRecord.verification_status)
                    .where(BusinessRecord.profile_id == profile_id)
                    .order_by(BusinessRecord.updated_at.desc(), BusinessRecord.id.desc())
                    .limit(1)
                )
                value = (await session.execute(stmt)).scalar_one_or_none()
        except _DB_ERRORS as e:
            raise_database_error(
                e, self.service_name, "get_verification_status", profile_id=str(profile_id)
            )
        return VerificationStatus(value) if value is not None else None

    async def delete_business_record(self, business_id: int) -> Optional[BusinessDeletion]:
        """
        Delete one business record, and its profile when no other business remains.

        The owning profile row is locked first so two concurrent deletions of
        sibling businesses cannot both conclude the other one still exists.
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    profile_id = (
                        await session.execute(
                            select(BusinessRecord.profile_id).where(
                                BusinessRecord.id == business_id
                            )
                        )
                    ).scalar_one_or_none()
                    if profile_id is None:
                        return None

                    profile = (
                        await session.execute(
                            select(Profile).where(Profile.id == profile_id).with_for_update()
                        )
                    ).scalar_one_or_none()

                    await session.execute(
                        delete(BusinessRecord).where(BusinessRecord.id == business_id)
                    )
                    remaining = (
                        await session.execute(
                            select(func.count())
                            .select_from(BusinessRecord)
                            .where(BusinessRecord.profile_id == profile_id)
                        )
                    ).scalar_one()

                    profile_deleted = False
                    external_identity_id = profile.external_identity_id if profile else None
                    if remaining == 0 and profile is not None:
                        await session.delete(profile)
                        profile_deleted = True
        except _DB_ERRORS as e:
            raise_database_error(
                e, self.service_name, "delete_business_record", business_id=business_id
            )

        logger.info(
            "Deleted business record",
            extra={
                "business_id": business_id,
                "profile_id": str(profile_id),
                "profile_deleted": profile_deleted,
            },
        )
        return BusinessDeletion(
            business_id=business_id,
            profile_id=profile_id,
            profile_deleted=profile_deleted,
            external_identity_id=external_identity_id,
        )

    async def list_business_records(self, profile_id: UUID) -> list[BusinessRecordView]:
        try:
            async with self._session_factory() as session:
                stmt = (
                    select(BusinessRecord)
                    .where(BusinessRecord.profile_id == profile_id)
                    .order_by(BusinessRecord.id)
                )
                rows = (await session.execute(stmt)).scalars().all()
                return [BusinessRecordView.model_validate(row) for row in rows]
        except _DB_ERRORS as e:
            raise_database_error(
                e, self.service_name, "list_business_records", profile_id=str(profile_id)
            )

    async def list_profiles(self, user_type: Optional[str] = "business") -> list[ProfileRecord]:
        try:
            async with self._session_factory() as session:
                stmt = select(Profile).order_by(Profile.created_at)
                if user_type is not None:
                    stmt = stmt.where(Profile.user_type == user_type)
                rows = (await session.execute(stmt)).scalars().all()
                return [ProfileRecord.model_validate(row) for row in rows]
        except _DB_ERRORS as e:
            raise_database_error(e, self.service_name, "list_profiles")

    async def link_external_identity(self, profile_id: UUID, external_identity_id: str) -> int:
        """Point a profile at a different provider identity."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(Profile)
                        .where(Profile.id == profile_id)
                        .values(
                            external_identity_id=external_identity_id,
                            updated_at=datetime.now(UTC),
                        )
                    )
                    return result.rowcount
        except _DB_ERRORS as e:
            raise_database_error(
                e,
                self.service_name,
                "link_external_identity",
                profile_id=str(profile_id),
                external_identity_id=external_identity_id,
            )

    async def delete_profile(self, profile_id: UUID) -> bool:
        """Delete a profile together with all of its business records."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(
                        delete(BusinessRecord).where(BusinessRecord.profile_id == profile_id)
                    )
                    result = await session.execute(delete(Profile).where(Profile.id == profile_id))
                    deleted = result.rowcount > 0
        except _DB_ERRORS as e:
            raise_database_error(e, self.service_name, "delete_profile", profile_id=str(profile_id))

        if deleted:
            logger.info("Deleted profile", extra={"profile_id": str(profile_id)})
        return deleted
