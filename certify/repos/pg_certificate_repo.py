"""PostgreSQL implementation of CertificateRepo.

Every call runs in its own session and transaction (session_scope) and
commits before it returns.  A caller that gets a record back knows the row
is durable, and a failed commit reaches it as PersistenceError while it
can still react.  Separate sessions also let issue_bulk write several
certificates concurrently: an AsyncSession must not be shared between
tasks, and one item's IntegrityError must not poison the others.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from certify.core.errors import (
    AlreadyRevokedError,
    DuplicateIdError,
    NotFoundError,
    PersistenceError,
    UnauthorizedError,
)
from certify.db.engine import session_scope
from certify.db.tables import CertificateRow
from certify.models.certificate import (
    CertificateStatus,
    CredentialCategory,
    CredentialRecord,
    same_address,
)


class PgCertificateRepo:
    """Satisfies the CertificateRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, record: CredentialRecord) -> CredentialRecord:
        async with session_scope(self._session_factory) as session:
            session.add(_record_to_row(record))
            try:
                await session.flush()
            except IntegrityError:
                raise DuplicateIdError(str(record.id)) from None
        return record

    async def get_by_id(self, certificate_id: UUID) -> CredentialRecord:
        async with session_scope(self._session_factory) as session:
            row = await _get_row(session, certificate_id)
            if row is None:
                raise NotFoundError(str(certificate_id))
            return _row_to_record(row)

    async def find_by_participant(self, address: str) -> list[CredentialRecord]:
        address = address.strip().lower()
        stmt = (
            select(CertificateRow)
            .where(
                or_(
                    CertificateRow.issuer_address == address,
                    CertificateRow.recipient_address == address,
                )
            )
            .order_by(CertificateRow.issue_date)
        )
        async with session_scope(self._session_factory) as session:
            try:
                rows = (await session.execute(stmt)).scalars().all()
            except SQLAlchemyError as e:
                raise PersistenceError(f"could not list certificates: {e}") from e
            return [_row_to_record(r) for r in rows]

    async def update_revocation(
        self,
        certificate_id: UUID,
        reason: str,
        revoked_by: str,
        revoked_at: datetime,
    ) -> CredentialRecord:
        revoked_by = revoked_by.strip().lower()
        # Compare-and-set: the row only changes if it exists, belongs to the
        # caller and is not revoked yet.  Concurrent revocations serialize on
        # the row lock and the loser matches zero rows.
        stmt = (
            update(CertificateRow)
            .where(
                CertificateRow.id == certificate_id,
                CertificateRow.issuer_address == revoked_by,
                CertificateRow.status != CertificateStatus.REVOKED.value,
            )
            .values(
                status=CertificateStatus.REVOKED.value,
                revocation_reason=reason,
                revocation_date=revoked_at,
                revoked_by=revoked_by,
            )
            .returning(CertificateRow)
        )
        async with session_scope(self._session_factory) as session:
            try:
                row = (await session.execute(stmt)).scalar_one_or_none()
            except SQLAlchemyError as e:
                raise PersistenceError(f"could not revoke certificate: {e}") from e
            if row is not None:
                revoked = _row_to_record(row)
            else:
                # Nothing matched; work out why.
                current = await _get_row(session, certificate_id)
                if current is None:
                    raise NotFoundError(str(certificate_id))
                if not same_address(current.issuer_address, revoked_by):
                    raise UnauthorizedError("only the issuer can revoke a certificate")
                raise AlreadyRevokedError(str(certificate_id))
        return revoked


async def _get_row(session: AsyncSession, certificate_id: UUID) -> CertificateRow | None:
    stmt = select(CertificateRow).where(CertificateRow.id == certificate_id)
    try:
        return (await session.execute(stmt)).scalar_one_or_none()
    except SQLAlchemyError as e:
        raise PersistenceError(f"could not load certificate: {e}") from e


def _record_to_row(record: CredentialRecord) -> CertificateRow:
    return CertificateRow(
        id=record.id,
        name=record.name,
        recipient_address=record.recipient_address,
        issuer_address=record.issuer_address,
        issuer_name=record.issuer_name,
        certificate_type=record.certificate_type,
        category=record.category.value if record.category else None,
        sub_category=record.sub_category,
        issue_date=record.issue_date,
        expiry_date=record.expiry_date,
        metadata_json=record.metadata,
        content_ref=record.content_ref,
        content_fingerprint=record.content_fingerprint,
        signature=record.signature,
        fingerprint_version=record.fingerprint_version,
        status=record.status.value,
        revocation_reason=record.revocation_reason,
        revocation_date=record.revocation_date,
        revoked_by=record.revoked_by,
    )


def _row_to_record(row: CertificateRow) -> CredentialRecord:
    return CredentialRecord(
        id=row.id,
        name=row.name,
        recipient_address=row.recipient_address,
        issuer_address=row.issuer_address,
        issuer_name=row.issuer_name,
        certificate_type=row.certificate_type,
        category=CredentialCategory.parse(row.category),
        sub_category=row.sub_category,
        issue_date=row.issue_date,
        expiry_date=row.expiry_date,
        metadata=dict(row.metadata_json or {}),
        content_ref=row.content_ref,
        content_fingerprint=row.content_fingerprint,
        signature=row.signature,
        fingerprint_version=row.fingerprint_version or 1,
        status=CertificateStatus(row.status),
        revocation_reason=row.revocation_reason,
        revocation_date=row.revocation_date,
        revoked_by=row.revoked_by,
    )
