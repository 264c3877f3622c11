from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Protocol
from uuid import UUID

from certify.core.errors import (
    AlreadyRevokedError,
    DuplicateIdError,
    NotFoundError,
    UnauthorizedError,
)
from certify.models.certificate import (
    CertificateStatus,
    CredentialRecord,
    same_address,
)


class CertificateRepo(Protocol):
    async def create(self, record: CredentialRecord) -> CredentialRecord: ...
    async def get_by_id(self, certificate_id: UUID) -> CredentialRecord: ...
    async def find_by_participant(self, address: str) -> list[CredentialRecord]: ...
    async def update_revocation(
        self,
        certificate_id: UUID,
        reason: str,
        revoked_by: str,
        revoked_at: datetime,
    ) -> CredentialRecord: ...


class InMemoryCertificateRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, CredentialRecord] = {}
        # Guards the read-check-write in update_revocation so exactly one of
        # several concurrent revocations wins.  A thread lock (not an
        # asyncio.Lock) because sync route handlers run in a threadpool.
        self._lock = threading.Lock()

    async def create(self, record: CredentialRecord) -> CredentialRecord:
        with self._lock:
            if record.id in self._by_id:
                raise DuplicateIdError(str(record.id))
            self._by_id[record.id] = record
        return record

    async def get_by_id(self, certificate_id: UUID) -> CredentialRecord:
        record = self._by_id.get(certificate_id)
        if record is None:
            raise NotFoundError(str(certificate_id))
        return record

    async def find_by_participant(self, address: str) -> list[CredentialRecord]:
        matches = [r for r in self._by_id.values() if r.involves(address)]
        return sorted(matches, key=lambda r: r.issue_date)

    async def update_revocation(
        self,
        certificate_id: UUID,
        reason: str,
        revoked_by: str,
        revoked_at: datetime,
    ) -> CredentialRecord:
        with self._lock:
            record = self._by_id.get(certificate_id)
            if record is None:
                raise NotFoundError(str(certificate_id))
            if not same_address(record.issuer_address, revoked_by):
                raise UnauthorizedError("only the issuer can revoke a certificate")
            if record.status == CertificateStatus.REVOKED:
                raise AlreadyRevokedError(str(certificate_id))

            updated = replace(
                record,
                status=CertificateStatus.REVOKED,
                revocation_reason=reason,
                revocation_date=revoked_at,
                revoked_by=revoked_by.strip().lower(),
            )
            self._by_id[certificate_id] = updated
            return updated
