"""Certificate issuance: validate → store payload → hash → sign → persist.

One atomic sequence per certificate.  Any failure stops it and nothing is
kept: there is no "pending" half-issued record.  If signing succeeds but
the write fails, the caller gets SignedButNotPersistedError and must issue
again (which signs again).

Browser wallets sign client side, so the sequence can be split in two:
prepare() computes everything up to the fingerprint without persisting,
the wallet signs it, and issue() is called with a PresignedSigner plus the
prepared id / issue date / content ref.  issue() always recomputes the
fingerprint itself and checks the signature recovers to the signer, so a
client cannot get a record stored under a fingerprint it made up.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from certify.core.errors import (
    CertifyError,
    DuplicateIdError,
    NotFoundError,
    PersistenceError,
    RecoveryError,
    SignedButNotPersistedError,
    SigningError,
    ValidationError,
)
from certify.core.logging import short_signature
from certify.core.metrics import CERTIFICATES_ISSUED, ISSUANCE_FAILURES, SIGNING_DURATION
from certify.crypto.canonical import format_timestamp, serialize
from certify.crypto.hashing import content_fingerprint
from certify.crypto.signing import SigningCapability, recover_address, sign_fingerprint
from certify.models.certificate import (
    CURRENT_FINGERPRINT_VERSION,
    CredentialDraft,
    CredentialRecord,
    PreparedCertificate,
    ensure_utc,
    normalize_address,
    same_address,
)
from certify.models.metadata import validate_metadata
from certify.repos.certificate_repo import CertificateRepo
from certify.services.anchoring import request_anchor
from certify.services.content_store import ContentStore
from certify.services.lifecycle import utcnow
from certify.services.task_queue import TaskQueue

logger = logging.getLogger(__name__)

BULK_BATCH_SIZE = 5


@dataclass(frozen=True, slots=True)
class IssueRequest:
    draft: CredentialDraft
    signer: SigningCapability
    certificate_id: UUID | None = None
    issue_date: datetime | None = None
    content_ref: str | None = None


@dataclass(frozen=True, slots=True)
class BulkFailure:
    index: int
    name: str
    error: str


@dataclass(frozen=True, slots=True)
class BulkIssueResult:
    issued: list[CredentialRecord] = field(default_factory=list)
    failed: list[BulkFailure] = field(default_factory=list)


def _truncate_to_millis(value: datetime) -> datetime:
    # The canonical form carries milliseconds; store exactly what was hashed.
    value = ensure_utc(value)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def _off_chain_payload(record: CredentialRecord) -> dict[str, Any]:
    return {
        "id": str(record.id),
        "name": record.name,
        "recipientAddress": record.recipient_address,
        "issuerAddress": record.issuer_address,
        "issuerName": record.issuer_name,
        "certificateType": record.certificate_type,
        "category": record.category.value if record.category else None,
        "subCategory": record.sub_category,
        "issueDate": format_timestamp(record.issue_date),
        "expiryDate": (
            format_timestamp(record.expiry_date) if record.expiry_date else None
        ),
        "metadata": record.metadata,
    }


class IssuanceService:
    def __init__(
        self,
        repo: CertificateRepo,
        content_store: ContentStore,
        queue: TaskQueue | None = None,
    ) -> None:
        self._repo = repo
        self._content_store = content_store
        self._queue = queue

    # ------------------------------------------------------------------
    # Building the unsigned record
    # ------------------------------------------------------------------

    def _validate(
        self, draft: CredentialDraft, issuer_address: str, issue_date: datetime
    ) -> CredentialRecord:
        name = draft.name.strip()
        if not name:
            raise ValidationError("name must be non-empty")
        issuer_name = draft.issuer_name.strip()
        if not issuer_name:
            raise ValidationError("issuer_name must be non-empty")
        certificate_type = draft.certificate_type.strip()
        if not certificate_type:
            raise ValidationError("certificate_type must be non-empty")

        recipient = (
            normalize_address(draft.recipient_address)
            if draft.recipient_address
            else None
        )
        expiry = ensure_utc(draft.expiry_date) if draft.expiry_date else None
        if expiry is not None and expiry <= issue_date:
            raise ValidationError("expiry_date must be after the issue date")

        metadata = validate_metadata(draft.category, draft.metadata)
        # Fail here, not after the wallet prompt, if metadata can't be hashed.
        serialize(metadata)

        return CredentialRecord(
            id=uuid4(),
            name=name,
            issuer_address=normalize_address(issuer_address),
            issuer_name=issuer_name,
            certificate_type=certificate_type,
            issue_date=issue_date,
            content_ref="",
            content_fingerprint="",
            signature="",
            recipient_address=recipient,
            category=draft.category,
            sub_category=(draft.sub_category or "").strip() or None,
            expiry_date=expiry,
            metadata=metadata,
            fingerprint_version=CURRENT_FINGERPRINT_VERSION,
        )

    async def _build_unsigned(
        self,
        draft: CredentialDraft,
        issuer_address: str,
        *,
        certificate_id: UUID | None,
        issue_date: datetime | None,
        content_ref: str | None,
    ) -> CredentialRecord:
        issued_at = _truncate_to_millis(issue_date or utcnow())
        record = self._validate(draft, issuer_address, issued_at)
        record = replace(record, id=certificate_id or record.id)

        if content_ref is None:
            content_ref = await self._content_store.put(_off_chain_payload(record))
        record = replace(record, content_ref=content_ref)

        fingerprint = content_fingerprint(record, record.fingerprint_version)
        return replace(record, content_fingerprint=fingerprint)

    async def prepare(
        self,
        draft: CredentialDraft,
        issuer_address: str,
        *,
        certificate_id: UUID | None = None,
        issue_date: datetime | None = None,
    ) -> PreparedCertificate:
        """Everything a wallet needs to sign.  Persists nothing."""
        record = await self._build_unsigned(
            draft,
            issuer_address,
            certificate_id=certificate_id,
            issue_date=issue_date,
            content_ref=None,
        )
        return PreparedCertificate(
            id=record.id,
            issue_date=record.issue_date,
            issuer_address=record.issuer_address,
            content_ref=record.content_ref,
            content_fingerprint=record.content_fingerprint,
            fingerprint_version=record.fingerprint_version,
            message=record.content_fingerprint,
        )

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    async def issue(
        self,
        draft: CredentialDraft,
        signer: SigningCapability,
        *,
        timeout: float | None = None,
        certificate_id: UUID | None = None,
        issue_date: datetime | None = None,
        content_ref: str | None = None,
    ) -> CredentialRecord:
        try:
            record = await self._build_unsigned(
                draft,
                signer.get_address(),
                certificate_id=certificate_id,
                issue_date=issue_date,
                content_ref=content_ref,
            )
        except ValidationError:
            ISSUANCE_FAILURES.labels(stage="validation").inc()
            raise
        except PersistenceError:
            ISSUANCE_FAILURES.labels(stage="persistence").inc()
            raise

        start = time.monotonic()
        try:
            signature = await sign_fingerprint(
                record.content_fingerprint, signer, timeout=timeout
            )
            self._check_signature(record, signature)
        except SigningError:
            ISSUANCE_FAILURES.labels(stage="signing").inc()
            raise
        finally:
            SIGNING_DURATION.observe(time.monotonic() - start)

        if content_ref is not None:
            await self._check_content_ref(record)

        record = replace(record, signature=signature)
        try:
            await self._repo.create(record)
        except DuplicateIdError:
            ISSUANCE_FAILURES.labels(stage="persistence").inc()
            raise
        except PersistenceError as e:
            ISSUANCE_FAILURES.labels(stage="persistence").inc()
            logger.error(
                "Certificate signed but not saved id=%s: %s",
                record.id,
                e,
                extra={"certificate_id": str(record.id)},
            )
            raise SignedButNotPersistedError(
                str(record.id), record.content_fingerprint
            ) from e

        CERTIFICATES_ISSUED.labels(
            category=record.category.value if record.category else "none"
        ).inc()
        logger.info(
            "Issued certificate id=%s issuer=%s fingerprint=%s",
            record.id,
            record.issuer_address,
            record.content_fingerprint[:18],
            extra={"certificate_id": str(record.id), "issuer": record.issuer_address},
        )
        if self._queue is not None:
            await request_anchor(self._queue, record, "issue")
        return record

    async def _check_content_ref(self, record: CredentialRecord) -> None:
        """A prepared content_ref must hold exactly this certificate's payload."""
        try:
            stored = await self._content_store.get(record.content_ref)
        except NotFoundError:
            ISSUANCE_FAILURES.labels(stage="validation").inc()
            raise ValidationError(
                f"content_ref {record.content_ref!r} is not in the content store"
            ) from None
        except PersistenceError:
            ISSUANCE_FAILURES.labels(stage="persistence").inc()
            raise
        if serialize(stored) != serialize(_off_chain_payload(record)):
            ISSUANCE_FAILURES.labels(stage="validation").inc()
            logger.warning(
                "content_ref payload differs from certificate id=%s ref=%s",
                record.id,
                record.content_ref,
                extra={"certificate_id": str(record.id)},
            )
            raise ValidationError("content_ref does not hold this certificate's payload")

    @staticmethod
    def _check_signature(record: CredentialRecord, signature: str) -> None:
        """The signature must recover to the issuer before anything is saved."""
        try:
            recovered = recover_address(record.content_fingerprint, signature)
        except RecoveryError as e:
            raise SigningError(f"signer returned an unusable signature: {e}") from e
        if not same_address(recovered, record.issuer_address):
            logger.warning(
                "Signature does not match issuer id=%s issuer=%s recovered=%s sig=%s",
                record.id,
                record.issuer_address,
                recovered,
                short_signature(signature),
                extra={"certificate_id": str(record.id), "issuer": record.issuer_address},
            )
            raise SigningError("signature does not match the issuer address")

    async def issue_bulk(
        self,
        requests: Sequence[IssueRequest],
        *,
        timeout: float | None = None,
    ) -> BulkIssueResult:
        """Issue many certificates, BULK_BATCH_SIZE at a time.

        A failing item is recorded and skipped; it does not stop the rest.
        """
        result = BulkIssueResult()
        for start in range(0, len(requests), BULK_BATCH_SIZE):
            batch = requests[start : start + BULK_BATCH_SIZE]
            outcomes = await asyncio.gather(
                *(
                    self.issue(
                        req.draft,
                        req.signer,
                        timeout=timeout,
                        certificate_id=req.certificate_id,
                        issue_date=req.issue_date,
                        content_ref=req.content_ref,
                    )
                    for req in batch
                ),
                return_exceptions=True,
            )
            for offset, (req, outcome) in enumerate(zip(batch, outcomes, strict=True)):
                if isinstance(outcome, CredentialRecord):
                    result.issued.append(outcome)
                elif isinstance(outcome, CertifyError):
                    logger.warning(
                        "Bulk item %d (%s) failed: %s",
                        start + offset,
                        req.draft.name,
                        outcome,
                    )
                    result.failed.append(
                        BulkFailure(
                            index=start + offset,
                            name=req.draft.name,
                            error=str(outcome),
                        )
                    )
                else:
                    raise outcome
            logger.info(
                "Bulk issuance progress %d/%d",
                min(start + BULK_BATCH_SIZE, len(requests)),
                len(requests),
            )
        return result
