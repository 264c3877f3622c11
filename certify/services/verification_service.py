"""Certificate verification.

verify_record() answers "should this certificate be trusted right now?"
Checks run cheapest and most authoritative first, and the first failure
decides the outcome:

  1. revoked?   stored, terminal
  2. expired?   derived from expiry_date and the current time
  3. recompute the fingerprint from the stored fields, recover the signer
  4. recovered signer == claimed issuer?

Lifecycle and signature validity are independent: a revoked certificate
may carry a perfectly good signature and still verifies as invalid.

A certificate that fails verification is a normal result, not an
exception.  Only a missing id (NotFoundError) or a broken store
(PersistenceError) raise, so "fraudulent" and "service down" stay
distinguishable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from uuid import UUID

from certify.core.errors import RecoveryError, SerializationError
from certify.core.metrics import VERIFICATIONS
from certify.crypto.hashing import content_fingerprint
from certify.crypto.signing import recover_address
from certify.models.certificate import (
    CertificateStatus,
    CredentialRecord,
    same_address,
)
from certify.repos.certificate_repo import CertificateRepo
from certify.services.lifecycle import compute_status, utcnow

logger = logging.getLogger(__name__)


class VerificationOutcome(StrEnum):
    VALID = "Valid"
    REVOKED = "Revoked"
    EXPIRED = "Expired"
    SIGNATURE_RECOVERY_FAILED = "SignatureRecoveryFailed"
    ISSUER_MISMATCH = "IssuerMismatch"


@dataclass(frozen=True, slots=True)
class VerificationResult:
    ok: bool
    outcome: VerificationOutcome
    status: CertificateStatus
    message: str
    checked_at: datetime
    recovered_issuer: str | None = None
    # Informational only; a mismatch is already reported as IssuerMismatch.
    fingerprint_matches_stored: bool | None = None
    revocation_reason: str | None = None


def verify_record(
    record: CredentialRecord, *, now: datetime | None = None
) -> VerificationResult:
    now = now or utcnow()
    status = compute_status(record, now)

    if status == CertificateStatus.REVOKED:
        return _result(
            record,
            VerificationOutcome.REVOKED,
            status,
            now,
            f"Certificate has been revoked. Reason: {record.revocation_reason}",
            revocation_reason=record.revocation_reason,
        )

    if status == CertificateStatus.EXPIRED:
        return _result(
            record, VerificationOutcome.EXPIRED, status, now, "Certificate has expired"
        )

    try:
        candidate = content_fingerprint(record, record.fingerprint_version)
    except SerializationError as e:
        # Stored fields no longer serialize (tampered metadata, unknown
        # version): no fingerprint means no signer to recover.
        return _result(
            record,
            VerificationOutcome.SIGNATURE_RECOVERY_FAILED,
            status,
            now,
            f"Failed to verify signature: {e}",
        )
    matches_stored = candidate == record.content_fingerprint.lower()

    try:
        recovered = recover_address(candidate, record.signature)
    except RecoveryError as e:
        return _result(
            record,
            VerificationOutcome.SIGNATURE_RECOVERY_FAILED,
            status,
            now,
            f"Failed to verify signature: {e}",
            fingerprint_matches_stored=matches_stored,
        )

    if not same_address(recovered, record.issuer_address):
        # Forged signature or edited fields: indistinguishable from here.
        return _result(
            record,
            VerificationOutcome.ISSUER_MISMATCH,
            status,
            now,
            "Authenticity check failed",
            recovered_issuer=recovered,
            fingerprint_matches_stored=matches_stored,
        )

    return _result(
        record,
        VerificationOutcome.VALID,
        status,
        now,
        "Certificate is valid",
        recovered_issuer=recovered,
        fingerprint_matches_stored=matches_stored,
    )


def _result(
    record: CredentialRecord,
    outcome: VerificationOutcome,
    status: CertificateStatus,
    now: datetime,
    message: str,
    **extra,
) -> VerificationResult:
    VERIFICATIONS.labels(outcome=outcome.value).inc()
    if outcome != VerificationOutcome.VALID:
        logger.info(
            "Certificate failed verification id=%s outcome=%s",
            record.id,
            outcome.value,
            extra={"certificate_id": str(record.id), "outcome": outcome.value},
        )
    return VerificationResult(
        ok=outcome == VerificationOutcome.VALID,
        outcome=outcome,
        status=status,
        message=message,
        checked_at=now,
        **extra,
    )


class VerificationService:
    """Read-only; safe to run concurrently without coordination."""

    def __init__(self, repo: CertificateRepo) -> None:
        self._repo = repo

    async def verify(
        self, certificate_id: UUID, *, now: datetime | None = None
    ) -> tuple[CredentialRecord, VerificationResult]:
        # NotFoundError / PersistenceError propagate to the caller.
        record = await self._repo.get_by_id(certificate_id)
        return record, verify_record(record, now=now)
