"""Certificate lifecycle status.

  valid ──revoke──▶ revoked   (stored, terminal, issuer only, exactly once)
  valid ◀─clock──▶ expired    (derived from expiry_date vs now, never stored)

Status is a function of (stored record, current time).  Nothing here caches
it: the same record is valid before its expiry date and expired after.
"""

from __future__ import annotations

from datetime import UTC, datetime

from certify.models.certificate import CertificateStatus, CredentialRecord, ensure_utc


def utcnow() -> datetime:
    return datetime.now(UTC)


def is_expired(record: CredentialRecord, now: datetime) -> bool:
    if record.expiry_date is None:
        return False
    return ensure_utc(now) >= ensure_utc(record.expiry_date)


def compute_status(
    record: CredentialRecord, now: datetime | None = None
) -> CertificateStatus:
    if record.status == CertificateStatus.REVOKED:
        return CertificateStatus.REVOKED
    if is_expired(record, now or utcnow()):
        return CertificateStatus.EXPIRED
    return CertificateStatus.VALID
