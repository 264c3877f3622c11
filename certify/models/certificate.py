from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

from certify.core.errors import ValidationError

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")

# Bump when the hashed field set changes.  Older records keep the version they
# were issued with and are re-verified against that field set.
CURRENT_FINGERPRINT_VERSION = 2


class CertificateStatus(StrEnum):
    VALID = "valid"
    EXPIRED = "expired"  # derived on read, never stored
    REVOKED = "revoked"


class CredentialCategory(StrEnum):
    ACADEMIC = "academic"
    SKILL = "skill"
    EMPLOYMENT = "employment"
    PROFESSIONAL = "professional"
    GOVERNMENT = "government"
    GIG = "gig"

    @classmethod
    def parse(cls, value: str | None) -> CredentialCategory | None:
        if value is None or not value.strip():
            return None
        raw = value.strip().lower()
        if raw == "gig-work":  # legacy spelling
            return cls.GIG
        try:
            return cls(raw)
        except ValueError:
            raise ValidationError(f"unknown category {value!r}") from None


def normalize_address(value: str) -> str:
    """Lowercase an account address and check its shape."""
    address = value.strip().lower()
    if not _ADDRESS_RE.match(address):
        raise ValidationError(f"invalid account address {value!r}")
    return address


def same_address(a: str | None, b: str | None) -> bool:
    if a is None or b is None:
        return False
    return a.strip().lower() == b.strip().lower()


def ensure_utc(value: datetime) -> datetime:
    # Naive datetimes are taken to be UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True, slots=True)
class CredentialDraft:
    """What an issuer supplies; everything else is assigned at issuance."""

    name: str
    issuer_name: str
    certificate_type: str
    recipient_address: str | None = None
    category: CredentialCategory | None = None
    sub_category: str | None = None
    expiry_date: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CredentialRecord:
    """An issued certificate, the unit of trust.

    id, issuer_address, issue_date, content_fingerprint and signature never
    change after issuance.  The only mutation is the one-way revocation.
    """

    id: UUID
    name: str
    issuer_address: str
    issuer_name: str
    certificate_type: str
    issue_date: datetime
    content_ref: str
    content_fingerprint: str
    signature: str
    recipient_address: str | None = None
    category: CredentialCategory | None = None
    sub_category: str | None = None
    expiry_date: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    fingerprint_version: int = CURRENT_FINGERPRINT_VERSION
    status: CertificateStatus = CertificateStatus.VALID
    revocation_reason: str | None = None
    revocation_date: datetime | None = None
    revoked_by: str | None = None

    @property
    def is_revoked(self) -> bool:
        return self.status == CertificateStatus.REVOKED

    def involves(self, address: str) -> bool:
        """True if address is the issuer or the recipient."""
        return same_address(self.issuer_address, address) or same_address(
            self.recipient_address, address
        )


@dataclass(frozen=True, slots=True)
class PreparedCertificate:
    """Everything a wallet needs to sign, before anything is persisted."""

    id: UUID
    issue_date: datetime
    issuer_address: str
    content_ref: str
    content_fingerprint: str
    fingerprint_version: int
    message: str  # what the wallet signs (the fingerprint hex string)
