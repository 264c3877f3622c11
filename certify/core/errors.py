"""Error taxonomy for issuance, revocation and storage.

Issuance and revocation fail fast by raising one of these.  Verification
does NOT raise for a bad certificate: an invalid certificate is a normal
result value (see certify.services.verification_service).  Only infrastructure
failures (PersistenceError) escape from verification, so callers can tell
"this certificate is fraudulent" apart from "the service is broken".
"""

from __future__ import annotations


class CertifyError(Exception):
    """Base class for every error raised by the certify core."""


class ValidationError(CertifyError, ValueError):
    """Malformed input (missing field, empty revocation reason, bad address)."""


class SerializationError(ValidationError):
    """A field value cannot be canonically serialized."""


class SigningError(CertifyError):
    """The signing capability failed, was rejected, or timed out."""


class RecoveryError(CertifyError):
    """No address could be recovered from a (digest, signature) pair."""


class PersistenceError(CertifyError):
    """The record store is unavailable or a write failed."""


class SignedButNotPersistedError(PersistenceError):
    """Signing succeeded but the record could not be saved.

    The signature is discarded.  Nothing half-issued is kept, so the
    caller has to run issuance again (and sign again).
    """

    def __init__(self, certificate_id: str, fingerprint: str) -> None:
        super().__init__(
            f"certificate {certificate_id} was signed but not saved; "
            "issue it again to produce a new signature"
        )
        self.certificate_id = certificate_id
        self.fingerprint = fingerprint


class ContentStoreError(PersistenceError):
    """Off-chain metadata storage failed."""


class NotFoundError(CertifyError, LookupError):
    """Requested certificate id does not exist."""


class DuplicateIdError(CertifyError):
    """A certificate with this id already exists."""


class AlreadyRevokedError(CertifyError):
    """The certificate was already revoked; revocation happens exactly once."""


class UnauthorizedError(CertifyError):
    """Caller is not the issuer of the certificate."""
