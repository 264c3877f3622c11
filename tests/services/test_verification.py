"""Verification scenarios.

Every bad certificate comes back as a result with ok=False; only a broken
store raises.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta
from uuid import uuid4

import pytest
from prometheus_client import REGISTRY

from certify.core.errors import NotFoundError, PersistenceError
from certify.crypto.hashing import content_fingerprint
from certify.crypto.signing import LocalKeySigner
from certify.models.certificate import CertificateStatus, CredentialRecord
from certify.repos.certificate_repo import InMemoryCertificateRepo
from certify.services.issuance_service import IssuanceService
from certify.services.verification_service import (
    VerificationOutcome,
    VerificationService,
    verify_record,
)
from tests.conftest import ISSUE_DATE, make_draft, sign_text


class _DownRepo(InMemoryCertificateRepo):
    async def get_by_id(self, certificate_id):
        raise PersistenceError("database unavailable")


def _get_sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


@pytest.fixture
def issued(issuance: IssuanceService, issuer: LocalKeySigner) -> CredentialRecord:
    return asyncio.run(issuance.issue(make_draft(), issuer))


def _tamper(repo: InMemoryCertificateRepo, record: CredentialRecord, **changes):
    tampered = replace(record, **changes)
    repo._by_id[record.id] = tampered
    return tampered


# ---- scenario: untouched certificate ----


def test_valid_certificate_verifies(
    repo: InMemoryCertificateRepo, issued: CredentialRecord, issuer: LocalKeySigner
) -> None:
    record, result = asyncio.run(VerificationService(repo).verify(issued.id))

    assert record == issued
    assert result.ok is True
    assert result.outcome == VerificationOutcome.VALID
    assert result.status == CertificateStatus.VALID
    assert result.message == "Certificate is valid"
    assert result.recovered_issuer == issuer.get_address()
    assert result.fingerprint_matches_stored is True


# ---- scenario: edited after issuance ----


@pytest.mark.parametrize(
    "changes",
    [
        {"name": "Mallory"},
        {"recipient_address": "0x" + "cd" * 20},
        {"metadata": {"course": "Numerical Methods", "grade": "A+", "gpa": 4.0}},
        {"issuer_name": "Some Other University"},
    ],
)
def test_tampered_field_fails_authenticity(
    repo: InMemoryCertificateRepo, issued: CredentialRecord, changes: dict
) -> None:
    _tamper(repo, issued, **changes)
    _, result = asyncio.run(VerificationService(repo).verify(issued.id))

    assert result.ok is False
    assert result.outcome == VerificationOutcome.ISSUER_MISMATCH
    assert result.message == "Authenticity check failed"
    assert result.fingerprint_matches_stored is False


def test_tampered_issuer_address_fails_authenticity(
    repo: InMemoryCertificateRepo, issued: CredentialRecord
) -> None:
    impostor = LocalKeySigner.generate()
    _tamper(repo, issued, issuer_address=impostor.get_address())
    _, result = asyncio.run(VerificationService(repo).verify(issued.id))
    assert result.outcome == VerificationOutcome.ISSUER_MISMATCH


def test_forged_signature_fails_authenticity(
    repo: InMemoryCertificateRepo, issued: CredentialRecord
) -> None:
    forger = LocalKeySigner.generate()
    _tamper(repo, issued, signature=sign_text(forger, issued.content_fingerprint))
    _, result = asyncio.run(VerificationService(repo).verify(issued.id))

    assert result.outcome == VerificationOutcome.ISSUER_MISMATCH
    assert result.recovered_issuer == forger.get_address()
    # The stored fingerprint itself is intact; only the signer is wrong.
    assert result.fingerprint_matches_stored is True


def test_edited_stored_fingerprint_is_ignored(
    repo: InMemoryCertificateRepo, issued: CredentialRecord
) -> None:
    _tamper(repo, issued, content_fingerprint="0x" + "00" * 32)
    _, result = asyncio.run(VerificationService(repo).verify(issued.id))
    # Recomputed from the fields, so the signature still checks out.
    assert result.outcome == VerificationOutcome.VALID
    assert result.fingerprint_matches_stored is False


# ---- scenario: unusable signature ----


@pytest.mark.parametrize("signature", ["", "0x1234", "garbage", "0x" + "00" * 65])
def test_unusable_signature_fails_recovery(
    repo: InMemoryCertificateRepo, issued: CredentialRecord, signature: str
) -> None:
    _tamper(repo, issued, signature=signature)
    _, result = asyncio.run(VerificationService(repo).verify(issued.id))

    assert result.ok is False
    assert result.outcome == VerificationOutcome.SIGNATURE_RECOVERY_FAILED
    assert result.message.startswith("Failed to verify signature")


def test_unserializable_stored_metadata_fails_recovery(
    repo: InMemoryCertificateRepo, issued: CredentialRecord
) -> None:
    _tamper(repo, issued, metadata={"score": float("nan")})
    _, result = asyncio.run(VerificationService(repo).verify(issued.id))
    assert result.outcome == VerificationOutcome.SIGNATURE_RECOVERY_FAILED


def test_unknown_fingerprint_version_fails_recovery(
    repo: InMemoryCertificateRepo, issued: CredentialRecord
) -> None:
    _tamper(repo, issued, fingerprint_version=99)
    _, result = asyncio.run(VerificationService(repo).verify(issued.id))
    assert result.outcome == VerificationOutcome.SIGNATURE_RECOVERY_FAILED


# ---- scenario: revoked / expired ----


def test_revoked_certificate_reports_reason(
    repo: InMemoryCertificateRepo, issued: CredentialRecord
) -> None:
    _tamper(
        repo,
        issued,
        status=CertificateStatus.REVOKED,
        revocation_reason="issued in error",
    )
    _, result = asyncio.run(VerificationService(repo).verify(issued.id))

    assert result.ok is False
    assert result.outcome == VerificationOutcome.REVOKED
    assert result.status == CertificateStatus.REVOKED
    assert result.message == "Certificate has been revoked. Reason: issued in error"
    assert result.revocation_reason == "issued in error"


def test_revocation_is_reported_before_authenticity(
    repo: InMemoryCertificateRepo, issued: CredentialRecord
) -> None:
    _tamper(
        repo,
        issued,
        name="Mallory",
        status=CertificateStatus.REVOKED,
        revocation_reason="fraud",
    )
    _, result = asyncio.run(VerificationService(repo).verify(issued.id))
    assert result.outcome == VerificationOutcome.REVOKED


def test_expired_certificate(
    issuance: IssuanceService, repo: InMemoryCertificateRepo, issuer: LocalKeySigner
) -> None:
    expiry = ISSUE_DATE + timedelta(days=365)
    record = asyncio.run(
        issuance.issue(make_draft(expiry_date=expiry), issuer, issue_date=ISSUE_DATE)
    )
    service = VerificationService(repo)

    _, before = asyncio.run(service.verify(record.id, now=expiry - timedelta(days=1)))
    _, after = asyncio.run(service.verify(record.id, now=expiry + timedelta(days=1)))

    assert before.outcome == VerificationOutcome.VALID
    assert after.ok is False
    assert after.outcome == VerificationOutcome.EXPIRED
    assert after.status == CertificateStatus.EXPIRED
    assert after.message == "Certificate has expired"


# ---- fingerprint versions ----


def test_record_issued_under_v1_still_verifies(
    issued: CredentialRecord, issuer: LocalKeySigner
) -> None:
    legacy = replace(issued, fingerprint_version=1)
    fingerprint = content_fingerprint(legacy, 1)
    legacy = replace(
        legacy,
        content_fingerprint=fingerprint,
        signature=sign_text(issuer, fingerprint),
    )

    result = verify_record(legacy)
    assert result.outcome == VerificationOutcome.VALID

    # v1 does not cover issuer_name, so editing it cannot be detected there.
    result = verify_record(replace(legacy, issuer_name="Renamed"))
    assert result.outcome == VerificationOutcome.VALID


# ---- lookup and infrastructure ----


def test_unknown_id_raises_not_found(repo: InMemoryCertificateRepo) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(VerificationService(repo).verify(uuid4()))


def test_store_outage_is_an_error_not_a_result() -> None:
    with pytest.raises(PersistenceError):
        asyncio.run(VerificationService(_DownRepo()).verify(uuid4()))


def test_outcomes_are_counted(
    repo: InMemoryCertificateRepo, issued: CredentialRecord
) -> None:
    labels = {"outcome": "IssuerMismatch"}
    before = _get_sample("certificate_verifications_total", labels)
    _tamper(repo, issued, name="Mallory")
    asyncio.run(VerificationService(repo).verify(issued.id))
    after = _get_sample("certificate_verifications_total", labels)
    assert after - before == 1
