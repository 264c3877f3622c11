"""Certificate endpoints.

Issuance is two calls because the issuer's wallet signs in the browser:

- POST  /v1/certificates/prepare: fingerprint + message to sign
- POST  /v1/certificates: submit the signature, persist
- POST  /v1/certificates/bulk: many presigned certificates
- GET   /v1/certificates/{id}: stored record + current status
- GET   /v1/certificates/{id}/verify: public verification
- GET   /v1/certificates/by-address/{a}: issued by or to an address
- PATCH /v1/certificates/{id}/revoke: issuer revokes, one way

Verification answers 200 even when the certificate fails the check: a
tampered certificate is a result, not an error.  5xx means we could not
answer, never that the certificate is bad.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated, Any, NoReturn
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from certify.api.dependencies import (
    RepoDep,
    get_issuance_service,
    get_revocation_service,
    get_verification_service,
    require_issuer,
    require_wallet,
)
from certify.core.config import SETTINGS
from certify.core.errors import (
    AlreadyRevokedError,
    CertifyError,
    DuplicateIdError,
    NotFoundError,
    PersistenceError,
    SignedButNotPersistedError,
    SigningError,
    UnauthorizedError,
    ValidationError,
)
from certify.crypto.signing import PresignedSigner
from certify.models.certificate import (
    CredentialCategory,
    CredentialDraft,
    CredentialRecord,
    normalize_address,
)
from certify.models.principal import Principal
from certify.services.issuance_service import IssuanceService, IssueRequest
from certify.services.lifecycle import compute_status
from certify.services.revocation_service import RevocationService
from certify.services.verification_service import VerificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/certificates", tags=["certificates"])


# --- Pydantic schemas ---


class CertificateDraftIn(BaseModel):
    name: str
    issuer_name: str
    certificate_type: str
    recipient_address: str | None = None
    category: str | None = None
    sub_category: str | None = None
    expiry_date: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class CertificateIssueIn(CertificateDraftIn):
    # Echoed back from /prepare; the signature is over that fingerprint.
    id: UUID
    issue_date: datetime
    content_ref: str
    signature: str


class BulkIssueIn(BaseModel):
    certificates: list[CertificateIssueIn] = Field(min_length=1)


class RevokeIn(BaseModel):
    reason: str


class PreparedOut(BaseModel):
    id: str
    issue_date: datetime
    issuer_address: str
    content_ref: str
    fingerprint: str
    fingerprint_version: int
    message: str


class CertificateOut(BaseModel):
    id: str
    name: str
    recipient_address: str | None
    issuer_address: str
    issuer_name: str
    certificate_type: str
    category: str | None
    sub_category: str | None
    issue_date: datetime
    expiry_date: datetime | None
    content_ref: str
    fingerprint: str
    fingerprint_version: int
    signature: str
    metadata: dict[str, Any]
    status: str
    revocation_reason: str | None
    revocation_date: datetime | None
    revoked_by: str | None


class VerificationOut(BaseModel):
    ok: bool
    outcome: str
    status: str
    message: str
    checked_at: datetime
    recovered_issuer: str | None
    fingerprint_matches_stored: bool | None
    certificate: CertificateOut


class BulkFailureOut(BaseModel):
    index: int
    name: str
    error: str


class BulkIssueOut(BaseModel):
    issued: list[CertificateOut]
    failed: list[BulkFailureOut]


# --- Helpers ---


def _to_out(record: CredentialRecord) -> CertificateOut:
    return CertificateOut(
        id=str(record.id),
        name=record.name,
        recipient_address=record.recipient_address,
        issuer_address=record.issuer_address,
        issuer_name=record.issuer_name,
        certificate_type=record.certificate_type,
        category=record.category.value if record.category else None,
        sub_category=record.sub_category,
        issue_date=record.issue_date,
        expiry_date=record.expiry_date,
        content_ref=record.content_ref,
        fingerprint=record.content_fingerprint,
        fingerprint_version=record.fingerprint_version,
        signature=record.signature,
        metadata=record.metadata,
        status=compute_status(record).value,
        revocation_reason=record.revocation_reason,
        revocation_date=record.revocation_date,
        revoked_by=record.revoked_by,
    )


def _to_draft(body: CertificateDraftIn) -> CredentialDraft:
    return CredentialDraft(
        name=body.name,
        issuer_name=body.issuer_name,
        certificate_type=body.certificate_type,
        recipient_address=body.recipient_address,
        category=CredentialCategory.parse(body.category),
        sub_category=body.sub_category,
        expiry_date=body.expiry_date,
        metadata=body.metadata,
    )


def _raise_http(e: CertifyError) -> NoReturn:
    """Translate a domain error into the HTTP response for it."""
    if isinstance(e, NotFoundError):
        raise HTTPException(status_code=404, detail="certificate not found") from e
    if isinstance(e, UnauthorizedError):
        raise HTTPException(status_code=403, detail=str(e)) from e
    if isinstance(e, (AlreadyRevokedError, DuplicateIdError)):
        raise HTTPException(status_code=409, detail=str(e)) from e
    if isinstance(e, ValidationError):
        raise HTTPException(status_code=422, detail=str(e)) from e
    if isinstance(e, SigningError):
        raise HTTPException(status_code=400, detail=str(e)) from e
    if isinstance(e, SignedButNotPersistedError):
        raise HTTPException(
            status_code=503,
            detail={
                "message": str(e),
                "certificate_id": e.certificate_id,
                "fingerprint": e.fingerprint,
            },
        ) from e
    if isinstance(e, PersistenceError):
        raise HTTPException(
            status_code=503,
            detail="certificate service unavailable, try again",
        ) from e
    raise HTTPException(status_code=500, detail="internal error") from e


# --- Endpoints ---


@router.post("/prepare", response_model=PreparedOut)
async def prepare_certificate(
    body: CertificateDraftIn,
    principal: Annotated[Principal, Depends(require_issuer)],
    service: Annotated[IssuanceService, Depends(get_issuance_service)],
) -> PreparedOut:
    """Compute the fingerprint the issuer's wallet must sign. Stores nothing."""
    try:
        prepared = await service.prepare(_to_draft(body), principal.address)
    except CertifyError as e:
        _raise_http(e)
    return PreparedOut(
        id=str(prepared.id),
        issue_date=prepared.issue_date,
        issuer_address=prepared.issuer_address,
        content_ref=prepared.content_ref,
        fingerprint=prepared.content_fingerprint,
        fingerprint_version=prepared.fingerprint_version,
        message=prepared.message,
    )


@router.post("", response_model=CertificateOut, status_code=status.HTTP_201_CREATED)
async def issue_certificate(
    body: CertificateIssueIn,
    principal: Annotated[Principal, Depends(require_issuer)],
    service: Annotated[IssuanceService, Depends(get_issuance_service)],
) -> CertificateOut:
    """Persist a certificate signed by the caller's wallet."""
    try:
        record = await service.issue(
            _to_draft(body),
            PresignedSigner(principal.address, body.signature),
            timeout=SETTINGS.signing_timeout_seconds,
            certificate_id=body.id,
            issue_date=body.issue_date,
            content_ref=body.content_ref,
        )
    except CertifyError as e:
        _raise_http(e)
    return _to_out(record)


@router.post("/bulk", response_model=BulkIssueOut)
async def issue_certificates_bulk(
    body: BulkIssueIn,
    principal: Annotated[Principal, Depends(require_issuer)],
    service: Annotated[IssuanceService, Depends(get_issuance_service)],
) -> BulkIssueOut:
    """Issue many presigned certificates. Failed items are reported, not fatal."""
    # Positions in `requests` map back to positions in the request body.
    requests: list[IssueRequest] = []
    positions: list[int] = []
    failed: list[BulkFailureOut] = []
    for index, item in enumerate(body.certificates):
        try:
            draft = _to_draft(item)
        except CertifyError as e:
            failed.append(BulkFailureOut(index=index, name=item.name, error=str(e)))
            continue
        positions.append(index)
        requests.append(
            IssueRequest(
                draft=draft,
                signer=PresignedSigner(principal.address, item.signature),
                certificate_id=item.id,
                issue_date=item.issue_date,
                content_ref=item.content_ref,
            )
        )

    result = await service.issue_bulk(
        requests, timeout=SETTINGS.signing_timeout_seconds
    )
    failed.extend(
        BulkFailureOut(index=positions[f.index], name=f.name, error=f.error)
        for f in result.failed
    )
    return BulkIssueOut(
        issued=[_to_out(r) for r in result.issued],
        failed=sorted(failed, key=lambda f: f.index),
    )


@router.get("/by-address/{address}", response_model=list[CertificateOut])
async def list_certificates_for_address(
    address: str,
    repo: RepoDep,
) -> list[CertificateOut]:
    """Certificates where the address is issuer or recipient, oldest first."""
    try:
        records = await repo.find_by_participant(normalize_address(address))
    except CertifyError as e:
        _raise_http(e)
    return [_to_out(r) for r in records]


@router.get("/{certificate_id}", response_model=CertificateOut)
async def get_certificate(
    certificate_id: UUID,
    repo: RepoDep,
) -> CertificateOut:
    try:
        record = await repo.get_by_id(certificate_id)
    except CertifyError as e:
        _raise_http(e)
    return _to_out(record)


@router.get("/{certificate_id}/verify", response_model=VerificationOut)
async def verify_certificate(
    certificate_id: UUID,
    service: Annotated[VerificationService, Depends(get_verification_service)],
) -> VerificationOut:
    """Public: anyone holding the id can check a certificate."""
    try:
        record, result = await service.verify(certificate_id)
    except CertifyError as e:
        _raise_http(e)
    return VerificationOut(
        ok=result.ok,
        outcome=result.outcome.value,
        status=result.status.value,
        message=result.message,
        checked_at=result.checked_at,
        recovered_issuer=result.recovered_issuer,
        fingerprint_matches_stored=result.fingerprint_matches_stored,
        certificate=_to_out(record),
    )


@router.patch("/{certificate_id}/revoke", response_model=CertificateOut)
async def revoke_certificate(
    certificate_id: UUID,
    body: RevokeIn,
    principal: Annotated[Principal, Depends(require_wallet)],
    service: Annotated[RevocationService, Depends(get_revocation_service)],
) -> CertificateOut:
    """Revoke a certificate. Only its issuer may; it cannot be undone."""
    try:
        record = await service.revoke(certificate_id, body.reason, principal.address)
    except CertifyError as e:
        _raise_http(e)
    return _to_out(record)
