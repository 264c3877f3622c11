from __future__ import annotations

import logging
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from certify.db.engine import async_session_factory
from certify.models.principal import Principal
from certify.repos.certificate_repo import CertificateRepo, InMemoryCertificateRepo
from certify.repos.pg_certificate_repo import PgCertificateRepo
from certify.services import token_service
from certify.services.content_store import content_store
from certify.services.issuance_service import IssuanceService
from certify.services.revocation_service import RevocationService
from certify.services.task_queue import task_queue
from certify.services.verification_service import VerificationService

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/v1/auth/wallet")

# --- Module-level repo singleton (used when no DATABASE_URL) ---
certificate_repo = InMemoryCertificateRepo()


def require_wallet(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Extract and validate the JWT bearer token. Returns a Principal.

    Used as a FastAPI dependency on any endpoint that acts for a wallet.
    """
    try:
        claims = token_service.decode_access_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    principal = Principal(
        address=claims["sub"].lower(),
        roles=frozenset(claims.get("roles", [])),
    )
    logger.debug(
        "Token validated for address=%s roles=%s",
        principal.address,
        principal.roles,
    )
    return principal


def require_issuer(
    principal: Annotated[Principal, Depends(require_wallet)],
) -> Principal:
    """Only wallets on the authorized-issuer list may issue certificates."""
    if not principal.is_issuer:
        logger.warning("Issuance denied: address=%s is not an issuer", principal.address)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Wallet is not an authorized issuer",
        )
    return principal


# ---------------------------------------------------------------------------
# Store and service wiring
# ---------------------------------------------------------------------------


def get_certificate_repo() -> CertificateRepo:
    """Postgres when configured, else the in-memory one."""
    if async_session_factory is None:
        return certificate_repo
    return PgCertificateRepo(async_session_factory)


RepoDep = Annotated[CertificateRepo, Depends(get_certificate_repo)]


def get_issuance_service(repo: RepoDep) -> IssuanceService:
    return IssuanceService(repo, content_store, task_queue)


def get_verification_service(repo: RepoDep) -> VerificationService:
    return VerificationService(repo)


def get_revocation_service(repo: RepoDep) -> RevocationService:
    return RevocationService(repo, task_queue)
