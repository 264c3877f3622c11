"""Wallet sign-in.

- POST /v1/auth/challenge: nonce + message for the wallet to sign
- POST /v1/auth/wallet: signed message in, bearer token out
"""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from certify.core.errors import ValidationError
from certify.repos.challenge_repo import challenge_repo
from certify.services import token_service, wallet_auth

router = APIRouter(prefix="/v1/auth", tags=["auth"])


class ChallengeIn(BaseModel):
    address: str


class ChallengeOut(BaseModel):
    nonce: str
    message: str
    expires_at: datetime


class WalletSignInIn(BaseModel):
    address: str
    nonce: str
    signature: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    roles: list[str]


@router.post("/challenge", response_model=ChallengeOut)
async def request_challenge(body: ChallengeIn) -> ChallengeOut:
    try:
        challenge = await wallet_auth.create_challenge(challenge_repo, body.address)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return ChallengeOut(
        nonce=challenge.nonce,
        message=challenge.message,
        expires_at=datetime.fromtimestamp(challenge.expires_at, tz=UTC),
    )


@router.post("/wallet", response_model=Token)
async def wallet_sign_in(body: WalletSignInIn) -> Token:
    try:
        access_token, roles = await wallet_auth.authenticate(
            challenge_repo,
            address=body.address,
            nonce=body.nonce,
            signature=body.signature,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except wallet_auth.WalletAuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
    return Token(
        access_token=access_token,
        expires_in=token_service.ACCESS_TOKEN_TTL_SECONDS,
        roles=roles,
    )
