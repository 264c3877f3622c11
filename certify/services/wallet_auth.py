"""Sign-in with a wallet.

  1. client asks for a challenge for its address
  2. wallet signs the challenge message (personal_sign)
  3. we recover the signer; if it is the address the challenge was issued
     for, mint an access token whose subject is that address

Nonces are single use and expire after CHALLENGE_TTL_SECONDS.
"""

from __future__ import annotations

import logging
import time

from certify.core.config import SETTINGS, Settings
from certify.core.errors import CertifyError, RecoveryError
from certify.crypto.signing import recover_address
from certify.models.certificate import normalize_address, same_address
from certify.models.challenge import WalletChallenge
from certify.repos.challenge_repo import ChallengeRepo
from certify.services import token_service

logger = logging.getLogger(__name__)

CHALLENGE_TTL_SECONDS = 300


class WalletAuthError(CertifyError):
    """Challenge unknown, used, expired, or signed by another key."""


def roles_for(address: str, settings: Settings | None = None) -> list[str]:
    settings = settings or SETTINGS
    roles = ["holder"]
    if settings.is_authorized_issuer(address):
        roles.append("issuer")
    return roles


async def create_challenge(repo: ChallengeRepo, address: str) -> WalletChallenge:
    challenge = WalletChallenge.new(
        address=normalize_address(address),
        issued_at=int(time.time()),
        ttl_seconds=CHALLENGE_TTL_SECONDS,
    )
    await repo.add(challenge)
    return challenge


async def authenticate(
    repo: ChallengeRepo,
    *,
    address: str,
    nonce: str,
    signature: str,
    settings: Settings | None = None,
) -> tuple[str, list[str]]:
    """Return (access_token, roles) for a correctly signed challenge."""
    address = normalize_address(address)
    challenge = await repo.consume(nonce)
    if challenge is None:
        logger.warning("Wallet sign-in with unknown or expired nonce address=%s", address)
        raise WalletAuthError("challenge not found or expired")
    if not same_address(challenge.address, address):
        logger.warning(
            "Wallet sign-in nonce issued for another address address=%s", address
        )
        raise WalletAuthError("challenge was issued for a different address")

    try:
        recovered = recover_address(challenge.message, signature)
    except RecoveryError as e:
        raise WalletAuthError(str(e)) from e
    if not same_address(recovered, address):
        logger.warning(
            "Wallet sign-in signature mismatch address=%s recovered=%s",
            address,
            recovered,
        )
        raise WalletAuthError("signature does not match address")

    roles = roles_for(address, settings)
    logger.info("Wallet signed in address=%s roles=%s", address, roles)
    return token_service.create_access_token(sub=address, roles=roles), roles
