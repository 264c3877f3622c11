from __future__ import annotations

import secrets
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class WalletChallenge:
    nonce: str
    address: str
    message: str
    expires_at: int  # unix seconds

    @staticmethod
    def new(*, address: str, issued_at: int, ttl_seconds: int) -> WalletChallenge:
        nonce = secrets.token_urlsafe(24)
        message = (
            "Sign in to certify-service\n"
            f"Address: {address}\n"
            f"Nonce: {nonce}\n"
            f"Issued At: {issued_at}"
        )
        return WalletChallenge(
            nonce=nonce,
            address=address,
            message=message,
            expires_at=issued_at + ttl_seconds,
        )
