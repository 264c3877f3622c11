"""Bearer tokens for signed-in wallets (ES256 JWTs).

A token is minted once a wallet proves control of its address
(wallet_auth).  ``sub`` is the lowercase address and ``roles`` says what it
may do: every wallet is a ``holder``; addresses in AUTHORIZED_ISSUERS are
also ``issuer``.

The signing key comes from JWT_PRIVATE_KEY_FILE (PEM, P-256).  Without it
a key is generated at import, so tokens die with the process; fine for dev
and tests, wrong for more than one API replica.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from certify.core.config import SETTINGS

ALGORITHM = "ES256"
ISSUER = "certify-service"
AUDIENCE = "certify-service"
ACCESS_TOKEN_TTL_MIN = 30
ACCESS_TOKEN_TTL_SECONDS = ACCESS_TOKEN_TTL_MIN * 60
DEFAULT_ROLES = ("holder",)


def load_signing_key(path: str | None) -> ec.EllipticCurvePrivateKey:
    """Read a P-256 private key from a PEM file, or make a fresh one."""
    if not path:
        return ec.generate_private_key(ec.SECP256R1())
    key = serialization.load_pem_private_key(Path(path).read_bytes(), password=None)
    if not isinstance(key, ec.EllipticCurvePrivateKey) or not isinstance(
        key.curve, ec.SECP256R1
    ):
        raise ValueError(f"JWT_PRIVATE_KEY_FILE must hold a P-256 EC key ({path})")
    return key


_private_key = load_signing_key(SETTINGS.jwt_private_key_file)
_public_key = _private_key.public_key()


def create_access_token(*, sub: str, roles: list[str] | None = None) -> str:
    now = datetime.now(UTC)
    claims = {
        "iss": ISSUER,
        "aud": AUDIENCE,
        "sub": sub,
        "iat": now,
        "exp": now + timedelta(seconds=ACCESS_TOKEN_TTL_SECONDS),
        "jti": uuid.uuid4().hex,
        "roles": list(roles) if roles else list(DEFAULT_ROLES),
    }
    return jwt.encode(claims, _private_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Return the claims of a token this service minted.

    Only ES256 is accepted, and iss, aud and exp are checked by PyJWT.
    Raises jwt.ExpiredSignatureError or jwt.InvalidTokenError.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=AUDIENCE,
        options={"require": ["sub", "exp", "iat", "jti"]},
    )
