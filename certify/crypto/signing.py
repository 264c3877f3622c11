"""Recoverable secp256k1 signatures over content fingerprints.

Wallets sign a fingerprint the way `personal_sign` does: the fingerprint's
0x hex string is treated as a UTF-8 message, wrapped in the Ethereum
signed-message envelope and hashed with Keccak-256.  Recovery runs the same
envelope in reverse, so anything signed in a browser wallet verifies here
and vice versa.

Signature wire format: 0x + hex(r || s || v), 65 bytes, v in {27, 28}.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

from coincurve import PrivateKey, PublicKey

from certify.core.errors import RecoveryError, SigningError
from certify.crypto.hashing import keccak256

logger = logging.getLogger(__name__)

_ENVELOPE_PREFIX = b"\x19Ethereum Signed Message:\n"
_SIGNATURE_LEN = 65


def message_digest(message: bytes) -> bytes:
    """Keccak-256 of the signed-message envelope around `message`."""
    return keccak256(_ENVELOPE_PREFIX + str(len(message)).encode() + message)


def address_from_public_key(public_key: PublicKey) -> str:
    # Uncompressed point minus the 0x04 marker byte.
    raw = public_key.format(compressed=False)[1:]
    return "0x" + keccak256(raw)[-20:].hex()


def encode_signature(raw: bytes) -> str:
    """coincurve's r || s || recid  ->  0x r || s || v (v = recid + 27)."""
    return "0x" + raw[:64].hex() + f"{raw[64] + 27:02x}"


def _decode_signature(signature: str) -> bytes:
    text = signature[2:] if signature.startswith(("0x", "0X")) else signature
    try:
        raw = bytes.fromhex(text)
    except ValueError:
        raise RecoveryError("signature is not valid hex") from None
    if len(raw) != _SIGNATURE_LEN:
        raise RecoveryError(f"signature must be {_SIGNATURE_LEN} bytes, got {len(raw)}")

    v = raw[64]
    if v in (27, 28):
        recid = v - 27
    elif v in (0, 1):
        recid = v
    else:
        raise RecoveryError(f"invalid recovery id v={v}")
    return raw[:64] + bytes([recid])


def recover_address(message: str | bytes, signature: str) -> str:
    """Recover the lowercase address that signed `message`.

    Raises RecoveryError when no public key can be recovered.
    """
    if isinstance(message, str):
        message = message.encode("utf-8")
    raw = _decode_signature(signature)
    try:
        public_key = PublicKey.from_signature_and_message(
            raw, message_digest(message), hasher=None
        )
    except ValueError as e:
        raise RecoveryError(f"signature recovery failed: {e}") from e
    return address_from_public_key(public_key)


@runtime_checkable
class SigningCapability(Protocol):
    """Something that holds a key and can sign on request.

    sign() may wait on a human (a wallet prompt), so callers bound it with
    a timeout.  Rejections and failures surface as SigningError.
    """

    def get_address(self) -> str: ...
    async def sign(self, message: bytes) -> str: ...


class LocalKeySigner:
    """In-process secp256k1 key.  Dev scripts, tests, server-held issuer keys."""

    def __init__(self, private_key: PrivateKey) -> None:
        self._key = private_key
        self._address = address_from_public_key(private_key.public_key)

    @classmethod
    def generate(cls) -> LocalKeySigner:
        return cls(PrivateKey())

    @classmethod
    def from_hex(cls, secret_hex: str) -> LocalKeySigner:
        text = secret_hex[2:] if secret_hex.startswith("0x") else secret_hex
        try:
            return cls(PrivateKey.from_hex(text))
        except ValueError as e:
            raise SigningError(f"invalid private key: {e}") from e

    def get_address(self) -> str:
        return self._address

    async def sign(self, message: bytes) -> str:
        raw = self._key.sign_recoverable(message_digest(message), hasher=None)
        return encode_signature(raw)


class PresignedSigner:
    """Capability for signatures a browser wallet already produced.

    The address is the authenticated caller, not something read from the
    request body, so a signature from any other key fails the issuance
    self-check.
    """

    def __init__(self, address: str, signature: str) -> None:
        self._address = address.strip().lower()
        self._signature = signature

    def get_address(self) -> str:
        return self._address

    async def sign(self, message: bytes) -> str:
        if not self._signature:
            raise SigningError("no signature supplied")
        return self._signature


async def sign_fingerprint(
    fingerprint: str,
    signer: SigningCapability,
    *,
    timeout: float | None = None,
) -> str:
    """Ask the signer to sign a fingerprint, bounded by `timeout` seconds.

    Never retried here: a rejected or timed-out prompt fails issuance and
    the caller decides whether to start over.  Cancellation propagates.
    """
    try:
        return await asyncio.wait_for(
            signer.sign(fingerprint.encode("utf-8")), timeout=timeout
        )
    except SigningError:
        raise
    except TimeoutError:
        logger.warning(
            "Signing timed out after %ss signer=%s", timeout, signer.get_address()
        )
        raise SigningError(f"signer did not respond within {timeout}s") from None
    except Exception as e:
        logger.warning("Signer failed signer=%s: %s", signer.get_address(), e)
        raise SigningError(f"signer failed: {e}") from e
