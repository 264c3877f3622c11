"""Content fingerprints.

Keccak-256 (the pre-NIST padding used by Ethereum tooling, NOT sha3_256),
so a fingerprint computed here matches what a browser wallet library
computes for the same canonical bytes.
"""

from __future__ import annotations

from Crypto.Hash import keccak

from certify.crypto.canonical import fingerprint_fields, serialize
from certify.models.certificate import CredentialRecord


def keccak256(data: bytes) -> bytes:
    return keccak.new(digest_bits=256, data=data).digest()


def to_hex(digest: bytes) -> str:
    return "0x" + digest.hex()


def content_fingerprint(record: CredentialRecord, version: int) -> str:
    """0x-prefixed Keccak-256 of the record's canonical hashed fields."""
    return to_hex(keccak256(serialize(fingerprint_fields(record, version))))
