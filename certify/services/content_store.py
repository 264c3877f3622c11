"""Off-chain storage for certificate payloads.

At issuance the full certificate payload is stored off-chain and its
content reference (an IPFS CID) becomes one of the hashed fields, so the
fingerprint also commits to the off-chain copy.

Two backends, same conditional pattern as the task queue:
  - IpfsContentStore: an IPFS node's HTTP API (/api/v0/add, /api/v0/cat)
  - InMemoryContentStore: content-addressed dict, when IPFS_API_URL is unset
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Protocol, runtime_checkable

import httpx

from certify.core.config import SETTINGS
from certify.core.errors import ContentStoreError, NotFoundError
from certify.crypto.canonical import serialize

logger = logging.getLogger(__name__)


@runtime_checkable
class ContentStore(Protocol):
    async def put(self, payload: dict[str, Any]) -> str: ...
    async def get(self, ref: str) -> dict[str, Any]: ...


class InMemoryContentStore:
    """Content-addressed by sha256 of the canonical bytes."""

    _PREFIX = "local-"

    def __init__(self) -> None:
        self._store: dict[str, bytes] = {}

    async def put(self, payload: dict[str, Any]) -> str:
        data = serialize(payload)
        ref = self._PREFIX + hashlib.sha256(data).hexdigest()
        self._store[ref] = data
        return ref

    async def get(self, ref: str) -> dict[str, Any]:
        data = self._store.get(ref)
        if data is None:
            raise NotFoundError(ref)
        return json.loads(data)


class IpfsContentStore:
    """Pins payloads on an IPFS node through its HTTP RPC API."""

    def __init__(self, api_url: str, *, timeout: float = 10.0) -> None:
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout

    async def put(self, payload: dict[str, Any]) -> str:
        data = serialize(payload)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    f"{self._api_url}/api/v0/add",
                    params={"pin": "true", "cid-version": "1"},
                    files={"file": ("certificate.json", data, "application/json")},
                )
                resp.raise_for_status()
                cid = resp.json()["Hash"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning("IPFS add failed: %s", e)
            raise ContentStoreError(f"could not store payload on IPFS: {e}") from e
        logger.debug("Stored payload on IPFS cid=%s bytes=%d", cid, len(data))
        return cid

    async def get(self, ref: str) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    f"{self._api_url}/api/v0/cat", params={"arg": ref}
                )
                resp.raise_for_status()
                return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("IPFS cat failed cid=%s: %s", ref, e)
            raise ContentStoreError(f"could not read payload from IPFS: {e}") from e


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if SETTINGS.ipfs_api_url:
    content_store: ContentStore = IpfsContentStore(SETTINGS.ipfs_api_url)
else:
    content_store = InMemoryContentStore()
