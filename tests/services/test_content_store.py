from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from certify.core.errors import ContentStoreError, NotFoundError, PersistenceError
from certify.services.content_store import InMemoryContentStore, IpfsContentStore


def test_in_memory_store_is_content_addressed() -> None:
    store = InMemoryContentStore()
    a = asyncio.run(store.put({"b": 1, "a": 2}))
    b = asyncio.run(store.put({"a": 2, "b": 1}))
    c = asyncio.run(store.put({"a": 3}))
    assert a == b
    assert a != c
    assert a.startswith("local-")
    assert asyncio.run(store.get(a)) == {"a": 2, "b": 1}


def test_in_memory_store_unknown_ref() -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(InMemoryContentStore().get("local-missing"))


def _patch_client(monkeypatch: pytest.MonkeyPatch, handler) -> None:
    real_client = httpx.AsyncClient

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", factory)


def test_ipfs_put_returns_cid(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"Name": "certificate.json", "Hash": "bafy123"})

    _patch_client(monkeypatch, handler)
    cid = asyncio.run(IpfsContentStore("http://ipfs:5001/").put({"name": "Ada"}))

    assert cid == "bafy123"
    assert seen[0].url.path == "/api/v0/add"
    assert b'{"name":"Ada"}' in seen[0].content


def test_ipfs_get_parses_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["arg"] == "bafy123"
        return httpx.Response(200, content=json.dumps({"name": "Ada"}).encode())

    _patch_client(monkeypatch, handler)
    assert asyncio.run(IpfsContentStore("http://ipfs:5001").get("bafy123")) == {
        "name": "Ada"
    }


def test_ipfs_failure_is_a_persistence_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_client(monkeypatch, lambda request: httpx.Response(500))
    with pytest.raises(ContentStoreError) as exc_info:
        asyncio.run(IpfsContentStore("http://ipfs:5001").put({"name": "Ada"}))
    assert isinstance(exc_info.value, PersistenceError)
