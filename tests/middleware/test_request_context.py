from __future__ import annotations

import logging
import uuid

import pytest
from fastapi.testclient import TestClient

from certify.core.logging import RequestContextFilter, request_id_var
from certify.middleware.request_context import resolve_request_id


def test_generated_request_id_is_a_uuid(client: TestClient) -> None:
    resp = client.get("/health")
    uuid.UUID(resp.headers["x-request-id"])


def test_client_request_id_is_echoed(client: TestClient) -> None:
    resp = client.get("/health", headers={"X-Request-ID": "wallet-ui:4f2a"})
    assert resp.headers["x-request-id"] == "wallet-ui:4f2a"


def test_rejected_requests_still_get_an_id(client: TestClient) -> None:
    resp = client.post("/v1/certificates/prepare", json={})
    assert resp.status_code == 401
    assert resp.headers.get("x-request-id")


@pytest.mark.parametrize(
    "supplied",
    [None, "", "has space", "line\nbreak", "x" * 129, "id;drop"],
)
def test_malformed_client_ids_are_replaced(supplied: str | None) -> None:
    resolved = resolve_request_id(supplied)
    assert resolved != supplied
    uuid.UUID(resolved)


def test_filter_stamps_current_request_id() -> None:
    token = request_id_var.set("req-42")
    try:
        record = logging.LogRecord("certify", logging.INFO, "x.py", 1, "msg", (), None)
        RequestContextFilter().filter(record)
    finally:
        request_id_var.reset(token)
    assert record.request_id == "req-42"  # type: ignore[attr-defined]


def test_filter_keeps_explicit_request_id() -> None:
    record = logging.LogRecord("certify", logging.INFO, "x.py", 1, "msg", (), None)
    record.request_id = "from-extra"  # type: ignore[attr-defined]
    RequestContextFilter().filter(record)
    assert record.request_id == "from-extra"  # type: ignore[attr-defined]


def test_request_id_outside_a_request_is_dash() -> None:
    record = logging.LogRecord("certify", logging.INFO, "x.py", 1, "msg", (), None)
    RequestContextFilter().filter(record)
    assert record.request_id == "-"  # type: ignore[attr-defined]
