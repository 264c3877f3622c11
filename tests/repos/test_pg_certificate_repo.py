"""PgCertificateRepo transaction handling, against an in-process fake session.

The fake keeps committed rows in a dict, raises IntegrityError for a
duplicate primary key on flush, can fail every commit, and refuses to be
flushed by two tasks at once (as AsyncSession does).
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import UTC, datetime
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError, InvalidRequestError, OperationalError

from certify.api.dependencies import get_certificate_repo
from certify.core.errors import (
    DuplicateIdError,
    PersistenceError,
    SignedButNotPersistedError,
)
from certify.crypto.signing import LocalKeySigner
from certify.main import app
from certify.models.certificate import CertificateStatus
from certify.repos.pg_certificate_repo import PgCertificateRepo, _record_to_row
from certify.services.anchoring import ANCHOR_QUEUE
from certify.services.content_store import InMemoryContentStore
from certify.services.issuance_service import (
    BULK_BATCH_SIZE,
    IssuanceService,
    IssueRequest,
)
from certify.services.revocation_service import RevocationService
from certify.services.task_queue import InMemoryTaskQueue, task_queue
from tests.conftest import RECIPIENT, auth_header, make_draft, mint_token, sign_text


class _Result:
    def __init__(self, row) -> None:
        self._row = row

    def scalar_one_or_none(self):
        return self._row


class _FakeDatabase:
    def __init__(self, *, fail_commit: bool = False) -> None:
        self.rows: dict = {}
        self.fail_commit = fail_commit
        self.returning_row = None
        self.sessions_opened = 0

    def factory(self) -> _FakeSession:
        self.sessions_opened += 1
        return _FakeSession(self)


class _FakeSession:
    def __init__(self, db: _FakeDatabase) -> None:
        self._db = db
        self._pending: list = []
        self._flushing = False

    async def __aenter__(self) -> _FakeSession:
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None

    def add(self, row) -> None:
        self._pending.append(row)

    async def flush(self) -> None:
        if self._flushing:
            raise InvalidRequestError("Session is already flushing")
        self._flushing = True
        try:
            await asyncio.sleep(0)
            for row in self._pending:
                if row.id in self._db.rows:
                    raise IntegrityError("INSERT", {}, Exception("duplicate key"))
        finally:
            self._flushing = False

    async def execute(self, stmt) -> _Result:
        return _Result(self._db.returning_row)

    async def commit(self) -> None:
        if self._db.fail_commit:
            raise OperationalError("COMMIT", {}, ConnectionError("server closed"))
        for row in self._pending:
            self._db.rows[row.id] = row
        self._pending.clear()

    async def rollback(self) -> None:
        self._pending.clear()


def _service(repo: PgCertificateRepo, queue: InMemoryTaskQueue) -> IssuanceService:
    return IssuanceService(repo, InMemoryContentStore(), queue)


# ---- single writes ----


def test_create_is_committed_before_it_returns(issuer: LocalKeySigner) -> None:
    db = _FakeDatabase()
    service = _service(PgCertificateRepo(db.factory), InMemoryTaskQueue())
    record = asyncio.run(service.issue(make_draft(), issuer))
    assert record.id in db.rows


def test_failed_commit_is_signed_but_not_persisted(issuer: LocalKeySigner) -> None:
    db = _FakeDatabase(fail_commit=True)
    queue = InMemoryTaskQueue()

    with pytest.raises(SignedButNotPersistedError):
        asyncio.run(_service(PgCertificateRepo(db.factory), queue).issue(make_draft(), issuer))

    assert db.rows == {}
    assert asyncio.run(queue.queue_length(ANCHOR_QUEUE)) == 0


def test_duplicate_id_is_rolled_back(issuer: LocalKeySigner) -> None:
    db = _FakeDatabase()
    service = _service(PgCertificateRepo(db.factory), InMemoryTaskQueue())
    cert_id = uuid4()
    asyncio.run(service.issue(make_draft(), issuer, certificate_id=cert_id))

    with pytest.raises(DuplicateIdError):
        asyncio.run(service.issue(make_draft(name="Second"), issuer, certificate_id=cert_id))
    assert db.rows[cert_id].name == "Ada Lovelace"


def test_failed_revocation_commit_is_reported(issuer: LocalKeySigner) -> None:
    db = _FakeDatabase()
    record = asyncio.run(
        _service(PgCertificateRepo(db.factory), InMemoryTaskQueue()).issue(make_draft(), issuer)
    )
    revoked = replace(
        record,
        status=CertificateStatus.REVOKED,
        revocation_reason="issued in error",
        revocation_date=datetime(2024, 2, 1, tzinfo=UTC),
        revoked_by=record.issuer_address,
    )
    db.returning_row = _record_to_row(revoked)
    db.fail_commit = True
    queue = InMemoryTaskQueue()

    with pytest.raises(PersistenceError):
        asyncio.run(
            RevocationService(PgCertificateRepo(db.factory), queue).revoke(
                record.id, "issued in error", record.issuer_address
            )
        )
    assert asyncio.run(queue.queue_length(ANCHOR_QUEUE)) == 0


# ---- bulk ----


def test_bulk_uses_a_session_per_item(issuer: LocalKeySigner) -> None:
    db = _FakeDatabase()
    service = _service(PgCertificateRepo(db.factory), InMemoryTaskQueue())
    taken = uuid4()
    asyncio.run(service.issue(make_draft(), issuer, certificate_id=taken))
    opened_before = db.sessions_opened

    requests = [
        IssueRequest(draft=make_draft(name=f"Student {i}"), signer=issuer)
        for i in range(BULK_BATCH_SIZE + 1)
    ]
    requests[0] = IssueRequest(draft=make_draft(name="Dup"), signer=issuer, certificate_id=taken)

    result = asyncio.run(service.issue_bulk(requests))

    assert [f.index for f in result.failed] == [0]
    assert len(result.issued) == BULK_BATCH_SIZE
    assert db.sessions_opened - opened_before == len(requests)
    # What the caller was told matches what was stored.
    assert {r.id for r in result.issued} | {taken} == set(db.rows)


# ---- HTTP ----


def test_issue_endpoint_reports_failed_commit(
    client: TestClient, issuer: LocalKeySigner
) -> None:
    db = _FakeDatabase(fail_commit=True)
    app.dependency_overrides[get_certificate_repo] = lambda: PgCertificateRepo(db.factory)
    token = mint_token(issuer.get_address(), roles=["holder", "issuer"])
    draft = {
        "name": "Ada Lovelace",
        "recipient_address": RECIPIENT,
        "issuer_name": "Analytical Engine Institute",
        "certificate_type": "Diploma",
        "category": "academic",
        "metadata": {"course": "Numerical Methods"},
    }
    try:
        prepared = client.post(
            "/v1/certificates/prepare", json=draft, headers=auth_header(token)
        ).json()
        body = {
            **draft,
            "id": prepared["id"],
            "issue_date": prepared["issue_date"],
            "content_ref": prepared["content_ref"],
            "signature": sign_text(issuer, prepared["message"]),
        }
        resp = client.post("/v1/certificates", json=body, headers=auth_header(token))
    finally:
        app.dependency_overrides.pop(get_certificate_repo, None)

    assert resp.status_code == 503
    assert resp.json()["detail"]["certificate_id"] == prepared["id"]
    assert asyncio.run(task_queue.queue_length(ANCHOR_QUEUE)) == 0
