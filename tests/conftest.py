from __future__ import annotations

import asyncio
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from certify.api.dependencies import certificate_repo
from certify.crypto.signing import LocalKeySigner
from certify.main import app
from certify.models.certificate import CredentialCategory, CredentialDraft
from certify.repos.certificate_repo import InMemoryCertificateRepo
from certify.repos.challenge_repo import challenge_repo
from certify.services import token_service
from certify.services.content_store import InMemoryContentStore, content_store
from certify.services.issuance_service import IssuanceService
from certify.services.task_queue import InMemoryTaskQueue, task_queue

# Ensure repo root is on sys.path so `import certify` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

RECIPIENT = "0x" + "ab" * 20
ISSUE_DATE = datetime(2024, 1, 15, 9, 30, 0, 123000, tzinfo=UTC)


@pytest.fixture(autouse=True)
def reset_certificate_repo() -> None:
    certificate_repo._by_id.clear()


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues between tests."""
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_challenges() -> None:
    if hasattr(challenge_repo, "_by_nonce"):
        challenge_repo._by_nonce.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_content_store() -> None:
    if hasattr(content_store, "_store"):
        content_store._store.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    address: str = "0x" + "11" * 20,
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=address, roles=roles)


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def sign_text(signer: LocalKeySigner, message: str) -> str:
    """Sign like a browser wallet would (personal_sign over UTF-8 text)."""
    return asyncio.run(signer.sign(message.encode("utf-8")))


def make_draft(**overrides: Any) -> CredentialDraft:
    fields: dict[str, Any] = {
        "name": "Ada Lovelace",
        "issuer_name": "Analytical Engine Institute",
        "certificate_type": "Diploma",
        "recipient_address": RECIPIENT,
        "category": CredentialCategory.ACADEMIC,
        "sub_category": "mathematics",
        "metadata": {"course": "Numerical Methods", "grade": "A", "gpa": 3.9},
    }
    fields.update(overrides)
    return CredentialDraft(**fields)


# ---------------------------------------------------------------------------
# Service-level fixtures (fresh stores per test, no HTTP)
# ---------------------------------------------------------------------------


@pytest.fixture
def issuer() -> LocalKeySigner:
    return LocalKeySigner.generate()


@pytest.fixture
def repo() -> InMemoryCertificateRepo:
    return InMemoryCertificateRepo()


@pytest.fixture
def store() -> InMemoryContentStore:
    return InMemoryContentStore()


@pytest.fixture
def queue() -> InMemoryTaskQueue:
    return InMemoryTaskQueue()


@pytest.fixture
def issuance(
    repo: InMemoryCertificateRepo,
    store: InMemoryContentStore,
    queue: InMemoryTaskQueue,
) -> IssuanceService:
    return IssuanceService(repo, store, queue)
