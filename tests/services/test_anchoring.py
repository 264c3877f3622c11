"""Anchoring side effects and the worker's retry policy."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from certify import worker
from certify.crypto.signing import LocalKeySigner
from certify.services.anchoring import ANCHOR_QUEUE, anchor_payload, deliver_anchor
from certify.services.issuance_service import IssuanceService
from certify.services.task_queue import InMemoryTaskQueue, Task, requeue
from tests.conftest import make_draft


@pytest.fixture
def payload(issuance: IssuanceService, issuer: LocalKeySigner) -> dict:
    record = asyncio.run(issuance.issue(make_draft(), issuer))
    return anchor_payload(record, "issue")


def test_anchor_payload_carries_fingerprint_and_issuer(payload: dict) -> None:
    assert payload["action"] == "issue"
    assert payload["fingerprint"].startswith("0x")
    assert payload["issuer_address"].startswith("0x")
    assert payload["attempt"] == 1
    assert "reason" not in payload


def test_deliver_skips_without_webhook(payload: dict) -> None:
    assert asyncio.run(deliver_anchor(payload, webhook_url="")) is False


def test_deliver_posts_event(payload: dict) -> None:
    received: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(202)

    async def run() -> bool:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await deliver_anchor(
                payload, webhook_url="http://anchor.local/events", client=client
            )

    assert asyncio.run(run()) is True
    assert received[0]["certificate_id"] == payload["certificate_id"]
    assert "attempt" not in received[0]


def test_deliver_raises_on_http_error(payload: dict) -> None:
    async def run() -> bool:
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        async with httpx.AsyncClient(transport=transport) as client:
            return await deliver_anchor(
                payload, webhook_url="http://anchor.local/events", client=client
            )

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(run())


# ---- worker ----


def _failing_delivery(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fail(payload, **kwargs):
        raise httpx.ConnectError("anchor relay unreachable")

    monkeypatch.setattr(worker, "deliver_anchor", fail)


def test_worker_requeues_failed_delivery(
    monkeypatch: pytest.MonkeyPatch, payload: dict
) -> None:
    _failing_delivery(monkeypatch)
    queue = InMemoryTaskQueue()
    asyncio.run(queue.enqueue(ANCHOR_QUEUE, payload))

    assert asyncio.run(worker.process_next(queue, ANCHOR_QUEUE)) is True

    retry = asyncio.run(queue.dequeue(ANCHOR_QUEUE))
    assert retry is not None
    assert retry.payload["attempt"] == 2
    assert retry.payload["certificate_id"] == payload["certificate_id"]


def test_worker_drops_after_max_attempts(
    monkeypatch: pytest.MonkeyPatch, payload: dict
) -> None:
    _failing_delivery(monkeypatch)
    queue = InMemoryTaskQueue()
    last = {**payload, "attempt": worker.SETTINGS.anchor_max_attempts}
    asyncio.run(queue.enqueue(ANCHOR_QUEUE, last))

    asyncio.run(worker.process_next(queue, ANCHOR_QUEUE))

    assert asyncio.run(queue.queue_length(ANCHOR_QUEUE)) == 0


def test_worker_survives_unexpected_handler_error(
    monkeypatch: pytest.MonkeyPatch, payload: dict
) -> None:
    async def explode(payload, **kwargs):
        raise RuntimeError("bug")

    monkeypatch.setattr(worker, "deliver_anchor", explode)
    queue = InMemoryTaskQueue()
    asyncio.run(queue.enqueue(ANCHOR_QUEUE, payload))

    assert asyncio.run(worker.process_next(queue, ANCHOR_QUEUE)) is True
    assert asyncio.run(queue.queue_length(ANCHOR_QUEUE)) == 0


def test_worker_reports_empty_queue() -> None:
    assert asyncio.run(worker.process_next(InMemoryTaskQueue(), ANCHOR_QUEUE)) is False


def test_idle_worker_yields_and_honours_stop() -> None:
    async def main() -> None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, stop.set)
        await asyncio.wait_for(
            worker.run_worker(InMemoryTaskQueue(), stop, idle_sleep=0.01), timeout=2
        )

    asyncio.run(main())


def test_queue_is_fifo_per_queue_name() -> None:
    queue = InMemoryTaskQueue()
    asyncio.run(queue.enqueue(ANCHOR_QUEUE, {"n": 1}))
    asyncio.run(queue.enqueue("other", {"n": 99}))
    asyncio.run(queue.enqueue(ANCHOR_QUEUE, {"n": 2}))

    first = asyncio.run(queue.dequeue(ANCHOR_QUEUE))
    second = asyncio.run(queue.dequeue(ANCHOR_QUEUE))
    assert (first.payload["n"], second.payload["n"]) == (1, 2)
    assert asyncio.run(queue.queue_length("other")) == 1


def test_requeue_is_a_new_task_with_next_attempt() -> None:
    queue = InMemoryTaskQueue()
    original = asyncio.run(queue.enqueue(ANCHOR_QUEUE, {"certificate_id": "c1"}))
    assert original.attempt == 1

    retried = asyncio.run(requeue(queue, original))
    assert retried.id != original.id
    assert retried.attempt == 2
    assert "attempt" not in original.payload


def test_task_survives_redis_encoding() -> None:
    task = Task(id="t-1", queue=ANCHOR_QUEUE, payload={"action": "revoke", "attempt": 3})
    decoded = Task.from_json(task.to_json().encode())
    assert decoded == task
    assert decoded.attempt == 3
