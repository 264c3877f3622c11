"""Background task queue for side effects that must not block a request.

Anchoring a certificate (announcing its fingerprint or revocation to an
external registry) is slow, can fail, and has no say in whether a
certificate is valid.  The API enqueues a Task and answers immediately;
certify.worker picks it up and applies its own retry policy.

With REDIS_URL set, each queue is a Redis list: producers LPUSH, the worker
BRPOPs, so the oldest task comes out first.  Without Redis the queue lives
in process memory, which is what the tests and the single-process demo use.

Delivery is at-most-once: a task in the worker's hands when it dies is
gone.  Retries are explicit, via requeue(), which bumps ``attempt`` in the
payload.
"""

from __future__ import annotations

import json
import uuid
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Protocol, runtime_checkable

from certify.core.metrics import QUEUE_DEPTH
from certify.db.redis import redis_pool


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    queue: str
    payload: dict[str, Any]

    @property
    def attempt(self) -> int:
        return int(self.payload.get("attempt", 1))

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str | bytes) -> Task:
        data = json.loads(raw)
        return cls(id=data["id"], queue=data["queue"], payload=data["payload"])


def _new_task(queue: str, payload: dict[str, Any]) -> Task:
    return Task(id=str(uuid.uuid4()), queue=queue, payload=dict(payload))


@runtime_checkable
class TaskQueue(Protocol):
    async def enqueue(self, queue: str, payload: dict[str, Any]) -> Task: ...
    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None: ...
    async def queue_length(self, queue: str) -> int: ...


async def requeue(queue: TaskQueue, task: Task) -> Task:
    """Put a failed task back as a new task with attempt + 1."""
    return await queue.enqueue(task.queue, {**task.payload, "attempt": task.attempt + 1})


class InMemoryTaskQueue:
    def __init__(self) -> None:
        self._queues: dict[str, deque[Task]] = {}

    async def enqueue(self, queue: str, payload: dict[str, Any]) -> Task:
        task = _new_task(queue, payload)
        pending = self._queues.setdefault(queue, deque())
        pending.append(task)
        QUEUE_DEPTH.labels(queue_name=queue).set(len(pending))
        return task

    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None:
        # Never blocks: an empty queue answers None straight away.
        pending = self._queues.get(queue)
        if not pending:
            return None
        task = pending.popleft()
        QUEUE_DEPTH.labels(queue_name=queue).set(len(pending))
        return task

    async def queue_length(self, queue: str) -> int:
        return len(self._queues.get(queue, ()))


class RedisTaskQueue:
    _PREFIX = "tasks:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    def _key(self, queue: str) -> str:
        return f"{self._PREFIX}{queue}"

    async def enqueue(self, queue: str, payload: dict[str, Any]) -> Task:
        task = _new_task(queue, payload)
        depth = await self._redis.lpush(self._key(queue), task.to_json())
        QUEUE_DEPTH.labels(queue_name=queue).set(depth)
        return task

    async def dequeue(self, queue: str, timeout: int = 5) -> Task | None:
        popped = await self._redis.brpop(self._key(queue), timeout=timeout)
        if popped is None:
            return None
        _, raw = popped
        return Task.from_json(raw)

    async def queue_length(self, queue: str) -> int:
        return await self._redis.llen(self._key(queue))


if redis_pool is not None:
    task_queue: TaskQueue = RedisTaskQueue(redis_pool)
else:
    task_queue = InMemoryTaskQueue()
