"""Background worker process.

RUN:  python -m certify.worker

Same image as the API, different command:
  api:    uvicorn certify.main:app --host 0.0.0.0 --port 8000
  worker: python -m certify.worker

The loop polls every registered queue, dequeues one task at a time and
dispatches it to its handler.  Today that is only anchoring: delivering
issue / revoke events to ANCHOR_WEBHOOK_URL.  A failed delivery is pushed
back with attempt + 1 until ANCHOR_MAX_ATTEMPTS, then dropped and logged.
Nothing here can change a certificate or a verification result.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

import httpx

from certify.core.config import SETTINGS
from certify.core.logging import setup_logging
from certify.core.metrics import ANCHOR_TASKS
from certify.services.anchoring import ANCHOR_QUEUE, deliver_anchor
from certify.services.task_queue import Task, TaskQueue, requeue, task_queue

TaskHandler = Callable[[TaskQueue, Task], Coroutine[Any, Any, None]]

logger = logging.getLogger("certify.worker")


HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


@register_handler(ANCHOR_QUEUE)
async def handle_anchor(queue: TaskQueue, task: Task) -> None:
    payload = task.payload
    attempt = task.attempt
    try:
        await deliver_anchor(payload)
    except httpx.HTTPError as e:
        if attempt >= SETTINGS.anchor_max_attempts:
            ANCHOR_TASKS.labels(result="dropped").inc()
            logger.error(
                "Anchor dropped after %d attempts action=%s certificate=%s: %s",
                attempt,
                payload.get("action"),
                payload.get("certificate_id"),
                e,
                extra={
                    "certificate_id": payload.get("certificate_id"),
                    "task_id": task.id,
                },
            )
            return
        ANCHOR_TASKS.labels(result="retried").inc()
        logger.warning(
            "Anchor delivery failed (attempt %d/%d) certificate=%s: %s",
            attempt,
            SETTINGS.anchor_max_attempts,
            payload.get("certificate_id"),
            e,
            extra={"task_id": task.id},
        )
        await requeue(queue, task)
        return

    logger.info(
        "Anchor delivered action=%s certificate=%s",
        payload.get("action"),
        payload.get("certificate_id"),
        extra={"certificate_id": payload.get("certificate_id"), "task_id": task.id},
    )


async def process_next(queue: TaskQueue, queue_name: str, *, timeout: int = 1) -> bool:
    """Handle at most one task from queue_name.  Returns False if it was empty."""
    task = await queue.dequeue(queue_name, timeout=timeout)
    if task is None:
        return False

    handler = HANDLERS[queue_name]
    try:
        await handler(queue, task)
    except Exception:
        # One bad task must not stop the loop.
        logger.exception("Task %s on [%s] failed", task.id, queue_name)
    return True


IDLE_SLEEP_SECONDS = 0.5


async def run_worker(
    queue: TaskQueue = task_queue,
    stop: asyncio.Event | None = None,
    *,
    idle_sleep: float = IDLE_SLEEP_SECONDS,
) -> None:
    """Poll all registered queues until stop is set (forever by default).

    A pass that finds every queue empty sleeps for idle_sleep.  The
    in-memory queue never blocks in dequeue, so without the sleep the loop
    would never hand control back to the event loop.
    """
    queues = list(HANDLERS.keys())
    logger.info("Worker started, listening on queues: %s", queues)

    while stop is None or not stop.is_set():
        handled = False
        for queue_name in queues:
            handled = await process_next(queue, queue_name) or handled
        if not handled:
            await asyncio.sleep(idle_sleep)
    logger.info("Worker stopped")


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
