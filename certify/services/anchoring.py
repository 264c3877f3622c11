"""Best-effort anchoring of issuance and revocation events.

An anchor announces (fingerprint, issuer, status) to an external registry
such as an on-chain contract relay.  It is a side effect with its own
failure policy:

  - request_anchor() never raises; a broken queue is logged and ignored
  - deliver_anchor() is called by the worker and retried there
  - neither can change an issuance, revocation or verification result
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from certify.core.config import SETTINGS
from certify.core.metrics import ANCHOR_TASKS
from certify.crypto.canonical import format_timestamp
from certify.models.certificate import CredentialRecord
from certify.services.task_queue import TaskQueue

logger = logging.getLogger(__name__)

ANCHOR_QUEUE = "anchoring"


def anchor_payload(record: CredentialRecord, action: str) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "action": action,  # issue|revoke
        "certificate_id": str(record.id),
        "fingerprint": record.content_fingerprint,
        "issuer_address": record.issuer_address,
        "content_ref": record.content_ref,
        "category": record.category.value if record.category else None,
        "expiry_date": (
            format_timestamp(record.expiry_date) if record.expiry_date else None
        ),
        "attempt": 1,
    }
    if action == "revoke":
        payload["reason"] = record.revocation_reason
    return payload


async def request_anchor(
    queue: TaskQueue, record: CredentialRecord, action: str
) -> None:
    """Enqueue an anchoring task.  Failures are logged, never raised."""
    try:
        task = await queue.enqueue(ANCHOR_QUEUE, anchor_payload(record, action))
    except Exception:
        ANCHOR_TASKS.labels(result="enqueue_failed").inc()
        logger.exception(
            "Could not enqueue anchor action=%s certificate=%s", action, record.id
        )
        return
    logger.debug(
        "Anchor queued task=%s action=%s certificate=%s", task.id, action, record.id
    )


async def deliver_anchor(
    payload: dict[str, Any],
    *,
    webhook_url: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """POST one anchor event.  Returns False when anchoring is not configured.

    Raises httpx.HTTPError on delivery failure so the worker can retry.
    """
    url = webhook_url if webhook_url is not None else SETTINGS.anchor_webhook_url
    if not url:
        logger.info(
            "Anchoring not configured, skipping action=%s certificate=%s",
            payload.get("action"),
            payload.get("certificate_id"),
        )
        ANCHOR_TASKS.labels(result="skipped").inc()
        return False

    body = {k: v for k, v in payload.items() if k != "attempt"}
    if client is None:
        async with httpx.AsyncClient(timeout=10.0) as own_client:
            resp = await own_client.post(url, json=body)
    else:
        resp = await client.post(url, json=body)
    resp.raise_for_status()
    ANCHOR_TASKS.labels(result="delivered").inc()
    return True
