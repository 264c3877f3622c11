"""Per-request ID, timing and one summary log line.

Issuance, verification and revocation requests interleave in the logs.
Every record emitted while a request is handled carries its request_id,
so the service-layer lines (certificate_id, outcome) can be traced back to
the HTTP call that caused them.

The ID lives in certify.core.logging.request_id_var, a ContextVar, where
the log handler picks it up.  Concurrent requests share the event loop
thread, and each asyncio task sees its own copy.
"""

from __future__ import annotations

import logging
import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from certify.core.logging import request_id_var

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Client-supplied IDs end up in log lines; anything else gets replaced.
_CLIENT_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_request_id(supplied: str | None) -> str:
    """Reuse a well-formed client ID, otherwise mint a UUID."""
    if supplied and _CLIENT_ID_RE.match(supplied):
        return supplied
    return str(uuid.uuid4())


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        token = request_id_var.set(req_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        duration_ms = round((time.perf_counter() - started) * 1000, 1)

        logger.info(
            "%s %s -> %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        response.headers[REQUEST_ID_HEADER] = req_id
        return response
