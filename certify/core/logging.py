"""Logging configuration for certify-service.

setup_logging() installs one stdout handler on the root logger.  LOG_JSON
picks the formatter:

  text  ``2024-01-15T09:30:00.123Z INFO     certify.worker  Anchor delivered``
  json  ``{"timestamp": ..., "level": ..., "certificate_id": ..., ...}``

Timestamps are UTC with millisecond precision and a ``Z`` suffix, the same
shape certificate dates take in a fingerprint, so a log line and a record
can be lined up by eye.

Context travels through ``extra=``: services add certificate_id, issuer,
outcome and task_id; RequestContextMiddleware adds request_id, method,
path, status_code and duration_ms.  Signatures, private keys and bearer
tokens are never logged; a signature that has to appear in a message goes
through short_signature() first.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime

CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "status_code",
    "duration_ms",
    "certificate_id",
    "issuer",
    "outcome",
    "task_id",
)

# Loggers that are chatty at DEBUG and never useful below WARNING here.
_NOISY_LOGGERS = (
    "uvicorn",
    "uvicorn.access",
    "uvicorn.error",
    "httpcore",
    "httpx",
    "sqlalchemy.engine",
)


request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class RequestContextFilter(logging.Filter):
    """Stamp the current request_id on records that do not carry one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()  # type: ignore[attr-defined]
        return True


def short_signature(signature: str | None) -> str:
    """First and last four hex digits of a signature, for log messages."""
    if not signature:
        return "-"
    body = signature[2:] if signature.startswith("0x") else signature
    if len(body) <= 8:
        return "0x" + body
    return f"0x{body[:4]}..{body[-4:]}"


def _utc_timestamp(record: logging.LogRecord) -> str:
    moment = datetime.fromtimestamp(record.created, tz=UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class _ContainerFormatter(logging.Formatter):
    """One human-readable line per record.

    From WARNING up the line ends in [filename:lineno], which points at the
    guard that rejected the certificate or request.
    """

    def format(self, record: logging.LogRecord) -> str:
        line = (
            f"{_utc_timestamp(record)} {record.levelname:<8} "
            f"{record.name}  {record.getMessage()}"
        )
        if record.levelno >= logging.WARNING:
            line += f"  [{record.filename}:{record.lineno}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


class _JsonFormatter(logging.Formatter):
    """JSON Lines: one object per record, context fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": _utc_timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, getattr(record, key))
            for key in CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level_name: str, *, json_format: bool = False) -> None:
    """Send everything to stdout at LOG_LEVEL.

    Unknown level names fall back to INFO.  Calling it again replaces the
    previous handler, so tests can switch formats freely.
    """
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    # On the handler, not the root logger: logger filters skip propagated records.
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(_JsonFormatter() if json_format else _ContainerFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
