"""Application metrics using the Prometheus client library.

This module defines all metrics in one place: a single inventory of
everything the service measures.  Other modules import specific metrics
and increment/observe them at the point of action.

Verification outcomes are labelled by result so a dashboard can separate
"certificates that failed verification" (expected, user-facing) from
"verification requests that errored" (the service is broken); the HTTP
5xx counter covers the latter.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Certificate lifecycle metrics
# ---------------------------------------------------------------------------

CERTIFICATES_ISSUED = Counter(
    "certificates_issued_total",
    "Certificates signed and persisted",
    ["category"],
)

ISSUANCE_FAILURES = Counter(
    "certificate_issuance_failures_total",
    "Issuance attempts that failed, by failing stage",
    ["stage"],  # validation|signing|persistence
)

VERIFICATIONS = Counter(
    "certificate_verifications_total",
    "Verification results by outcome",
    ["outcome"],  # Valid|Revoked|Expired|SignatureRecoveryFailed|IssuerMismatch
)

REVOCATIONS = Counter(
    "certificate_revocations_total",
    "Revocation attempts by result",
    ["result"],  # revoked|already_revoked|unauthorized|not_found|invalid
)

SIGNING_DURATION = Histogram(
    "certificate_signing_duration_seconds",
    "Time spent waiting on the signing capability",
    # Wallet prompts wait on a human, hence the long tail.
    buckets=[0.01, 0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0],
)

ANCHOR_TASKS = Counter(
    "anchor_tasks_total",
    "Anchoring side effects by result",
    ["result"],  # delivered|skipped|retried|dropped|enqueue_failed
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)
