"""Prometheus scrape endpoint.

Returns plain text in Prometheus exposition format, e.g.:

  # HELP certificates_issued_total Certificates signed and persisted
  # TYPE certificates_issued_total counter
  certificates_issued_total{category="academic"} 12.0
  certificate_verifications_total{outcome="IssuerMismatch"} 1.0

In production restrict access to /metrics (internal port or scraper IP).
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
