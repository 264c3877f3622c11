"""Health and readiness endpoints.

  /health (liveness):  is the process alive?  Always 200; the body says
                       which dependencies are degraded.
  /ready  (readiness): can this instance serve certificates right now?
                       503 when the certificate store is unreachable, so
                       the load balancer stops routing here until it
                       recovers.  Redis is not critical: anchoring is
                       best effort.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from certify.db.engine import check_database
from certify.db.redis import check_redis

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    checks = {
        "database": await check_database(),
        "redis": await check_redis(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> JSONResponse:
    database = await check_database()
    if database == "degraded":
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "checks": {"database": database}},
        )
    return JSONResponse(
        status_code=200,
        content={"status": "ready", "checks": {"database": database}},
    )
