"""Redis connection management.

Same shape as engine.py for PostgreSQL: when REDIS_URL is configured we
create a connection pool; when it's None (local dev, tests) the anchoring
queue and the sign-in challenge store fall back to in-memory versions.

Redis holds only short-lived state here:
  - anchoring tasks waiting for the worker (LPUSH/BRPOP)
  - wallet sign-in nonces (SETEX, consumed once with GETDEL)

Certificates themselves never live in Redis.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from certify.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


async def check_redis() -> str:
    """Return ok | degraded | not_configured for health checks."""
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
        return "ok"
    except (aioredis.RedisError, OSError):
        logger.warning("Redis health check failed", exc_info=True)
        return "degraded"


@asynccontextmanager
async def lifespan_redis():
    """Startup/shutdown hook for Redis, mirrors lifespan_db()."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured, anchoring queue and nonces are in-memory")
        yield
        return

    if await check_redis() == "ok":
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    else:
        # Keep starting: issuance and verification don't need Redis.
        logger.error("Redis unreachable on startup: %s", SETTINGS.redis_url)

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
