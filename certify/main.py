from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from certify.api.auth import router as auth_router
from certify.api.certificates import router as certificates_router
from certify.api.health import router as health_router
from certify.api.metrics_endpoint import router as metrics_router
from certify.core.config import SETTINGS
from certify.core.logging import setup_logging
from certify.db.engine import lifespan_db
from certify.db.redis import lifespan_redis
from certify.middleware.metrics import MetricsMiddleware
from certify.middleware.request_context import RequestContextMiddleware

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Teardown runs in reverse order of startup.
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="certify-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(SETTINGS.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last-added runs first: RequestContext → Metrics → CORS → route handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(auth_router)
app.include_router(certificates_router)

logger.info(
    "certify-service started  env=%s log_level=%s port=%d docs=%s issuers=%d",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
    len(SETTINGS.authorized_issuers),
)
