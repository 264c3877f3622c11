"""PostgreSQL access through SQLAlchemy's asyncio extension.

Everything here is None when DATABASE_URL is unset; the API then keeps
certificates in the in-memory repo and health reports the database as
not_configured.

Sessions are unit-of-work scoped: session_scope() commits when the block
exits cleanly and rolls back otherwise.  PgCertificateRepo opens one per
call, so the commit has happened (or failed, as PersistenceError) before
the repo returns and long before a response is written.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from certify.core.config import SETTINGS
from certify.core.errors import PersistenceError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    # pre_ping: a verify request after a Postgres restart should not 503.
    return create_async_engine(
        url, echo=echo, pool_size=5, max_overflow=10, pool_pre_ping=True
    )


engine: AsyncEngine | None = None
async_session_factory: async_sessionmaker[AsyncSession] | None = None

if SETTINGS.database_url:
    engine = build_engine(SETTINGS.database_url, echo=SETTINGS.is_dev)
    async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    factory = factory or async_session_factory
    if factory is None:
        raise RuntimeError("DATABASE_URL is not configured, no database session")
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise PersistenceError(f"database write failed: {e}") from e
        except Exception:
            await session.rollback()
            raise


async def check_database() -> str:
    if engine is None:
        return "not_configured"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        logger.warning("Database health check failed", exc_info=True)
        return "degraded"
    return "ok"


@asynccontextmanager
async def lifespan_db() -> AsyncIterator[None]:
    if engine is None:
        logger.info("No DATABASE_URL configured, certificates are kept in memory")
        yield
        return

    logger.info(
        "Database engine ready host=%s db=%s", engine.url.host, engine.url.database
    )
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Database engine disposed")
