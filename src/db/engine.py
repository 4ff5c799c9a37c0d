"""Async database engine, session factory, Redis client and lifespan.

PostgreSQL through SQLAlchemy 2.0 async + asyncpg holds every schedule and
appointment; Redis only backs the booking rate limiter. Store transactions
are opened by src.scheduling.store.sql_store_factory.
"""

from __future__ import annotations

import contextlib
import logging
import time
from collections.abc import AsyncGenerator
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.config import settings

logger = logging.getLogger(__name__)

# ── Async PostgreSQL engine ──────────────────────────────────────────

engine: AsyncEngine = create_async_engine(
    settings.db.database_url,
    echo=settings.db.echo_sql,
    pool_size=settings.db.pool_size,
    max_overflow=settings.db.max_overflow,
    pool_pre_ping=True,
    pool_recycle=3600,
)

# Bookings read then insert in one transaction; expire_on_commit=False keeps
# returned appointments readable after the store context has committed.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# ── Redis client ─────────────────────────────────────────────────────

redis_client: aioredis.Redis = aioredis.from_url(
    settings.db.redis_url,
    decode_responses=True,
)


# ── Health ───────────────────────────────────────────────────────────


async def check_connections() -> dict[str, Any]:
    """Ping PostgreSQL and Redis, with latency measurements."""
    health: dict[str, Any] = {}

    try:
        t0 = time.monotonic()
        async with async_session_factory() as db:
            await db.execute(text("SELECT 1"))
        health["postgresql"] = {"status": "ok", "latency_ms": int((time.monotonic() - t0) * 1000)}
    except Exception as exc:
        logger.warning("PostgreSQL health check failed: %s", exc)
        health["postgresql"] = {"status": "error", "error": str(exc)}

    try:
        t0 = time.monotonic()
        await redis_client.ping()
        health["redis"] = {"status": "ok", "latency_ms": int((time.monotonic() - t0) * 1000)}
    except Exception as exc:
        logger.warning("Redis health check failed: %s", exc)
        health["redis"] = {"status": "error", "error": str(exc)}

    return health


# ── Lifespan helpers ─────────────────────────────────────────────────


async def init_db() -> None:
    """Verify connectivity; outside production also create missing tables.

    Production schemas come from Alembic (alembic/versions), which also
    installs btree_gist for the appointment overlap constraint.
    """
    async with engine.begin() as conn:
        # Import here to ensure all models are registered with Base.metadata
        from src.models import Base

        if not settings.is_production:
            await conn.run_sync(Base.metadata.create_all)
        else:
            await conn.execute(text("SELECT 1"))
    logger.info("Database ready (env=%s)", settings.environment)


async def close_db() -> None:
    """Dispose the engine pool and close Redis."""
    await engine.dispose()
    await redis_client.aclose()


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncGenerator[None, None]:
    """Open and close connections around the FastAPI lifespan."""
    await init_db()
    try:
        yield
    finally:
        await close_db()
