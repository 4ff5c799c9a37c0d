"""FastAPI application entry point: wires everything together.

Usage:
    python -m src.main

Serves the scheduling API; the event bus and audit subscriber run inside the
application lifespan.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from src.api.routes import router, scheduling_error_handler
from src.config import settings
from src.db.engine import check_connections, db_lifespan
from src.notifications.events import dispatch_now, start_event_system, stop_event_system, subscribe
from src.schemas.events import EventType, SystemEvent
from src.scheduling.errors import SchedulingError
from src.security.audit import audit_on_event

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting scheduling engine (env=%s)", settings.environment)

    # 1. Database
    async with db_lifespan():
        logger.info("Database initialized")

        # 2. Audit logging: always active (global subscriber)
        subscribe(audit_on_event)
        logger.info("Audit logging subscriber registered")

        # 3. Event system
        await start_event_system()
        await dispatch_now(SystemEvent(event_type=EventType.SYSTEM_STARTUP, source_module="main"))

        try:
            yield
        finally:
            logger.info("Shutting down scheduling engine...")
            await dispatch_now(SystemEvent(event_type=EventType.SYSTEM_SHUTDOWN, source_module="main"))
            await stop_event_system()

    logger.info("Scheduling engine shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="Agenda Scheduling API",
    description="Availability resolution and appointment booking",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(router)
app.add_exception_handler(SchedulingError, scheduling_error_handler)  # type: ignore[arg-type]


@app.get("/health")
async def health_check() -> dict[str, Any]:
    """Liveness plus PostgreSQL and Redis reachability."""
    connections = await check_connections()
    degraded = any(c["status"] != "ok" for c in connections.values())
    return {
        "status": "degraded" if degraded else "ok",
        "environment": settings.environment,
        **connections,
    }


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
