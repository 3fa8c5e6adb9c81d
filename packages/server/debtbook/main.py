"""
Debtbook API Server

Entry point for the FastAPI application.
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from redis.exceptions import RedisError
from sqlalchemy.exc import InterfaceError, OperationalError
from starlette.responses import JSONResponse

from debtbook import __version__
from debtbook.api.v1 import router as api_v1_router
from debtbook.api.v1.auth import router as auth_router
from debtbook.core.config import Settings, get_settings
from debtbook.core.database import Database
from debtbook.core.errors import register_error_handlers
from debtbook.core.logging_config import configure_logging
from debtbook.core.middleware import CSRFMiddleware, SecurityHeadersMiddleware
from debtbook.core.redis import close_redis, get_redis

log = structlog.get_logger()


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    The app owns its ``Database``; tests pass their own.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="Debtbook",
        description="Per-customer debt ledger with admin-approved team membership.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.db = database or Database.from_settings(settings)

    register_error_handlers(app)

    # Middleware (order matters: outermost first)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(CSRFMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-CSRF-Token"],
    )

    # Auth routes (not org-scoped)
    app.include_router(auth_router, prefix="/auth", tags=["Authentication"])

    # API routes
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check: the database and Redis must both answer."""
        checks = {}
        try:
            async with app.state.db.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except (OperationalError, InterfaceError, OSError) as e:
            log.warning("ready.database_unavailable", error=str(e))
            checks["database"] = "unavailable"
        try:
            redis = await get_redis()
            await redis.ping()
            checks["redis"] = "ok"
        except (RedisError, OSError) as e:
            log.warning("ready.redis_unavailable", error=str(e))
            checks["redis"] = "unavailable"

        if all(v == "ok" for v in checks.values()):
            return {"status": "ready", "checks": checks}
        return JSONResponse(status_code=503, content={"status": "unavailable", "checks": checks})

    @app.on_event("startup")
    async def on_startup():
        log.info("Debtbook starting", version=__version__)

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("Debtbook shutting down")
        await close_redis()
        await app.state.db.dispose()

    return app


app = create_app()
