"""
MadadKaro Workflow API Server

Entry point for the FastAPI application.
"""

import asyncio

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from madadkaro_server.api.v1 import router as api_v1_router
from madadkaro_server.core.config import get_settings
from madadkaro_server.core.database import (
    async_session_factory,
    engine,
    get_session_context,
    init_db,
)
from madadkaro_server.core.errors import register_exception_handlers
from madadkaro_server.core.events import get_dispatcher
from madadkaro_server.core.redis import close_redis, get_redis
from madadkaro_shared.logging import configure_logging

settings = get_settings()
log = structlog.get_logger()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="MadadKaro Workflow",
        description="Task and bid state machine with real-time event fan-out.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH"],
        allow_headers=["Content-Type", "Authorization"],
    )

    register_exception_handlers(app)

    # API routes
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Liveness check."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check: the database and Redis both answer."""
        checks = {}
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as exc:
            log.warning("ready.database_failed", error=str(exc))
            checks["database"] = "unavailable"
        try:
            redis = await get_redis()
            await redis.ping()
            checks["redis"] = "ok"
        except Exception as exc:
            log.warning("ready.redis_failed", error=str(exc))
            checks["redis"] = "unavailable"

        if all(v == "ok" for v in checks.values()):
            return {"status": "ready", **checks}
        return JSONResponse(status_code=503, content={"status": "unavailable", **checks})

    @app.on_event("startup")
    async def on_startup():
        log.info("MadadKaro workflow starting", debug=settings.debug)
        await init_db()
        async with get_session_context() as session:
            await get_dispatcher().replay_outbox(session)
        app.state.replayer = asyncio.create_task(
            get_dispatcher().run_replayer(
                async_session_factory, settings.outbox_replay_interval_seconds
            )
        )

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("MadadKaro workflow shutting down")
        replayer = getattr(app.state, "replayer", None)
        if replayer is not None:
            replayer.cancel()
        await close_redis()

    return app


app = create_app()


def run() -> None:
    """CLI entry point: serve the API with uvicorn."""
    uvicorn.run(
        "madadkaro_server.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        reload=settings.debug,
    )
