"""FastAPI application entry point for the escrow engine.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, wire the EscrowEngine and
       start the background sweeper.
    2. Running: Serve REST API + MCP tools on a single Uvicorn process.
    3. Shutdown: Stop the sweeper, close database and Redis connections.

The MCP server is mounted at /mcp so AI agents can discover tools
alongside the REST API at /api/v1/*.

Run with:
    uv run uvicorn escrow_engine.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from escrow_engine.api.middleware import setup_middleware
from escrow_engine.api.routes.disputes import router as disputes_router
from escrow_engine.api.routes.escrow import router as escrow_router
from escrow_engine.api.routes.health import router as health_router
from escrow_engine.api.routes.users import router as users_router
from escrow_engine.config import get_settings
from escrow_engine.infrastructure.database.engine import close_db, get_session_factory, init_db
from escrow_engine.infrastructure.redis_client import close_redis, init_redis
from escrow_engine.logging_config import get_logger, setup_logging
from escrow_engine.mcp_server.tools import bind_engine, mcp
from escrow_engine.orchestration import EscrowSweeper, start_scheduler, stop_scheduler
from escrow_engine.services import create_escrow_engine

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
        arbitrator=settings.arbitrator_backend,
    )

    # 2. Initialize database
    await init_db()

    # 3. Initialize Redis (optional: without it idempotency keys are not enforced)
    redis = None
    try:
        redis = await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    # 4. Wire the engine
    engine = create_escrow_engine(settings, get_session_factory(), redis=redis)
    app.state.engine = engine
    app.state.redis = redis
    bind_engine(engine)

    # 5. Background sweeper
    scheduler = None
    if settings.sweeper_enabled:
        scheduler = start_scheduler(EscrowSweeper(engine), settings.sweep_interval_seconds)

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    if scheduler is not None:
        stop_scheduler(scheduler)
    bind_engine(None)
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Escrow Engine",
        description=(
            "Escrow transactions between buyers and sellers, with evidence, "
            "arbitrated disputes and reputation tracking."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    setup_middleware(app)

    # --- REST API Routes ---
    app.include_router(health_router)
    app.include_router(escrow_router)
    app.include_router(disputes_router)
    app.include_router(users_router)

    # --- MCP Server (mounted as sub-application) ---
    app.mount("/mcp", mcp.sse_app())

    return app


# The app instance used by Uvicorn
app = create_app()
