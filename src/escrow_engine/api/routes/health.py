"""Health check endpoint.

Verifies connectivity to the ledger database and Redis, returns structured status.
Used by Docker healthchecks, load balancers, and monitoring systems.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from sqlalchemy import text

from escrow_engine.infrastructure.database.engine import _get_engine
from escrow_engine.logging_config import get_logger
from escrow_engine.schemas.escrow import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(request: Request) -> HealthResponse:
    """Check connectivity to the database and Redis.

    Redis is optional: without it idempotency keys are not enforced, so its
    absence reports as ``disabled`` and does not degrade the service.
    """
    db_status = "unknown"

    try:
        async with _get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    redis = getattr(request.app.state, "redis", None)
    if redis is None:
        redis_status = "disabled"
    else:
        try:
            await redis.ping()
            redis_status = "healthy"
        except Exception as exc:
            redis_status = f"unhealthy: {exc}"
            logger.error("health.redis_check_failed", error=str(exc))

    overall = (
        "ok" if db_status == "healthy" and redis_status in ("healthy", "disabled") else "degraded"
    )

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
    )
