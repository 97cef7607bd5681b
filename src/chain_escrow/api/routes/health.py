"""Health check endpoint.

Verifies connectivity to the replica database and Redis, and reports how
far the indexer has got on each chain.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from sqlalchemy import text

from chain_escrow.infrastructure.database.engine import get_engine
from chain_escrow.infrastructure.redis_client import ping_redis
from chain_escrow.logging_config import get_logger
from chain_escrow.schemas.escrow import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(request: Request) -> HealthResponse:
    """Check the replica database, Redis, and indexer progress."""
    db_status = "unknown"

    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    redis_status = await ping_redis()

    indexer: dict[str, int] = {}
    event_indexer = getattr(request.app.state, "indexer", None)
    scheduler = getattr(request.app.state, "scheduler", None)
    if event_indexer is not None and scheduler is not None and db_status == "healthy":
        for chain_id in scheduler.chain_ids:
            indexer[str(chain_id)] = await event_indexer.cursor(chain_id)

    overall = "ok" if db_status == "healthy" and redis_status in ("healthy", "disabled") else "degraded"

    return HealthResponse(
        status=overall,
        version="0.1.0",
        database=db_status,
        redis=redis_status,
        indexer=indexer,
    )
