"""Health check endpoint.

Verifies the escrow store and, when configured, Redis. Used by Docker
healthchecks, load balancers, and monitoring systems.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from escrow_settlement.api.deps import get_services
from escrow_settlement.infrastructure.redis_client import get_redis
from escrow_settlement.logging_config import get_logger
from escrow_settlement.schemas.escrow import HealthResponse
from escrow_settlement.services.container import ServiceContainer

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check(services: ServiceContainer = Depends(get_services)) -> HealthResponse:
    """Check the store and Redis."""
    try:
        await services.store.ping()
        store_status = "healthy"
    except Exception as exc:
        store_status = f"unhealthy: {exc}"
        logger.error("health.store_check_failed", error=str(exc))

    try:
        redis = get_redis()
        await redis.ping()
        redis_status = "healthy"
    except RuntimeError:
        redis_status = "disabled"
    except Exception as exc:
        redis_status = f"unhealthy: {exc}"
        logger.error("health.redis_check_failed", error=str(exc))

    overall = "ok" if store_status == "healthy" and redis_status in {"healthy", "disabled"} else "degraded"

    return HealthResponse(
        status=overall,
        version="0.1.0",
        store=store_status,
        redis=redis_status,
    )
