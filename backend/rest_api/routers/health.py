"""
Health endpoints - /api/health
"""

import asyncio

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from rest_api.services.circuit_breaker import get_all_breaker_stats
from shared.config.settings import settings
from shared.infrastructure.events.health_checks import check_database_health, check_redis_health
from shared.utils.health import HealthStatus, overall_status

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
def health_check() -> dict:
    """Basic liveness check."""
    return {
        "status": "healthy",
        "service": "rest-api",
        "environment": settings.environment,
    }


@router.get("/detailed")
async def detailed_health_check():
    """
    Verify connectivity to the database and Redis, and report the state of
    the payment and email circuit breakers. Returns 503 when the database is down; Redis only degrades.
    """
    results = await asyncio.gather(check_database_health(), check_redis_health())
    status = overall_status(list(results), required={"database"})
    body = {
        "status": status.value,
        "service": "rest-api",
        "environment": settings.environment,
        "dependencies": {r.component: r.to_dict() for r in results},
        "circuit_breakers": get_all_breaker_stats(),
    }
    if status == HealthStatus.UNHEALTHY:
        return JSONResponse(content=body, status_code=503)
    return body
