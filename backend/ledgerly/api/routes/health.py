"""Health check endpoints for monitoring."""
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerly.api.dependencies import get_db_session, get_redis_client
from ledgerly.core.config import settings
from ledgerly.core.database import get_db_debug_info
from ledgerly.services.ml.category_cache import category_cache

router = APIRouter(tags=["health"])


@router.api_route("/health", methods=["GET", "HEAD"])
async def health_check() -> Dict[str, Any]:
    """Basic health check endpoint (supports GET & HEAD)."""
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": "1.0.0",
    }


@router.get("/health/detailed")
async def detailed_health_check(
    db: AsyncSession = Depends(get_db_session),
    redis=Depends(get_redis_client),
) -> Dict[str, Any]:
    """Detailed health check with service status."""
    health_status: Dict[str, Any] = {"status": "healthy", "services": {}}

    try:
        await db.execute(text("SELECT 1"))
        health_status["services"]["database"] = "healthy"
    except Exception as e:
        health_status["services"]["database"] = f"unhealthy: {e}"
        health_status["status"] = "degraded"

    try:
        await redis.ping()
        health_status["services"]["redis"] = "healthy"
    except Exception as e:
        health_status["services"]["redis"] = f"unhealthy: {e}"
        health_status["status"] = "degraded"

    health_status["category_cache"] = category_cache.stats()
    return health_status


@router.get("/debug/db")
async def db_debug():
    """Return non-sensitive DB diagnostics (for development)."""
    return get_db_debug_info()
