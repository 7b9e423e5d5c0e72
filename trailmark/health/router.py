"""Health check endpoints."""

from fastapi import APIRouter, Request, status
from fastapi.responses import ORJSONResponse

from trailmark.config import get_settings
from trailmark.core.database import AsyncCassandraConnection
from trailmark.core.redis import RedisConnection


router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness probe - checks if the application is running."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness(request: Request) -> ORJSONResponse:
    """Readiness probe - ready once the progress service is wired.

    Redis is optional (cache and pub/sub degrade to pass-through), so it is
    reported but does not affect readiness.
    """
    settings = get_settings()
    progress_ready = getattr(request.app.state, "progress_service", None) is not None
    return ORJSONResponse(
        status_code=status.HTTP_200_OK if progress_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if progress_ready else "not_ready",
            "environment": settings.environment,
            "debug": settings.debug,
            "cassandra": AsyncCassandraConnection.is_connected(),
            "redis": RedisConnection.is_connected(),
        },
    )


@router.get("")
async def health() -> dict[str, str]:
    """General health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }
