"""
Health check endpoints
"""

from typing import Any
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text

from app.core.database import get_session
from app.core.redis import get_redis
from app.config import settings
from app.schemas.response import HealthResponse

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/live", response_model=HealthResponse)
async def liveness() -> Any:
    """
    Kubernetes liveness probe
    """
    return HealthResponse(status="alive", version=settings.APP_VERSION)


@router.get("/ready", response_model=HealthResponse)
async def readiness(
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Kubernetes readiness probe - checks all dependencies
    """
    checks = {"database": False}

    # Check database
    try:
        result = await db.execute(text("SELECT 1"))
        checks["database"] = result.scalar() == 1
    except Exception as e:
        logger.warning(f"Database readiness check failed: {e}")

    # Check Redis only when the summary cache depends on it
    if settings.CACHE_ENABLED:
        checks["redis"] = False
        try:
            redis_client = await get_redis()
            await redis_client.ping()
            checks["redis"] = True
        except Exception as e:
            logger.warning(f"Redis readiness check failed: {e}")

    return HealthResponse(
        status="ready" if all(checks.values()) else "not ready",
        checks=checks,
        version=settings.APP_VERSION
    )
