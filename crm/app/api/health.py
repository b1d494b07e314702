"""
Deal Pipeline CRM Core API Health Endpoints
"""

import time
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ..core.config import settings
from ..core.database import get_db, ping_db
from ..services.nats_client import get_nats_client

logger = structlog.get_logger()
router = APIRouter(prefix="/health", tags=["health"])

SERVICE_NAME = "crm-core"

# Track service start time
start_time = time.time()


async def _nats_status() -> str:
    if not settings.nats_enabled:
        return "disabled"

    try:
        nats_client = await get_nats_client()
        return "healthy" if await nats_client.health_check() else "unhealthy"
    except Exception as e:
        logger.warning("NATS health check failed", error=str(e))
        return "unhealthy"


@router.get("/")
async def health_check():
    """Basic health check"""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": settings.version,
        "uptime_seconds": time.time() - start_time,
        "timestamp": time.time()
    }


@router.get("/ready")
async def readiness_check(response: Response, db: AsyncSession = Depends(get_db)):
    """Readiness check with dependency validation"""
    services = {
        "database": "healthy" if await ping_db(db) else "unhealthy",
        "nats": await _nats_status(),
    }

    ready = all(state in ("healthy", "disabled") for state in services.values())
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "status": "ready" if ready else "not_ready",
        "service": SERVICE_NAME,
        "version": settings.version,
        "uptime_seconds": time.time() - start_time,
        "services": services,
        "timestamp": time.time()
    }


@router.get("/live")
async def liveness_check():
    """Liveness check - basic service responsiveness"""
    return {
        "status": "alive",
        "service": SERVICE_NAME,
        "uptime_seconds": time.time() - start_time,
        "timestamp": time.time()
    }
