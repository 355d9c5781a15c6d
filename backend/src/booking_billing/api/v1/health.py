"""Health check endpoints for liveness and readiness probes."""
from datetime import datetime

import structlog
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from redis import asyncio as aioredis
from sqlalchemy import text

from booking_billing.config import settings
from booking_billing.database import engine

logger = structlog.get_logger(__name__)

router = APIRouter()

VERSION = "0.1.0"


@router.get("/health", status_code=status.HTTP_200_OK, tags=["Health"])
async def health_check() -> dict[str, str]:
    """Liveness probe: the process is up. External dependencies are not checked."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": VERSION,
    }


@router.get("/health/ready", tags=["Health"])
async def readiness_check() -> JSONResponse:
    """
    Readiness probe.

    The database is required. The worker's Redis queue is reported but does
    not make the API unready, since interactive requests never touch it.
    """
    checks = {"database": "unknown", "queue": "unknown"}
    ready = True

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "connected"
    except Exception as exc:
        logger.error("database_health_check_failed", error=str(exc))
        checks["database"] = "disconnected"
        ready = False

    try:
        redis_client = aioredis.from_url(str(settings.arq_redis_url))
        await redis_client.ping()
        await redis_client.aclose()
        checks["queue"] = "connected"
    except Exception as exc:
        logger.warning("queue_health_check_failed", error=str(exc))
        checks["queue"] = "disconnected"

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "ready": ready,
            "checks": checks,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )
