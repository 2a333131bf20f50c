"""
Health check and status endpoints.
"""
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from iqtest.core.config import settings
from iqtest.core.datetime_utils import utc_now

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(request: Request):
    """
    Report database and cache health.

    Returns 503 when the database is unreachable. A failing cache only
    degrades the status, since every read falls back to the database.
    """
    database_ok = False
    try:
        database_ok = await request.app.state.database.ping()
    except Exception as e:
        logger.error(f"Database health check failed: {e}")

    cache_ok = False
    try:
        cache_ok = request.app.state.session_cache.ping()
    except Exception as e:
        logger.warning(f"Cache health check failed: {e}")

    if not database_ok:
        status = "unhealthy"
    elif not cache_ok:
        status = "degraded"
    else:
        status = "healthy"

    return JSONResponse(
        status_code=200 if database_ok else 503,
        content={
            "status": status,
            "timestamp": utc_now().isoformat(),
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENV,
            "checks": {
                "database": "up" if database_ok else "down",
                "cache": "up" if cache_ok else "down",
            },
        },
    )


@router.get("/ping")
async def ping():
    """
    Simple ping endpoint for basic connectivity testing.
    """
    return {"message": "pong"}
