"""
Prometheus metrics endpoint.

Mounted outside the API prefix so scrapers can use the conventional
/metrics path.
"""
import logging

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.status import HTTP_503_SERVICE_UNAVAILABLE

from iqtest.core.config import settings
from iqtest.observability import metrics

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/metrics",
    include_in_schema=False,
    response_class=Response,
)
async def prometheus_metrics() -> Response:
    """
    Prometheus metrics endpoint.

    Note: This endpoint is unauthenticated so Prometheus scrapers can
    collect metrics. No user or session identifiers are used as labels.
    """
    if not settings.PROMETHEUS_METRICS_ENABLED:
        return Response(
            content="# Prometheus endpoint not enabled (set PROMETHEUS_METRICS_ENABLED=true)\n",
            media_type=CONTENT_TYPE_LATEST,
            status_code=HTTP_503_SERVICE_UNAVAILABLE,
        )

    try:
        return Response(content=metrics.render(), media_type=CONTENT_TYPE_LATEST)
    except Exception:
        logger.exception("Failed to generate Prometheus metrics")
        return Response(
            content="# Error generating metrics\n",
            media_type=CONTENT_TYPE_LATEST,
            status_code=HTTP_503_SERVICE_UNAVAILABLE,
        )
