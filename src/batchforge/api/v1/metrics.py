"""Prometheus metrics endpoint."""
import logging
from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from redis.exceptions import RedisError
from batchforge.api.deps import get_queue
from batchforge.observability.metrics import update_queue_metrics
from batchforge.services.redis_queue import RedisQueue

logger = logging.getLogger(__name__)

router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=PlainTextResponse)
def get_metrics(queue: RedisQueue = Depends(get_queue)):
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    # Queue gauge is refreshed on scrape; a Redis outage leaves the last value
    try:
        update_queue_metrics(queue)
    except RedisError as e:
        logger.warning(f"Could not read queue length: {e}")

    return PlainTextResponse(
        content=generate_latest().decode('utf-8'),
        media_type=CONTENT_TYPE_LATEST
    )
