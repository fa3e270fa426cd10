"""
NeighborLink Backend — Health Check Route
==========================================

What:  Liveness/readiness probe for Docker and load balancers.
How:   Runs `SELECT 1` against the pool and reports the number of live
       change-feed subscriptions (open chats, badges, inboxes).

Status levels:
    healthy:   database reachable (HTTP 200)
    unhealthy: database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from neighborlink import __version__
from neighborlink.database import engine
from neighborlink.realtime.feed import change_feed
from neighborlink.schemas.api import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(response: Response) -> HealthResponse:
    db_status = "connected"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        db_status = "disconnected"
        overall = "unhealthy"
        response.status_code = 503
        logger.warning("Health check: database unreachable: %s", str(e))

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        realtime_subscriptions=change_feed.active_count,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
