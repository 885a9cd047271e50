"""
GET /metrics: Prometheus text exposition.

The pending-execution backlog is a gauge read from the database at scrape
time; everything else is counted where it happens.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from securewatch.api.deps import get_db
from securewatch.middleware.metrics import policy_executions_pending
from securewatch.models import PolicyExecution

logger = logging.getLogger(__name__)

router = APIRouter(tags=["metrics"])


@router.get("/metrics")
async def prometheus_metrics(db: AsyncSession = Depends(get_db)):
    try:
        backlog = await db.scalar(
            select(func.count(PolicyExecution.id)).where(PolicyExecution.execution_status == "pending")
        )
        policy_executions_pending.set(backlog or 0)
    except SQLAlchemyError as exc:
        # Keep serving the in-process counters when the database is down
        logger.warning("Could not read execution backlog: %s", exc)
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
