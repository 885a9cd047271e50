"""
Communications API: the ingestion boundary.

POST /api/communications/analyze runs the pipeline synchronously and returns
the classification; POST /api/communications queues the message for the
worker and returns 202.
"""

import logging

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from securewatch.api.deps import get_db, get_text_classifier
from securewatch.schemas.schemas import AnalyzeRequest, AnalyzeResponse, IngestAccepted
from securewatch.services.ingest_queue import enqueue_communication
from securewatch.services.ingestion import IngestionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/communications", tags=["communications"])


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze_communication(
    body: AnalyzeRequest,
    db: AsyncSession = Depends(get_db),
    text_classifier=Depends(get_text_classifier),
) -> AnalyzeResponse:
    """Classify one communication, record a violation if warranted and evaluate policies."""
    outcome = await IngestionService(db, text_classifier=text_classifier).process(
        body.communication, body.employee_id,
    )
    return AnalyzeResponse(
        classification=outcome.classification,
        violation_id=outcome.violation.id if outcome.violation else None,
        violation_created=outcome.violation_created,
        executions_created=outcome.executions_created,
    )


@router.post("", response_model=IngestAccepted, status_code=202)
async def submit_communication(body: AnalyzeRequest) -> IngestAccepted:
    """Queue a communication for background analysis."""
    try:
        await enqueue_communication(body)
    except aioredis.RedisError as exc:
        logger.error("Could not queue %s: %s", body.communication.message_id, exc)
        raise HTTPException(status_code=503, detail="Ingestion queue unavailable")
    return IngestAccepted(message_id=body.communication.message_id)
