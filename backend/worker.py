"""
SecureWatch worker entrypoint.

Runs the policy action executor poll loop and the Redis ingestion consumer
side by side.

Run with: python worker.py
"""

import asyncio
import logging
import signal

from securewatch.config import settings
from securewatch.database import async_session, engine
from securewatch.middleware.logging_config import configure_logging
from securewatch.middleware.request_context import bind_request_id
from securewatch.schemas.schemas import AnalyzeRequest
from securewatch.services import ingest_queue
from securewatch.services.action_executor import PolicyActionExecutor
from securewatch.services.capabilities import TEXT_CLASSIFIER, capabilities
from securewatch.services.collaborators import Collaborators
from securewatch.services.ingestion import IngestionService
from securewatch.services.text_classifier import build_text_classifier

configure_logging(settings.log_level, settings.log_format)
logger = logging.getLogger("worker")


async def main():
    async with async_session() as session:
        await capabilities.probe(session)
    text_classifier = build_text_classifier() if capabilities.is_available(TEXT_CLASSIFIER) else None

    executor = PolicyActionExecutor(async_session, collaborators=Collaborators())
    repaired = await executor.repair_invalid_statuses()
    if repaired:
        logger.warning("Repaired %d execution(s) with invalid legacy status", repaired)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    async def ingest(request: AnalyzeRequest) -> None:
        with bind_request_id(f"ingest-{request.communication.message_id}"):
            async with async_session() as db:
                try:
                    outcome = await IngestionService(db, text_classifier=text_classifier).process(
                        request.communication, request.employee_id,
                    )
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
            logger.info(
                "Ingested %s: score %d, violation %s, %d execution(s)",
                request.communication.message_id,
                outcome.classification.risk_score,
                outcome.violation.id if outcome.violation else None,
                outcome.executions_created,
            )

    async def stop_executor():
        await stop.wait()
        executor.stop()

    logger.info("Worker %s started", executor.worker_id)
    try:
        await asyncio.gather(
            executor.run_forever(),
            ingest_queue.consume(ingest, stop=stop),
            stop_executor(),
        )
    finally:
        await engine.dispose()
        logger.info("Worker stopped")


if __name__ == "__main__":
    asyncio.run(main())
