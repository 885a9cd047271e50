"""
Fire-and-forget ingestion over a Redis list.

The API pushes {"employee_id", "communication"} with LPUSH; the worker pops
with BRPOP and runs the ingestion pipeline in its own session.
"""

import asyncio
import json
import logging

import redis.asyncio as aioredis
from pydantic import ValidationError

from securewatch.config import settings
from securewatch.schemas.schemas import AnalyzeRequest

logger = logging.getLogger(__name__)

INGEST_QUEUE = "securewatch:ingest:queue"
DEAD_LETTER_QUEUE = "securewatch:ingest:dead"


async def get_redis() -> aioredis.Redis:
    return aioredis.from_url(settings.redis_url, decode_responses=True)


async def enqueue_communication(request: AnalyzeRequest, r: aioredis.Redis | None = None) -> None:
    r = r or await get_redis()
    await r.lpush(INGEST_QUEUE, request.model_dump_json())
    logger.debug("Queued communication %s for employee %d", request.communication.message_id, request.employee_id)


def parse_job(raw: str) -> AnalyzeRequest | None:
    """Decode one queued item; malformed items are logged and dropped."""
    try:
        return AnalyzeRequest.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as exc:
        logger.error("Dropping malformed ingestion job: %s", str(exc)[:300])
        return None


async def _pause(stop, seconds: float) -> None:
    if stop is None:
        await asyncio.sleep(seconds)
        return
    try:
        await asyncio.wait_for(stop.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass


async def consume(handle, r: aioredis.Redis | None = None, stop=None, block_seconds: int = 5,
                  retry_seconds: float = 1.0) -> None:
    """Pop jobs until `stop` is set, passing each decoded request to `handle`.

    A job whose handler raises is pushed to the dead-letter list. Redis errors
    pause the loop for `retry_seconds` (or until `stop`) before reconnecting.
    """
    r = r or await get_redis()
    logger.info("Ingestion consumer listening on %s", INGEST_QUEUE)
    while stop is None or not stop.is_set():
        try:
            item = await r.brpop(INGEST_QUEUE, timeout=block_seconds)
        except aioredis.RedisError as exc:
            logger.error("Redis error in ingestion consumer: %s; retrying in %ss", exc, retry_seconds)
            await _pause(stop, retry_seconds)
            continue
        if item is None:
            continue

        _, raw = item
        request = parse_job(raw)
        if request is None:
            await r.lpush(DEAD_LETTER_QUEUE, raw)
            continue
        try:
            await handle(request)
        except Exception:
            logger.exception("Ingestion of %s failed", request.communication.message_id)
            await r.lpush(DEAD_LETTER_QUEUE, raw)
