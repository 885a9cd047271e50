"""
Liveness/readiness summary for the API process.

Results are cached briefly so load balancer polling does not hit the
database and Redis on every request.
"""

import time

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from securewatch.api.deps import get_session_factory
from securewatch.config import settings
from securewatch.services.capabilities import capabilities

router = APIRouter(tags=["health"])

CACHE_TTL_SECONDS = 10.0
_cached: tuple[float, dict] | None = None


async def _database_status(session_factory: async_sessionmaker) -> dict:
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        return {"status": "disconnected", "error": str(exc)}
    return {"status": "connected"}


async def _redis_status() -> dict:
    r = aioredis.from_url(settings.redis_url, decode_responses=True)
    try:
        await r.ping()
    except (RedisError, OSError) as exc:
        return {"status": "disconnected", "error": str(exc)}
    finally:
        await r.aclose()
    return {"status": "connected"}


@router.get("/api/health")
async def health_check(session_factory: async_sessionmaker = Depends(get_session_factory)):
    global _cached

    now = time.monotonic()
    if _cached is not None and now - _cached[0] < CACHE_TTL_SECONDS:
        return _cached[1]

    database = await _database_status(session_factory)
    redis = await _redis_status()

    if database["status"] != "connected":
        overall = "unhealthy"
    elif redis["status"] != "connected":
        # Synchronous analysis still works; only queued submission is down
        overall = "degraded"
    else:
        overall = "healthy"

    report = {
        "status": overall,
        "environment": settings.environment,
        "components": {
            "database": database,
            "redis": redis,
            "collaborators": {
                name: "available" if ok else "unavailable"
                for name, ok in capabilities.snapshot().items()
            },
        },
    }
    _cached = (now, report)
    return report
