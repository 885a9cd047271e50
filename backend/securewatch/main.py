import asyncio
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from securewatch.config import settings
from securewatch.database import async_session, engine
from securewatch.middleware.logging_config import configure_logging

configure_logging(settings.log_level, settings.log_format)

from securewatch.api import audit, communications, executions, health, metrics, policies, violations  # noqa: E402
from securewatch.middleware.metrics import PrometheusMiddleware  # noqa: E402
from securewatch.middleware.request_context import RequestContextMiddleware  # noqa: E402
from securewatch.services.action_executor import PolicyActionExecutor  # noqa: E402
from securewatch.services.capabilities import TEXT_CLASSIFIER, capabilities  # noqa: E402
from securewatch.services.collaborators import Collaborators  # noqa: E402
from securewatch.services.text_classifier import build_text_classifier  # noqa: E402

logger = logging.getLogger("securewatch")


async def _start_embedded_executor(app: FastAPI) -> PolicyActionExecutor:
    executor = PolicyActionExecutor(async_session, collaborators=app.state.collaborators)
    await executor.repair_invalid_statuses()
    app.state.executor_task = asyncio.create_task(executor.run_forever())
    logger.info("Policy action executor running in the API process")
    return executor


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))

    app.state.session_factory = async_session
    app.state.collaborators = Collaborators()
    async with async_session() as session:
        await capabilities.probe(session)
    app.state.text_classifier = build_text_classifier() if capabilities.is_available(TEXT_CLASSIFIER) else None

    executor = await _start_embedded_executor(app) if settings.run_executor else None
    yield

    if executor is not None:
        executor.stop()
        await app.state.executor_task
    await engine.dispose()


app = FastAPI(
    title="SecureWatch Enforcement",
    description="Violation detection and policy enforcement for workplace communications",
    version="0.1.0",
    lifespan=lifespan,
)

# Added last runs first: metrics wrap the request-id context
app.add_middleware(RequestContextMiddleware)
app.add_middleware(PrometheusMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.allowed_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "X-Request-ID"],
)

for module in (communications, violations, policies, executions, audit, health, metrics):
    app.include_router(module.router)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.error("Unhandled %s on %s %s", type(exc).__name__, request.method, request.url.path, exc_info=exc)
    body = {"detail": "Internal Server Error"}
    if settings.environment == "development":
        body = {
            "detail": f"{type(exc).__name__}: {exc}",
            "traceback": traceback.format_exception(exc)[-5:],
        }
    return JSONResponse(status_code=500, content=body)
