"""
Request context.

HTTP requests get an X-Request-ID (propagated or generated). Background work
(the executor and the ingestion consumer) binds its own correlation id with
`bind_request_id` so worker log lines can be traced the same way.
"""

import time
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def get_request_id() -> str:
    return _request_id_var.get()


@contextmanager
def bind_request_id(value: str | None = None):
    """Set the correlation id for the enclosed block (worker jobs, scripts)."""
    token = _request_id_var.set(value or uuid4().hex)
    try:
        yield _request_id_var.get()
    finally:
        _request_id_var.reset(token)


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        start = time.perf_counter()
        with bind_request_id(request_id):
            response = await call_next(request)
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.info(
                "%s %s %s %.0fms",
                request.method, request.url.path, response.status_code, duration_ms,
                extra={"duration_ms": duration_ms},
            )
        response.headers["X-Request-ID"] = request_id
        return response
