"""
Correlation ID middleware.

Reads or generates correlation and request ids for each incoming request and
keeps them in context variables, so log records and problem-detail responses
can be tied back to a single request.

Headers:
- X-Correlation-ID: client session id (kept across requests)
- X-Request-ID: one id per request, returned as ``trace_id`` in error bodies
"""

import uuid
import logging
from contextvars import ContextVar
from typing import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="")
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")

MAX_INCOMING_ID_LENGTH = 64


def generate_id() -> str:
    """Generate a short unique ID suitable for logging."""
    return str(uuid.uuid4())[:12]


def _accept_incoming(value: str | None) -> str | None:
    # Client-supplied ids end up in logs; keep them short and printable
    if not value or len(value) > MAX_INCOMING_ID_LENGTH or not value.isprintable():
        return None
    return value


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Sets the correlation/request context variables and echoes them back as headers."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        correlation_id = _accept_incoming(request.headers.get("X-Correlation-ID")) or generate_id()
        request_id = _accept_incoming(request.headers.get("X-Request-ID")) or generate_id()

        correlation_token = correlation_id_ctx.set(correlation_id)
        request_token = request_id_ctx.set(request_id)
        request.state.correlation_id = correlation_id
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        finally:
            correlation_id_ctx.reset(correlation_token)
            request_id_ctx.reset(request_token)

        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Request-ID"] = request_id
        return response


def get_correlation_id() -> str:
    """Get the current correlation ID from context."""
    return correlation_id_ctx.get() or "unknown"


def get_request_id() -> str:
    """Get the current request ID from context."""
    return request_id_ctx.get() or "unknown"


class CorrelationLogFilter(logging.Filter):
    """
    Logging filter that injects correlation IDs into log records.

    Installed on the root handlers in main.py so the format string can use
    ``%(request_id)s``.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        record.request_id = get_request_id()
        return True
