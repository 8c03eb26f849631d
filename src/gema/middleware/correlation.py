"""Correlation ID middleware — one trace identifier per request.

Learn: Every request gets an ID, either from the incoming
X-Correlation-ID / X-Request-ID header (for distributed tracing) or
auto-generated. The ID is bound to structlog's contextvars so it appears
in all log entries for that request, stored on request.state for
handlers that hand work to long-lived tasks (SSE, chat), and returned in
the response headers.

HTTP middleware doesn't run for websocket scopes, so the websocket
endpoint calls correlation_id_from_headers itself.
"""

import uuid
from typing import Mapping

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import HTTPConnection, Request
from starlette.responses import Response

CORRELATION_HEADER = "X-Correlation-ID"
REQUEST_ID_HEADER = "X-Request-ID"


def correlation_id_from_headers(headers: Mapping[str, str]) -> str:
    """Return the caller's correlation ID, or a fresh UUID4."""
    for name in (CORRELATION_HEADER, REQUEST_ID_HEADER):
        value = (headers.get(name) or "").strip()
        if value:
            return value
    return str(uuid.uuid4())


def get_correlation_id(conn: HTTPConnection) -> str:
    """Correlation ID bound by the middleware (resolved from headers if absent)."""
    value = getattr(conn.state, "correlation_id", None)
    if value:
        return value
    return correlation_id_from_headers(conn.headers)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Generate and propagate a correlation ID."""

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = correlation_id_from_headers(request.headers)
        request.state.correlation_id = correlation_id

        # Bind to structlog for correlated logging
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        response: Response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers[REQUEST_ID_HEADER] = correlation_id
        return response
