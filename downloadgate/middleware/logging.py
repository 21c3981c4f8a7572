"""
Request logging middleware with correlation ID support.

Each request gets a correlation ID bound to the structlog context; request
start and completion are logged with timing. A well-formed ``X-Correlation-ID``
sent by an upstream collaborator is reused so one purchase or download can be
traced across services.

Never logs IPs, Authorization headers (they carry download tokens) or query
strings.
"""

import re
import secrets
import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

CORRELATION_HEADER = "X-Correlation-ID"
_INCOMING_ID_PATTERN = re.compile(r"^[A-Za-z0-9-]{8,64}$")


def generate_correlation_id() -> str:
    """Generate an 8-character correlation ID."""
    return secrets.token_hex(4)


def resolve_correlation_id(request: Request) -> str:
    incoming = request.headers.get(CORRELATION_HEADER)
    if incoming and _INCOMING_ID_PATTERN.match(incoming):
        return incoming
    return generate_correlation_id()


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs request_started / request_completed / request_failed events."""

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = resolve_correlation_id(request)
        start_time = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
        request.state.correlation_id = correlation_id

        logger = structlog.get_logger()
        logger.info("request_started", method=request.method, path=request.url.path)

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                duration_ms=round(duration_ms, 2),
                exc_info=True,
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
