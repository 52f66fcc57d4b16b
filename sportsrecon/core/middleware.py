"""
Correlation ID middleware.

Every request carries an X-Correlation-ID (taken from the caller or freshly
generated). It is exposed on ``request.state``, echoed in the response and
bound to the logging context so comparison and job logs can be traced back
to the request that triggered them.
"""
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from sportsrecon.core.logging import clear_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Bind a correlation id to each request and its log lines."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        token = set_correlation_id(correlation_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id(token)

        response.headers[CORRELATION_HEADER] = correlation_id
        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
        logger.debug(
            f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms}ms)",
            extra={"correlation_id": correlation_id, "duration_ms": elapsed_ms},
        )
        return response
