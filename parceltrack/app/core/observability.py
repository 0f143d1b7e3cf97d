"""
Observability Middleware.

Every request gets a correlation ID (taken from ``X-Correlation-ID`` or
generated). It is echoed in the response and attached to every log record
emitted while the request is handled, so lifecycle and channel logs can be
tied back to the HTTP call that caused them.
"""

import time
import uuid
import logging
from contextvars import ContextVar
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from parceltrack.app.core.config import settings

logger = logging.getLogger("parceltrack.http")

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [%(correlation_id)s] %(message)s"

# SSE streams: no latency header or request log
LONG_LIVED_SUFFIXES = ("/events",)


class CorrelationIdFilter(logging.Filter):
    """Stamp the current request's correlation ID on each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = correlation_id_var.get()
        return True


def configure_logging(level: str = None) -> None:
    """Set up process logging once; safe to call again."""
    level = (level or settings.log_level).upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)

    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, CorrelationIdFilter) for f in handler.filters):
            handler.addFilter(CorrelationIdFilter())

    logging.getLogger("parceltrack").setLevel(level)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID") or uuid.uuid4().hex
        token = correlation_id_var.set(correlation_id)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)

        duration_ms = (time.perf_counter() - start_time) * 1000
        response.headers["X-Correlation-ID"] = correlation_id

        if request.url.path.endswith(LONG_LIVED_SUFFIXES):
            return response
        response.headers["X-Process-Time"] = f"{duration_ms:.2f}"

        log_data = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
            "ip": request.client.host if request.client else "unknown"
        }

        if response.status_code >= 500:
            logger.error("Request failed", extra=log_data)
        elif response.status_code >= 400:
            logger.warning("Request rejected", extra=log_data)
        else:
            logger.info("Request served", extra=log_data)

        return response
