import time
import uuid

import structlog
from fastapi import Request

from virtualqueue.core.config import settings

logger = structlog.get_logger()

CORRELATION_HEADER = "X-Correlation-ID"


async def request_context(request: Request, call_next):
    """Bind a correlation id for the request's log lines and record its outcome."""
    correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
    request.state.correlation_id = correlation_id
    structlog.contextvars.bind_contextvars(
        correlation_id=correlation_id,
        method=request.method,
        path=request.url.path,
    )

    started = time.perf_counter()
    try:
        logger.info("request_started", client_ip=request.client.host if request.client else None)
        response = await call_next(request)
        elapsed = time.perf_counter() - started
        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round(elapsed * 1000, 2),
        )
    finally:
        structlog.contextvars.unbind_contextvars("correlation_id", "method", "path")

    response.headers[CORRELATION_HEADER] = correlation_id
    response.headers["X-Process-Time"] = f"{elapsed:.6f}"
    return response


async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    if settings.is_production:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response
