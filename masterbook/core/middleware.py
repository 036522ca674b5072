# masterbook/core/middleware.py
"""Request tracing and access logging"""
import logging
import time
import uuid

from starlette.requests import Request

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000
QUIET_PATH_PREFIXES = ("/health",)


async def correlation_id_middleware(request: Request, call_next):
    """Reuse the caller's X-Correlation-ID or mint one, and echo it back"""
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
    request.state.correlation_id = correlation_id

    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


async def request_logging_middleware(request: Request, call_next):
    """One line per request; slow ones are logged as warnings, health checks not at all"""
    if request.url.path.startswith(QUIET_PATH_PREFIXES):
        return await call_next(request)

    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = round((time.perf_counter() - started) * 1000, 2)

    level = logging.WARNING if duration_ms >= SLOW_REQUEST_MS else logging.INFO
    logger.log(
        level,
        f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms} ms)",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", "unknown"),
            "client": request.client.host if request.client else "unknown",
        }
    )
    return response
