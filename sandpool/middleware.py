"""Request middleware for tracing and logging."""

import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from sandpool.logging import bind_context, clear_context, get_logger
from sandpool.metrics import record_request

logger = get_logger(__name__)


def _route_template(request: Request) -> str:
    """Matched route path (e.g. ``/v1/accounts/{account_id}``) to keep metric labels bounded."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Binds request and correlation ids to every log line of a request.

    The correlation id comes from ``X-Correlation-ID`` when the caller sends
    one, so an operator action can be followed through the orchestrator logs.
    Both ids are echoed back as response headers.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())[:8]
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())[:8]

        clear_context()
        bind_context(
            request_id=request_id,
            correlation_id=correlation_id,
            method=request.method,
            path=request.url.path,
        )
        request.state.request_id = request_id
        request.state.correlation_id = correlation_id

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        if not request.url.path.startswith("/metrics"):
            record_request(
                method=request.method,
                path=_route_template(request),
                status_code=response.status_code,
                duration=duration_ms / 1000,
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Correlation-ID"] = correlation_id
        clear_context()
        return response


def get_request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def get_correlation_id(request: Request) -> str | None:
    return getattr(request.state, "correlation_id", None)
