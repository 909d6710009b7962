"""
Trace middleware: request-scoped correlation IDs and HTTP metrics.
"""

import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from shared.logging import get_logger, trace_id_var
from shared.metrics import http_request_duration_seconds, http_requests_total

logger = get_logger("agbot.http")

TRACE_HEADER = "X-Trace-ID"


def path_template(request: Request) -> str:
    """
    Route path for metric labels. Unrouted paths collapse into one label so
    probes and scanners cannot grow label cardinality.
    """
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    return template or "unmatched"


class TraceMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        trace_id = request.headers.get(TRACE_HEADER) or str(uuid.uuid4())
        token = trace_id_var.set(trace_id)
        request.state.trace_id = trace_id
        started = time.monotonic()
        response: Response | None = None
        try:
            response = await call_next(request)
            return response
        finally:
            elapsed = time.monotonic() - started
            status_code = str(getattr(response, "status_code", 500))
            labels = {
                "method": request.method,
                "path_template": path_template(request),
                "status_code": status_code,
            }
            http_request_duration_seconds.labels(**labels).observe(elapsed)
            http_requests_total.labels(**labels).inc()

            logger.info(
                "http_request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": int(status_code),
                    "elapsed_ms": round(elapsed * 1000, 1),
                },
            )
            trace_id_var.reset(token)
            if response is not None:
                response.headers[TRACE_HEADER] = trace_id
