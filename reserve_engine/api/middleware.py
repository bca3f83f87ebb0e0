"""Request correlation and latency middleware for the reserve API"""

import logging
import re
import time
import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from reserve_engine.infrastructure.observability.metrics import request_duration_histogram

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
UNMATCHED_ROUTE = "unmatched"

# Upstream ids are echoed into logs and headers, so only short token-like values are trusted
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_request_id(incoming):
    if incoming and _VALID_REQUEST_ID.match(incoming):
        return incoming
    return str(uuid.uuid4())


def route_template(request: Request) -> str:
    """Path template such as /v1/merchants/{profile_id}/reserve; never the raw path"""
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Carries the caller's correlation id through to audit logs and the response"""

    async def dispatch(self, request: Request, call_next):
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            elapsed = time.perf_counter() - started
            endpoint = route_template(request)
            request_duration_histogram.labels(
                method=request.method,
                endpoint=endpoint,
                status=status,
            ).observe(elapsed)
            if status >= 500:
                logger.error(
                    "Request failed",
                    extra={
                        "request_id": getattr(request.state, "request_id", None),
                        "method": request.method,
                        "endpoint": endpoint,
                        "status": status,
                        "duration_ms": round(elapsed * 1000, 2),
                    },
                )
