"""Request logging middleware."""
import re
import time
import uuid
from collections.abc import Awaitable, Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

EXCLUDED_PATHS = frozenset({
    "/api/v1/health/live",
    "/api/v1/health/ready",
})

REQUEST_ID_HEADER = "X-Request-ID"

_ORG_PATH = re.compile(r"^/api/v1/organizations/([^/]+)/")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware that logs one structured event per request.

    Every request gets a request id (taken from X-Request-ID or generated)
    that is echoed back in the response. The request id, the caller id
    header and the organization in the path are bound into the log
    context, so search and index events logged while handling the request
    carry them too. Health probes are skipped.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """Process request and log details.

        Args:
            request: Incoming HTTP request.
            call_next: Next middleware or route handler.

        Returns:
            HTTP response from handler, with X-Request-ID set.
        """
        if request.url.path in EXCLUDED_PATHS:
            return await call_next(request)

        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        user_id = request.headers.get("X-User-ID")
        if user_id:
            structlog.contextvars.bind_contextvars(user_id=user_id)
        match = _ORG_PATH.match(request.url.path)
        if match:
            structlog.contextvars.bind_contextvars(org_id=match.group(1))

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000, 2)

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=duration_ms,
            client=request.client.host if request.client else None,
        )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
