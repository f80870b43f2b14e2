"""API key authentication for operator endpoints."""

import secrets
from collections.abc import Awaitable, Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger = structlog.get_logger()

API_KEY_HEADER = "X-API-Key"

# Directory search is gated per organization by the access gate instead.
PROTECTED_PREFIXES: tuple[str, ...] = ("/api/v1/maintenance",)


def _unauthorized(path: str, reason: str, message: str) -> JSONResponse:
    logger.warning("api_key_rejected", path=path, reason=reason)
    return JSONResponse(status_code=401, content={"error": message})


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Require the operator key on index maintenance endpoints.

    Rebuild and optimize take exclusive locks on the index tables, so
    they are reserved for operators holding the configured key.
    """

    def __init__(self, app: Callable[..., Awaitable[Response]], api_key: str) -> None:
        """Initialize middleware with the operator key.

        Args:
            app: ASGI application.
            api_key: Expected key value.
        """
        super().__init__(app)  # type: ignore[arg-type]
        self._api_key = api_key

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """Check the operator key on protected paths.

        Args:
            request: Incoming HTTP request.
            call_next: Next middleware or route handler.

        Returns:
            HTTP response, or 401 when the key is missing or wrong.
        """
        path = request.url.path
        if not path.startswith(PROTECTED_PREFIXES):
            return await call_next(request)

        provided_key = request.headers.get(API_KEY_HEADER, "")
        if not provided_key:
            return _unauthorized(path, "missing", f"Missing {API_KEY_HEADER} header")
        if not secrets.compare_digest(provided_key, self._api_key):
            return _unauthorized(path, "invalid", "Invalid API key")

        return await call_next(request)
