"""CORS configuration for the directory front end."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Headers the browser client sends: caller identity and the operator key.
ALLOWED_HEADERS = ["Content-Type", "X-User-ID", "X-API-Key"]


def configure_cors(app: FastAPI, origins: list[str]) -> None:
    """Allow the configured origins to call the search API.

    Search endpoints are read-only; only the maintenance endpoints accept
    POST. No credentials are shared because callers are identified by the
    X-User-ID header set upstream.

    Args:
        app: FastAPI application instance.
        origins: Allowed origin URLs. No middleware is added when empty.
    """
    if not origins:
        return
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=ALLOWED_HEADERS,
        expose_headers=["X-Request-ID"],
        max_age=600,
    )
