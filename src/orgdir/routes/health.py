"""Health check endpoints for liveness and readiness probes."""
from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, Literal

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

if TYPE_CHECKING:
    from orgdir.db import Database

router = APIRouter(prefix="/health", tags=["health"])


class LivenessResponse(BaseModel):
    """Response model for liveness probe.

    Attributes:
        status: Always 'alive' when process is running.
    """

    status: Literal["alive"]


class ReadinessCheck(BaseModel):
    """Individual dependency check result.

    Attributes:
        name: Identifier for the dependency being checked.
        status: Result of the check ('ok' or 'failed').
        message: Error details when status is 'failed'.
    """

    name: str
    status: Literal["ok", "failed"]
    message: str | None = None


class ReadinessResponse(BaseModel):
    """Response model for readiness probe.

    Attributes:
        status: Overall readiness ('ready' or 'not_ready').
        checks: List of individual dependency check results.
    """

    status: Literal["ready", "not_ready"]
    checks: list[ReadinessCheck]


def _check_database(database: Database) -> ReadinessCheck:
    """Verify the directory database is reachable and has its text indexes.

    Args:
        database: Directory database.

    Returns:
        Check result with status and optional error message.
    """
    name = f"db:{database.path}"
    try:
        with database.session() as conn:
            conn.execute("SELECT 1 FROM departments_fts LIMIT 1")
        return ReadinessCheck(name=name, status="ok")
    except sqlite3.Error as e:
        return ReadinessCheck(name=name, status="failed", message=str(e))


@router.get("/live", response_model=LivenessResponse)
async def liveness() -> LivenessResponse:
    """Liveness probe endpoint.

    Returns immediate success if the process is running.

    Returns:
        Liveness status response.
    """
    return LivenessResponse(status="alive")


@router.get("/ready", response_model=ReadinessResponse)
def readiness(request: Request) -> JSONResponse:
    """Readiness probe endpoint.

    Returns 200 when the database answers queries, 503 otherwise.

    Returns:
        Readiness status with individual check results.
    """
    checks = [_check_database(request.app.state.database)]
    all_ok = all(c.status == "ok" for c in checks)
    response = ReadinessResponse(
        status="ready" if all_ok else "not_ready",
        checks=checks,
    )
    code = status.HTTP_200_OK if all_ok else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(content=response.model_dump(), status_code=code)
