"""Operator endpoints for text index maintenance."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

import structlog
from fastapi import APIRouter, HTTPException, Request, Response, status

from orgdir.indexing.schemas import IndexHealth, IndexStatistics, RebuildScope

if TYPE_CHECKING:
    from orgdir.indexing.maintenance import IndexMaintenance

logger = structlog.get_logger()

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


def _maintenance(request: Request) -> IndexMaintenance:
    return request.app.state.index_maintenance


def _storage_failure(action: str, e: sqlite3.Error) -> HTTPException:
    logger.error("fts_maintenance_request_failed", action=action, error=str(e))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Index {action} failed",
    )


@router.get(
    "/health",
    response_model=IndexHealth,
    summary="Check text index integrity",
)
def index_health(request: Request) -> IndexHealth:
    """Compare indexed row counts against their source tables.

    Raises:
        HTTPException: 500 if the database cannot be read.
    """
    try:
        return _maintenance(request).check_integrity()
    except sqlite3.Error as e:
        raise _storage_failure("integrity check", e) from e


@router.get(
    "/statistics",
    response_model=IndexStatistics,
    summary="Index sizes and recommendations",
)
def index_statistics(request: Request) -> IndexStatistics:
    """Report indexed row counts and a size estimate.

    Raises:
        HTTPException: 500 if the database cannot be read.
    """
    try:
        return _maintenance(request).statistics()
    except sqlite3.Error as e:
        raise _storage_failure("statistics", e) from e


@router.post(
    "/rebuild/{scope}",
    response_model=IndexHealth,
    summary="Rebuild text indexes",
    description="Clears and repopulates the indexes in scope, then re-checks integrity.",
)
def rebuild(request: Request, scope: RebuildScope) -> IndexHealth:
    """Rebuild one group of indexes, or all of them.

    Args:
        request: FastAPI request (provides access to app state).
        scope: department, person, customFields, or all.

    Returns:
        Health report taken after the rebuild.

    Raises:
        HTTPException: 500 if the rebuild fails.
    """
    logger.info("fts_rebuild_requested", scope=scope.value)
    try:
        return _maintenance(request).rebuild(scope)
    except sqlite3.Error as e:
        raise _storage_failure("rebuild", e) from e


@router.post(
    "/optimize",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Compact text indexes",
)
def optimize(request: Request) -> Response:
    """Merge index segments without changing search results.

    Raises:
        HTTPException: 500 if optimization fails.
    """
    try:
        _maintenance(request).optimize()
    except sqlite3.Error as e:
        raise _storage_failure("optimize", e) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)
