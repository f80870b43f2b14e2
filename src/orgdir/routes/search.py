"""Organization directory search endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Header, HTTPException, Query, Request

from orgdir.access import Role
from orgdir.errors import ForbiddenError, NotFoundError
from orgdir.search.schemas import (
    AutocompleteResponse,
    SearchAnalyticsSummary,
    SearchRequest,
    SearchResponse,
    SearchType,
)

if TYPE_CHECKING:
    from orgdir.access import AccessGate
    from orgdir.config import Settings
    from orgdir.search.analytics import SearchAnalytics
    from orgdir.search.service import SearchService

router = APIRouter(prefix="/organizations/{org_id}/search", tags=["search"])


def _http_error(e: NotFoundError | ForbiddenError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=SearchResponse,
    response_model_exclude_none=True,
    summary="Search departments and people",
    description=(
        "Ranked full-text search over one organization's departments, people, "
        "and searchable custom fields, with fuzzy and substring fallback."
    ),
)
def search(
    request: Request,
    org_id: str,
    q: str = Query(default="", description="Search query string"),
    type: SearchType = Query(default=SearchType.ALL, description="Entity type filter"),
    limit: int | None = Query(default=None, ge=1, description="Results per page"),
    offset: int = Query(default=0, ge=0, description="Results to skip"),
    starred: bool = Query(default=False, description="Only starred people"),
    x_user_id: str | None = Header(default=None, description="Caller id"),
) -> SearchResponse:
    """Search an organization's directory.

    Args:
        request: FastAPI request (provides access to app state).
        org_id: Organization to search.
        q: Search query string.
        type: Entity type filter (all, departments, or people).
        limit: Maximum results per page, capped by configuration.
        offset: Pagination offset.
        starred: Restrict results to starred people.
        x_user_id: Caller id set by the upstream authenticator.

    Returns:
        Paginated, highlighted search results.

    Raises:
        HTTPException: 404 if the organization is not visible, 403 if the
            caller may not read it.
    """
    settings: Settings = request.app.state.settings
    service: SearchService = request.app.state.search_service

    page_size = min(limit or settings.default_search_limit, settings.max_search_limit)
    try:
        return service.search(
            org_id,
            x_user_id,
            SearchRequest(
                query=q,
                type=type,
                limit=page_size,
                offset=offset,
                starred_only=starred,
            ),
        )
    except (NotFoundError, ForbiddenError) as e:
        raise _http_error(e) from e


@router.get(
    "/autocomplete",
    response_model=AutocompleteResponse,
    summary="Suggest department and people names",
)
def autocomplete(
    request: Request,
    org_id: str,
    q: str = Query(default="", description="Partial query"),
    limit: int | None = Query(default=None, ge=1, description="Maximum suggestions"),
    x_user_id: str | None = Header(default=None, description="Caller id"),
) -> AutocompleteResponse:
    """Suggest names matching a partial query.

    Raises:
        HTTPException: 404 if the organization is not visible, 403 if the
            caller may not read it.
    """
    settings: Settings = request.app.state.settings
    service: SearchService = request.app.state.search_service

    count = min(
        limit or settings.default_autocomplete_limit, settings.max_autocomplete_limit
    )
    try:
        return service.autocomplete(org_id, x_user_id, q, count)
    except (NotFoundError, ForbiddenError) as e:
        raise _http_error(e) from e


@router.get(
    "/analytics",
    response_model=SearchAnalyticsSummary,
    summary="Search activity summary",
    description="Totals, top queries, and zero-result queries. Admins only.",
)
def analytics(
    request: Request,
    org_id: str,
    days: int = Query(default=30, ge=1, le=365, description="Look-back window"),
    x_user_id: str | None = Header(default=None, description="Caller id"),
) -> SearchAnalyticsSummary:
    """Summarize recent searches in an organization.

    Raises:
        HTTPException: 404 if the organization is not visible, 403 if the
            caller is not an admin.
    """
    gate: AccessGate = request.app.state.access_gate
    store: SearchAnalytics = request.app.state.search_analytics

    try:
        gate.require(org_id, x_user_id, min_role=Role.ADMIN, allow_public=False)
    except (NotFoundError, ForbiddenError) as e:
        raise _http_error(e) from e
    return store.summarize(org_id, days)
