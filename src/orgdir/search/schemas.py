"""Pydantic schemas for search requests and responses."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EntityType(str, Enum):
    """Searchable entity discriminator."""

    DEPARTMENT = "department"
    PERSON = "person"


class SearchType(str, Enum):
    """Entity filter accepted by the search endpoint."""

    ALL = "all"
    DEPARTMENTS = "departments"
    PEOPLE = "people"

    @property
    def entity_types(self) -> tuple[EntityType, ...]:
        """Entity types covered by this filter, in result order."""
        if self is SearchType.DEPARTMENTS:
            return (EntityType.DEPARTMENT,)
        if self is SearchType.PEOPLE:
            return (EntityType.PERSON,)
        return (EntityType.DEPARTMENT, EntityType.PERSON)


class SearchRequest(BaseModel):
    """Search parameters.

    Attributes:
        query: Raw query text.
        type: Entity filter.
        limit: Maximum results per page.
        offset: Number of results skipped.
        starred_only: Only return starred people.
    """

    model_config = ConfigDict(populate_by_name=True)

    query: str
    type: SearchType = SearchType.ALL
    limit: int = Field(default=20, ge=1)
    offset: int = Field(default=0, ge=0)
    starred_only: bool = Field(default=False, alias="starredOnly")


class SearchResult(BaseModel):
    """Single department or person match.

    Attributes:
        type: Entity type of the match.
        id: Entity identifier.
        name: Display name.
        highlight: Escaped excerpt with <mark> around matched terms.
        rank: Relevance score (lower is more relevant).
        custom_fields: Custom field values keyed by field key.
    """

    type: EntityType
    id: str
    name: str
    highlight: str
    rank: float
    # Department fields
    description: str | None = None
    parent_id: str | None = None
    people_count: int | None = None
    # Person fields
    title: str | None = None
    email: str | None = None
    phone: str | None = None
    department_id: str | None = None
    department_name: str | None = None
    is_starred: bool | None = None
    custom_fields: dict[str, str | None] | None = None


class Pagination(BaseModel):
    """Pagination metadata for a result page."""

    model_config = ConfigDict(populate_by_name=True)

    limit: int
    offset: int
    has_more: bool = Field(alias="hasMore")


class Performance(BaseModel):
    """Timing metadata for a search."""

    model_config = ConfigDict(populate_by_name=True)

    query_time_ms: float = Field(alias="queryTimeMs")
    slow_query: bool | None = Field(default=None, alias="slowQuery")


class SearchResponse(BaseModel):
    """Paginated search response envelope.

    Attributes:
        query: The original query string.
        total: Distinct matches of the tier that produced the results.
        results: Current page of results.
        pagination: Page position and whether more results follow.
        warnings: Non-fatal problems such as rejected input or fallback use.
        used_fallback: True when a fuzzy or substring tier produced results.
        performance: Timing of the request.
    """

    model_config = ConfigDict(populate_by_name=True)

    query: str
    total: int
    results: list[SearchResult]
    pagination: Pagination
    warnings: list[str] | None = None
    used_fallback: bool | None = Field(default=None, alias="usedFallback")
    performance: Performance | None = None


class AutocompleteSuggestion(BaseModel):
    """Type-tagged suggestion text."""

    type: EntityType
    text: str


class AutocompleteResponse(BaseModel):
    """Autocomplete response envelope."""

    suggestions: list[AutocompleteSuggestion]


class QueryCount(BaseModel):
    """Query text with its occurrence count."""

    query: str
    count: int


class SearchAnalyticsSummary(BaseModel):
    """Aggregated search activity for an organization."""

    model_config = ConfigDict(populate_by_name=True)

    days: int
    total_searches: int = Field(alias="totalSearches")
    unique_searchers: int = Field(alias="uniqueSearchers")
    avg_results_per_search: float = Field(alias="avgResultsPerSearch")
    top_queries: list[QueryCount] = Field(alias="topQueries")
    zero_result_queries: list[QueryCount] = Field(alias="zeroResultQueries")


def empty_response(
    query: str,
    limit: int,
    offset: int,
    warnings: list[str] | None = None,
    **extra: Any,
) -> SearchResponse:
    """Build a response with no results.

    Args:
        query: The original query string.
        limit: Requested page size.
        offset: Requested offset.
        warnings: Optional warnings to include.
        **extra: Additional envelope fields (e.g. performance).

    Returns:
        SearchResponse with total 0.
    """
    return SearchResponse(
        query=query,
        total=0,
        results=[],
        pagination=Pagination(limit=limit, offset=offset, has_more=False),
        warnings=warnings or None,
        **extra,
    )
