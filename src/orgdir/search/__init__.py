"""Org-scoped directory search with FTS5 ranking and tiered fallback."""

from orgdir.search.analytics import LoggingSearchObserver, SearchAnalytics, SearchEvent
from orgdir.search.engine import SqliteTextIndex
from orgdir.search.executor import RankedSearchExecutor
from orgdir.search.fallback import DegradationController, SearchTier
from orgdir.search.schemas import SearchRequest, SearchResponse, SearchResult, SearchType
from orgdir.search.service import SearchService

__all__ = [
    "DegradationController",
    "LoggingSearchObserver",
    "RankedSearchExecutor",
    "SearchAnalytics",
    "SearchEvent",
    "SearchRequest",
    "SearchResponse",
    "SearchResult",
    "SearchService",
    "SearchTier",
    "SearchType",
    "SqliteTextIndex",
]
