"""Search service: access, validation, tiered execution, and response assembly."""

import sqlite3
import time
from collections.abc import Sequence

import structlog

from orgdir.access import AccessGate
from orgdir.db import Database
from orgdir.errors import QueryValidationError
from orgdir.search.analytics import SearchAnalytics, SearchEvent, SearchObserver
from orgdir.search.autocomplete import suggest
from orgdir.search.engine import RankedRow, SqliteTextIndex
from orgdir.search.executor import paginate
from orgdir.search.fallback import DegradationController
from orgdir.search.highlight import render_highlight
from orgdir.search.query import validate_query
from orgdir.search.schemas import (
    AutocompleteResponse,
    EntityType,
    Pagination,
    Performance,
    SearchRequest,
    SearchResponse,
    SearchResult,
    empty_response,
)

logger = structlog.get_logger()


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _requested_types(request: SearchRequest) -> tuple[EntityType, ...]:
    types = request.type.entity_types
    if request.starred_only:
        # Only people can be starred.
        return tuple(t for t in types if t is EntityType.PERSON)
    return types


def load_custom_fields(
    conn: sqlite3.Connection, entity_type: EntityType, entity_ids: Sequence[str]
) -> dict[str, dict[str, str | None]]:
    """Fetch live custom field values for a set of entities.

    Args:
        conn: Open database connection.
        entity_type: Type shared by every id in entity_ids.
        entity_ids: Entities to load values for.

    Returns:
        Mapping of entity id to {field_key: value}.
    """
    if not entity_ids:
        return {}
    placeholders = ", ".join("?" for _ in entity_ids)
    rows = conn.execute(
        f"""
        SELECT v.entity_id, d.field_key, v.value
        FROM custom_field_values v
        JOIN custom_field_definitions d ON d.id = v.field_definition_id
        WHERE v.entity_type = ?
          AND v.entity_id IN ({placeholders})
          AND v.deleted_at IS NULL
          AND d.deleted_at IS NULL
        ORDER BY d.sort_order, d.field_key
        """,
        (entity_type.value, *entity_ids),
    ).fetchall()

    fields: dict[str, dict[str, str | None]] = {}
    for row in rows:
        fields.setdefault(row["entity_id"], {})[row["field_key"]] = row["value"]
    return fields


class SearchService:
    """Org-scoped directory search and autocomplete.

    Request-path failures degrade instead of raising: invalid input and
    failing index queries produce empty results with warnings. Only the
    access gate fails closed.
    """

    def __init__(
        self,
        database: Database,
        gate: AccessGate,
        controller: DegradationController,
        analytics: SearchAnalytics | None = None,
        observer: SearchObserver | None = None,
        slow_query_threshold_ms: float = 100.0,
        max_query_length: int | None = None,
    ) -> None:
        """Initialize service.

        Args:
            database: Directory database.
            gate: Organization access gate.
            controller: Escalation ladder over the text indexes.
            analytics: Store for per-query statistics, None to disable.
            observer: Sink for slow-query and zero-result events.
            slow_query_threshold_ms: Latency above which a search is slow.
            max_query_length: Longest accepted query.
        """
        self._database = database
        self._gate = gate
        self._controller = controller
        self._analytics = analytics
        self._observer = observer
        self._slow_query_threshold_ms = slow_query_threshold_ms
        self._max_query_length = max_query_length

    def search(
        self, org_id: str, user_id: str | None, request: SearchRequest
    ) -> SearchResponse:
        """Search departments and people of one organization.

        Args:
            org_id: Organization to search.
            user_id: Caller, None for anonymous callers.
            request: Query and paging parameters.

        Returns:
            One page of results with totals, warnings, and timing.

        Raises:
            NotFoundError: Organization missing or not visible to the caller.
            ForbiddenError: Caller may not read the organization.
        """
        self._gate.require(org_id, user_id)
        started = time.perf_counter()

        check = validate_query(request.query, self._max_query_length)
        try:
            check.raise_for_invalid()
        except QueryValidationError as e:
            logger.info("search_query_rejected", org_id=org_id, reason=e.reason)
            return empty_response(
                request.query,
                request.limit,
                request.offset,
                warnings=[e.message],
                performance=Performance(query_time_ms=_elapsed_ms(started)),
            )
        if check.empty:
            return empty_response(
                request.query,
                request.limit,
                request.offset,
                performance=Performance(query_time_ms=_elapsed_ms(started)),
            )

        with self._database.session() as conn:
            outcome = self._controller.run(
                SqliteTextIndex(conn),
                org_id,
                request.query,
                _requested_types(request),
                starred_only=request.starred_only,
            )
            page = paginate(outcome.rows, request.limit, request.offset)
            results = self._build_results(conn, page)

        total = len(outcome.rows)
        elapsed = _elapsed_ms(started)
        slow = elapsed > self._slow_query_threshold_ms

        self._observe(
            SearchEvent(
                org_id=org_id,
                user_id=user_id,
                query=request.query,
                result_count=total,
                execution_time_ms=elapsed,
                tier=outcome.tier.value if outcome.tier else None,
            ),
            slow,
        )

        return SearchResponse(
            query=request.query,
            total=total,
            results=results,
            pagination=Pagination(
                limit=request.limit,
                offset=request.offset,
                has_more=request.offset + len(page) < total,
            ),
            warnings=outcome.warnings or None,
            used_fallback=outcome.used_fallback or None,
            performance=Performance(
                query_time_ms=elapsed, slow_query=True if slow else None
            ),
        )

    def autocomplete(
        self, org_id: str, user_id: str | None, query: str, limit: int = 5
    ) -> AutocompleteResponse:
        """Suggest department and people names for a partial query.

        Args:
            org_id: Organization to search.
            user_id: Caller, None for anonymous callers.
            query: Partial query text.
            limit: Maximum number of suggestions.

        Returns:
            Type-tagged suggestions; empty for invalid or empty input.

        Raises:
            NotFoundError: Organization missing or not visible to the caller.
            ForbiddenError: Caller may not read the organization.
        """
        self._gate.require(org_id, user_id)

        check = validate_query(query, self._max_query_length)
        if not check.valid or check.empty:
            return AutocompleteResponse(suggestions=[])

        with self._database.session() as conn:
            return AutocompleteResponse(
                suggestions=suggest(conn, org_id, query, limit)
            )

    def _build_results(
        self, conn: sqlite3.Connection, rows: list[RankedRow]
    ) -> list[SearchResult]:
        custom: dict[EntityType, dict[str, dict[str, str | None]]] = {}
        for entity_type in EntityType:
            ids = [r.entity_id for r in rows if r.entity_type is entity_type]
            try:
                custom[entity_type] = load_custom_fields(conn, entity_type, ids)
            except sqlite3.Error as e:
                logger.warning(
                    "custom_fields_load_failed",
                    entity_type=entity_type.value,
                    error=str(e),
                )
                custom[entity_type] = {}

        return [
            SearchResult(
                **row.fields,
                type=row.entity_type,
                highlight=render_highlight(row.excerpt, row.name),
                rank=row.score,
                custom_fields=custom[row.entity_type].get(row.entity_id),
            )
            for row in rows
        ]

    def _observe(self, event: SearchEvent, slow: bool) -> None:
        if self._analytics is not None:
            self._analytics.record(event)
        if self._observer is None:
            return
        if slow:
            self._observer.slow_query(event, self._slow_query_threshold_ms)
        if event.result_count == 0:
            self._observer.zero_results(event)

