"""Search analytics persistence and slow/zero-result observability."""

import sqlite3
import uuid
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from orgdir.db import Database
from orgdir.search.schemas import QueryCount, SearchAnalyticsSummary

logger = structlog.get_logger()


@dataclass(frozen=True)
class SearchEvent:
    """Facts about one executed search.

    Attributes:
        org_id: Organization searched.
        user_id: Caller, None for anonymous searches.
        query: Raw query text.
        result_count: Total matches returned by the answering tier.
        execution_time_ms: Wall-clock duration of the search.
        tier: Tier that answered, None when nothing matched.
    """

    org_id: str
    user_id: str | None
    query: str
    result_count: int
    execution_time_ms: float
    tier: str | None


class SearchObserver(Protocol):
    """Receives search events worth an operator's attention."""

    def slow_query(self, event: SearchEvent, threshold_ms: float) -> None: ...

    def zero_results(self, event: SearchEvent) -> None: ...


class LoggingSearchObserver:
    """SearchObserver that emits structured log events."""

    def __init__(self, log: Any = None) -> None:
        """Initialize observer.

        Args:
            log: Logger to emit on; the module logger when None.
        """
        self._log = log or logger

    def slow_query(self, event: SearchEvent, threshold_ms: float) -> None:
        self._log.warning(
            "slow_search_query",
            org_id=event.org_id,
            query=event.query,
            execution_time_ms=event.execution_time_ms,
            threshold_ms=threshold_ms,
            tier=event.tier,
        )

    def zero_results(self, event: SearchEvent) -> None:
        self._log.info(
            "search_zero_results",
            org_id=event.org_id,
            query=event.query,
            execution_time_ms=event.execution_time_ms,
        )


class SearchAnalytics:
    """Records per-query latency and result counts."""

    def __init__(self, database: Database) -> None:
        """Initialize analytics store.

        Args:
            database: Directory database.
        """
        self._database = database

    def record(self, event: SearchEvent) -> None:
        """Persist a search event.

        Failures are logged and dropped; analytics never blocks a search.

        Args:
            event: Search facts to store.
        """
        try:
            with self._database.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO search_analytics
                        (id, organization_id, user_id, query, result_count,
                         execution_time_ms, tier)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(uuid.uuid4()),
                        event.org_id,
                        event.user_id,
                        event.query,
                        event.result_count,
                        event.execution_time_ms,
                        event.tier,
                    ),
                )
        except sqlite3.Error as e:
            logger.error("search_analytics_write_failed", error=str(e), org_id=event.org_id)

    def summarize(self, org_id: str, days: int = 30) -> SearchAnalyticsSummary:
        """Aggregate recent search activity for an organization.

        Args:
            org_id: Organization identifier.
            days: Size of the look-back window.

        Returns:
            Totals, averages, top queries, and zero-result queries.
        """
        window = f"-{int(days)} days"
        with self._database.session() as conn:
            stats = conn.execute(
                """
                SELECT COUNT(*) AS total,
                       COUNT(DISTINCT user_id) AS unique_users,
                       AVG(result_count) AS avg_results
                FROM search_analytics
                WHERE organization_id = ? AND created_at >= datetime('now', ?)
                """,
                (org_id, window),
            ).fetchone()
            top = conn.execute(
                """
                SELECT query, COUNT(*) AS count
                FROM search_analytics
                WHERE organization_id = ? AND created_at >= datetime('now', ?)
                GROUP BY query
                ORDER BY count DESC, query
                LIMIT 10
                """,
                (org_id, window),
            ).fetchall()
            zero = conn.execute(
                """
                SELECT query, COUNT(*) AS count
                FROM search_analytics
                WHERE organization_id = ? AND result_count = 0
                  AND created_at >= datetime('now', ?)
                GROUP BY query
                ORDER BY count DESC, query
                LIMIT 10
                """,
                (org_id, window),
            ).fetchall()

        return SearchAnalyticsSummary(
            days=days,
            total_searches=stats["total"] or 0,
            unique_searchers=stats["unique_users"] or 0,
            avg_results_per_search=round(stats["avg_results"] or 0.0, 1),
            top_queries=[QueryCount(query=r["query"], count=r["count"]) for r in top],
            zero_result_queries=[
                QueryCount(query=r["query"], count=r["count"]) for r in zero
            ],
        )
