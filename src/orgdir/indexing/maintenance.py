"""Index integrity checks, rebuilds, optimization, and statistics."""

import sqlite3
import time
from datetime import datetime, timezone

import structlog

from orgdir.db import Database
from orgdir.indexing.records import (
    ALL_INDEXES,
    CUSTOM_FIELDS_FTS,
    DEPARTMENTS_FTS,
    DEPARTMENTS_TRIGRAM,
    PEOPLE_FTS,
    PEOPLE_TRIGRAM,
    IndexRecord,
)
from orgdir.indexing.schemas import (
    IndexHealth,
    IndexStatistics,
    MaintenanceRun,
    RebuildScope,
    TableHealth,
)

logger = structlog.get_logger()

# Above this the indexes are worth compacting.
LARGE_INDEX_BYTES = 50 * 1024 * 1024

_SCOPES: dict[RebuildScope, tuple[IndexRecord, ...]] = {
    RebuildScope.DEPARTMENT: (DEPARTMENTS_FTS, DEPARTMENTS_TRIGRAM),
    RebuildScope.PERSON: (PEOPLE_FTS, PEOPLE_TRIGRAM),
    RebuildScope.CUSTOM_FIELDS: (CUSTOM_FIELDS_FTS,),
    RebuildScope.ALL: ALL_INDEXES,
}


class IndexMaintenance:
    """Operator actions over the text indexes.

    These are explicit, operator-invoked operations: storage errors
    propagate to the caller instead of being degraded.
    """

    def __init__(self, database: Database) -> None:
        """Initialize maintenance.

        Args:
            database: Directory database.
        """
        self._database = database

    def check_integrity(self) -> IndexHealth:
        """Compare every index against the rows it should contain.

        Returns:
            Health report with one entry per index table.

        Raises:
            sqlite3.Error: If the counts cannot be read.
        """
        tables: list[TableHealth] = []
        issues: list[str] = []

        with self._database.session() as conn:
            for record in ALL_INDEXES:
                expected = record.expected_count(conn)
                actual = record.actual_count(conn)
                in_sync = expected == actual
                tables.append(
                    TableHealth(
                        table=record.table,
                        expected=expected,
                        actual=actual,
                        in_sync=in_sync,
                    )
                )
                if not in_sync:
                    issues.append(
                        f"{record.table} out of sync: expected {expected} rows, found {actual}"
                    )
            statistics = self._statistics(conn)

        healthy = not issues
        if healthy:
            logger.info("fts_integrity_ok")
        else:
            logger.warning("fts_integrity_issues", issues=issues)

        return IndexHealth(
            healthy=healthy,
            tables=tables,
            issues=issues,
            last_checked=datetime.now(timezone.utc),
            statistics=statistics,
        )

    def rebuild(self, scope: RebuildScope = RebuildScope.ALL) -> IndexHealth:
        """Clear and repopulate the indexes in scope, then re-check integrity.

        Each index table is rebuilt in its own exclusive transaction.

        Args:
            scope: Indexes to rebuild.

        Returns:
            Health report taken after the rebuild.

        Raises:
            sqlite3.Error: If a rebuild fails; that table is rolled back.
        """
        started = time.perf_counter()
        for record in _SCOPES[scope]:
            with self._database.transaction("EXCLUSIVE") as conn:
                record.rebuild(conn)

        logger.info(
            "fts_rebuild_complete",
            scope=scope.value,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return self.check_integrity()

    def optimize(self) -> None:
        """Compact every index; search results are unaffected."""
        for record in ALL_INDEXES:
            with self._database.transaction() as conn:
                record.optimize(conn)
        logger.info("fts_optimized", tables=[r.table for r in ALL_INDEXES])

    def statistics(self) -> IndexStatistics:
        """Indexed row counts, size estimate, and recommendations."""
        with self._database.session() as conn:
            return self._statistics(conn)

    def run_scheduled(self) -> MaintenanceRun:
        """Run one unattended maintenance pass.

        Rebuilds everything when the indexes are out of sync, otherwise
        optimizes them. Never raises.

        Returns:
            What was done and whether it worked.
        """
        started = time.perf_counter()
        try:
            health = self.check_integrity()
            if health.healthy:
                self.optimize()
                action = "optimize"
                healthy = True
            else:
                action = "rebuild"
                healthy = self.rebuild(RebuildScope.ALL).healthy
        except sqlite3.Error as e:
            logger.error("fts_maintenance_failed", error=str(e))
            return MaintenanceRun(
                success=False,
                error=str(e),
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            "fts_maintenance_complete",
            action=action,
            healthy=healthy,
            duration_ms=duration_ms,
        )
        return MaintenanceRun(
            success=True, action=action, healthy=healthy, duration_ms=duration_ms
        )

    @staticmethod
    def _statistics(conn: sqlite3.Connection) -> IndexStatistics:
        departments = DEPARTMENTS_FTS.actual_count(conn)
        people = PEOPLE_FTS.actual_count(conn)
        custom_fields = CUSTOM_FIELDS_FTS.actual_count(conn)
        size = sum(record.size_bytes(conn) for record in ALL_INDEXES)

        recommendations: list[str] = []
        if departments == 0 and people == 0:
            recommendations.append("Indexes are empty; consider running a rebuild")
        if size > LARGE_INDEX_BYTES:
            recommendations.append("Indexes are large; consider running optimize")

        return IndexStatistics(
            departments=departments,
            people=people,
            custom_fields=custom_fields,
            estimated_size_bytes=size,
            recommendations=recommendations,
        )
