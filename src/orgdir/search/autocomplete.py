"""Prefix-only name suggestions."""

import sqlite3

import structlog

from orgdir.search.query import build_prefix_query
from orgdir.search.schemas import AutocompleteSuggestion, EntityType

logger = structlog.get_logger()

_DEPARTMENT_NAMES_SQL = """
    SELECT d.name
    FROM departments_fts
    JOIN departments d ON d.rowid = departments_fts.rowid
    WHERE departments_fts MATCH ?
      AND d.organization_id = ?
      AND d.deleted_at IS NULL
    ORDER BY bm25(departments_fts, 10.0, 1.0), d.name
"""

_PERSON_NAMES_SQL = """
    SELECT p.name
    FROM people_fts
    JOIN people p ON p.rowid = people_fts.rowid
    JOIN departments d ON d.id = p.department_id
    WHERE people_fts MATCH ?
      AND d.organization_id = ?
      AND p.deleted_at IS NULL
      AND d.deleted_at IS NULL
    ORDER BY bm25(people_fts, 10.0, 5.0, 2.0, 1.0), p.name
"""


def suggest(
    conn: sqlite3.Connection, org_id: str, query: str, limit: int = 5
) -> list[AutocompleteSuggestion]:
    """Suggest distinct display names matching a prefix query.

    Department names fill the list first, then people names. Text that was
    already suggested is skipped, whatever its type.

    Args:
        conn: Open database connection.
        org_id: Organization being searched.
        query: Validated query text.
        limit: Maximum number of suggestions.

    Returns:
        At most limit suggestions.
    """
    expression = build_prefix_query(query)
    if expression is None or limit <= 0:
        return []

    suggestions: list[AutocompleteSuggestion] = []
    seen: set[str] = set()

    for entity_type, sql in (
        (EntityType.DEPARTMENT, _DEPARTMENT_NAMES_SQL),
        (EntityType.PERSON, _PERSON_NAMES_SQL),
    ):
        if len(suggestions) >= limit:
            break
        try:
            # Rows are read lazily until enough distinct names are collected;
            # repeated names must not use up the limit.
            for row in conn.execute(sql, (expression, org_id)):
                if row["name"] in seen:
                    continue
                seen.add(row["name"])
                suggestions.append(
                    AutocompleteSuggestion(type=entity_type, text=row["name"])
                )
                if len(suggestions) >= limit:
                    break
        except sqlite3.Error as e:
            logger.warning(
                "autocomplete_query_failed", entity_type=entity_type.value, error=str(e)
            )

    return suggestions
