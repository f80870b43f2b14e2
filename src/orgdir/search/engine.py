"""Text-index engine: ranked prefix, trigram, and substring matching over SQLite."""

import sqlite3
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from orgdir.errors import IndexQueryError
from orgdir.search.highlight import MARK_CLOSE, MARK_OPEN, mark_substring
from orgdir.search.schemas import EntityType

logger = structlog.get_logger()

SNIPPET_TOKENS = 32

SUBSTRING_NAME_RANK = 0.0
SUBSTRING_FIELD_RANK = 1.0
SUBSTRING_CUSTOM_RANK = 2.0


@dataclass
class RankedRow:
    """One entity matched by one index.

    Attributes:
        entity_type: Department or person.
        entity_id: Source row identifier.
        score: Relevance score, lower is more relevant.
        excerpt: Marked-up excerpt of the field that matched, if any.
        fields: Display fields for the result.
    """

    entity_type: EntityType
    entity_id: str
    score: float
    excerpt: str | None
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return str(self.fields.get("name") or "")


@dataclass
class IndexMatches:
    """Rows from the content index and the custom-field index for one type."""

    content: list[RankedRow] = field(default_factory=list)
    custom: list[RankedRow] = field(default_factory=list)


class TextIndexEngine(Protocol):
    """Ranked-match capability the executor and fallback tiers depend on."""

    def match_prefixed(
        self,
        entity_type: EntityType,
        org_id: str,
        expression: str,
        starred_only: bool = False,
    ) -> IndexMatches: ...

    def match_trigram(
        self,
        entity_type: EntityType,
        org_id: str,
        expression: str,
        starred_only: bool = False,
    ) -> IndexMatches: ...

    def match_substring(
        self,
        entity_type: EntityType,
        org_id: str,
        needle: str,
        starred_only: bool = False,
    ) -> IndexMatches: ...


@dataclass(frozen=True)
class _EntityShape:
    """Per-type SQL fragments shared by every match strategy."""

    source: str
    fts_table: str
    trigram_table: str
    columns: tuple[str, ...]
    weights: tuple[float, ...]
    select: str
    joins: str
    live: str


_DEPARTMENT = _EntityShape(
    source="departments",
    fts_table="departments_fts",
    trigram_table="departments_trigram",
    columns=("name", "description"),
    weights=(10.0, 1.0),
    select=(
        "e.id, e.name, e.description, e.parent_id, "
        "(SELECT COUNT(*) FROM people p WHERE p.department_id = e.id "
        "AND p.deleted_at IS NULL) AS people_count"
    ),
    joins="",
    live="e.organization_id = ? AND e.deleted_at IS NULL",
)

_PERSON = _EntityShape(
    source="people",
    fts_table="people_fts",
    trigram_table="people_trigram",
    columns=("name", "title", "email", "phone"),
    weights=(10.0, 5.0, 2.0, 1.0),
    select=(
        "e.id, e.name, e.title, e.email, e.phone, e.department_id, "
        "e.is_starred, dept.name AS department_name"
    ),
    joins="JOIN departments dept ON dept.id = e.department_id",
    live=(
        "dept.organization_id = ? AND e.deleted_at IS NULL "
        "AND dept.deleted_at IS NULL"
    ),
)

_SHAPES: dict[EntityType, _EntityShape] = {
    EntityType.DEPARTMENT: _DEPARTMENT,
    EntityType.PERSON: _PERSON,
}

_DISPLAY_FIELDS: dict[EntityType, tuple[str, ...]] = {
    EntityType.DEPARTMENT: ("id", "name", "description", "parent_id", "people_count"),
    EntityType.PERSON: (
        "id",
        "name",
        "title",
        "email",
        "phone",
        "department_id",
        "is_starred",
        "department_name",
    ),
}


def _snippet(table: str, column: int, alias: str) -> str:
    return (
        f"snippet({table}, {column}, '{MARK_OPEN}', '{MARK_CLOSE}', '...', "
        f"{SNIPPET_TOKENS}) AS {alias}"
    )


def _display(entity_type: EntityType, row: sqlite3.Row) -> dict[str, Any]:
    fields = {key: row[key] for key in _DISPLAY_FIELDS[entity_type]}
    if "is_starred" in fields:
        fields["is_starred"] = bool(fields["is_starred"])
    return fields


def _first_marked(*excerpts: str | None) -> str | None:
    """Pick the first excerpt that actually contains a match marker."""
    for excerpt in excerpts:
        if excerpt and MARK_OPEN in excerpt:
            return excerpt
    return None


class SqliteTextIndex:
    """FTS5-backed implementation of TextIndexEngine.

    Bound to one connection for the lifetime of a request. FTS5's bm25()
    cannot be used inside subqueries or compound selects, so the content
    and custom-field sub-queries run separately and are merged by the
    executor.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialize engine.

        Args:
            conn: Open database connection.
        """
        self._conn = conn

    def _execute(self, index: str, sql: str, params: tuple[Any, ...]) -> list[sqlite3.Row]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.warning("index_query_failed", index=index, error=str(e))
            raise IndexQueryError(f"Query against {index} failed: {e}", index) from e

    def _match_content(
        self,
        entity_type: EntityType,
        table: str,
        org_id: str,
        expression: str,
        starred_only: bool,
    ) -> list[RankedRow]:
        shape = _SHAPES[entity_type]
        snippets = ", ".join(
            _snippet(table, i, f"excerpt_{i}") for i in range(len(shape.columns))
        )
        weights = ", ".join(str(w) for w in shape.weights)
        starred = " AND e.is_starred = 1" if starred_only else ""
        sql = f"""
            SELECT {shape.select}, {snippets},
                   bm25({table}, {weights}) AS score
            FROM {table}
            JOIN {shape.source} e ON e.rowid = {table}.rowid
            {shape.joins}
            WHERE {table} MATCH ? AND {shape.live}{starred}
        """
        rows = self._execute(table, sql, (expression, org_id))
        return [
            RankedRow(
                entity_type=entity_type,
                entity_id=row["id"],
                score=row["score"],
                excerpt=_first_marked(
                    *(row[f"excerpt_{i}"] for i in range(len(shape.columns)))
                ),
                fields=_display(entity_type, row),
            )
            for row in rows
        ]

    def _match_custom(
        self,
        entity_type: EntityType,
        org_id: str,
        expression: str,
        starred_only: bool,
    ) -> list[RankedRow]:
        shape = _SHAPES[entity_type]
        starred = " AND e.is_starred = 1" if starred_only else ""
        sql = f"""
            SELECT {shape.select}, {_snippet("custom_fields_fts", 2, "excerpt")},
                   bm25(custom_fields_fts) AS score
            FROM custom_fields_fts
            JOIN {shape.source} e ON e.id = custom_fields_fts.entity_id
            {shape.joins}
            WHERE custom_fields_fts MATCH ?
              AND custom_fields_fts.entity_type = ?
              AND {shape.live}{starred}
        """
        rows = self._execute(
            "custom_fields_fts", sql, (expression, entity_type.value, org_id)
        )
        return [
            RankedRow(
                entity_type=entity_type,
                entity_id=row["id"],
                score=row["score"],
                excerpt=_first_marked(row["excerpt"]),
                fields=_display(entity_type, row),
            )
            for row in rows
        ]

    def match_prefixed(
        self,
        entity_type: EntityType,
        org_id: str,
        expression: str,
        starred_only: bool = False,
    ) -> IndexMatches:
        """Run a prefix-token expression against both indexes of a type.

        Args:
            entity_type: Department or person.
            org_id: Organization the results must belong to.
            expression: FTS5 expression from build_prefix_query().
            starred_only: Restrict to starred people.

        Returns:
            Content-index and custom-field-index rows.

        Raises:
            IndexQueryError: If either sub-query fails.
        """
        shape = _SHAPES[entity_type]
        return IndexMatches(
            content=self._match_content(
                entity_type, shape.fts_table, org_id, expression, starred_only
            ),
            custom=self._match_custom(entity_type, org_id, expression, starred_only),
        )

    def match_trigram(
        self,
        entity_type: EntityType,
        org_id: str,
        expression: str,
        starred_only: bool = False,
    ) -> IndexMatches:
        """Run a disjunctive trigram expression against the trigram index.

        Custom-field values have no trigram index, so only content rows are
        returned.

        Raises:
            IndexQueryError: If the query fails.
        """
        shape = _SHAPES[entity_type]
        return IndexMatches(
            content=self._match_content(
                entity_type, shape.trigram_table, org_id, expression, starred_only
            )
        )

    def match_substring(
        self,
        entity_type: EntityType,
        org_id: str,
        needle: str,
        starred_only: bool = False,
    ) -> IndexMatches:
        """Scan source rows for case-insensitive containment of needle.

        Bypasses the text indexes entirely. Matching is done with Python's
        casefold() so non-ASCII text compares the same way it reads.

        Args:
            entity_type: Department or person.
            org_id: Organization the results must belong to.
            needle: Output of normalize_needle().
            starred_only: Restrict to starred people.

        Returns:
            Rows ranked by which field contained the needle.

        Raises:
            IndexQueryError: If reading the source tables fails.
        """
        shape = _SHAPES[entity_type]
        starred = " AND e.is_starred = 1" if starred_only else ""
        source_sql = f"""
            SELECT {shape.select}
            FROM {shape.source} e
            {shape.joins}
            WHERE {shape.live}{starred}
        """
        custom_sql = f"""
            SELECT s.entity_id, s.value
            FROM searchable_custom_values s
            WHERE s.entity_type = ? AND s.organization_id = ?
            ORDER BY s.entity_id, s.sort_order, s.field_key
        """
        rows = self._execute(shape.source, source_sql, (org_id,))
        custom_values: dict[str, list[str]] = {}
        for value_row in self._execute(
            "searchable_custom_values", custom_sql, (entity_type.value, org_id)
        ):
            custom_values.setdefault(value_row["entity_id"], []).append(
                value_row["value"]
            )

        matches = IndexMatches()
        for row in rows:
            fields = _display(entity_type, row)
            for position, column in enumerate(shape.columns):
                text = row[column]
                if not text or needle not in text.casefold():
                    continue
                matches.content.append(
                    RankedRow(
                        entity_type=entity_type,
                        entity_id=row["id"],
                        score=SUBSTRING_NAME_RANK if position == 0 else SUBSTRING_FIELD_RANK,
                        excerpt=mark_substring(text, needle),
                        fields=fields,
                    )
                )
                break

            blob = " ".join(custom_values.get(row["id"], ()))
            if blob and needle in blob.casefold():
                matches.custom.append(
                    RankedRow(
                        entity_type=entity_type,
                        entity_id=row["id"],
                        score=SUBSTRING_CUSTOM_RANK,
                        excerpt=mark_substring(blob, needle),
                        fields=fields,
                    )
                )
        return matches
