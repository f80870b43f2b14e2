"""Index records: how each text index is written, cleared, and counted."""

import itertools
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import NamedTuple

import structlog

from orgdir.search.schemas import EntityType

logger = structlog.get_logger()


class EntityRef(NamedTuple):
    """Reference to one department or person."""

    entity_type: EntityType
    entity_id: str


def join_searchable_values(values: Iterable[str]) -> str:
    """Concatenate custom field values into one search blob."""
    return " ".join(values)


class IndexRecord(ABC):
    """One FTS5 table kept in step with the directory tables.

    Every method runs on a caller-supplied connection so index writes share
    the transaction of the source write that triggered them.

    Attributes:
        table: FTS5 virtual table name.
    """

    def __init__(self, table: str) -> None:
        self.table = table

    @abstractmethod
    def covers(self, entity_type: EntityType) -> bool:
        """Whether rows for entity_type live in this index."""

    @abstractmethod
    def index(self, conn: sqlite3.Connection, ref: EntityRef) -> None:
        """Replace the index row of one entity with its current state."""

    @abstractmethod
    def remove(self, conn: sqlite3.Connection, ref: EntityRef) -> None:
        """Drop the index row of one entity, if present."""

    @abstractmethod
    def rebuild(self, conn: sqlite3.Connection) -> int:
        """Clear the index and repopulate it from source tables.

        Returns:
            Number of rows written.
        """

    @abstractmethod
    def expected_count(self, conn: sqlite3.Connection) -> int:
        """Number of rows the index should hold."""

    def actual_count(self, conn: sqlite3.Connection) -> int:
        """Number of rows the index holds."""
        return conn.execute(f"SELECT COUNT(*) FROM {self.table}").fetchone()[0]

    def optimize(self, conn: sqlite3.Connection) -> None:
        """Merge the index b-trees; search results are unchanged."""
        conn.execute(f"INSERT INTO {self.table}({self.table}) VALUES ('optimize')")

    def size_bytes(self, conn: sqlite3.Connection) -> int:
        """Approximate on-disk size of the index segments."""
        row = conn.execute(
            f"SELECT COALESCE(SUM(length(block)), 0) FROM {self.table}_data"
        ).fetchone()
        return int(row[0])


class LinkedIndex(IndexRecord):
    """Index whose rows share their rowid with a source table row.

    Only rows that are not soft-deleted are indexed.
    """

    def __init__(
        self,
        table: str,
        source: str,
        columns: tuple[str, ...],
        entity_type: EntityType,
    ) -> None:
        """Initialize linked index.

        Args:
            table: FTS5 virtual table name.
            source: Source table whose rowids the index reuses.
            columns: Indexed columns, in FTS5 column order.
            entity_type: Entity type stored in the source table.
        """
        super().__init__(table)
        self.source = source
        self.columns = columns
        self.entity_type = entity_type

    def covers(self, entity_type: EntityType) -> bool:
        return entity_type is self.entity_type

    def _populate(self, conn: sqlite3.Connection, where: str, params: tuple[str, ...]) -> int:
        cols = ", ".join(self.columns)
        cursor = conn.execute(
            f"""
            INSERT INTO {self.table} (rowid, {cols})
            SELECT rowid, {cols} FROM {self.source}
            WHERE deleted_at IS NULL{where}
            """,
            params,
        )
        return cursor.rowcount

    def index(self, conn: sqlite3.Connection, ref: EntityRef) -> None:
        self.remove(conn, ref)
        self._populate(conn, " AND id = ?", (ref.entity_id,))

    def remove(self, conn: sqlite3.Connection, ref: EntityRef) -> None:
        conn.execute(
            f"""
            DELETE FROM {self.table}
            WHERE rowid = (SELECT rowid FROM {self.source} WHERE id = ?)
            """,
            (ref.entity_id,),
        )

    def rebuild(self, conn: sqlite3.Connection) -> int:
        conn.execute(f"DELETE FROM {self.table}")
        count = self._populate(conn, "", ())
        logger.info("fts_index_rebuilt", table=self.table, row_count=count)
        return count

    def expected_count(self, conn: sqlite3.Connection) -> int:
        return conn.execute(
            f"SELECT COUNT(*) FROM {self.source} WHERE deleted_at IS NULL"
        ).fetchone()[0]


class StandaloneIndex(IndexRecord):
    """Custom-field index keyed by (entity_type, entity_id).

    Each entity has at most one row holding all of its searchable values.
    Updates always delete the row and insert a fresh blob.
    """

    def covers(self, entity_type: EntityType) -> bool:
        return True

    def _values(self, conn: sqlite3.Connection, ref: EntityRef) -> list[str]:
        rows = conn.execute(
            """
            SELECT value FROM searchable_custom_values
            WHERE entity_type = ? AND entity_id = ?
            ORDER BY sort_order, field_key
            """,
            (ref.entity_type.value, ref.entity_id),
        ).fetchall()
        return [row["value"] for row in rows]

    def _insert(self, conn: sqlite3.Connection, entity_type: str, entity_id: str, blob: str) -> None:
        conn.execute(
            f"INSERT INTO {self.table} (entity_type, entity_id, field_values) VALUES (?, ?, ?)",
            (entity_type, entity_id, blob),
        )

    def index(self, conn: sqlite3.Connection, ref: EntityRef) -> None:
        self.remove(conn, ref)
        values = self._values(conn, ref)
        if values:
            self._insert(
                conn, ref.entity_type.value, ref.entity_id, join_searchable_values(values)
            )

    def remove(self, conn: sqlite3.Connection, ref: EntityRef) -> None:
        conn.execute(
            f"DELETE FROM {self.table} WHERE entity_type = ? AND entity_id = ?",
            (ref.entity_type.value, ref.entity_id),
        )

    def rebuild(self, conn: sqlite3.Connection) -> int:
        conn.execute(f"DELETE FROM {self.table}")
        rows = conn.execute(
            """
            SELECT entity_type, entity_id, value FROM searchable_custom_values
            ORDER BY entity_type, entity_id, sort_order, field_key
            """
        ).fetchall()

        count = 0
        for (entity_type, entity_id), group in itertools.groupby(
            rows, key=lambda r: (r["entity_type"], r["entity_id"])
        ):
            self._insert(
                conn, entity_type, entity_id, join_searchable_values(r["value"] for r in group)
            )
            count += 1

        logger.info("fts_index_rebuilt", table=self.table, row_count=count)
        return count

    def expected_count(self, conn: sqlite3.Connection) -> int:
        return conn.execute(
            """
            SELECT COUNT(*) FROM (
                SELECT DISTINCT entity_type, entity_id FROM searchable_custom_values
            )
            """
        ).fetchone()[0]


DEPARTMENTS_FTS = LinkedIndex(
    "departments_fts", "departments", ("name", "description"), EntityType.DEPARTMENT
)
DEPARTMENTS_TRIGRAM = LinkedIndex(
    "departments_trigram", "departments", ("name", "description"), EntityType.DEPARTMENT
)
PEOPLE_FTS = LinkedIndex(
    "people_fts", "people", ("name", "title", "email", "phone"), EntityType.PERSON
)
PEOPLE_TRIGRAM = LinkedIndex(
    "people_trigram", "people", ("name", "title", "email", "phone"), EntityType.PERSON
)
CUSTOM_FIELDS_FTS = StandaloneIndex("custom_fields_fts")

CONTENT_INDEXES: tuple[LinkedIndex, ...] = (
    DEPARTMENTS_FTS,
    DEPARTMENTS_TRIGRAM,
    PEOPLE_FTS,
    PEOPLE_TRIGRAM,
)
ALL_INDEXES: tuple[IndexRecord, ...] = (*CONTENT_INDEXES, CUSTOM_FIELDS_FTS)


def content_indexes_for(entity_type: EntityType) -> list[LinkedIndex]:
    """Porter and trigram indexes of one entity type."""
    return [i for i in CONTENT_INDEXES if i.covers(entity_type)]


def reindex_entity(conn: sqlite3.Connection, ref: EntityRef) -> None:
    """Bring every index row of one entity up to date."""
    for record in content_indexes_for(ref.entity_type):
        record.index(conn, ref)
    CUSTOM_FIELDS_FTS.index(conn, ref)
