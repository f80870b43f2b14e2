"""SQLite storage: connection management and schema."""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Literal

import structlog

logger = structlog.get_logger()

TransactionMode = Literal["DEFERRED", "IMMEDIATE", "EXCLUSIVE"]

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT UNIQUE NOT NULL,
    name TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'user',
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS organizations (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    created_by_id TEXT,
    is_public INTEGER NOT NULL DEFAULT 0,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (created_by_id) REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS organization_members (
    id TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    role TEXT,
    joined_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (organization_id, user_id),
    FOREIGN KEY (organization_id) REFERENCES organizations(id) ON DELETE CASCADE,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS departments (
    id TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    parent_id TEXT,
    name TEXT NOT NULL,
    description TEXT,
    sort_order INTEGER DEFAULT 0,
    deleted_at DATETIME,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (organization_id) REFERENCES organizations(id) ON DELETE CASCADE,
    FOREIGN KEY (parent_id) REFERENCES departments(id)
);

CREATE TABLE IF NOT EXISTS people (
    id TEXT PRIMARY KEY,
    department_id TEXT NOT NULL,
    name TEXT NOT NULL,
    title TEXT,
    email TEXT,
    phone TEXT,
    sort_order INTEGER DEFAULT 0,
    is_starred INTEGER NOT NULL DEFAULT 0,
    deleted_at DATETIME,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (department_id) REFERENCES departments(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_departments_org ON departments(organization_id) WHERE deleted_at IS NULL;
CREATE INDEX IF NOT EXISTS idx_departments_parent_id ON departments(parent_id) WHERE deleted_at IS NULL;
CREATE INDEX IF NOT EXISTS idx_people_department ON people(department_id) WHERE deleted_at IS NULL;

CREATE TABLE IF NOT EXISTS custom_field_definitions (
    id TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    name TEXT NOT NULL,
    field_key TEXT NOT NULL,
    field_type TEXT NOT NULL,
    options TEXT,
    is_required INTEGER NOT NULL DEFAULT 0,
    is_searchable INTEGER NOT NULL DEFAULT 1,
    sort_order INTEGER DEFAULT 0,
    deleted_at DATETIME,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (organization_id, entity_type, field_key),
    FOREIGN KEY (organization_id) REFERENCES organizations(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS custom_field_values (
    id TEXT PRIMARY KEY,
    field_definition_id TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    value TEXT,
    deleted_at DATETIME,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (field_definition_id, entity_id),
    FOREIGN KEY (field_definition_id) REFERENCES custom_field_definitions(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_custom_field_values_entity ON custom_field_values(entity_type, entity_id);

CREATE TABLE IF NOT EXISTS search_analytics (
    id TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    user_id TEXT,
    query TEXT NOT NULL,
    result_count INTEGER NOT NULL,
    execution_time_ms REAL NOT NULL,
    tier TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (organization_id) REFERENCES organizations(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_search_analytics_org_created
    ON search_analytics(organization_id, created_at DESC);

CREATE VIRTUAL TABLE IF NOT EXISTS departments_fts USING fts5(
    name,
    description,
    tokenize='porter unicode61 remove_diacritics 2'
);

CREATE VIRTUAL TABLE IF NOT EXISTS people_fts USING fts5(
    name,
    title,
    email,
    phone,
    tokenize='porter unicode61 remove_diacritics 2'
);

CREATE VIRTUAL TABLE IF NOT EXISTS departments_trigram USING fts5(
    name,
    description,
    tokenize='trigram'
);

CREATE VIRTUAL TABLE IF NOT EXISTS people_trigram USING fts5(
    name,
    title,
    email,
    phone,
    tokenize='trigram'
);

CREATE VIRTUAL TABLE IF NOT EXISTS custom_fields_fts USING fts5(
    entity_type UNINDEXED,
    entity_id UNINDEXED,
    field_values,
    tokenize='porter unicode61 remove_diacritics 2'
);

-- Values that currently contribute to an entity's custom-field search blob.
CREATE VIEW IF NOT EXISTS searchable_custom_values AS
SELECT
    v.entity_type,
    v.entity_id,
    v.value,
    d.organization_id,
    d.field_key,
    d.sort_order
FROM custom_field_values v
JOIN custom_field_definitions d ON d.id = v.field_definition_id
WHERE d.is_searchable = 1
  AND d.deleted_at IS NULL
  AND v.deleted_at IS NULL
  AND v.value IS NOT NULL
  AND trim(v.value, char(32, 9, 10, 13)) <> ''
  AND (
    (v.entity_type = 'department' AND EXISTS (
        SELECT 1 FROM departments x WHERE x.id = v.entity_id AND x.deleted_at IS NULL))
    OR (v.entity_type = 'person' AND EXISTS (
        SELECT 1 FROM people x WHERE x.id = v.entity_id AND x.deleted_at IS NULL))
  );
"""


class Database:
    """SQLite database handle.

    Every caller gets its own connection, so concurrent readers never share
    cursor state. In WAL mode readers do not block each other and a writer
    does not block readers; writers are serialized by SQLite itself.

    Attributes:
        path: Filesystem path of the database.
    """

    def __init__(self, path: str, busy_timeout_ms: int = 5000) -> None:
        """Initialize database handle (call initialize() before use).

        Args:
            path: Path to the SQLite database file.
            busy_timeout_ms: Milliseconds a writer waits for the lock.
        """
        self.path = path
        self._busy_timeout_ms = busy_timeout_ms

    def connect(self) -> sqlite3.Connection:
        """Open a new connection in autocommit mode.

        Transactions are opened explicitly with transaction().

        Returns:
            Configured connection with dict-like rows.
        """
        conn = sqlite3.connect(
            self.path,
            timeout=self._busy_timeout_ms / 1000,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {int(self._busy_timeout_ms)}")
        return conn

    def initialize(self) -> None:
        """Create tables, text indexes, and views if they do not exist."""
        conn = self.connect()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.executescript(SCHEMA_SQL)
        finally:
            conn.close()
        logger.info("database_initialized", path=self.path)

    @contextmanager
    def session(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection for reads, closing it afterwards.

        Yields:
            Open connection.
        """
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(
        self, mode: TransactionMode = "IMMEDIATE"
    ) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a write transaction.

        Commits when the block exits normally and rolls back when it raises,
        so source rows and their index rows change together or not at all.

        Args:
            mode: SQLite transaction mode.

        Yields:
            Connection with an open transaction.
        """
        conn = self.connect()
        try:
            conn.execute(f"BEGIN {mode}")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()
