"""Directory writes that keep the text indexes in step with their sources.

Every public method runs one transaction that covers both the source
change and the index rows it affects.
"""

import json
import math
import re
import sqlite3
import uuid
from collections.abc import Mapping
from datetime import datetime
from typing import Any
from urllib.parse import urlsplit

import structlog

from orgdir.db import Database
from orgdir.errors import ConflictError, CustomFieldValueError, NotFoundError
from orgdir.indexing.records import EntityRef, reindex_entity
from orgdir.indexing.schemas import (
    CustomFieldUpdate,
    DepartmentUpdate,
    FieldType,
    PersonUpdate,
)
from orgdir.search.schemas import EntityType

logger = structlog.get_logger()

_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NON_SLUG = re.compile(r"[^a-z0-9]+")

_SUBTREE_SQL = """
    WITH RECURSIVE subtree(id) AS (
        SELECT id FROM departments WHERE id = ?
        UNION
        SELECT d.id FROM departments d
        JOIN subtree s ON d.parent_id = s.id
        WHERE {filter}
    )
    SELECT id FROM subtree
"""


def slugify(name: str) -> str:
    """Derive a field key from a display name."""
    return _NON_SLUG.sub("_", name.lower()).strip("_")


def _invalid(name: str, what: str) -> CustomFieldValueError:
    return CustomFieldValueError(f"Invalid {what} for field {name}")


def validate_custom_value(
    name: str, field_type: FieldType, options: list[str] | None, value: str
) -> None:
    """Check a stored value against its field type.

    Args:
        name: Field display name, used in error messages.
        field_type: Declared type of the field.
        options: Allowed values for select and multiselect fields.
        value: Value as it will be stored.

    Raises:
        CustomFieldValueError: If the value does not fit the type.
    """
    if field_type is FieldType.NUMBER:
        try:
            number = float(value)
        except ValueError:
            raise _invalid(name, "number") from None
        if math.isnan(number):
            raise _invalid(name, "number")

    elif field_type is FieldType.SELECT:
        if options and value not in options:
            raise _invalid(name, "option")

    elif field_type is FieldType.MULTISELECT:
        try:
            selected = json.loads(value)
        except json.JSONDecodeError:
            raise _invalid(name, "multiselect format") from None
        if not isinstance(selected, list):
            raise _invalid(name, "multiselect format")
        if options and not all(s in options for s in selected):
            raise _invalid(name, "options")

    elif field_type is FieldType.DATE:
        try:
            datetime.fromisoformat(value)
        except ValueError:
            raise _invalid(name, "date") from None

    elif field_type is FieldType.URL:
        try:
            parts = urlsplit(value)
        except ValueError:
            raise _invalid(name, "URL") from None
        if not parts.scheme or not (parts.netloc or parts.path):
            raise _invalid(name, "URL")

    elif field_type is FieldType.EMAIL:
        if not _EMAIL.match(value):
            raise _invalid(name, "email")


def _stored_value(value: Any) -> str | None:
    """Convert an API value to its stored text, None meaning removal."""
    if value is None or value == "":
        return None
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return str(value)


class DirectoryWriter:
    """Department, person, and custom field writes with index maintenance."""

    def __init__(self, database: Database) -> None:
        """Initialize writer.

        Args:
            database: Directory database.
        """
        self._database = database

    # Lookups

    @staticmethod
    def _department(conn: sqlite3.Connection, dept_id: str, live: bool = True) -> sqlite3.Row:
        row = conn.execute(
            "SELECT * FROM departments WHERE id = ?", (dept_id,)
        ).fetchone()
        if row is None or (live and row["deleted_at"] is not None):
            raise NotFoundError("Department not found")
        return row

    @staticmethod
    def _person(conn: sqlite3.Connection, person_id: str, live: bool = True) -> sqlite3.Row:
        row = conn.execute(
            """
            SELECT p.*, d.organization_id FROM people p
            JOIN departments d ON d.id = p.department_id
            WHERE p.id = ?
            """,
            (person_id,),
        ).fetchone()
        if row is None or (live and row["deleted_at"] is not None):
            raise NotFoundError("Person not found")
        return row

    def _entity_org(self, conn: sqlite3.Connection, ref: EntityRef) -> str:
        if ref.entity_type is EntityType.DEPARTMENT:
            return self._department(conn, ref.entity_id)["organization_id"]
        return self._person(conn, ref.entity_id)["organization_id"]

    @staticmethod
    def _subtree(conn: sqlite3.Connection, dept_id: str, filter_sql: str, *params: Any) -> list[str]:
        rows = conn.execute(
            _SUBTREE_SQL.format(filter=filter_sql), (dept_id, *params)
        ).fetchall()
        return [row["id"] for row in rows]

    @staticmethod
    def _now(conn: sqlite3.Connection) -> str:
        return conn.execute("SELECT datetime('now')").fetchone()[0]

    # Departments

    def create_department(
        self,
        org_id: str,
        name: str,
        description: str | None = None,
        parent_id: str | None = None,
        sort_order: int = 0,
        custom_fields: Mapping[str, Any] | None = None,
    ) -> str:
        """Create a department and index it.

        Args:
            org_id: Owning organization.
            name: Display name.
            description: Free-text description.
            parent_id: Parent department in the same organization.
            sort_order: Position among siblings.
            custom_fields: Initial custom field values keyed by field key.

        Returns:
            New department id.

        Raises:
            NotFoundError: Organization or parent department missing.
            CustomFieldValueError: A custom field value is invalid.
        """
        dept_id = str(uuid.uuid4())
        with self._database.transaction() as conn:
            if conn.execute(
                "SELECT 1 FROM organizations WHERE id = ?", (org_id,)
            ).fetchone() is None:
                raise NotFoundError("Organization not found")
            if parent_id is not None:
                parent = self._department(conn, parent_id)
                if parent["organization_id"] != org_id:
                    raise NotFoundError("Parent department not found")

            conn.execute(
                """
                INSERT INTO departments
                    (id, organization_id, parent_id, name, description, sort_order)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (dept_id, org_id, parent_id, name, description, sort_order),
            )
            ref = EntityRef(EntityType.DEPARTMENT, dept_id)
            if custom_fields:
                self._write_custom_values(conn, org_id, ref, custom_fields)
            reindex_entity(conn, ref)

        logger.info("department_created", department_id=dept_id, org_id=org_id)
        return dept_id

    def update_department(self, dept_id: str, changes: DepartmentUpdate) -> None:
        """Apply a partial update to a live department and reindex it.

        Raises:
            NotFoundError: Department or new parent missing.
            ConflictError: The new parent lies inside the department's subtree.
        """
        values = changes.model_dump(exclude_unset=True)
        if not values:
            return

        with self._database.transaction() as conn:
            current = self._department(conn, dept_id)
            parent_id = values.get("parent_id")
            if parent_id is not None:
                parent = self._department(conn, parent_id)
                if parent["organization_id"] != current["organization_id"]:
                    raise NotFoundError("Parent department not found")
                if parent_id in self._subtree(conn, dept_id, "d.deleted_at IS NULL"):
                    raise ConflictError("A department cannot be moved under itself")

            assignments = ", ".join(f"{column} = ?" for column in values)
            conn.execute(
                f"""
                UPDATE departments SET {assignments}, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (*values.values(), dept_id),
            )
            reindex_entity(conn, EntityRef(EntityType.DEPARTMENT, dept_id))

    def soft_delete_department(self, dept_id: str) -> int:
        """Soft-delete a department, its descendants, and their people.

        Every affected entity leaves all indexes in the same transaction.

        Args:
            dept_id: Department to delete.

        Returns:
            Number of entities deleted.

        Raises:
            NotFoundError: Department missing or already deleted.
        """
        with self._database.transaction() as conn:
            self._department(conn, dept_id)
            stamp = self._now(conn)
            dept_ids = self._subtree(conn, dept_id, "d.deleted_at IS NULL")
            placeholders = ", ".join("?" for _ in dept_ids)
            person_ids = [
                row["id"]
                for row in conn.execute(
                    f"""
                    SELECT id FROM people
                    WHERE department_id IN ({placeholders}) AND deleted_at IS NULL
                    """,
                    dept_ids,
                )
            ]

            conn.execute(
                f"UPDATE departments SET deleted_at = ? WHERE id IN ({placeholders})",
                (stamp, *dept_ids),
            )
            conn.execute(
                f"""
                UPDATE people SET deleted_at = ?
                WHERE department_id IN ({placeholders}) AND deleted_at IS NULL
                """,
                (stamp, *dept_ids),
            )

            for department in dept_ids:
                reindex_entity(conn, EntityRef(EntityType.DEPARTMENT, department))
            for person in person_ids:
                reindex_entity(conn, EntityRef(EntityType.PERSON, person))

        logger.info(
            "department_deleted",
            department_id=dept_id,
            departments=len(dept_ids),
            people=len(person_ids),
        )
        return len(dept_ids) + len(person_ids)

    def restore_department(self, dept_id: str) -> int:
        """Restore a department and everything its deletion cascaded to.

        Descendants and people are restored only when they were deleted in
        the same operation as the department itself.

        Args:
            dept_id: Soft-deleted department.

        Returns:
            Number of entities restored.

        Raises:
            NotFoundError: Department missing or not deleted.
            ConflictError: The parent department is still deleted.
        """
        with self._database.transaction() as conn:
            row = self._department(conn, dept_id, live=False)
            stamp = row["deleted_at"]
            if stamp is None:
                raise NotFoundError("Department is not deleted")
            if row["parent_id"] is not None:
                parent = self._department(conn, row["parent_id"], live=False)
                if parent["deleted_at"] is not None:
                    raise ConflictError("Restore the parent department first")

            dept_ids = self._subtree(conn, dept_id, "d.deleted_at = ?", stamp)
            placeholders = ", ".join("?" for _ in dept_ids)
            person_ids = [
                r["id"]
                for r in conn.execute(
                    f"""
                    SELECT id FROM people
                    WHERE department_id IN ({placeholders}) AND deleted_at = ?
                    """,
                    (*dept_ids, stamp),
                )
            ]

            conn.execute(
                f"UPDATE departments SET deleted_at = NULL WHERE id IN ({placeholders})",
                dept_ids,
            )
            conn.execute(
                f"""
                UPDATE people SET deleted_at = NULL
                WHERE department_id IN ({placeholders}) AND deleted_at = ?
                """,
                (*dept_ids, stamp),
            )

            for department in dept_ids:
                reindex_entity(conn, EntityRef(EntityType.DEPARTMENT, department))
            for person in person_ids:
                reindex_entity(conn, EntityRef(EntityType.PERSON, person))

        logger.info("department_restored", department_id=dept_id)
        return len(dept_ids) + len(person_ids)

    # People

    def create_person(
        self,
        department_id: str,
        name: str,
        title: str | None = None,
        email: str | None = None,
        phone: str | None = None,
        is_starred: bool = False,
        sort_order: int = 0,
        custom_fields: Mapping[str, Any] | None = None,
    ) -> str:
        """Create a person in a live department and index them.

        Returns:
            New person id.

        Raises:
            NotFoundError: Department missing.
            CustomFieldValueError: A custom field value is invalid.
        """
        person_id = str(uuid.uuid4())
        with self._database.transaction() as conn:
            department = self._department(conn, department_id)
            conn.execute(
                """
                INSERT INTO people
                    (id, department_id, name, title, email, phone, is_starred, sort_order)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    person_id,
                    department_id,
                    name,
                    title,
                    email,
                    phone,
                    int(is_starred),
                    sort_order,
                ),
            )
            ref = EntityRef(EntityType.PERSON, person_id)
            if custom_fields:
                self._write_custom_values(
                    conn, department["organization_id"], ref, custom_fields
                )
            reindex_entity(conn, ref)

        logger.info("person_created", person_id=person_id, department_id=department_id)
        return person_id

    def update_person(self, person_id: str, changes: PersonUpdate) -> None:
        """Apply a partial update to a live person and reindex them.

        Raises:
            NotFoundError: Person or target department missing.
        """
        values = changes.model_dump(exclude_unset=True)
        if not values:
            return

        with self._database.transaction() as conn:
            current = self._person(conn, person_id)
            target = values.get("department_id")
            if target is not None:
                department = self._department(conn, target)
                if department["organization_id"] != current["organization_id"]:
                    raise NotFoundError("Department not found")

            assignments = ", ".join(f"{column} = ?" for column in values)
            conn.execute(
                f"""
                UPDATE people SET {assignments}, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (*values.values(), person_id),
            )
            reindex_entity(conn, EntityRef(EntityType.PERSON, person_id))

    def set_starred(self, person_id: str, starred: bool) -> None:
        """Star or unstar a live person.

        Raises:
            NotFoundError: Person missing.
        """
        with self._database.transaction() as conn:
            self._person(conn, person_id)
            conn.execute(
                """
                UPDATE people SET is_starred = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (int(starred), person_id),
            )

    def soft_delete_person(self, person_id: str) -> None:
        """Soft-delete a person and drop their index rows.

        Raises:
            NotFoundError: Person missing or already deleted.
        """
        with self._database.transaction() as conn:
            self._person(conn, person_id)
            conn.execute(
                "UPDATE people SET deleted_at = datetime('now') WHERE id = ?",
                (person_id,),
            )
            reindex_entity(conn, EntityRef(EntityType.PERSON, person_id))
        logger.info("person_deleted", person_id=person_id)

    def restore_person(self, person_id: str) -> None:
        """Restore a soft-deleted person whose department is live.

        Raises:
            NotFoundError: Person missing or not deleted.
            ConflictError: The person's department is deleted.
        """
        with self._database.transaction() as conn:
            row = self._person(conn, person_id, live=False)
            if row["deleted_at"] is None:
                raise NotFoundError("Person is not deleted")
            department = self._department(conn, row["department_id"], live=False)
            if department["deleted_at"] is not None:
                raise ConflictError("Restore the department first")
            conn.execute(
                "UPDATE people SET deleted_at = NULL WHERE id = ?", (person_id,)
            )
            reindex_entity(conn, EntityRef(EntityType.PERSON, person_id))
        logger.info("person_restored", person_id=person_id)

    # Custom fields

    def define_custom_field(
        self,
        org_id: str,
        entity_type: EntityType,
        name: str,
        field_type: FieldType,
        options: list[str] | None = None,
        is_required: bool = False,
        is_searchable: bool = True,
        sort_order: int = 0,
    ) -> str:
        """Create a custom field definition.

        The field key is derived from the name and must be unique per
        organization and entity type.

        Returns:
            New definition id.

        Raises:
            CustomFieldValueError: Name produces an empty key.
            ConflictError: Key already in use.
        """
        field_key = slugify(name)
        if not field_key:
            raise CustomFieldValueError("Invalid field name")

        field_id = str(uuid.uuid4())
        with self._database.transaction() as conn:
            existing = conn.execute(
                """
                SELECT 1 FROM custom_field_definitions
                WHERE organization_id = ? AND entity_type = ? AND field_key = ?
                """,
                (org_id, entity_type.value, field_key),
            ).fetchone()
            if existing is not None:
                raise ConflictError(
                    f'Field with name "{name}" (key: {field_key}) already exists'
                )
            conn.execute(
                """
                INSERT INTO custom_field_definitions
                    (id, organization_id, entity_type, name, field_key, field_type,
                     options, is_required, is_searchable, sort_order)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    field_id,
                    org_id,
                    entity_type.value,
                    name,
                    field_key,
                    field_type.value,
                    json.dumps(options) if options else None,
                    int(is_required),
                    int(is_searchable),
                    sort_order,
                ),
            )

        logger.info("custom_field_defined", field_id=field_id, field_key=field_key)
        return field_id

    def update_custom_field(self, field_id: str, changes: CustomFieldUpdate) -> int:
        """Apply a partial update to a custom field definition.

        Changing searchability or order rewrites the search blob of every
        entity holding a value for the field.

        Returns:
            Number of entities reindexed.

        Raises:
            NotFoundError: Definition missing or deleted.
        """
        values = changes.model_dump(exclude_unset=True)
        if not values:
            return 0
        if "options" in values:
            values["options"] = json.dumps(values["options"]) if values["options"] else None
        for flag in ("is_required", "is_searchable"):
            if flag in values:
                values[flag] = int(values[flag])

        with self._database.transaction() as conn:
            self._definition(conn, field_id)
            assignments = ", ".join(f"{column} = ?" for column in values)
            conn.execute(
                f"""
                UPDATE custom_field_definitions
                SET {assignments}, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (*values.values(), field_id),
            )
            if "is_searchable" in values or "sort_order" in values:
                return self._reindex_field_holders(conn, field_id)
        return 0

    def delete_custom_field(self, field_id: str) -> int:
        """Soft-delete a custom field definition.

        Its values stop contributing to search immediately.

        Returns:
            Number of entities reindexed.

        Raises:
            NotFoundError: Definition missing or already deleted.
        """
        with self._database.transaction() as conn:
            self._definition(conn, field_id)
            conn.execute(
                """
                UPDATE custom_field_definitions
                SET deleted_at = datetime('now') WHERE id = ?
                """,
                (field_id,),
            )
            count = self._reindex_field_holders(conn, field_id)
        logger.info("custom_field_deleted", field_id=field_id, reindexed=count)
        return count

    def set_custom_fields(
        self,
        entity_type: EntityType,
        entity_id: str,
        values: Mapping[str, Any],
    ) -> None:
        """Write custom field values of one entity and refresh its search blob.

        Unknown keys are ignored. None or an empty string removes a value.

        Raises:
            NotFoundError: Entity missing or deleted.
            CustomFieldValueError: A value does not fit its field type.
        """
        ref = EntityRef(entity_type, entity_id)
        with self._database.transaction() as conn:
            org_id = self._entity_org(conn, ref)
            self._write_custom_values(conn, org_id, ref, values)
            reindex_entity(conn, ref)

    @staticmethod
    def _definition(conn: sqlite3.Connection, field_id: str) -> sqlite3.Row:
        row = conn.execute(
            """
            SELECT * FROM custom_field_definitions
            WHERE id = ? AND deleted_at IS NULL
            """,
            (field_id,),
        ).fetchone()
        if row is None:
            raise NotFoundError("Field definition not found")
        return row

    @staticmethod
    def _reindex_field_holders(conn: sqlite3.Connection, field_id: str) -> int:
        holders = conn.execute(
            """
            SELECT DISTINCT entity_type, entity_id FROM custom_field_values
            WHERE field_definition_id = ?
            """,
            (field_id,),
        ).fetchall()
        for row in holders:
            reindex_entity(
                conn, EntityRef(EntityType(row["entity_type"]), row["entity_id"])
            )
        return len(holders)

    @staticmethod
    def _write_custom_values(
        conn: sqlite3.Connection,
        org_id: str,
        ref: EntityRef,
        values: Mapping[str, Any],
    ) -> None:
        definitions = {
            row["field_key"]: row
            for row in conn.execute(
                """
                SELECT id, name, field_key, field_type, options
                FROM custom_field_definitions
                WHERE organization_id = ? AND entity_type = ? AND deleted_at IS NULL
                """,
                (org_id, ref.entity_type.value),
            )
        }

        for key, raw in values.items():
            definition = definitions.get(key)
            if definition is None:
                continue

            value = _stored_value(raw)
            if value is None:
                conn.execute(
                    """
                    DELETE FROM custom_field_values
                    WHERE field_definition_id = ? AND entity_id = ?
                    """,
                    (definition["id"], ref.entity_id),
                )
                continue

            options = json.loads(definition["options"]) if definition["options"] else None
            validate_custom_value(
                definition["name"], FieldType(definition["field_type"]), options, value
            )
            conn.execute(
                """
                INSERT INTO custom_field_values
                    (id, field_definition_id, entity_type, entity_id, value)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (field_definition_id, entity_id) DO UPDATE SET
                    value = excluded.value,
                    deleted_at = NULL,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    str(uuid.uuid4()),
                    definition["id"],
                    ref.entity_type.value,
                    ref.entity_id,
                    value,
                ),
            )
