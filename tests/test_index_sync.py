"""Write-path index synchronization tests."""

import pytest
from conftest import Directory
from pydantic import ValidationError

from orgdir.db import Database
from orgdir.errors import ConflictError, CustomFieldValueError, NotFoundError
from orgdir.indexing.maintenance import IndexMaintenance
from orgdir.indexing.schemas import (
    CustomFieldUpdate,
    DepartmentUpdate,
    FieldType,
    PersonUpdate,
)
from orgdir.indexing.writer import DirectoryWriter, slugify, validate_custom_value
from orgdir.search.schemas import EntityType, SearchRequest
from orgdir.search.service import SearchService


def _ids(service: SearchService, directory: Directory, query: str) -> set[str]:
    response = service.search(
        directory.private_org, directory.viewer, SearchRequest(query=query, limit=100)
    )
    return {r.id for r in response.results}


def _custom_blob(database: Database, entity_id: str) -> str | None:
    with database.session() as conn:
        row = conn.execute(
            "SELECT field_values FROM custom_fields_fts WHERE entity_id = ?",
            (entity_id,),
        ).fetchone()
    return row["field_values"] if row else None


def test_seeded_writes_leave_indexes_in_sync(
    maintenance: IndexMaintenance, directory: Directory
) -> None:
    """Every create indexes its row in the same transaction."""
    health = maintenance.check_integrity()
    assert health.healthy, health.issues


def test_update_person_reindexes(
    writer: DirectoryWriter, service: SearchService, directory: Directory
) -> None:
    """Changed fields are searchable and old values are gone."""
    writer.update_person(directory.john, PersonUpdate(title="Chief Architect"))
    assert directory.john in _ids(service, directory, "Architect")
    assert directory.john not in _ids(service, directory, "Senior")


def test_moving_a_person_updates_department_name(
    writer: DirectoryWriter, service: SearchService, directory: Directory
) -> None:
    """Person results follow their new department."""
    writer.update_person(directory.john, PersonUpdate(department_id=directory.hr))
    response = service.search(
        directory.private_org, directory.viewer, SearchRequest(query="John")
    )
    assert response.results[0].department_name == "Human Resources"


def test_update_department_reindexes(
    writer: DirectoryWriter, service: SearchService, directory: Directory
) -> None:
    """Department renames are searchable immediately."""
    writer.update_department(directory.hr, DepartmentUpdate(name="People Team"))
    assert directory.hr in _ids(service, directory, "Team")


@pytest.mark.parametrize("model", [DepartmentUpdate, PersonUpdate, CustomFieldUpdate])
def test_name_cannot_be_cleared(model: type) -> None:
    """An explicit null name is rejected before it reaches the database."""
    with pytest.raises(ValidationError):
        model(name=None)
    assert "name" not in model().model_dump(exclude_unset=True)


def test_partial_update_without_name_keeps_name(
    writer: DirectoryWriter, service: SearchService, directory: Directory
) -> None:
    """Omitting the name leaves the stored one untouched."""
    writer.update_department(directory.hr, DepartmentUpdate(description="Talent"))
    assert directory.hr in _ids(service, directory, "Human")
    assert directory.hr in _ids(service, directory, "Talent")


def test_department_cannot_move_under_itself(
    writer: DirectoryWriter, directory: Directory
) -> None:
    """Cycles in the hierarchy are rejected."""
    child = writer.create_department(
        directory.private_org, "Platform", parent_id=directory.engineering
    )
    with pytest.raises(ConflictError):
        writer.update_department(directory.engineering, DepartmentUpdate(parent_id=child))


def test_soft_delete_cascades_and_restore_brings_back(
    writer: DirectoryWriter,
    service: SearchService,
    maintenance: IndexMaintenance,
    directory: Directory,
) -> None:
    """Deleting a department hides its subtree; restoring reverses it."""
    platform = writer.create_department(
        directory.private_org, "Platform", parent_id=directory.engineering
    )
    paula = writer.create_person(platform, "Paula Platformer")

    deleted = writer.soft_delete_department(directory.engineering)
    assert deleted == 4
    assert _ids(service, directory, "John") == set()
    assert _ids(service, directory, "Paula") == set()
    assert _ids(service, directory, "Platform") == set()
    assert maintenance.check_integrity().healthy

    restored = writer.restore_department(directory.engineering)
    assert restored == 4
    assert directory.john in _ids(service, directory, "John")
    assert paula in _ids(service, directory, "Paula")
    assert maintenance.check_integrity().healthy


def test_restore_keeps_separately_deleted_people_deleted(
    writer: DirectoryWriter,
    database: Database,
    service: SearchService,
    directory: Directory,
) -> None:
    """Only what the cascade deleted is restored with the department."""
    writer.soft_delete_person(directory.john)
    with pytest.raises(NotFoundError):
        writer.soft_delete_person(directory.john)

    with database.transaction() as conn:
        conn.execute(
            "UPDATE people SET deleted_at = '2000-01-01 00:00:00' WHERE id = ?",
            (directory.john,),
        )
    writer.soft_delete_department(directory.engineering)
    writer.restore_department(directory.engineering)
    assert directory.john not in _ids(service, directory, "John")

    writer.restore_person(directory.john)
    assert directory.john in _ids(service, directory, "John")


def test_restore_person_requires_live_department(
    writer: DirectoryWriter, directory: Directory
) -> None:
    """A person cannot be restored into a deleted department."""
    writer.soft_delete_person(directory.john)
    writer.soft_delete_department(directory.engineering)
    with pytest.raises(ConflictError):
        writer.restore_person(directory.john)


def test_custom_field_blob_follows_field_order(
    writer: DirectoryWriter, database: Database, directory: Directory
) -> None:
    """Values are concatenated in field order into one row per entity."""
    writer.define_custom_field(
        directory.private_org, EntityType.PERSON, "Building", FieldType.TEXT, sort_order=2
    )
    writer.define_custom_field(
        directory.private_org, EntityType.PERSON, "Floor", FieldType.NUMBER, sort_order=1
    )
    writer.set_custom_fields(
        EntityType.PERSON, directory.john, {"building": "Zephyr", "floor": 7}
    )
    assert _custom_blob(database, directory.john) == "7 Zephyr"

    writer.set_custom_fields(EntityType.PERSON, directory.john, {"floor": None})
    assert _custom_blob(database, directory.john) == "Zephyr"

    writer.set_custom_fields(EntityType.PERSON, directory.john, {"building": ""})
    assert _custom_blob(database, directory.john) is None


def test_unsearchable_fields_stay_out_of_search(
    writer: DirectoryWriter,
    service: SearchService,
    maintenance: IndexMaintenance,
    directory: Directory,
) -> None:
    """Toggling searchability adds and removes values from the index."""
    field_id = writer.define_custom_field(
        directory.private_org, EntityType.PERSON, "Badge", FieldType.TEXT
    )
    writer.set_custom_fields(EntityType.PERSON, directory.john, {"badge": "Quokka"})
    assert directory.john in _ids(service, directory, "Quokka")

    assert writer.update_custom_field(field_id, CustomFieldUpdate(is_searchable=False)) == 1
    assert directory.john not in _ids(service, directory, "Quokka")
    assert maintenance.check_integrity().healthy

    writer.update_custom_field(field_id, CustomFieldUpdate(is_searchable=True))
    assert directory.john in _ids(service, directory, "Quokka")

    writer.delete_custom_field(field_id)
    assert directory.john not in _ids(service, directory, "Quokka")
    assert maintenance.check_integrity().healthy


def test_soft_deleted_entity_leaves_custom_index(
    writer: DirectoryWriter,
    database: Database,
    maintenance: IndexMaintenance,
    directory: Directory,
) -> None:
    """Deleting an entity removes its custom-field row too."""
    writer.define_custom_field(
        directory.private_org, EntityType.PERSON, "Badge", FieldType.TEXT
    )
    writer.set_custom_fields(EntityType.PERSON, directory.john, {"badge": "Quokka"})
    writer.soft_delete_person(directory.john)
    assert _custom_blob(database, directory.john) is None
    assert maintenance.check_integrity().healthy


def test_unknown_custom_keys_are_ignored(
    writer: DirectoryWriter, database: Database, directory: Directory
) -> None:
    """Keys without a definition are skipped."""
    writer.set_custom_fields(EntityType.PERSON, directory.john, {"nope": "value"})
    assert _custom_blob(database, directory.john) is None


def test_duplicate_field_key_conflicts(
    writer: DirectoryWriter, directory: Directory
) -> None:
    """Field keys are unique per organization and entity type."""
    writer.define_custom_field(
        directory.private_org, EntityType.PERSON, "Desk Phone", FieldType.TEXT
    )
    with pytest.raises(ConflictError):
        writer.define_custom_field(
            directory.private_org, EntityType.PERSON, "desk-phone", FieldType.TEXT
        )
    writer.define_custom_field(
        directory.private_org, EntityType.DEPARTMENT, "Desk Phone", FieldType.TEXT
    )


def test_invalid_field_name_is_rejected(
    writer: DirectoryWriter, directory: Directory
) -> None:
    """Names without any slug characters cannot be used."""
    with pytest.raises(CustomFieldValueError):
        writer.define_custom_field(
            directory.private_org, EntityType.PERSON, "!!!", FieldType.TEXT
        )


def test_invalid_value_rolls_back_the_whole_write(
    writer: DirectoryWriter, database: Database, directory: Directory
) -> None:
    """A bad value leaves earlier values in the same call unwritten."""
    writer.define_custom_field(
        directory.private_org, EntityType.PERSON, "Badge", FieldType.TEXT
    )
    writer.define_custom_field(
        directory.private_org, EntityType.PERSON, "Floor", FieldType.NUMBER
    )
    with pytest.raises(CustomFieldValueError):
        writer.set_custom_fields(
            EntityType.PERSON, directory.john, {"badge": "Quokka", "floor": "high"}
        )
    assert _custom_blob(database, directory.john) is None


def test_writes_to_missing_entities_raise(
    writer: DirectoryWriter, directory: Directory
) -> None:
    """Writes against unknown rows raise NotFound."""
    with pytest.raises(NotFoundError):
        writer.create_person("dept-missing", "Ghost")
    with pytest.raises(NotFoundError):
        writer.create_department(directory.missing_org, "Ghost Dept")
    with pytest.raises(NotFoundError):
        writer.set_custom_fields(EntityType.PERSON, "person-missing", {})


def test_slugify() -> None:
    """Field keys are lowercase words joined by underscores."""
    assert slugify("Office Location") == "office_location"
    assert slugify("  Desk--Phone! ") == "desk_phone"
    assert slugify("???") == ""


@pytest.mark.parametrize(
    ("field_type", "options", "value"),
    [
        (FieldType.NUMBER, None, "42.5"),
        (FieldType.DATE, None, "2024-05-01"),
        (FieldType.SELECT, ["red", "blue"], "red"),
        (FieldType.MULTISELECT, ["red", "blue"], '["red", "blue"]'),
        (FieldType.URL, None, "https://example.com/team"),
        (FieldType.EMAIL, None, "team@example.com"),
        (FieldType.TEXT, None, "anything at all"),
    ],
)
def test_valid_custom_values(
    field_type: FieldType, options: list[str] | None, value: str
) -> None:
    """Well-formed values pass validation."""
    validate_custom_value("Field", field_type, options, value)


@pytest.mark.parametrize(
    ("field_type", "options", "value"),
    [
        (FieldType.NUMBER, None, "forty"),
        (FieldType.NUMBER, None, "nan"),
        (FieldType.DATE, None, "yesterday"),
        (FieldType.SELECT, ["red", "blue"], "green"),
        (FieldType.MULTISELECT, ["red", "blue"], '["red", "green"]'),
        (FieldType.MULTISELECT, None, "red"),
        (FieldType.MULTISELECT, None, '{"a": 1}'),
        (FieldType.URL, None, "not a url"),
        (FieldType.EMAIL, None, "team@example"),
    ],
)
def test_invalid_custom_values(
    field_type: FieldType, options: list[str] | None, value: str
) -> None:
    """Malformed values raise CustomFieldValueError."""
    with pytest.raises(CustomFieldValueError):
        validate_custom_value("Field", field_type, options, value)
