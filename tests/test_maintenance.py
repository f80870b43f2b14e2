"""Index integrity, rebuild, optimize, and statistics tests."""

from pathlib import Path

from conftest import Directory

from orgdir.db import Database
from orgdir.indexing.maintenance import IndexMaintenance
from orgdir.indexing.schemas import FieldType, RebuildScope
from orgdir.indexing.writer import DirectoryWriter
from orgdir.search.schemas import EntityType


def _counts(maintenance: IndexMaintenance) -> dict[str, int]:
    return {t.table: t.actual for t in maintenance.check_integrity().tables}


def _drop_index_row(database: Database, table: str, source: str) -> None:
    with database.transaction() as conn:
        conn.execute(
            f"DELETE FROM {table} WHERE rowid = (SELECT rowid FROM {source} LIMIT 1)"
        )


def test_report_lists_every_index(
    maintenance: IndexMaintenance, directory: Directory
) -> None:
    """Each index table appears with expected and actual counts."""
    health = maintenance.check_integrity()
    assert {t.table for t in health.tables} == {
        "departments_fts",
        "departments_trigram",
        "people_fts",
        "people_trigram",
        "custom_fields_fts",
    }
    people = next(t for t in health.tables if t.table == "people_fts")
    assert people.expected == people.actual == 3
    assert health.statistics.departments == 3
    assert health.statistics.people == 3


def test_drift_is_detected(
    maintenance: IndexMaintenance, database: Database, directory: Directory
) -> None:
    """A missing index row makes the report unhealthy."""
    _drop_index_row(database, "people_fts", "people")

    health = maintenance.check_integrity()
    assert not health.healthy
    people = next(t for t in health.tables if t.table == "people_fts")
    assert not people.in_sync
    assert any("people_fts" in issue for issue in health.issues)


def test_rebuild_restores_health(
    maintenance: IndexMaintenance, database: Database, directory: Directory
) -> None:
    """A scoped rebuild repairs its indexes."""
    _drop_index_row(database, "people_fts", "people")
    _drop_index_row(database, "departments_trigram", "departments")

    health = maintenance.rebuild(RebuildScope.PERSON)
    assert not health.healthy
    assert all(t.in_sync for t in health.tables if t.table.startswith("people"))

    health = maintenance.rebuild(RebuildScope.ALL)
    assert health.healthy
    assert all(t.expected == t.actual for t in health.tables)


def test_rebuild_is_idempotent(
    maintenance: IndexMaintenance, writer: DirectoryWriter, directory: Directory
) -> None:
    """Rebuilding twice leaves the same row counts as rebuilding once."""
    writer.define_custom_field(
        directory.private_org, EntityType.PERSON, "Badge", FieldType.TEXT
    )
    writer.set_custom_fields(EntityType.PERSON, directory.john, {"badge": "Quokka"})

    maintenance.rebuild(RebuildScope.ALL)
    once = _counts(maintenance)
    maintenance.rebuild(RebuildScope.ALL)
    assert _counts(maintenance) == once
    assert once["custom_fields_fts"] == 1


def test_custom_rebuild_matches_incremental_state(
    maintenance: IndexMaintenance,
    writer: DirectoryWriter,
    database: Database,
    directory: Directory,
) -> None:
    """Rebuilt custom-field rows equal the incrementally written ones."""
    writer.define_custom_field(
        directory.private_org, EntityType.PERSON, "Building", FieldType.TEXT, sort_order=2
    )
    writer.define_custom_field(
        directory.private_org, EntityType.PERSON, "Floor", FieldType.NUMBER, sort_order=1
    )
    writer.define_custom_field(
        directory.private_org,
        EntityType.PERSON,
        "Secret",
        FieldType.TEXT,
        is_searchable=False,
    )
    writer.set_custom_fields(
        EntityType.PERSON,
        directory.john,
        {"building": "Zephyr", "floor": 7, "secret": "hidden"},
    )
    writer.set_custom_fields(EntityType.PERSON, directory.jane, {"secret": "hidden"})

    def snapshot() -> list[tuple[str, str, str]]:
        with database.session() as conn:
            rows = conn.execute(
                "SELECT entity_type, entity_id, field_values FROM custom_fields_fts "
                "ORDER BY entity_id"
            ).fetchall()
        return [tuple(row) for row in rows]

    incremental = snapshot()
    assert incremental == [("person", directory.john, "7 Zephyr")]

    maintenance.rebuild(RebuildScope.CUSTOM_FIELDS)
    assert snapshot() == incremental


def test_optimize_keeps_results(
    maintenance: IndexMaintenance, directory: Directory
) -> None:
    """Optimize changes nothing observable."""
    before = _counts(maintenance)
    maintenance.optimize()
    assert _counts(maintenance) == before
    assert maintenance.check_integrity().healthy


def test_statistics_on_empty_indexes_recommend_rebuild(
    maintenance: IndexMaintenance,
) -> None:
    """Empty indexes produce a rebuild recommendation."""
    stats = maintenance.statistics()
    assert stats.departments == 0
    assert stats.people == 0
    assert any("rebuild" in r for r in stats.recommendations)


def test_statistics_report_sizes(
    maintenance: IndexMaintenance, directory: Directory
) -> None:
    """Populated indexes report a positive size and no rebuild advice."""
    stats = maintenance.statistics()
    assert stats.estimated_size_bytes > 0
    assert not any("rebuild" in r for r in stats.recommendations)


def test_scheduled_run_optimizes_healthy_indexes(
    maintenance: IndexMaintenance, directory: Directory
) -> None:
    """A healthy pass only compacts."""
    run = maintenance.run_scheduled()
    assert run.success
    assert run.action == "optimize"
    assert run.healthy


def test_scheduled_run_rebuilds_drifted_indexes(
    maintenance: IndexMaintenance, database: Database, directory: Directory
) -> None:
    """An unhealthy pass rebuilds everything."""
    _drop_index_row(database, "people_fts", "people")
    run = maintenance.run_scheduled()
    assert run.success
    assert run.action == "rebuild"
    assert run.healthy
    assert maintenance.check_integrity().healthy


def test_scheduled_run_reports_failure(tmp_path: Path) -> None:
    """Storage errors are reported, not raised."""
    broken = IndexMaintenance(Database(str(tmp_path / "missing" / "orgdir.db")))
    run = broken.run_scheduled()
    assert not run.success
    assert run.error
