"""Pytest configuration and fixtures."""

import sys
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from fastapi.testclient import TestClient

from orgdir.access import AccessGate, SqliteOrganizations
from orgdir.app import create_app
from orgdir.config import Settings
from orgdir.db import Database
from orgdir.indexing.maintenance import IndexMaintenance
from orgdir.indexing.writer import DirectoryWriter
from orgdir.search.analytics import SearchAnalytics
from orgdir.search.executor import RankedSearchExecutor
from orgdir.search.fallback import DegradationController
from orgdir.search.service import SearchService


@dataclass(frozen=True)
class Directory:
    """Identifiers of the seeded test data."""

    private_org: str
    public_org: str
    missing_org: str
    owner: str
    viewer: str
    admin: str
    no_role: str
    outsider: str
    superuser: str
    engineering: str
    hr: str
    john: str
    jane: str
    public_dept: str
    pat: str


def seed_directory(database: Database, writer: DirectoryWriter) -> Directory:
    """Populate a private "Test Org" and a public organization."""
    with database.transaction() as conn:
        conn.executemany(
            "INSERT INTO users (id, email, name, role) VALUES (?, ?, ?, ?)",
            [
                ("user-owner", "owner@example.com", "Olive Owner", "user"),
                ("user-viewer", "viewer@example.com", "Vic Viewer", "user"),
                ("user-admin", "admin@example.com", "Ada Admin", "user"),
                ("user-norole", "norole@example.com", "Nora Norole", "user"),
                ("user-outsider", "outsider@example.com", "Otto Outsider", "user"),
                ("user-super", "super@example.com", "Sue Super", "superuser"),
            ],
        )
        conn.executemany(
            "INSERT INTO organizations (id, name, created_by_id, is_public) VALUES (?, ?, ?, ?)",
            [
                ("org-private", "Test Org", "user-owner", 0),
                ("org-public", "Open Org", "user-owner", 1),
            ],
        )
        conn.executemany(
            "INSERT INTO organization_members (id, organization_id, user_id, role) VALUES (?, ?, ?, ?)",
            [
                ("m-1", "org-private", "user-viewer", "viewer"),
                ("m-2", "org-private", "user-admin", "admin"),
                ("m-3", "org-private", "user-norole", None),
            ],
        )

    engineering = writer.create_department(
        "org-private", "Engineering Department", "Software development team"
    )
    hr = writer.create_department("org-private", "Human Resources", "People operations")
    john = writer.create_person(
        engineering,
        "John Doe",
        title="Senior Software Engineer",
        email="john@example.com",
        phone="555-0100",
    )
    jane = writer.create_person(
        hr,
        "Jane Smith",
        title="HR Manager",
        email="jane@example.com",
        is_starred=True,
    )
    public_dept = writer.create_department(
        "org-public", "Public Relations", "Media and communications"
    )
    pat = writer.create_person(public_dept, "Pat Public", title="Spokesperson")

    return Directory(
        private_org="org-private",
        public_org="org-public",
        missing_org="org-missing",
        owner="user-owner",
        viewer="user-viewer",
        admin="user-admin",
        no_role="user-norole",
        outsider="user-outsider",
        superuser="user-super",
        engineering=engineering,
        hr=hr,
        john=john,
        jane=jane,
        public_dept=public_dept,
        pat=pat,
    )


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    """Path of a fresh database file."""
    return str(tmp_path / "orgdir.db")


@pytest.fixture
def database(db_path: str) -> Database:
    """Initialized, empty directory database."""
    db = Database(db_path)
    db.initialize()
    return db


@pytest.fixture
def writer(database: Database) -> DirectoryWriter:
    """Index-maintaining writer."""
    return DirectoryWriter(database)


@pytest.fixture
def directory(database: Database, writer: DirectoryWriter) -> Directory:
    """Seeded organizations, members, departments, and people."""
    return seed_directory(database, writer)


@pytest.fixture
def gate(database: Database) -> AccessGate:
    """Access gate over the test database."""
    organizations = SqliteOrganizations(database)
    return AccessGate(organizations, organizations)


@pytest.fixture
def maintenance(database: Database) -> IndexMaintenance:
    """Index maintenance over the test database."""
    return IndexMaintenance(database)


@pytest.fixture
def service(database: Database, gate: AccessGate) -> SearchService:
    """Search service with every fallback tier enabled."""
    return SearchService(
        database,
        gate,
        DegradationController(RankedSearchExecutor()),
        analytics=SearchAnalytics(database),
    )


@pytest.fixture
def settings(db_path: str) -> Settings:
    """Create test settings."""
    return Settings(
        host="127.0.0.1",
        port=8000,
        debug=True,
        database_path=db_path,
        maintenance_interval_seconds=0,
    )


@pytest.fixture
def client(settings: Settings, directory: Directory) -> Iterator[TestClient]:
    """Create test client with configured app over the seeded database."""
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client
