"""HTTP surface tests."""

from collections.abc import Iterator

import pytest
from conftest import Directory
from fastapi.testclient import TestClient

from orgdir.app import create_app
from orgdir.config import Settings

SEARCH = "/api/v1/organizations/{org}/search"


def _get(client: TestClient, path: str, user: str | None = None, **params: object):
    headers = {"X-User-ID": user} if user else {}
    return client.get(path, params=params, headers=headers)


def test_search_envelope(client: TestClient, directory: Directory) -> None:
    """The response carries camelCase envelope keys and results."""
    response = _get(
        client, SEARCH.format(org=directory.private_org), directory.viewer, q="Eng"
    )
    assert response.status_code == 200
    data = response.json()
    assert data["query"] == "Eng"
    assert data["total"] == 2
    assert data["pagination"] == {"limit": 20, "offset": 0, "hasMore": False}
    assert "queryTimeMs" in data["performance"]
    assert "usedFallback" not in data
    types = {r["type"] for r in data["results"]}
    assert types == {"department", "person"}
    assert all("<mark>" in r["highlight"] for r in data["results"])


def test_search_type_filter(client: TestClient, directory: Directory) -> None:
    """type=people returns only people."""
    response = _get(
        client,
        SEARCH.format(org=directory.private_org),
        directory.viewer,
        q="Eng",
        type="people",
    )
    assert [r["id"] for r in response.json()["results"]] == [directory.john]


def test_search_starred_filter(client: TestClient, directory: Directory) -> None:
    """starred=true keeps starred people only."""
    response = _get(
        client,
        SEARCH.format(org=directory.private_org),
        directory.viewer,
        q="example",
        starred="true",
    )
    assert [r["id"] for r in response.json()["results"]] == [directory.jane]


def test_search_fallback_flag(client: TestClient, directory: Directory) -> None:
    """Fuzzy answers are flagged with a warning."""
    response = _get(
        client, SEARCH.format(org=directory.private_org), directory.viewer, q="Softwre"
    )
    data = response.json()
    assert data["usedFallback"] is True
    assert data["warnings"]


def test_search_limit_is_capped(client: TestClient, directory: Directory) -> None:
    """Page size never exceeds the configured maximum."""
    response = _get(
        client,
        SEARCH.format(org=directory.private_org),
        directory.viewer,
        q="Eng",
        limit=1000,
    )
    assert response.json()["pagination"]["limit"] == 100


def test_search_rejects_bad_parameters(client: TestClient, directory: Directory) -> None:
    """Out-of-range parameters fail request validation."""
    path = SEARCH.format(org=directory.private_org)
    assert _get(client, path, directory.viewer, q="x", limit=0).status_code == 422
    assert _get(client, path, directory.viewer, q="x", type="teams").status_code == 422


def test_invalid_query_is_not_an_http_error(
    client: TestClient, directory: Directory
) -> None:
    """Malformed queries return 200 with a warning."""
    response = _get(
        client, SEARCH.format(org=directory.private_org), directory.viewer, q='"Eng'
    )
    assert response.status_code == 200
    assert response.json()["total"] == 0
    assert response.json()["warnings"]


def test_access_errors_map_to_status_codes(
    client: TestClient, directory: Directory
) -> None:
    """Anonymous private access is 403; invisible orgs are 404."""
    private = SEARCH.format(org=directory.private_org)
    assert _get(client, private, q="Eng").status_code == 403
    assert _get(client, private, directory.outsider, q="Eng").status_code == 404
    assert (
        _get(client, SEARCH.format(org=directory.missing_org), q="Eng").status_code
        == 404
    )


def test_public_org_is_searchable_anonymously(
    client: TestClient, directory: Directory
) -> None:
    """No caller id is needed for public organizations."""
    response = _get(client, SEARCH.format(org=directory.public_org), q="Pat")
    assert response.status_code == 200
    assert [r["id"] for r in response.json()["results"]] == [directory.pat]


def test_autocomplete_route(client: TestClient, directory: Directory) -> None:
    """Suggestions are type-tagged names."""
    response = _get(
        client,
        SEARCH.format(org=directory.private_org) + "/autocomplete",
        directory.viewer,
        q="Eng",
    )
    assert response.status_code == 200
    assert response.json()["suggestions"][0] == {
        "type": "department",
        "text": "Engineering Department",
    }


def test_analytics_requires_admin(client: TestClient, directory: Directory) -> None:
    """Only admins may read search analytics."""
    path = SEARCH.format(org=directory.private_org)
    _get(client, path, directory.viewer, q="Eng")

    assert _get(client, path + "/analytics", directory.viewer).status_code == 403
    assert _get(client, path + "/analytics").status_code == 403

    response = _get(client, path + "/analytics", directory.admin)
    assert response.status_code == 200
    data = response.json()
    assert data["totalSearches"] == 1
    assert data["topQueries"] == [{"query": "Eng", "count": 1}]


def test_maintenance_health_and_rebuild(client: TestClient, directory: Directory) -> None:
    """Maintenance endpoints report and repair index state."""
    response = client.get("/api/v1/maintenance/health")
    assert response.status_code == 200
    data = response.json()
    assert data["healthy"] is True
    assert all(t["inSync"] for t in data["tables"])
    assert "lastChecked" in data

    response = client.post("/api/v1/maintenance/rebuild/customFields")
    assert response.status_code == 200
    assert response.json()["healthy"] is True

    assert client.post("/api/v1/maintenance/rebuild/everything").status_code == 422
    assert client.post("/api/v1/maintenance/optimize").status_code == 204

    stats = client.get("/api/v1/maintenance/statistics").json()
    assert stats["departments"] == 3
    assert "estimatedSizeBytes" in stats


@pytest.fixture
def keyed_client(settings: Settings, directory: Directory) -> Iterator[TestClient]:
    """Client for an app that requires an operator key."""
    app = create_app(settings.model_copy(update={"key": "s3cret"}))
    with TestClient(app) as test_client:
        yield test_client


def test_maintenance_requires_api_key(
    keyed_client: TestClient, directory: Directory
) -> None:
    """Operator endpoints need the key; search does not."""
    assert keyed_client.get("/api/v1/maintenance/health").status_code == 401
    assert (
        keyed_client.get(
            "/api/v1/maintenance/health", headers={"X-API-Key": "wrong"}
        ).status_code
        == 401
    )
    assert (
        keyed_client.get(
            "/api/v1/maintenance/health", headers={"X-API-Key": "s3cret"}
        ).status_code
        == 200
    )
    response = _get(
        keyed_client, SEARCH.format(org=directory.public_org), q="Pat"
    )
    assert response.status_code == 200


def test_startup_repairs_drifted_indexes(
    settings: Settings, directory: Directory
) -> None:
    """The app rebuilds out-of-sync indexes when it starts."""
    from orgdir.db import Database

    database = Database(settings.database_path)
    with database.transaction() as conn:
        conn.execute("DELETE FROM people_fts")

    with TestClient(create_app(settings)) as test_client:
        data = test_client.get("/api/v1/maintenance/health").json()
    assert data["healthy"] is True


def test_request_id_is_echoed(client: TestClient, directory: Directory) -> None:
    """Responses carry the caller's request id, or a generated one."""
    path = SEARCH.format(org=directory.public_org)
    response = client.get(path, params={"q": "Pat"}, headers={"X-Request-ID": "req-1"})
    assert response.headers["X-Request-ID"] == "req-1"

    generated = client.get(path, params={"q": "Pat"}).headers["X-Request-ID"]
    assert len(generated) == 32


def test_app_state_holds_route_collaborators(client: TestClient) -> None:
    """The factory wires exactly what the routes and lifespan read."""
    state = client.app.state
    for name in (
        "settings",
        "database",
        "access_gate",
        "search_analytics",
        "search_service",
        "index_maintenance",
        "maintenance_scheduler",
    ):
        assert hasattr(state, name), name
    assert not hasattr(state, "directory_writer")
