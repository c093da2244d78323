"""HTTP façade routes, with the store and source injected."""

import pytest
from fastapi.testclient import TestClient

from conftest import FakeSource, edge
from depviewer.api.query import create_app
from depviewer.records import StatsRecord
from depviewer.settings import Settings


@pytest.fixture
def seeded(store, a1, a2, b1):
    store.upsert_nodes([a1, a2, b1])
    store.update_stats([StatsRecord(id="b1", size=77, coverage=88)])
    store.upsert_edges([edge(a1, b1), edge(a2, b1)])
    return store


def _client(store, source=None):
    settings = Settings(SF_TARGET_ORG="")
    return TestClient(create_app(settings, store=store, source=source))


def test_health(seeded):
    assert _client(seeded).get("/health").json() == {"status": "ok"}


def test_all_dependencies(seeded):
    body = _client(seeded).get("/api/dependencies").json()
    assert {e["id"] for e in body} == {"a1-b1", "a2-b1"}
    assert all(e["refMetadataComponentCoverage"] == 88 for e in body)
    assert all(e["refMetadataComponentName"] == "Billing" for e in body)
    assert {e["metadataComponentId"] for e in body} == {"a1", "a2"}


def test_component_search(seeded):
    body = _client(seeded).get("/api/components", params={"q": "account"}).json()
    assert {c["id"] for c in body} == {"a1", "a2"}


def test_dependencies_for_id_local_without_org(seeded):
    body = _client(seeded).get("/api/dependencies/a1").json()
    assert [e["id"] for e in body] == ["a1-b1"]


def test_dependencies_for_id_live_with_org(seeded, a1, b1):
    source = FakeSource(edges=[edge(b1, a1)])
    body = _client(seeded, source).get("/api/dependencies/a1").json()
    assert [e["id"] for e in body] == ["b1-a1"]
    assert body[0]["metadataComponentSize"] == 77


def test_dependencies_for_id_forced_local(seeded, a1, b1):
    source = FakeSource(edges=[edge(b1, a1)])
    body = _client(seeded, source).get("/api/dependencies/a1", params={"source": "local"}).json()
    assert [e["id"] for e in body] == ["a1-b1"]
    assert source.calls == []


def test_live_failure_maps_to_bad_gateway(seeded):
    source = FakeSource(failing={"edges-by-id"})
    response = _client(seeded, source).get("/api/dependencies/a1")
    assert response.status_code == 502


def test_open_requires_org_and_id(seeded):
    assert _client(seeded).post("/api/open", json={"id": "a1"}).status_code == 400

    source = FakeSource()
    client = _client(seeded, source)
    assert client.post("/api/open", json={}).status_code == 400
    assert client.post("/api/open", json={"id": "a1"}).json() == {"success": True}
    assert source.opened == ["a1"]
