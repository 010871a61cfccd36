# tests/test_api.py
"""
Integration Tests for the kot-archive HTTP API.

Focus
-----
These tests verify the HTTP contract: camelCase bodies, status codes and the
structured error envelopes. Each test installs a fresh service container
backed by a `MemoryStore`, so nothing touches disk.

Scenarios
---------
1. **Health Check**: Service is up and reports its version.
2. **Browsing**: Listing with filters, summary counts, single-archive load.
3. **Mutations**: Delete, bulk delete, import (single and bulk), prune.
4. **Error Handling**: 404 for unknown ids, 400 for rejected imports,
   422 for invalid query values.
"""

from __future__ import annotations

from collections.abc import Generator

import pytest
from conftest import make_log
from fastapi.testclient import TestClient

from kotarchive.api.app import create_app
from kotarchive.api.dependencies import ArchiveServices
from kotarchive.core.settings import Settings
from kotarchive.core.storage.memory import MemoryStore
from kotarchive.services.archive_store import ArchiveStore


@pytest.fixture  # type: ignore[misc]
def store() -> ArchiveStore:
    return ArchiveStore(MemoryStore())


@pytest.fixture  # type: ignore[misc]
def client(store: ArchiveStore) -> Generator[TestClient, None, None]:
    """Fresh app per test with an in-memory store installed before startup."""
    ArchiveServices.install(
        ArchiveServices(store=store, settings=Settings(analytics_cache_seconds=300))
    )
    app = create_app()
    with TestClient(app) as c:
        yield c
    ArchiveServices.install(None)


def test_health_check(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "version" in data


def test_list_with_filters_and_summary(client: TestClient, store: ArchiveStore) -> None:
    store.archive("gameLog", make_log(3), "Friday")
    store.archive("aidt", {"rounds": []}, "Bot")

    data = client.get("/archives").json()
    assert {a["name"] for a in data["archives"]} == {"Friday", "Bot"}
    assert data["summary"]["total"] == 2
    assert data["summary"]["hasFilters"] is False

    data = client.get("/archives", params={"type": "aidt"}).json()
    assert [a["name"] for a in data["archives"]] == ["Bot"]
    assert data["archives"][0]["sizeMetric"] == 0
    assert data["summary"] == {
        "total": 2,
        "filtered": 1,
        "selected": 0,
        "hasFilters": True,
        "filterCount": 1,
    }


def test_list_rejects_unknown_type(client: TestClient) -> None:
    response = client.get("/archives", params={"type": "chess"})
    assert response.status_code == 422


def test_get_archive_and_404(client: TestClient, store: ArchiveStore) -> None:
    record = store.archive("gameLog", make_log(2), "Loaded")

    response = client.get(f"/archives/{record.id}")
    assert response.status_code == 200
    body = response.json()
    assert body["meta"]["name"] == "Loaded"
    assert [e["message"] for e in body["data"]] == ["Entry 0", "Entry 1"]

    missing = client.get("/archives/nope")
    assert missing.status_code == 404
    assert missing.json() == {
        "error": "Not Found",
        "detail": "Archive nope not found",
        "id": "nope",
    }


def test_delete_archive(client: TestClient, store: ArchiveStore) -> None:
    record = store.archive("gameLog", make_log(1))

    response = client.delete(f"/archives/{record.id}")
    assert response.status_code == 200
    assert response.json() == {"deleted": record.id}
    assert client.delete(f"/archives/{record.id}").status_code == 404


def test_bulk_delete_reports_unknown_ids(client: TestClient, store: ArchiveStore) -> None:
    first = store.archive("gameLog", make_log(1))
    second = store.archive("aidt", {"rounds": []})

    response = client.post(
        "/archives/bulk-delete", json={"ids": [first.id, "ghost", second.id]}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["successCount"] == 2
    assert [e["id"] for e in data["errors"]] == ["ghost"]
    assert store.list_all() == []


def test_bulk_delete_requires_ids(client: TestClient) -> None:
    assert client.post("/archives/bulk-delete", json={"ids": []}).status_code == 422


def test_import_single_and_rejected(client: TestClient, store: ArchiveStore) -> None:
    donor = ArchiveStore(MemoryStore())
    envelope = donor.load(donor.archive("gameLog", make_log(2), "Donated")).to_wire()

    response = client.post("/archives/import", json=envelope)
    assert response.status_code == 201
    assert response.json() == {
        "id": envelope["meta"]["id"],
        "type": "gameLog",
        "name": "Donated",
    }
    assert [r.name for r in store.list_all()] == ["Donated"]

    rejected = client.post("/archives/import", json={"meta": {"type": "gameLog"}})
    assert rejected.status_code == 400
    assert "meta" in rejected.json()["detail"]
    assert len(store.list_all()) == 1


def test_bulk_export_then_import(client: TestClient, store: ArchiveStore) -> None:
    first = store.archive("gameLog", make_log(2), "One")
    second = store.archive("aidt", {"rounds": []}, "Two")

    exported = client.post("/archives/export", json={"ids": [first.id, second.id, "ghost"]})
    assert exported.status_code == 200
    bundle = exported.json()
    assert bundle["exportType"] == "bulk"
    assert len(bundle["archives"]) == 2
    assert bundle["result"]["successCount"] == 2

    for record in store.list_all():
        store.delete(record)
    imported = client.post("/archives/import", json=bundle)
    assert imported.status_code == 201
    assert imported.json()["successCount"] == 2
    assert {r.name for r in store.list_all()} == {"One", "Two"}


def test_prune_with_overrides(client: TestClient, store: ArchiveStore) -> None:
    for _ in range(3):
        store.auto_archive("aidt", {"rounds": []})

    response = client.post("/archives/prune", json={"maxCountPerType": 1})
    assert response.status_code == 200
    data = response.json()
    assert len(data["aidt"]["removedExcess"]) == 2
    assert data["aidt"]["remaining"] == 1
    assert data["gameLog"]["remaining"] == 0


def test_prune_without_body_uses_settings(client: TestClient) -> None:
    response = client.post("/archives/prune")
    assert response.status_code == 200
    assert response.json()["gameLog"]["removedExpired"] == []


def test_analytics_and_cache_invalidation(client: TestClient, store: ArchiveStore) -> None:
    store.archive("gameLog", make_log(2), "Game")
    first = client.get("/analytics").json()
    assert first["overview"]["totalGames"] == 1

    record = store.archive("gameLog", make_log(2), "Another")
    assert client.get("/analytics").json()["overview"]["totalGames"] == 1
    assert client.get("/analytics", params={"force": True}).json()["overview"]["totalGames"] == 2

    client.delete(f"/archives/{record.id}")
    assert client.get("/analytics").json()["overview"]["totalGames"] == 1


def test_storage_stats(client: TestClient, store: ArchiveStore) -> None:
    store.archive("gameLog", make_log(2))
    data = client.get("/archives/stats").json()
    assert data["archiveCount"] == 2
    assert data["totalSize"] > 0
