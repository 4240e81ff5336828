from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient

from api.server import APIServerConfig, create_app

API_KEY = "test-key"
HEADERS = {"X-API-Key": API_KEY}


@pytest.fixture
def client(coordinator):
    app = create_app(
        APIServerConfig(coordinator=coordinator, api_key=API_KEY, cors_origins=[], app_version="test")
    )
    with TestClient(app) as test_client:
        yield test_client


def _upload(client: TestClient, archive: str, *filenames: str):
    return client.post(
        f"/v1/archives/{archive}/records",
        json={"files": [{"filename": name} for name in filenames]},
        headers=HEADERS,
    )


def test_health_and_version_are_public(client):
    health = client.get("/v1/health")
    assert health.status_code == 200
    body = health.json()
    assert body["ok"] is True
    assert body["version"] == "test"
    assert body["savepoints"] == 0

    version = client.get("/v1/version")
    assert version.status_code == 200
    assert version.json() == {"version": 0}


def test_mutations_require_api_key(client):
    response = client.post("/v1/archives", json={"name": "demo"})
    assert response.status_code == 401
    assert "error" in response.json()

    wrong = client.post("/v1/archives", json={"name": "demo"}, headers={"X-API-Key": "nope"})
    assert wrong.status_code == 401


def test_unconfigured_key_rejects_everything(coordinator, caplog):
    with caplog.at_level(logging.WARNING, logger="archivedash.api"):
        app = create_app(APIServerConfig(coordinator=coordinator, api_key=None, cors_origins=[]))
    assert any("API key is not configured" in message for message in caplog.messages)
    with TestClient(app) as test_client:
        response = test_client.get("/v1/archives", headers=HEADERS)
    assert response.status_code == 401


def test_create_archive_redirects_to_archive_view(client):
    response = client.post("/v1/archives", json={"name": "demo"}, headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["applied"] is True
    assert body["redirect"] == "/dashboard/demo"
    assert client.get("/v1/archives", headers=HEADERS).json() == {"results": ["demo"]}


def test_blank_archive_name_is_rejected(client):
    response = client.post("/v1/archives", json={"name": "\t\n"}, headers=HEADERS)

    assert response.status_code == 400
    assert response.json()["redirect"] == "/dashboard"


def test_upload_update_and_undo_flow(client):
    uploaded = _upload(client, "demo", "a.txt", "b.txt")
    assert uploaded.status_code == 200
    v1 = uploaded.json()["version"]
    assert len(uploaded.json()["record_ids"]) == 2

    detail = client.get("/v1/archives/demo", headers=HEADERS).json()
    record = next(item for item in detail["files"] if item["filename"] == "a.txt")
    assert record["description"] == "a.txt"
    assert record["url"] == "demo/a.txt"

    patched = client.patch(f"/v1/records/{record['id']}", json={"hidden": True}, headers=HEADERS)
    assert patched.status_code == 200
    assert patched.json()["version"] > v1
    assert patched.json()["redirect"] == "/dashboard/demo"

    manifest = client.get("/v1/manifest")
    assert manifest.status_code == 200
    assert "a.txt" not in manifest.text
    assert "b.txt" in manifest.text

    undone = client.post("/v1/undo", headers=HEADERS)
    assert undone.status_code == 200
    assert undone.json() == {"ok": True, "version": v1, "remaining": 1}
    assert client.get("/v1/version").json() == {"version": v1}
    assert "a.txt" in client.get("/v1/manifest").text


def test_patch_without_hidden_leaves_flag_alone(client, coordinator):
    _upload(client, "demo", "a.txt")
    record_id = coordinator.store.find_source("demo", "a.txt").id
    client.patch(f"/v1/records/{record_id}", json={"hidden": True}, headers=HEADERS)

    response = client.patch(f"/v1/records/{record_id}", json={"tags": "kept"}, headers=HEADERS)

    assert response.status_code == 200
    record = coordinator.get_record(record_id)
    assert record.hidden is True
    assert record.tags == "kept"

    cleared = client.patch(f"/v1/records/{record_id}", json={"hidden": None}, headers=HEADERS)
    assert cleared.status_code == 200
    assert coordinator.get_record(record_id).hidden is None


def test_empty_patch_is_not_applied(client, coordinator):
    _upload(client, "demo", "a.txt")
    record_id = coordinator.store.find_source("demo", "a.txt").id
    version = client.get("/v1/version").json()["version"]

    response = client.patch(f"/v1/records/{record_id}", json={"description": "  "}, headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["applied"] is False
    assert response.json()["version"] == version
    assert len(coordinator.savepoints) == 1


def test_unknown_record_and_archive_return_404(client):
    missing_record = client.patch("/v1/records/999", json={"tags": "x"}, headers=HEADERS)
    assert missing_record.status_code == 404

    missing_archive = client.get("/v1/archives/nowhere", headers=HEADERS)
    assert missing_archive.status_code == 404
    assert missing_archive.json()["redirect"] == "/dashboard"


def test_undo_with_empty_history_returns_conflict(client):
    response = client.post("/v1/undo", headers=HEADERS)

    assert response.status_code == 409
    assert response.json()["redirect"] == "/dashboard"


def test_invalid_payload_returns_bad_request(client):
    response = client.patch("/v1/records/1", json={"hidden": "sometimes"}, headers=HEADERS)

    assert response.status_code == 400
    assert response.json()["error"] == "invalid parameters"


def test_savepoints_listing(client):
    _upload(client, "demo", "a.txt")
    _upload(client, "demo", "b.txt")

    body = client.get("/v1/savepoints", headers=HEADERS).json()

    assert [entry["name"] for entry in body["results"]] == ["sp0.db", "sp1.db"]
    assert body["max_entries"] == 10
    events = [entry["event"] for entry in body["history"]]
    assert events.count("savepoint_created") == 2
