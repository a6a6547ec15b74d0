from pathlib import Path

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient
from setuptools import find_packages

from cloud.api.main import create_app
from leciona.cloudsync.remote import HttpDocumentStore
from leciona.cloudsync.sanitizer import sanitize_snapshot

HEADERS = {"X-User-ID": "teacher-1"}
URL = "/documents/users/teacher-1"


def test_put_resolves_server_timestamp() -> None:
    client = TestClient(create_app())

    resp = client.put(
        URL,
        json={"schools": [{"id": "s1"}], "updatedAt": {".sv": "timestamp"}},
        headers=HEADERS,
    )
    assert resp.status_code == 200
    assert resp.json()["version"] == 1

    body = client.get(URL, headers=HEADERS).json()
    assert body["exists"] is True
    assert body["hasPendingWrites"] is False
    assert set(body["data"]["updatedAt"]) == {"_seconds", "_nanoseconds"}

    document = sanitize_snapshot(body["data"])
    assert document.collections["schools"] == [{"id": "s1"}]


def test_missing_document_reports_absent() -> None:
    client = TestClient(create_app())
    body = client.get(URL, headers=HEADERS).json()
    assert body == {"exists": False, "data": None, "hasPendingWrites": False}
    assert client.delete(URL, headers=HEADERS).status_code == 404


def test_documents_are_private_to_their_owner() -> None:
    client = TestClient(create_app())

    resp = client.put(URL, json={}, headers={"X-User-ID": "someone-else"})
    assert resp.status_code == 403
    assert resp.json()["detail"]["error"] == "permission-denied"

    assert client.get(URL).status_code == 401
    assert client.get("/documents/admins/teacher-1", headers=HEADERS).status_code == 404


def test_listen_streams_snapshots() -> None:
    with TestClient(create_app()) as client:
        with client.websocket_connect(f"{URL}/listen", headers=HEADERS) as ws:
            first = HttpDocumentStore.parse_frame(ws.receive_text())
            assert first is not None and first.exists is False

            client.put(URL, json={"logs": [{"id": "l1"}]}, headers=HEADERS)
            update = HttpDocumentStore.parse_frame(ws.receive_text())
            assert update is not None and update.exists is True
            assert update.data["logs"] == [{"id": "l1"}]

            assert client.delete(URL, headers=HEADERS).status_code == 204
            deleted = ws.receive_json()
            assert deleted["exists"] is False


def test_listen_rejects_other_accounts() -> None:
    client = TestClient(create_app())
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"{URL}/listen", headers={"X-User-ID": "someone-else"}) as ws:
            ws.receive_json()


def test_reference_service_is_packaged() -> None:
    root = Path(__file__).resolve().parents[1]
    packages = find_packages(root, include=["leciona*", "cloud*"])
    assert {"cloud", "cloud.api", "leciona", "leciona.cloudsync"} <= set(packages)
