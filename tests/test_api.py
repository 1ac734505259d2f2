"""Tests for the HTTP API, run against a fresh project manager per test."""

import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from statechart_backend import main
from statechart_backend.project_manager import ProjectManager
from statechart_backend.renderer import KrokiRenderer
from statechart_backend.websocket_manager import WebSocketManager


@pytest.fixture
def manager(monkeypatch):
    manager = ProjectManager()
    monkeypatch.setattr(main, "project_manager", manager)
    return manager


@pytest.fixture
def client(manager):
    return TestClient(main.app)


@pytest.fixture
def project_id(client):
    response = client.post("/api/projects", json={"type": "TypeA", "revision": "R1"})
    return response.json()["project"]["id"]


def use_kroki(monkeypatch, handler):
    renderer = KrokiRenderer(base_url="http://kroki.test", transport=httpx.MockTransport(handler))
    monkeypatch.setattr(main, "renderer", renderer)
    return renderer


class TestProjects:

    def test_health(self, client):
        assert client.get("/api/health").json()["status"] == "ok"

    def test_create_and_list(self, client, project_id):
        data = client.get("/api/projects").json()

        assert data["revisions"] == ["R1"]
        assert data["groups"][0]["revision"] == "R1"
        assert data["groups"][0]["projects"][0]["id"] == project_id
        assert data["state"]["activeProjectId"] == project_id

    def test_duplicate_is_conflict(self, client, manager, project_id):
        response = client.post("/api/projects", json={"type": "TypeA", "revision": "R1"})

        assert response.status_code == 409
        assert response.json()["detail"] == 'An instrument with type "TypeA" and revision "R1" already exists.'
        assert len(manager.projects) == 1

    def test_blank_type_is_bad_request(self, client):
        assert client.post("/api/projects", json={"type": " ", "revision": "R1"}).status_code == 400

    def test_unknown_project(self, client):
        assert client.get("/api/projects/nope").status_code == 404
        assert client.get("/api/projects/nope/validate").status_code == 404
        assert client.post("/api/projects/nope/topics", json={"id": "Other"}).status_code == 404

    def test_export_then_import_elsewhere(self, client, manager, project_id, monkeypatch):
        text = client.get(f"/api/projects/{project_id}/export").text

        assert client.post("/api/projects/import", json={"json_text": text}).status_code == 409

        monkeypatch.setattr(main, "project_manager", ProjectManager())
        response = client.post("/api/projects/import", json={"json_text": text})
        assert response.status_code == 200
        assert response.json()["project"]["instrument"]["type"] == "TypeA"


class TestEditing:

    def test_build_a_valid_topic(self, client, project_id):
        base = f"/api/projects/{project_id}/topics/Main"

        assert client.post(f"{base}/states", json={"id": "Submitted"}).status_code == 200
        response = client.post(f"{base}/transitions", json={
            "from": "NewInstrument", "to": "Submitted", "message_type": "Submit", "flow_type": "B2B"
        })
        assert response.json()["transition"]["kind"] == "startInstrument"
        client.post(f"{base}/transitions", json={"from": "Submitted", "to": "TopicEnd"})

        data = client.get(f"/api/projects/{project_id}/validate").json()
        assert data["issues"] == []
        assert data["blocking"] is False

    def test_system_node_cannot_be_deleted(self, client, project_id):
        response = client.delete(f"/api/projects/{project_id}/topics/Main/states/NewInstrument")
        assert response.status_code == 400

    def test_system_node_route(self, client, project_id):
        base = f"/api/projects/{project_id}/topics/Main/system-nodes"
        assert client.post(f"{base}/Fork").json()["state"]["id"] == "Fork"
        assert client.post(f"{base}/NewInstrument").status_code == 400

    def test_undo_redo(self, client, project_id):
        assert client.post("/api/undo").json()["success"] is True
        assert client.get(f"/api/projects/{project_id}").status_code == 404
        assert client.post("/api/redo").json()["success"] is True
        assert client.post("/api/redo").json() == {"success": False, "message": "Nothing to redo"}


class TestValidation:

    def test_new_project_is_blocked(self, client, project_id):
        data = client.get(f"/api/projects/{project_id}/validate").json()

        assert data["blocking"] is True
        assert data["summary"]["valid"] is False
        assert {
            "level": "error",
            "message": 'Topic "Main" must have at least one transition from NewInstrument',
            "topicId": "Main",
        } in data["issues"]

    def test_topic_filter(self, client, project_id):
        client.post(f"/api/projects/{project_id}/topics", json={"id": "Settlement"})
        data = client.get(f"/api/projects/{project_id}/validate", params={"topic_id": "Settlement"}).json()

        assert data["issues"]
        assert all(issue.get("topicId") == "Settlement" for issue in data["issues"])


class TestFieldConfig:

    def test_invalid_name(self, client, manager):
        response = client.post("/api/field-config/values", json={"field": "messageTypes", "value": "Not Valid"})

        assert response.status_code == 400
        assert response.json()["detail"].startswith("Invalid name: must follow Java enum convention")
        assert manager.field_config.message_types == []

    def test_add_remove(self, client):
        response = client.post("/api/field-config/values", json={"field": "flowTypes", "value": "B2B"})
        assert response.json()["values"] == ["B2B"]

        response = client.request("DELETE", "/api/field-config/values", json={"field": "flowTypes", "value": "B2B"})
        assert response.json()["values"] == []
        assert client.get("/api/field-config").json()["fieldConfig"]["flowTypes"] == []


class TestPumlAndRender:

    def test_puml(self, client, project_id):
        puml = client.get(f"/api/projects/{project_id}/puml", params={"topic_id": "Main"}).json()["puml"]
        assert puml.startswith("@startuml")
        assert client.get(f"/api/projects/{project_id}/puml", params={"topic_id": "Nope"}).status_code == 404

    def test_render(self, client, project_id, monkeypatch):
        use_kroki(monkeypatch, lambda request: httpx.Response(200, text="<svg/>"))

        first = client.post(f"/api/projects/{project_id}/render").json()
        second = client.post(f"/api/projects/{project_id}/render").json()

        assert first == {"success": True, "svg": "<svg/>", "fromCache": False}
        assert second["fromCache"] is True

    def test_render_error_is_bad_gateway(self, client, project_id, monkeypatch):
        use_kroki(monkeypatch, lambda request: httpx.Response(400, text="Syntax Error?"))

        response = client.post(f"/api/projects/{project_id}/render")

        assert response.status_code == 502
        assert response.json()["detail"] == {
            "message": "Kroki error: 400 - Syntax Error?",
            "status": 400,
            "body": "Syntax Error?",
        }

    def test_export_zip(self, client, project_id):
        response = client.get("/api/export")
        assert response.headers["content-type"] == "application/zip"
        assert response.content[:2] == b"PK"


class TestWebSocket:

    def test_ping_pong(self, client):
        with client.websocket_connect("/ws") as websocket:
            websocket.send_text("ping")
            assert websocket.receive_json() == {"type": "pong"}

    def test_project_updated_reaches_clients(self):
        sent = []

        class FakeSocket:
            async def accept(self):
                pass

            async def send_text(self, text):
                sent.append(json.loads(text))

        async def scenario():
            manager = WebSocketManager()
            await manager.connect(FakeSocket())
            await manager.notify_project_updated("project-1")
            return manager.connection_count

        assert asyncio.run(scenario()) == 1
        assert sent == [{"type": "project_updated", "project_id": "project-1"}]
