"""Tests for app factory and role-based routing."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from devisly.api.factory import create_app
from devisly.infra.settings import Settings, set_settings


class TestPublicRole:
    """Tests for APP_ROLE=public."""

    def test_health_available(self):
        client = TestClient(create_app(role="public"))
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_tasks_not_mounted(self):
        client = TestClient(create_app(role="public"))
        assert client.get("/tasks/health").status_code == 404

    def test_internal_not_mounted(self):
        client = TestClient(create_app(role="public"))
        assert client.get("/internal/health").status_code == 404

    def test_process_task_not_mounted(self):
        """Message processing must NOT be reachable on the public service."""
        client = TestClient(create_app(role="public"))
        assert client.post("/tasks/messages/process", json={}).status_code == 404

    def test_webhook_mounted(self):
        client = TestClient(create_app(role="public"))
        # Invalid body is rejected by the route itself, so the route exists
        response = client.post(
            "/webhooks/unipile/messages",
            content=b"{",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400


class TestWorkerRole:
    """Tests for APP_ROLE=worker."""

    def test_health_available(self):
        client = TestClient(create_app(role="worker"))
        assert client.get("/health").status_code == 200

    def test_tasks_mounted(self):
        client = TestClient(create_app(role="worker"))
        response = client.get("/tasks/health")
        assert response.status_code == 200
        assert response.json()["subsystem"] == "tasks"

    def test_internal_reports_tool_count(self):
        client = TestClient(create_app(role="worker"))
        response = client.get("/internal/health")
        assert response.status_code == 200
        assert response.json()["tools"] == 13

    def test_process_task_requires_auth(self):
        client = TestClient(create_app(role="worker"))
        assert client.post("/tasks/messages/process", json={"message_record_id": 1}).status_code == 401


class TestRoleFromSettings:
    def test_app_role_setting(self):
        set_settings(Settings(app_role="worker"))
        client = TestClient(create_app())
        assert client.get("/tasks/health").status_code == 200

    def test_defaults_to_public(self):
        set_settings(Settings())
        client = TestClient(create_app())
        assert client.get("/tasks/health").status_code == 404


def test_registry_mismatch_fails_startup():
    with patch("devisly.api.factory.tool_names", return_value=["search_clients"]):
        with pytest.raises(RuntimeError, match="Tool registry mismatch"):
            create_app(role="public")
