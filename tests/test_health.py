"""Health endpoint tests."""

from fastapi.testclient import TestClient

from devisly.api.app import app

client = TestClient(app)


def test_health_returns_200():
    response = client.get("/health")
    assert response.status_code == 200


def test_health_returns_ok_status():
    response = client.get("/health")
    assert response.json() == {"status": "ok"}


def test_correlation_id_echoed():
    response = client.get("/health", headers={"X-Correlation-ID": "cid-health-1"})
    assert response.headers["X-Correlation-ID"] == "cid-health-1"


def test_correlation_id_generated():
    response = client.get("/health")
    assert len(response.headers["X-Correlation-ID"]) == 36
