"""
HTTP surface tests for the dashboard and connection routers.
"""
import pytest
from fastapi.testclient import TestClient

from agency_dashboard.connectors.errors import CredentialInvalid
from agency_dashboard.main import app
from agency_dashboard.services.dashboard_service import get_dashboard_service


@pytest.fixture
def client(service):
    app.dependency_overrides[get_dashboard_service] = lambda: service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_status_lists_provider_clients(client):
    body = client.get("/status").json()
    assert set(body["providers"]) == {"analytics", "seo"}
    assert body["cooldowns_hours"]["backlinks"] == 48.0


def test_dashboard_for_unconnected_client(client):
    response = client.get("/dashboard/acme", params={"range": "30d"})
    assert response.status_code == 200
    body = response.json()
    assert body["analytics"]["state"] == "not_connected"
    assert body["analytics"]["total_sessions"] is None
    assert body["recovery"] == "fresh"


def test_malformed_range_is_400(client):
    response = client.get("/dashboard/acme", params={"range": "forever"})
    assert response.status_code == 400


def test_connect_refresh_and_disconnect(client, seo_client):
    response = client.post("/connections/acme/seo", json={"token": "login", "resource": "https://www.acme.com/"})
    assert response.status_code == 200
    assert response.json()["connected"] is True

    first = client.post("/dashboard/acme/refresh/page_metrics").json()
    assert first == {"applied": True, "skipped_reason": None, "error": None}

    second = client.post("/dashboard/acme/refresh/page_metrics").json()
    assert second["applied"] is False
    assert second["skipped_reason"].startswith("Using cached data; next refresh available in")

    body = client.get("/dashboard/acme").json()
    assert body["seo"]["page_metrics"]["total_keywords"] == 150

    deleted = client.delete("/connections/acme/seo").json()
    assert deleted["connected"] is False
    assert deleted["snapshots_cleared"] >= 1

    status = client.get("/connections/acme/seo").json()
    assert status["state"] == "not_connected"
    assert len(seo_client.fetch_calls) <= 2


def test_connect_with_rejected_credential_is_400(client, analytics_client):
    analytics_client.probe_error = CredentialInvalid("invalid_grant")
    response = client.post("/connections/acme/analytics", json={"token": "bad", "resource": "123"})
    assert response.status_code == 400

    status = client.get("/connections/acme/analytics").json()
    assert status["connected"] is False
    assert status["state"] == "reconnect_required"


def test_unknown_provider_and_data_kind_are_400(client):
    assert client.get("/connections/acme/facebook").status_code == 400
    assert client.post("/dashboard/acme/refresh/keywords").status_code == 400


def test_connect_requires_resource(client):
    response = client.post("/connections/acme/seo", json={"token": "login", "resource": "  "})
    assert response.status_code == 400


def test_invalidate_cache(client):
    client.post("/connections/acme/seo", json={"token": "login", "resource": "acme.com"})
    client.get("/dashboard/acme")
    body = client.post("/dashboard/acme/invalidate").json()
    assert body["recovery_marks_cleared"] == 1
    assert body["snapshots_cleared"] == 2
