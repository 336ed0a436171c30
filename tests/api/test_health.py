"""Tests for health check endpoint and error envelopes."""

from fastapi.testclient import TestClient

from src.api.app import app


def test_health_returns_ok() -> None:
    """Health endpoint returns 200 with status ok."""
    client = TestClient(app)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_unknown_route_uses_error_envelope() -> None:
    """Routing errors use the same {success, error} body as the API."""
    client = TestClient(app)
    response = client.get("/nope")
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Not Found"}
