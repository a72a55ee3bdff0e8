"""Tests for correlation ID middleware.

Verifies:
- X-Request-ID header in responses
- Custom correlation ID echoing
- Debug ID in 500 responses without internal detail leakage
"""

import uuid

import pytest
from fastapi.testclient import TestClient

from remix_queue.api.routes.remix_queue import get_controller
from remix_queue.main import app

pytestmark = pytest.mark.integration


def test_response_includes_correlation_id_header():
    """Every API response should include X-Request-ID header with valid UUID."""
    client = TestClient(app)

    response = client.get("/api/health")

    assert "x-request-id" in response.headers
    correlation_id = response.headers["x-request-id"]
    try:
        uuid.UUID(correlation_id)
    except ValueError:
        raise AssertionError(f"X-Request-ID header value '{correlation_id}' is not a valid UUID")


def test_custom_correlation_id_echoed():
    """Client-provided X-Request-ID should be echoed back in response."""
    client = TestClient(app)
    custom_id = "poller-7f3a-retry-2"

    response = client.get("/api/health", headers={"X-Request-ID": custom_id})

    assert response.headers["x-request-id"] == custom_id


def test_unhandled_error_includes_debug_id():
    """Unexpected failures return a debug_id and no internals."""

    class ExplodingController:
        async def poll_status(self, queue_id, now=None):
            raise RuntimeError("secret connection string leaked")

    app.dependency_overrides[get_controller] = lambda: ExplodingController()
    try:
        client = TestClient(app, raise_server_exceptions=False)
        response = client.post("/api/remix-queue", json={"action": "position", "queue_id": "abc"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    data = response.json()
    assert data["success"] is False
    uuid.UUID(data["debug_id"])
    assert "secret" not in response.text.lower()
    assert "traceback" not in response.text.lower()


def test_different_requests_get_different_ids():
    """Each request should get a unique correlation ID."""
    client = TestClient(app)

    response1 = client.get("/api/health")
    response2 = client.get("/api/health")

    assert response1.headers["x-request-id"] != response2.headers["x-request-id"]
