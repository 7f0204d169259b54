"""
Liveness Surface Tests
======================
"""

from fastapi.testclient import TestClient

from webcast_relay import __version__
from webcast_relay.server import create_app


class TestHealthApp:
    """Tests for the FastAPI health app."""

    def test_health_always_ok(self):
        """Liveness does not depend on the relay state."""
        client = TestClient(create_app(lambda: {"state": "STOPPED"}))

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_status_passthrough(self):
        snapshot = {"state": "RUNNING", "attempts": 3, "session": None}
        client = TestClient(create_app(lambda: snapshot))

        response = client.get("/status")

        assert response.status_code == 200
        assert response.json() == snapshot

    def test_root(self):
        client = TestClient(create_app(dict))

        assert client.get("/").json() == {"service": "webcast-relay", "version": __version__}
