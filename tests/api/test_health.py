"""
Tests for health check endpoints.
"""
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from tryout.main import app
from tryout.models import get_db


class TestHealth:
    """Tests for /v1/health and /v1/ping."""

    def test_health(self, client):
        response = client.get("/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "ok"
        assert "timestamp" in data

    def test_health_degraded_when_database_down(self, client):
        broken = MagicMock()
        broken.execute.side_effect = OperationalError("SELECT 1", {}, Exception("down"))
        app.dependency_overrides[get_db] = lambda: broken

        response = client.get("/v1/health")

        assert response.status_code == 503
        assert response.json()["database"] == "unavailable"

    def test_ping(self, client):
        assert client.get("/v1/ping").json() == {"message": "pong"}

    def test_request_id_header(self, client):
        response = client.get("/v1/ping", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"

    def test_root(self, client):
        assert "version" in client.get("/").json()
