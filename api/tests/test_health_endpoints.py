"""
Tests for health check and system status endpoints.

This module tests the dependency checks, system metrics and status
reporting of the health endpoint.
"""

import json
from unittest.mock import MagicMock, patch

from services.health import HealthCheckService


def _service(database=None, storage=None, auth_ok=True, redis=None):
    mongodb = MagicMock()
    mongodb.health_check.return_value = database or {"status": "healthy", "database": "permit_portal_test"}
    document_storage = MagicMock()
    document_storage.health_check.return_value = storage or {"status": "healthy", "path": "/tmp/uploads"}
    auth = MagicMock()
    auth.self_test.return_value = auth_ok
    auth.algorithm = "HS256"
    return HealthCheckService(mongodb, document_storage, auth, redis)


class TestHealthCheckService:
    """Test cases for HealthCheckService."""

    def test_all_healthy(self):
        health = _service().get_comprehensive_health()

        assert health["status"] == "healthy"
        assert health["service"] == "permit-portal-api"
        assert health["checks"] == {"database": True, "storage": True, "auth": True}
        assert health["dependencies"]["database"]["database"] == "permit_portal_test"
        assert "response_time_ms" in health["dependencies"]["auth"]
        assert all(dep["healthy"] is True for dep in health["dependencies"].values())
        assert "system_metrics" in health

    def test_one_dependency_down_is_degraded(self):
        """Health check when storage is unwritable but the rest is fine."""
        health = _service(storage={"status": "unhealthy", "error": "read-only"}).get_comprehensive_health()

        assert health["status"] == "degraded"
        assert health["checks"]["storage"] is False
        assert health["dependencies"]["storage"]["error"] == "read-only"
        assert health["dependencies"]["storage"]["healthy"] is False
        assert health["dependencies"]["database"]["healthy"] is True

    def test_everything_down_is_unhealthy(self):
        service = _service(database={"status": "unhealthy", "error": "no server"},
                           storage={"status": "unhealthy", "error": "read-only"},
                           auth_ok=False)

        assert service.get_comprehensive_health()["status"] == "unhealthy"

    def test_raising_check_is_unhealthy(self):
        service = _service()
        service.mongodb_service.health_check.side_effect = Exception("MongoDB down")

        health = service.get_comprehensive_health()

        assert health["dependencies"]["database"]["status"] == "unhealthy"
        assert health["dependencies"]["database"]["error"] == "MongoDB down"
        assert health["dependencies"]["database"]["healthy"] is False
        assert health["status"] == "degraded"

    def test_redis_is_optional(self):
        """Redis being down never changes the overall status."""
        redis = MagicMock()
        redis.health_check.return_value = {"status": "unhealthy", "error": "connection refused"}

        health = _service(redis=redis).get_comprehensive_health()

        assert health["status"] == "healthy"
        assert health["checks"]["redis"] is False

    @patch('services.health.psutil')
    def test_metrics_failure_is_reported(self, mock_psutil):
        mock_psutil.virtual_memory.side_effect = Exception("no /proc")

        health = _service().get_comprehensive_health()

        assert "error" in health["system_metrics"]


class TestHealthEndpoint:
    """Test cases for the /api/health endpoint."""

    def test_health_endpoint(self, client):
        response = client.get('/api/health')

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["status"] == "healthy"
        assert data["checks"]["database"] is True
        assert data["checks"]["redis"] is True
        assert data["_links"]["self"]["href"] == "/api/health"

    def test_unhealthy_is_503(self, client, app):
        app.health_service = MagicMock()
        app.health_service.get_comprehensive_health.return_value = {"status": "unhealthy", "checks": {}}

        response = client.get('/api/health')

        assert response.status_code == 503
        assert json.loads(response.data)["_links"]["self"]["href"] == "/api/health"

    def test_service_exception_is_503(self, client, app):
        app.health_service = MagicMock()
        app.health_service.get_comprehensive_health.side_effect = RuntimeError("boom")

        response = client.get('/api/health')

        assert response.status_code == 503
        data = json.loads(response.data)
        assert data["checks"] == {"database": False, "storage": False, "auth": False}
        assert "boom" in data["error"]

    def test_database_down_is_degraded(self, client, services):
        services["mongodb_service"].health_check.return_value = {"status": "unhealthy", "error": "down"}

        response = client.get('/api/health')

        data = json.loads(response.data)
        assert data["checks"]["database"] is False
        assert data["status"] == "degraded"
        assert response.status_code == 200
