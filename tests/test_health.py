"""Tests for health endpoints."""

from unittest.mock import patch

from fastapi.testclient import TestClient

from social_link.domain.errors import EncryptionError


def test_health_endpoint(test_client: TestClient) -> None:
    """Test the basic health endpoint."""
    response = test_client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["oauth"] is False
    assert data["components"]["locks"] is False


def test_readiness_endpoint(test_client: TestClient) -> None:
    """Test readiness with the in-memory backends (Redis not required)."""
    response = test_client.get("/health/ready")

    assert response.status_code == 200
    data = response.json()
    assert data["database"] is True
    assert data["encryption"] is True
    assert data["redis_required"] is False
    assert data["ready"] is True


def test_readiness_fails_without_usable_key(test_client: TestClient) -> None:
    """Test readiness reports an unusable encryption key."""
    with patch(
        "social_link.api.routes.health.encrypt_token",
        side_effect=EncryptionError("Failed to initialize encryption: bad key"),
    ):
        response = test_client.get("/health/ready")

    assert response.status_code == 200
    data = response.json()
    assert data["encryption"] is False
    assert data["database"] is True
    assert data["ready"] is False


def test_liveness_endpoint(test_client: TestClient) -> None:
    """Test the liveness probe endpoint."""
    response = test_client.get("/health/live")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "alive"


def test_root_endpoint(test_client: TestClient) -> None:
    """Test the root endpoint."""
    response = test_client.get("/")

    assert response.status_code == 200
    data = response.json()
    assert "name" in data
    assert "version" in data
    assert "docs" in data
