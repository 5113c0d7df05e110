"""Tests for basic API endpoints."""
import pytest


class TestRootEndpoint:
    """Tests for the root endpoint."""

    def test_read_root(self, client):
        """Test GET / returns the service name and version."""
        response = client.get("/")
        assert response.status_code == 200
        assert response.json() == {"message": "Riftventory Trades API", "version": "0.2.0"}


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check(self, client):
        """Test GET /health returns healthy status."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
