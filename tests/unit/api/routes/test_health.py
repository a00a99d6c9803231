"""Tests for liveness and readiness endpoints."""

from __future__ import annotations

from collections.abc import Iterator
from unittest import mock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from mail_sync.api.routes.health import router, set_health_database


@pytest.fixture
def client() -> Iterator[TestClient]:
    """Create a test client."""
    app = FastAPI()
    app.include_router(router)
    yield TestClient(app)
    set_health_database(None)


class TestHealth:
    """Tests for GET /health."""

    def test_health(self, client: TestClient) -> None:
        """Test liveness always succeeds."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "database": None}


class TestReady:
    """Tests for GET /ready."""

    def test_ready(self, client: TestClient) -> None:
        """Test readiness with a reachable database."""
        database = mock.MagicMock()
        database.ping = mock.AsyncMock(return_value=True)
        set_health_database(database)

        response = client.get("/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "database": "connected"}

    def test_database_down(self, client: TestClient) -> None:
        """Test readiness fails when the ping fails."""
        database = mock.MagicMock()
        database.ping = mock.AsyncMock(return_value=False)
        set_health_database(database)

        response = client.get("/ready")

        assert response.status_code == 503
        assert response.json() == {"status": "unavailable", "database": "disconnected"}

    def test_no_database(self, client: TestClient) -> None:
        """Test readiness fails before the database is wired up."""
        response = client.get("/ready")

        assert response.status_code == 503
