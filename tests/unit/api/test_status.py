"""Tests for the status endpoints."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from leasekeeper.api import LeaderState, ServerPhase, create_app


@pytest.fixture
def state() -> LeaderState:
    return LeaderState()


@pytest.fixture
def client(state: LeaderState) -> TestClient:
    return TestClient(create_app(state))


class TestHealth:
    """Tests for /healthz and /readyz."""

    @pytest.mark.parametrize("path", ["/healthz", "/readyz"])
    def test_ok_while_serving(self, client: TestClient, path: str) -> None:
        response = client.get(path)

        assert response.status_code == 200
        assert response.text == "ok\n"
        assert response.headers["content-type"].startswith("text/plain")

    @pytest.mark.parametrize("path", ["/healthz", "/readyz"])
    def test_unavailable_while_draining(
        self, client: TestClient, state: LeaderState, path: str
    ) -> None:
        state.transition(ServerPhase.DRAINING)

        response = client.get(path)

        assert response.status_code == 503
        assert response.text == "shutting down\n"


class TestLeader:
    """Tests for /api/leader."""

    def test_empty_before_first_round(self, client: TestClient) -> None:
        response = client.get("/api/leader")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        assert response.json() == {"leader": ""}

    def test_reports_current_leader(self, client: TestClient, state: LeaderState) -> None:
        state.set_leader("replica-b")

        assert client.get("/api/leader").json() == {"leader": "replica-b"}

    def test_cleared_leader(self, client: TestClient, state: LeaderState) -> None:
        state.set_leader("replica-b")
        state.set_leader(None)

        assert client.get("/api/leader").json() == {"leader": ""}

    def test_still_served_while_draining(self, client: TestClient, state: LeaderState) -> None:
        state.set_leader("replica-a")
        state.transition(ServerPhase.DRAINING)

        response = client.get("/api/leader")

        assert response.status_code == 200
        assert response.json() == {"leader": "replica-a"}


class TestNotFound:
    """Unknown paths and non-GET methods get a plain 404."""

    def test_unknown_path(self, client: TestClient) -> None:
        response = client.get("/metrics")

        assert response.status_code == 404
        assert response.text == "404 page not found\n"

    @pytest.mark.parametrize("method", ["POST", "PUT", "DELETE"])
    def test_other_methods(self, client: TestClient, method: str) -> None:
        response = client.request(method, "/api/leader")

        assert response.status_code == 404
        assert response.text == "404 page not found\n"

    def test_docs_disabled(self, client: TestClient) -> None:
        assert client.get("/docs").status_code == 404
        assert client.get("/openapi.json").status_code == 404
