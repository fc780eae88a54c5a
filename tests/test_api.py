"""
Tests for the Flask health surface with a stubbed database manager.
"""

import pytest

from api import create_app
from db import HEALTHY, UNHEALTHY, ConnectionState, HealthReport


class StubManager:
    def __init__(self, healthy: bool = True):
        self.healthy = healthy
        self.health_checks = 0

    @property
    def state(self) -> ConnectionState:
        return ConnectionState.CONNECTED if self.healthy else ConnectionState.HEALING

    @property
    def is_connected(self) -> bool:
        return self.healthy

    def health_check(self) -> HealthReport:
        self.health_checks += 1
        if self.healthy:
            return HealthReport(
                status=HEALTHY,
                timestamp="2026-01-01T00:00:00+00:00",
                response_time_ms=1.234,
                total=4,
                idle=3,
                waiting=0,
            )
        return HealthReport(
            status=UNHEALTHY,
            timestamp="2026-01-01T00:00:00+00:00",
            response_time_ms=0.5,
            error="Database not connected (state=healing)",
        )


@pytest.fixture
def make_client():
    def build(healthy: bool = True):
        manager = StubManager(healthy)
        app = create_app(manager)
        app.config["TESTING"] = True
        return app.test_client(), manager

    return build


def test_health_operational(make_client) -> None:
    client, manager = make_client(healthy=True)

    response = client.get("/health")

    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "OPERATIONAL"
    assert body["database"] == {
        "status": "HEALTHY",
        "timestamp": "2026-01-01T00:00:00+00:00",
        "response_time_ms": 1.23,
        "connections": 4,
        "idle": 3,
        "waiting": 0,
    }
    assert set(body["system"]) == {"uptime_s", "python", "pid"}
    assert manager.health_checks == 1


def test_health_degraded(make_client) -> None:
    client, _ = make_client(healthy=False)

    response = client.get("/health")

    assert response.status_code == 503
    body = response.get_json()
    assert body["status"] == "DEGRADED"
    assert body["database"]["status"] == "UNHEALTHY"
    assert "not connected" in body["database"]["error"]


def test_liveness_ignores_database(make_client) -> None:
    client, manager = make_client(healthy=False)
    response = client.get("/health/live")
    assert response.status_code == 200
    assert manager.health_checks == 0


def test_readiness_follows_connection_state(make_client) -> None:
    client, _ = make_client(healthy=True)
    response = client.get("/health/ready")
    assert response.status_code == 200
    assert response.get_json() == {"status": "ready", "database_state": "connected"}

    client, _ = make_client(healthy=False)
    response = client.get("/health/ready")
    assert response.status_code == 503
    assert response.get_json()["database_state"] == "healing"


def test_metrics_endpoint(make_client) -> None:
    client, _ = make_client()
    response = client.get("/metrics")
    assert response.status_code == 200
    assert b"db_connection_state" in response.data


def test_request_id_is_echoed_or_generated(make_client) -> None:
    client, _ = make_client()

    response = client.get("/health/live", headers={"X-Request-ID": "req-from-client"})
    assert response.headers["X-Request-ID"] == "req-from-client"

    response = client.get("/health/live")
    assert response.headers["X-Request-ID"].startswith("req-")


def test_unknown_route_is_json(make_client) -> None:
    client, _ = make_client()

    response = client.get("/nope")
    assert response.status_code == 404
    assert response.get_json()["error"] == "Not found"

    response = client.post("/health")
    assert response.status_code == 405
    assert response.get_json()["error"] == "Method not allowed"
