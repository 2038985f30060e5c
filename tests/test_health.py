"""Tests for the root and health endpoints."""

from fastapi.testclient import TestClient

from app.main import app


class PingingRedis:
    def __init__(self, healthy=True):
        self.healthy = healthy

    async def ping(self):
        if not self.healthy:
            raise ConnectionError("redis down")
        return True


def _patch_dependencies(monkeypatch, redis_healthy=True, s3_healthy=True):
    async def get_redis():
        return PingingRedis(redis_healthy)

    def check_connection():
        if not s3_healthy:
            raise RuntimeError("s3 down")
        return True

    monkeypatch.setattr("app.main.get_redis", get_redis)
    monkeypatch.setattr("app.main.s3_client.check_connection", check_connection)


def test_root_lists_endpoints():
    response = TestClient(app).get("/")

    assert response.status_code == 200
    assert response.json()["status"] == "running"


def test_health_all_ok(monkeypatch):
    _patch_dependencies(monkeypatch)

    response = TestClient(app).get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "healthy",
        "s3Connection": "ok",
        "database": "ok",
        "redis": "ok",
    }


def test_health_reports_failed_dependency(monkeypatch):
    _patch_dependencies(monkeypatch, redis_healthy=False)

    response = TestClient(app).get("/health")

    assert response.status_code == 503
    body = response.json()
    assert body["status"] == "unhealthy"
    assert body["redis"] == "failed"
    assert body["s3Connection"] == "ok"
