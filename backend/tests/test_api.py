import asyncio
from datetime import date
from unittest.mock import patch

from httpx import ASGITransport, AsyncClient

from common.repository import TodoRepository
from common.retry import RetryPolicy
from common.store import MemoryRowStore


class _DownStore(MemoryRowStore):
    async def select(self, table, where=(), columns=None, order_by=(), limit=None):
        raise ConnectionError("Connection refused")

    async def count(self, table, where=()):
        raise ConnectionError("Connection refused")


def _request(asgi_app, method, url, **kwargs):
    async def _call():
        transport = ASGITransport(app=asgi_app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            return await client.request(method, url, **kwargs)
    return asyncio.run(_call())


def test_health_reports_connected_store(api_app):
    resp = _request(api_app, "GET", "/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["services"]["database"] == "connected"
    assert body["services"]["line"] == "configured"
    assert body["env_check"] == {"channel_secret": True, "channel_token": True, "store_url": True}
    assert body["statistics"]["completion_rate"] == 0
    assert resp.headers["X-Request-ID"]


def test_health_is_503_when_store_is_down(api_app, clock):
    down = TodoRepository(_DownStore(), retry_policy=RetryPolicy(max_attempts=1, initial_delay=0),
                          healthcheck_attempts=2, clock=clock)
    with patch("api.main.repository", down):
        resp = _request(api_app, "GET", "/health")

    assert resp.status_code == 503
    body = resp.json()
    assert body["status"] == "unhealthy"
    assert body["services"]["database"] == "disconnected"
    assert "Connection refused" in body["error"]


def test_health_db_lists_every_table(api_app, repo):
    asyncio.run(repo.create_task({"line_user_id": "U1", "title": "a", "task_date": date(2026, 3, 2)}))
    resp = _request(api_app, "GET", "/health/db")

    assert resp.status_code == 200
    body = resp.json()
    assert body["connection"]["status"] == "connected"
    assert body["connection"]["backend"] == "memory"
    assert set(body["tables"]) == {"members", "tasks", "task_history", "task_reminders", "system_settings"}
    assert body["tables"]["tasks"]["accessible"] is True
    assert body["tables"]["tasks"]["count"] == 1
    assert body["tables"]["members"]["count"] == 0
    assert "simple_query_ms" in body["performance"]


def test_health_db_reports_failed_connection(api_app, clock):
    down = TodoRepository(_DownStore(), retry_policy=RetryPolicy(max_attempts=1, initial_delay=0),
                          healthcheck_attempts=1, clock=clock)
    with patch("api.main.repository", down):
        resp = _request(api_app, "GET", "/health/db")

    assert resp.status_code == 200
    assert resp.json()["connection"]["status"] == "failed"
    assert resp.json()["tables"] == {}


def test_status(api_app):
    body = _request(api_app, "GET", "/status").json()
    assert body["status"] == "operational"
    assert body["services"] == {"web": "up", "database": "up", "line_api": "configured"}


def test_list_user_tasks(api_app, repo):
    asyncio.run(repo.create_task({"line_user_id": "U1", "title": "洗澡", "task_date": date(2026, 3, 2)}))

    resp = _request(api_app, "GET", "/api/tasks/U1", params={"date": "2026-03-02"})
    assert resp.status_code == 200
    assert [t["title"] for t in resp.json()["data"]] == ["洗澡"]
    assert resp.json()["data"][0]["task_date"] == "2026-03-02"

    assert _request(api_app, "GET", "/api/tasks/U1", params={"date": "2026-03-01"}).json()["data"] == []
    assert _request(api_app, "GET", "/api/tasks/U1", params={"date": "tomorrow"}).status_code == 422


def test_register_member_creates_then_updates(api_app):
    profile = {"userId": "U1", "displayName": "阿明", "pictureUrl": "https://example.com/a.png"}

    first = _request(api_app, "POST", "/api/members", json=profile)
    second = _request(api_app, "POST", "/api/members", json={**profile, "displayName": "明明"})

    assert first.status_code == 200
    assert first.json()["message"] == "created"
    assert second.json()["message"] == "updated"
    assert second.json()["data"]["display_name"] == "明明"
    assert second.json()["data"]["login_count"] == 2


def test_register_member_requires_user_id(api_app):
    assert _request(api_app, "POST", "/api/members", json={"displayName": "nobody"}).status_code == 422
    assert _request(api_app, "POST", "/api/members", json={"userId": ""}).status_code == 422


def test_deactivate_member(api_app):
    created = _request(api_app, "POST", "/api/members", json={"userId": "U1"}).json()
    member_id = created["data"]["member_id"]

    resp = _request(api_app, "DELETE", f"/api/members/{member_id}")
    assert resp.status_code == 200
    assert resp.json()["data"]["is_active"] is False
    assert resp.json()["message"] == "deactivated"

    assert _request(api_app, "DELETE", "/api/members/member_missing").status_code == 404
