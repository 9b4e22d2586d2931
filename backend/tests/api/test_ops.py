from contextlib import asynccontextmanager

import pytest
from fakeredis.aioredis import FakeRedis
from redis.exceptions import ConnectionError as RedisConnectionError

from messenger.infra import postgres
from messenger.obs import health
from messenger.settings import settings


class _MigratedPool:
	def __init__(self, version):
		self.version = version

	@asynccontextmanager
	async def acquire(self):
		yield self

	async def fetchval(self, _query):
		return self.version


class _DeadFanout:
	async def ping(self):
		raise RedisConnectionError("fan-out down")

	async def aclose(self):
		return None


def _use_pool(monkeypatch, pool):
	async def get_pool():
		if pool is None:
			raise OSError("postgres down")
		return pool

	monkeypatch.setattr(postgres, "get_pool", get_pool)


@pytest.mark.asyncio
async def test_liveness(api_client):
	resp = await api_client.get("/health/live")

	assert resp.status_code == 200
	assert resp.json() == {"status": "ok"}
	assert resp.headers["X-Request-Id"]


@pytest.mark.asyncio
async def test_request_id_is_echoed(api_client):
	resp = await api_client.get("/health/live", headers={"X-Request-Id": "req-123"})

	assert resp.headers["X-Request-Id"] == "req-123"


@pytest.mark.asyncio
async def test_metrics_fail_closed_without_admin_token(api_client, monkeypatch):
	monkeypatch.setattr(settings, "obs_metrics_public", False)
	monkeypatch.setattr(settings, "obs_admin_token", None)

	resp = await api_client.get("/metrics")

	assert resp.status_code == 403


@pytest.mark.asyncio
async def test_metrics_with_admin_token(api_client, monkeypatch, friends):
	monkeypatch.setattr(settings, "obs_metrics_public", False)
	monkeypatch.setattr(settings, "obs_admin_token", "scrape-me")
	await api_client.post("/messages", json={"receiverId": "bob", "text": "hi"}, headers={"X-User-Id": "alice"})

	resp = await api_client.get("/metrics", headers={"X-Admin-Token": "scrape-me"})

	assert resp.status_code == 200
	assert "messenger_chat_send_total" in resp.text


@pytest.mark.asyncio
async def test_ready_reports_presence_load(api_client, chat_context, monkeypatch):
	_use_pool(monkeypatch, _MigratedPool("0002"))
	monkeypatch.setattr(settings, "socket_redis_url", None)
	await chat_context.presence.register("alice", "sid-a1")
	await chat_context.presence.register("alice", "sid-a2")
	await chat_context.presence.register("bob", "sid-b")

	resp = await api_client.get("/health/ready")

	assert resp.status_code == 200
	body = resp.json()
	assert body["status"] == "ok"
	assert body["presence"] == {"online_users": 2, "connections": 3}
	assert body["checks"]["socket_fanout"] == {"ok": True, "mode": "local"}
	assert body["checks"]["message_store"]["schema"] == "0002"


@pytest.mark.asyncio
async def test_ready_degrades_without_message_store(api_client, monkeypatch):
	_use_pool(monkeypatch, None)
	monkeypatch.setattr(settings, "socket_redis_url", None)

	resp = await api_client.get("/health/ready")

	assert resp.status_code == 503
	body = resp.json()
	assert body["status"] == "degraded"
	assert body["checks"]["message_store"]["ok"] is False
	assert body["checks"]["view_cache"]["ok"] is True
	assert body["presence"] == {"online_users": 0, "connections": 0}


@pytest.mark.asyncio
async def test_ready_checks_shared_socket_channel(api_client, monkeypatch):
	_use_pool(monkeypatch, _MigratedPool("0002"))
	monkeypatch.setattr(settings, "socket_redis_url", "redis://fanout:6379/1")
	monkeypatch.setattr(health, "_fanout_client", lambda: FakeRedis())

	healthy = await api_client.get("/health/ready")
	assert healthy.status_code == 200
	assert healthy.json()["checks"]["socket_fanout"]["mode"] == "redis"

	monkeypatch.setattr(health, "_fanout_client", lambda: _DeadFanout())
	broken = await api_client.get("/health/ready")
	assert broken.status_code == 503
	assert broken.json()["checks"]["socket_fanout"]["ok"] is False


@pytest.mark.asyncio
async def test_ready_requires_minimum_schema(api_client, monkeypatch):
	_use_pool(monkeypatch, _MigratedPool("0001"))
	monkeypatch.setattr(settings, "health_min_migration", "0002")
	monkeypatch.setattr(settings, "socket_redis_url", None)

	resp = await api_client.get("/health/ready")

	assert resp.status_code == 503
	assert resp.json()["checks"]["message_store"]["required"] == "0002"


@pytest.mark.asyncio
async def test_startup_rejects_unusable_socket_channel(api_client, monkeypatch):
	monkeypatch.setattr(settings, "socket_redis_url", "http://not-redis")

	resp = await api_client.get("/health/startup")

	assert resp.status_code == 503
	assert resp.json()["error"] == "invalid_socket_redis_url"
