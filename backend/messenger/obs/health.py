"""Readiness and startup checks for the messaging service.

An instance is ready when it can persist messages (Postgres at the required
schema version) and reach the view cache. With ``SOCKET_REDIS_URL`` set, live
delivery also depends on the shared Socket.IO channel, so that is checked too.
Readiness reports the instance's presence load alongside the checks.
"""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

import redis.asyncio as redis

from messenger.infra import postgres
from messenger.infra.redis import redis_client
from messenger.obs import metrics
from messenger.settings import settings

if TYPE_CHECKING:
	from messenger.domain.chat.presence import PresenceRegistry

LOGGER = logging.getLogger(__name__)

CACHE_TIMEOUT = 0.2
STORE_TIMEOUT = 0.5
FANOUT_TIMEOUT = 0.3

_LATEST_MIGRATION = "SELECT version FROM schema_migrations ORDER BY version DESC LIMIT 1"
_FANOUT_SCHEMES = ("redis://", "rediss://", "unix://")


def _elapsed_ms(start: float) -> float:
	return round((perf_counter() - start) * 1000, 2)


def _fanout_client() -> redis.Redis:
	return redis.from_url(settings.socket_redis_url)


async def check_view_cache() -> Dict[str, Any]:
	start = perf_counter()
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=CACHE_TIMEOUT)
	except Exception as exc:
		metrics.mark_redis(False)
		LOGGER.warning("view cache unreachable", exc_info=True)
		return {"ok": False, "error": str(exc) or type(exc).__name__}
	metrics.mark_redis(True, latency_seconds=(perf_counter() - start))
	return {"ok": True, "latency_ms": _elapsed_ms(start)}


async def _schema_version() -> Optional[str]:
	pool = await postgres.get_pool()
	async with pool.acquire() as conn:
		version = await conn.fetchval(_LATEST_MIGRATION)
	return None if version is None else str(version)


async def check_message_store(required: str) -> Dict[str, Any]:
	"""One round trip that proves both connectivity and the schema level."""
	start = perf_counter()
	try:
		version = await asyncio.wait_for(_schema_version(), timeout=STORE_TIMEOUT)
	except Exception as exc:
		metrics.mark_postgres(False)
		LOGGER.warning("message store unreachable", exc_info=True)
		return {"ok": False, "error": str(exc) or type(exc).__name__, "required": required}
	metrics.mark_postgres(True, latency_seconds=(perf_counter() - start))
	if version is None:
		return {"ok": False, "error": "no_migrations", "required": required}
	return {
		"ok": version >= required,
		"latency_ms": _elapsed_ms(start),
		"schema": version,
		"required": required,
	}


async def check_fanout() -> Dict[str, Any]:
	if not settings.socket_redis_url:
		return {"ok": True, "mode": "local"}
	client = _fanout_client()
	start = perf_counter()
	try:
		await asyncio.wait_for(client.ping(), timeout=FANOUT_TIMEOUT)
	except Exception as exc:
		LOGGER.warning("socket fan-out channel unreachable", exc_info=True)
		return {"ok": False, "mode": "redis", "error": str(exc) or type(exc).__name__}
	finally:
		await client.aclose()
	return {"ok": True, "mode": "redis", "latency_ms": _elapsed_ms(start)}


async def presence_snapshot(presence: Optional[PresenceRegistry]) -> Dict[str, int]:
	if presence is None:
		return {"online_users": 0, "connections": 0}
	online_users, connections = await presence.counts()
	return {"online_users": online_users, "connections": connections}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok"}


async def readiness(presence: Optional[PresenceRegistry] = None) -> Tuple[int, Dict[str, Any]]:
	cache, store, fanout = await asyncio.gather(
		check_view_cache(),
		check_message_store(settings.health_min_migration),
		check_fanout(),
	)
	checks = {"view_cache": cache, "message_store": store, "socket_fanout": fanout}
	ready = all(check["ok"] for check in checks.values())
	payload = {
		"status": "ok" if ready else "degraded",
		"checks": checks,
		"presence": await presence_snapshot(presence),
	}
	return (200 if ready else 503), payload


async def startup() -> Tuple[int, Dict[str, Any]]:
	if not settings.secret_key:
		return 503, {"status": "error", "error": "missing_secret_key"}
	if settings.socket_redis_url and not settings.socket_redis_url.startswith(_FANOUT_SCHEMES):
		return 503, {"status": "error", "error": "invalid_socket_redis_url"}
	return 200, {"status": "ok"}
