"""Redis-backed cache for per-user conversation and contact views."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable

from redis.exceptions import RedisError

from messenger.infra.redis import RedisProxy, redis_client
from messenger.obs import metrics as obs_metrics
from messenger.settings import settings

CacheBuilder = Callable[[], Awaitable[Any]]

_log = logging.getLogger(__name__)

_CACHE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class ViewCache:
	"""JSON view cache keyed by user, invalidated by bumping a per-user version.

	Entries expire after ``ttl`` seconds regardless, which bounds staleness even
	when an invalidation is lost. Redis failures fall back to the builder.
	"""

	def __init__(
		self,
		redis: RedisProxy | Any | None = None,
		*,
		ttl: int | None = None,
		namespace: str = "chat:view:",
	) -> None:
		self.redis = redis if redis is not None else redis_client
		self.ttl = ttl or settings.conversation_cache_ttl_seconds
		self.namespace = namespace
		self._locks: dict[str, asyncio.Lock] = {}
		self._waiters: dict[str, int] = {}

	def _version_key(self, user_id: str) -> str:
		return f"{self.namespace}ver:{user_id}"

	@asynccontextmanager
	async def _single_flight(self, user_id: str, view: str) -> AsyncIterator[None]:
		# One builder per user view; the entry lives only while someone waits on it.
		slot = f"{user_id}:{view}"
		lock = self._locks.setdefault(slot, asyncio.Lock())
		self._waiters[slot] = self._waiters.get(slot, 0) + 1
		try:
			async with lock:
				yield
		finally:
			self._waiters[slot] -= 1
			if not self._waiters[slot]:
				del self._waiters[slot]
				del self._locks[slot]

	async def _version(self, user_id: str) -> int:
		raw = await self.redis.get(self._version_key(user_id))
		if isinstance(raw, bytes):
			raw = raw.decode("utf-8")
		return int(raw) if raw else 0

	async def _read(self, key: str) -> Any | None:
		raw = await self.redis.get(key)
		if not raw:
			return None
		if isinstance(raw, bytes):
			raw = raw.decode("utf-8")
		try:
			return json.loads(raw)
		except json.JSONDecodeError:
			return None

	async def get_or_build(self, user_id: str, view: str, *, builder: CacheBuilder) -> Any:
		try:
			version = await self._version(user_id)
			key = f"{self.namespace}{user_id}:v{version}:{view}"
			cached = await self._read(key)
		except _CACHE_ERRORS:
			_log.warning("view cache unavailable", extra={"view": view.split(":", 1)[0]}, exc_info=True)
			return await builder()
		if cached is not None:
			obs_metrics.view_cache(view.split(":", 1)[0], True)
			return cached
		async with self._single_flight(user_id, view):
			try:
				cached = await self._read(key)
			except _CACHE_ERRORS:
				cached = None
			if cached is not None:
				return cached
			obs_metrics.view_cache(view.split(":", 1)[0], False)
			value = await builder()
			try:
				await self.redis.set(key, json.dumps(value, default=str), ex=self.ttl)
			except _CACHE_ERRORS:
				_log.warning("view cache write failed", exc_info=True)
			return value

	async def invalidate(self, *user_ids: str) -> None:
		for user_id in {uid for uid in user_ids if uid}:
			try:
				await self.redis.incr(self._version_key(user_id))
			except _CACHE_ERRORS:
				_log.warning("view cache invalidation failed", exc_info=True)
