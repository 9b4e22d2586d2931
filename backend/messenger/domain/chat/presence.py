"""In-process registry of live connections per user."""

from __future__ import annotations

import asyncio
from typing import Dict, FrozenSet, Optional, Set, Tuple


class PresenceRegistry:
	"""Maps a user to the set of connection handles currently open for them.

	A user is online iff at least one handle is registered. All mutations and
	reads take the same lock so no caller observes a half-updated entry; the
	lock is never held across I/O, callers receive copies and act on them after
	it is released.
	"""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._handles: Dict[str, Set[str]] = {}
		self._owners: Dict[str, str] = {}

	async def register(self, user_id: str, handle: str) -> bool:
		"""Attach ``handle`` to ``user_id``; True when the user just came online."""
		async with self._lock:
			previous = self._owners.get(handle)
			if previous == user_id:
				return False
			if previous is not None:
				self._drop(previous, handle)
			handles = self._handles.setdefault(user_id, set())
			came_online = not handles
			handles.add(handle)
			self._owners[handle] = user_id
			return came_online

	async def unregister(self, handle: str) -> Tuple[Optional[str], bool]:
		"""Remove ``handle``; returns its owner and whether that user went offline."""
		async with self._lock:
			user_id = self._owners.pop(handle, None)
			if user_id is None:
				return None, False
			return user_id, self._drop(user_id, handle)

	def _drop(self, user_id: str, handle: str) -> bool:
		handles = self._handles.get(user_id)
		if handles is None:
			return False
		handles.discard(handle)
		if handles:
			return False
		del self._handles[user_id]
		return True

	async def is_online(self, user_id: str) -> bool:
		async with self._lock:
			return bool(self._handles.get(user_id))

	async def resolve(self, user_id: str) -> FrozenSet[str]:
		async with self._lock:
			return frozenset(self._handles.get(user_id, ()))

	async def owner(self, handle: str) -> Optional[str]:
		async with self._lock:
			return self._owners.get(handle)

	async def snapshot(self) -> FrozenSet[str]:
		async with self._lock:
			return frozenset(self._handles)

	async def connection_count(self) -> int:
		async with self._lock:
			return len(self._owners)

	async def counts(self) -> Tuple[int, int]:
		async with self._lock:
			return len(self._handles), len(self._owners)
