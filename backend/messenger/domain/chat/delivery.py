"""Fan-out of outbound events to live connections."""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from .presence import PresenceRegistry

_log = logging.getLogger(__name__)

ONLINE_ROOM = "online"


def user_room(user_id: str) -> str:
	return f"user:{user_id}"


class EventSink(Protocol):
	"""Outbound side of the transport."""

	async def emit(self, event: str, data: Any, *, to: str) -> None:
		...

	async def emit_room(self, event: str, data: Any, *, room: str, skip: Optional[str] = None) -> None:
		...

	async def join(self, handle: str, room: str) -> None:
		...


class Dispatcher:
	"""Resolves recipients through the presence registry and writes to the sink.

	Live pushes are at-most-once: a failed write to one handle is logged and
	the remaining handles are still attempted. With ``shared`` set, user and
	broadcast events go through rooms so a pub/sub-backed transport reaches
	connections held by other processes.
	"""

	def __init__(self, presence: PresenceRegistry, sink: EventSink, *, shared: bool = False) -> None:
		self._presence = presence
		self._sink = sink
		self._shared = shared

	@property
	def shared(self) -> bool:
		return self._shared

	async def attach(self, handle: str, user_id: str) -> None:
		"""Subscribe an authenticated connection to its user room and the broadcast room."""
		await self._sink.join(handle, user_room(user_id))
		await self._sink.join(handle, ONLINE_ROOM)

	async def to_connection(self, handle: str, event: str, data: Any) -> bool:
		try:
			await self._sink.emit(event, data, to=handle)
		except Exception:
			_log.warning("live push failed", extra={"event": event, "handle": handle}, exc_info=True)
			return False
		return True

	async def to_user(self, user_id: str, event: str, data: Any) -> int:
		"""Push ``event`` to every live connection of ``user_id``.

		Returns the number of local connections reached.
		"""
		handles = await self._presence.resolve(user_id)
		if self._shared:
			try:
				await self._sink.emit_room(event, data, room=user_room(user_id))
			except Exception:
				_log.warning("room push failed", extra={"event": event}, exc_info=True)
				return 0
			return len(handles)
		delivered = 0
		for handle in handles:
			if await self.to_connection(handle, event, data):
				delivered += 1
		return delivered

	async def broadcast(self, event: str, data: Any, *, skip: Optional[str] = None) -> None:
		try:
			await self._sink.emit_room(event, data, room=ONLINE_ROOM, skip=skip)
		except Exception:
			_log.warning("broadcast failed", extra={"event": event}, exc_info=True)
