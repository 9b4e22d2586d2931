"""Socket.IO namespace for the live messaging transport."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

import socketio

from messenger.obs import metrics as obs_metrics

_log = logging.getLogger(__name__)

NAMESPACE = "/chat"

_STOP = ("disconnect", None)


class SocketIOSink:
	"""EventSink writing through a bound namespace (and its manager's pub/sub)."""

	def __init__(self) -> None:
		self._namespace: Optional[socketio.AsyncNamespace] = None

	def bind(self, namespace: socketio.AsyncNamespace) -> None:
		self._namespace = namespace

	async def emit(self, event: str, data: Any, *, to: str) -> None:
		if self._namespace is None:
			return
		obs_metrics.socket_event(self._namespace.namespace, event)
		await self._namespace.emit(event, data, to=to)

	async def emit_room(self, event: str, data: Any, *, room: str, skip: Optional[str] = None) -> None:
		if self._namespace is None:
			return
		obs_metrics.socket_event(self._namespace.namespace, event)
		await self._namespace.emit(event, data, room=room, skip_sid=skip)

	async def join(self, handle: str, room: str) -> None:
		if self._namespace is None:
			return
		await self._namespace.enter_room(handle, room)


class ChatNamespace(socketio.AsyncNamespace):
	"""One inbound queue per connection, drained in order by a single task.

	The ``on_*`` handlers only enqueue; the connection's actor task feeds the
	gateway, so events from one client are processed strictly in arrival order
	while different clients proceed independently.
	"""

	def __init__(self, context) -> None:
		super().__init__(NAMESPACE)
		self._context = context
		self._inboxes: Dict[str, asyncio.Queue[Tuple[str, Any]]] = {}
		self._actors: Dict[str, asyncio.Task] = {}
		context.sink.bind(self)

	@property
	def gateway(self):
		return self._context.gateway

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		obs_metrics.socket_connected(self.namespace)
		self.gateway.open(sid)
		inbox: asyncio.Queue[Tuple[str, Any]] = asyncio.Queue()
		self._inboxes[sid] = inbox
		self._actors[sid] = asyncio.create_task(self._run(sid, inbox))
		# Clients may authenticate in the handshake instead of a separate event.
		if isinstance(auth, dict) and auth.get("token") and auth.get("userId"):
			self._enqueue(sid, "authenticate", auth)

	async def on_disconnect(self, sid: str, reason: Any = None) -> None:
		obs_metrics.socket_disconnected(self.namespace)
		inbox = self._inboxes.pop(sid, None)
		if inbox is None:
			await self.gateway.close(sid)
			return
		inbox.put_nowait(_STOP)
		actor = self._actors.pop(sid, None)
		if actor is not None:
			await actor

	async def on_authenticate(self, sid: str, payload: Any = None) -> None:
		self._enqueue(sid, "authenticate", payload)

	async def on_send_message(self, sid: str, payload: Any = None) -> None:
		self._enqueue(sid, "send_message", payload)

	async def on_mark_read(self, sid: str, payload: Any = None) -> None:
		self._enqueue(sid, "mark_read", payload)

	async def on_typing(self, sid: str, payload: Any = None) -> None:
		self._enqueue(sid, "typing", payload)

	async def on_delete_message(self, sid: str, payload: Any = None) -> None:
		self._enqueue(sid, "delete_message", payload)

	async def on_get_online_contacts(self, sid: str, payload: Any = None) -> None:
		self._enqueue(sid, "get_online_contacts", payload)

	def _enqueue(self, sid: str, name: str, payload: Any) -> None:
		inbox = self._inboxes.get(sid)
		if inbox is None:
			return
		obs_metrics.socket_event(self.namespace, name)
		inbox.put_nowait((name, payload))

	async def _run(self, sid: str, inbox: asyncio.Queue[Tuple[str, Any]]) -> None:
		while True:
			name, payload = await inbox.get()
			try:
				if name == "disconnect":
					await self.gateway.close(sid)
					return
				await self.gateway.receive(sid, name, payload)
			except Exception:
				_log.exception("connection actor failed", extra={"event": name})
			finally:
				inbox.task_done()

	async def drain(self, sid: str) -> None:
		"""Wait until every event queued for ``sid`` has been handled."""
		inbox = self._inboxes.get(sid)
		if inbox is not None:
			await inbox.join()

	async def shutdown(self) -> None:
		for sid in list(self._inboxes):
			await self.on_disconnect(sid)


__all__ = ["ChatNamespace", "NAMESPACE", "SocketIOSink"]
