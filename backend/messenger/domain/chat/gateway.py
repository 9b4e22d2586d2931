"""Per-connection messaging state machine.

A connection starts unauthenticated, becomes authenticated once its token is
verified, and is closed on disconnect. Inbound events arrive already parsed
into the typed variants of ``events`` and are dispatched through one ``match``.
Every failure is reported to the originating connection only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from messenger.infra.auth import AuthVerifier
from messenger.obs import metrics as obs_metrics

from . import events as ev
from .delivery import Dispatcher
from .exceptions import AuthenticationError, ChatError, ValidationError
from .models import canonical_user_id
from .presence import PresenceRegistry
from .service import ChatService

_log = logging.getLogger(__name__)


class ConnectionState(str, Enum):
	UNAUTHENTICATED = "unauthenticated"
	AUTHENTICATED = "authenticated"
	CLOSED = "closed"


@dataclass(slots=True)
class Connection:
	handle: str
	state: ConnectionState = ConnectionState.UNAUTHENTICATED
	user_id: Optional[str] = None

	@property
	def is_closed(self) -> bool:
		return self.state is ConnectionState.CLOSED


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat()


class MessagingGateway:
	def __init__(
		self,
		service: ChatService,
		presence: PresenceRegistry,
		dispatcher: Dispatcher,
		verifier: AuthVerifier,
	) -> None:
		self._service = service
		self._presence = presence
		self._dispatcher = dispatcher
		self._verifier = verifier
		self._connections: Dict[str, Connection] = {}

	def open(self, handle: str) -> Connection:
		connection = self._connections.get(handle)
		if connection is None or connection.is_closed:
			connection = Connection(handle=handle)
			self._connections[handle] = connection
		return connection

	def connection(self, handle: str) -> Optional[Connection]:
		return self._connections.get(handle)

	async def receive(self, handle: str, name: str, payload: Any = None) -> None:
		"""Parse a raw wire event and handle it for ``handle``."""
		connection = self._connections.get(handle)
		if connection is None or connection.is_closed:
			return
		if connection.state is ConnectionState.UNAUTHENTICATED and name not in ("authenticate", "disconnect"):
			await self._error(connection, AuthenticationError())
			return
		try:
			event = ev.parse_event(name, payload)
		except ValidationError as exc:
			await self._error(connection, exc)
			return
		await self.handle(connection, event)

	async def handle(self, connection: Connection, event: ev.InboundEvent) -> None:
		if connection.is_closed:
			return
		if connection.state is ConnectionState.UNAUTHENTICATED and not isinstance(
			event, (ev.Authenticate, ev.Disconnect)
		):
			await self._error(connection, AuthenticationError())
			return
		try:
			match event:
				case ev.Authenticate():
					await self._authenticate(connection, event)
				case ev.SendMessage():
					await self._send_message(connection, event)
				case ev.MarkRead():
					await self._mark_read(connection, event)
				case ev.Typing():
					await self._typing(connection, event)
				case ev.DeleteMessage():
					await self._delete_message(connection, event)
				case ev.GetOnlineContacts():
					await self._online_contacts(connection)
				case ev.Disconnect():
					await self.close(connection.handle)
		except ChatError as exc:
			await self._error(connection, exc)
		except Exception:
			_log.exception("socket handler failed", extra={"event": type(event).__name__})
			await self._error(connection, ChatError("Internal error"))

	async def _authenticate(self, connection: Connection, event: ev.Authenticate) -> None:
		if connection.state is ConnectionState.AUTHENTICATED:
			if connection.user_id == event.user_id:
				await self._dispatcher.to_connection(connection.handle, "authenticated", {"success": True, "userId": event.user_id})
				return
			raise ValidationError("Connection already authenticated")
		try:
			verification = await self._verifier.verify(event.token)
		except Exception:
			_log.warning("token verification raised", exc_info=True)
			verification = None
		verified_id = canonical_user_id(verification.user_id) if verification and verification.user_id else None
		if verification is None or not verification.valid or verified_id != event.user_id:
			obs_metrics.socket_error("auth_failed")
			await self._dispatcher.to_connection(
				connection.handle,
				"authenticated",
				{"success": False, "error": "Authentication failed"},
			)
			return
		came_online = await self._presence.register(event.user_id, connection.handle)
		try:
			await self._dispatcher.attach(connection.handle, event.user_id)
		except Exception:
			await self._presence.unregister(connection.handle)
			raise
		connection.state = ConnectionState.AUTHENTICATED
		connection.user_id = event.user_id
		await self._record_presence()
		await self._dispatcher.to_connection(connection.handle, "authenticated", {"success": True, "userId": event.user_id})
		if came_online:
			await self._dispatcher.broadcast(
				"user_status_change",
				{"userId": event.user_id, "status": "online", "timestamp": _now_iso()},
				skip=connection.handle,
			)

	async def _send_message(self, connection: Connection, event: ev.SendMessage) -> None:
		result = await self._service.send_message(
			connection.user_id,  # type: ignore[arg-type]
			event.receiver_id,
			event.text,
			event.media,
			client_message_id=event.message_id,
		)
		await self._dispatcher.to_connection(
			connection.handle,
			"message_sent",
			{
				"messageId": result.message.message_id,
				"status": "delivered" if result.delivered_live else "sent",
				"timestamp": result.message.sent_at.isoformat(),
			},
		)

	async def _mark_read(self, connection: Connection, event: ev.MarkRead) -> None:
		count = await self._service.mark_read(connection.user_id, event.sender_id)  # type: ignore[arg-type]
		await self._dispatcher.to_connection(connection.handle, "marked_read", {"success": True, "count": count})

	async def _typing(self, connection: Connection, event: ev.Typing) -> None:
		try:
			await self._service.typing(connection.user_id, event.receiver_id, event.is_typing)  # type: ignore[arg-type]
		except Exception:
			# Typing indicators have no error surface.
			_log.debug("typing fan-out dropped", exc_info=True)

	async def _delete_message(self, connection: Connection, event: ev.DeleteMessage) -> None:
		message = await self._service.delete_message(connection.user_id, event.message_id)  # type: ignore[arg-type]
		await self._dispatcher.to_connection(
			connection.handle,
			"message_deleted",
			{"messageId": message.message_id, "success": True},
		)

	async def _online_contacts(self, connection: Connection) -> None:
		online = await self._service.online_contacts(connection.user_id)  # type: ignore[arg-type]
		await self._dispatcher.to_connection(
			connection.handle,
			"online_contacts",
			{"contacts": [{"userId": user_id, "status": "online"} for user_id in online]},
		)

	async def close(self, handle: str) -> None:
		"""Close ``handle``; broadcasts offline when it was the user's last connection."""
		connection = self._connections.pop(handle, None)
		if connection is None or connection.is_closed:
			return
		connection.state = ConnectionState.CLOSED
		if connection.user_id is None:
			return
		user_id, went_offline = await self._presence.unregister(handle)
		await self._record_presence()
		if went_offline and user_id:
			await self._dispatcher.broadcast(
				"user_status_change",
				{"userId": user_id, "status": "offline", "timestamp": _now_iso()},
				skip=handle,
			)

	async def _error(self, connection: Connection, exc: ChatError) -> None:
		obs_metrics.socket_error(exc.code)
		await self._dispatcher.to_connection(connection.handle, "error", {"message": exc.reason, "code": exc.code})

	async def _record_presence(self) -> None:
		online_users, connections = await self._presence.counts()
		obs_metrics.presence_changed(online_users, connections)
