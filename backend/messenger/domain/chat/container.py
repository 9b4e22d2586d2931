"""Wiring for the messaging components of one process."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from messenger.infra.auth import AuthVerifier, JwtAuthVerifier

from .cache import ViewCache
from .contacts import ContactDirectory, PostgresContactDirectory
from .conversations import ConversationIndex
from .delivery import Dispatcher
from .gateway import MessagingGateway
from .notifications import NotificationSpawner, OfflineNotifier, build_notifier
from .presence import PresenceRegistry
from .service import ChatService
from .sockets import SocketIOSink
from .store import MessageStore, PostgresMessageStore


@dataclass(slots=True)
class ChatContext:
	presence: PresenceRegistry
	store: MessageStore
	contacts: ContactDirectory
	index: ConversationIndex
	sink: Any
	dispatcher: Dispatcher
	notifications: NotificationSpawner
	service: ChatService
	gateway: MessagingGateway


def build_context(
	*,
	store: Optional[MessageStore] = None,
	contacts: Optional[ContactDirectory] = None,
	cache: Optional[ViewCache] = None,
	verifier: Optional[AuthVerifier] = None,
	notifier: Optional[OfflineNotifier] = None,
	sink: Any = None,
	shared: bool = False,
) -> ChatContext:
	"""Build one registry and everything that depends on it."""
	presence = PresenceRegistry()
	store = store or PostgresMessageStore()
	contacts = contacts or PostgresContactDirectory()
	sink = sink if sink is not None else SocketIOSink()
	index = ConversationIndex(store, contacts, presence, cache if cache is not None else ViewCache())
	dispatcher = Dispatcher(presence, sink, shared=shared)
	notifications = NotificationSpawner(notifier if notifier is not None else build_notifier())
	service = ChatService(store, contacts, presence, dispatcher, index, notifications)
	gateway = MessagingGateway(service, presence, dispatcher, verifier or JwtAuthVerifier())
	return ChatContext(
		presence=presence,
		store=store,
		contacts=contacts,
		index=index,
		sink=sink,
		dispatcher=dispatcher,
		notifications=notifications,
		service=service,
		gateway=gateway,
	)
