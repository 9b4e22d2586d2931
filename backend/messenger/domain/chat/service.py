"""Messaging operations shared by the socket gateway and the HTTP API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

import ulid

from messenger.obs import metrics as obs_metrics
from messenger.settings import settings

from .contacts import ContactDirectory
from .conversations import ConversationIndex
from .delivery import Dispatcher
from .exceptions import (
	NotContactsError,
	NotFoundError,
	NotOwnerError,
	PersistenceError,
	SelfTargetError,
	ValidationError,
)
from .models import (
	ContactEntry,
	ConversationMeta,
	ConversationPreview,
	ImportResult,
	MediaRef,
	Message,
	MessageStatus,
	StatusSummary,
	UnreadBySender,
	canonical_user_id,
)
from .notifications import NotificationSpawner
from .presence import PresenceRegistry
from .resilience import persist
from .store import MessageStore

_log = logging.getLogger(__name__)


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat()


def _new_message_id(client_id: Optional[str]) -> str:
	if not client_id:
		return str(ulid.new())
	try:
		return str(ulid.from_str(client_id))
	except ValueError as exc:
		raise ValidationError("Invalid payload: messageId") from exc


@dataclass(slots=True)
class SendResult:
	message: Message
	delivered_live: bool


class ChatService:
	"""Validates, persists and fans out messaging actions for one caller."""

	def __init__(
		self,
		store: MessageStore,
		contacts: ContactDirectory,
		presence: PresenceRegistry,
		dispatcher: Dispatcher,
		index: ConversationIndex,
		notifications: Optional[NotificationSpawner] = None,
	) -> None:
		self._store = store
		self._contacts = contacts
		self._presence = presence
		self._dispatcher = dispatcher
		self._index = index
		self._notifications = notifications or NotificationSpawner(None)

	@property
	def index(self) -> ConversationIndex:
		return self._index

	async def send_message(
		self,
		sender_id: str,
		receiver_id: str,
		text: Optional[str],
		media: Optional[MediaRef] = None,
		*,
		client_message_id: Optional[str] = None,
		channel: str = "socket",
	) -> SendResult:
		sender_id, receiver_id = canonical_user_id(sender_id), canonical_user_id(receiver_id)
		if sender_id == receiver_id:
			raise SelfTargetError("Cannot message yourself")
		body = text.strip() if text else None
		if not body and media is None:
			raise ValidationError("Message text or media is required")
		if body and len(body) > settings.chat_message_max_length:
			raise ValidationError("Message text is too long")
		message_id = _new_message_id(client_message_id)
		allowed = await persist("are_contacts", lambda: self._contacts.are_contacts(sender_id, receiver_id))
		if not allowed:
			raise NotContactsError()
		message = await persist(
			"create_message",
			lambda: self._store.create(message_id, sender_id, receiver_id, body or None, media),
		)
		if message.sender_id != sender_id or message.receiver_id != receiver_id:
			raise ValidationError("Message id already used")
		obs_metrics.inc_chat_send(channel)
		await self._index.invalidate(sender_id, receiver_id)

		pushed = await self._dispatcher.to_user(receiver_id, "new_message", message.to_dict())
		if pushed:
			obs_metrics.inc_chat_live_delivery()
			await self._mark_delivered(message)
		else:
			self._notifications.spawn(message, self._contacts)
		return SendResult(message=message, delivered_live=pushed > 0)

	async def _mark_delivered(self, message: Message) -> None:
		try:
			await persist("mark_delivered", lambda: self._store.mark_delivered([message.message_id]))
		except PersistenceError:
			# The message itself is stored; only the status lags until read.
			_log.warning("delivered status not recorded", extra={"message_id": message.message_id})
			return
		if message.status is MessageStatus.SENT:
			message.status = MessageStatus.DELIVERED
			message.delivered_at = message.delivered_at or datetime.now(timezone.utc)

	async def mark_read(self, reader_id: str, counterparty_id: str) -> int:
		"""Mark the reader's unread messages from ``counterparty_id`` as read."""
		count = await persist("mark_read", lambda: self._store.mark_read(reader_id, counterparty_id))
		if count:
			obs_metrics.inc_chat_read(count)
			await self._index.invalidate(reader_id, counterparty_id)
			await self._dispatcher.to_user(
				counterparty_id,
				"messages_read",
				{"by": reader_id, "count": count, "timestamp": _now_iso()},
			)
		return count

	async def typing(self, sender_id: str, receiver_id: str, is_typing: bool) -> None:
		if sender_id == receiver_id:
			return
		await self._dispatcher.to_user(receiver_id, "user_typing", {"userId": sender_id, "isTyping": is_typing})

	async def delete_message(self, user_id: str, message_id: str) -> Message:
		message = await persist("get_message", lambda: self._store.get(message_id))
		if message is None:
			raise NotFoundError("Message not found")
		if message.sender_id != user_id:
			raise NotOwnerError()
		if message.is_deleted:
			return message
		deleted = await persist("soft_delete", lambda: self._store.soft_delete(message_id, user_id))
		if not deleted:
			refreshed = await persist("get_message", lambda: self._store.get(message_id))
			if refreshed is None:
				raise NotFoundError("Message not found")
			return refreshed
		obs_metrics.inc_chat_delete()
		await self._index.invalidate(message.sender_id, message.receiver_id)
		await self._dispatcher.to_user(message.receiver_id, "message_deleted", {"messageId": message_id})
		refreshed = await persist("get_message", lambda: self._store.get(message_id))
		return refreshed or message

	async def history(
		self,
		user_id: str,
		other_id: str,
		page: int = 1,
		limit: Optional[int] = None,
		*,
		mark_read: bool = False,
	) -> Tuple[List[Message], int]:
		limit = _bounded_limit(limit)
		messages = await self._index.history(user_id, other_id, page, limit)
		marked = 0
		if mark_read and other_id != user_id:
			marked = await self.mark_read(user_id, other_id)
		return messages, marked

	async def message_status(self, user_id: str, message_id: str) -> Message:
		message = await persist("get_message", lambda: self._store.get(message_id))
		if message is None or not message.is_participant(user_id):
			raise NotFoundError("Message not found")
		return message

	async def unread(self, user_id: str) -> Tuple[int, List[UnreadBySender]]:
		count = await persist("unread_count", lambda: self._store.unread_count(user_id))
		breakdown = await persist("unread_breakdown", lambda: self._store.unread_breakdown(user_id))
		return count, breakdown

	async def conversation_summary(self, user_id: str, other_id: str) -> StatusSummary:
		return await persist("status_summary", lambda: self._store.status_summary(user_id, other_id))

	async def list_conversations(self, user_id: str, page: int = 1, limit: Optional[int] = None) -> List[ConversationPreview]:
		return await self._index.list_conversations(user_id, page, _bounded_limit(limit))

	async def open_conversation(self, user_id: str, other_id: str) -> ConversationMeta:
		return await self._index.open_conversation(user_id, other_id)

	async def online_contacts(self, user_id: str) -> List[str]:
		contact_ids = await persist("contact_ids", lambda: self._contacts.contact_ids(user_id))
		online = await self._presence.snapshot()
		return [contact_id for contact_id in contact_ids if contact_id in online]

	async def list_contacts(
		self,
		user_id: str,
		page: int = 1,
		limit: Optional[int] = None,
		search: Optional[str] = None,
	) -> List[ContactEntry]:
		limit = max(1, min(limit or settings.contacts_default_limit, settings.chat_history_max_limit))
		return await self._index.list_contacts(user_id, page, limit, search or None)

	async def add_contact(self, user_id: str, contact_user_id: str) -> bool:
		created = await persist("add_contact", lambda: self._contacts.add(user_id, contact_user_id))
		if created:
			await self._index.invalidate(user_id, contact_user_id)
		return created

	async def remove_contact(self, user_id: str, contact_user_id: str) -> bool:
		removed = await persist("remove_contact", lambda: self._contacts.remove(user_id, contact_user_id))
		if not removed:
			raise NotFoundError("Contact not found")
		await self._index.invalidate(user_id, contact_user_id)
		return removed

	async def import_contacts(self, user_id: str, numbers: Sequence[str]) -> ImportResult:
		if not numbers:
			raise ValidationError("Phone numbers are required")
		result = await persist("import_contacts", lambda: self._contacts.import_from_phone_numbers(user_id, numbers))
		if result.added:
			await self._index.invalidate(user_id, *result.contacts)
		return result


def _bounded_limit(limit: Optional[int]) -> int:
	if not limit:
		return settings.chat_history_default_limit
	return max(1, min(int(limit), settings.chat_history_max_limit))
