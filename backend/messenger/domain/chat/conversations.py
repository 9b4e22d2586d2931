"""Read-side views over messages and contacts."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from .cache import ViewCache
from .contacts import ContactDirectory
from .exceptions import NotContactsError, SelfTargetError
from .models import ContactEntry, ConversationKey, ConversationMeta, ConversationPreview, Message
from .presence import PresenceRegistry
from .resilience import persist
from .store import MessageStore


class ConversationIndex:
	"""Conversation lists, history and contact listings for one user.

	Database-derived rows are cached per user; online flags are stamped on
	after the cache lookup from the live registry and are never stored.
	"""

	def __init__(
		self,
		store: MessageStore,
		contacts: ContactDirectory,
		presence: PresenceRegistry,
		cache: Optional[ViewCache] = None,
	) -> None:
		self._store = store
		self._contacts = contacts
		self._presence = presence
		self._cache = cache

	async def invalidate(self, *user_ids: str) -> None:
		if self._cache is not None:
			await self._cache.invalidate(*user_ids)

	async def list_conversations(self, user_id: str, page: int, limit: int) -> List[ConversationPreview]:
		offset = (max(page, 1) - 1) * limit

		async def build() -> list[dict]:
			rows = await persist(
				"conversation_previews",
				lambda: self._store.conversation_previews(user_id, limit, offset),
			)
			return [
				ConversationPreview(
					counterparty_id=message.counterparty(user_id),
					last_message=message,
					unread_count=unread,
					counterparty_name=name,
					counterparty_avatar_url=avatar,
				).to_dict()
				for message, unread, name, avatar in rows
			]

		if self._cache is None:
			raw = await build()
		else:
			raw = await self._cache.get_or_build(user_id, f"conversations:{page}:{limit}", builder=build)
		previews = [ConversationPreview.from_dict(item) for item in raw]
		online = await self._presence.snapshot()
		for preview in previews:
			preview.is_online = preview.counterparty_id in online
		return previews

	async def history(self, user_id: str, other_id: str, page: int, limit: int) -> List[Message]:
		return await persist("history", lambda: self._store.history(user_id, other_id, page, limit))

	async def list_contacts(
		self,
		user_id: str,
		page: int,
		limit: int,
		search: Optional[str] = None,
	) -> List[ContactEntry]:
		async def build() -> list[dict]:
			entries = await persist(
				"list_contacts",
				lambda: self._contacts.list_contacts(user_id, page, limit, search),
			)
			return [entry.to_dict() for entry in entries]

		# Search results are not cached, matching the unbounded key space.
		if self._cache is None or search:
			raw = await build()
		else:
			raw = await self._cache.get_or_build(user_id, f"contacts:{page}:{limit}", builder=build)
		entries = [ContactEntry.from_dict(item) for item in raw]
		online = await self._presence.snapshot()
		for entry in entries:
			entry.is_online = entry.user_id in online
		return entries

	async def open_conversation(self, user_id: str, other_id: str) -> ConversationMeta:
		"""Return metadata for the pair's conversation, requiring a contact link."""
		if user_id == other_id:
			raise SelfTargetError("Cannot open a conversation with yourself")
		allowed = await persist("are_contacts", lambda: self._contacts.are_contacts(user_id, other_id))
		if not allowed:
			raise NotContactsError()
		first_at, last_at = await persist(
			"conversation_bounds",
			lambda: self._store.conversation_bounds(user_id, other_id),
		)
		now = datetime.now(timezone.utc)
		return ConversationMeta(
			participants=ConversationKey.from_participants(user_id, other_id).participants(),
			created_at=first_at or now,
			last_active=last_at or now,
		)
