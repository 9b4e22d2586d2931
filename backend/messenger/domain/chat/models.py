"""Domain models for direct messages, contacts, and conversation views."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional, Tuple


def canonical_user_id(value: str) -> str:
	"""Return the single spelling of a user id used for storage, presence and rooms.

	UUIDs compare by value, so every spelling of one maps to the lowercase
	hyphenated form Postgres returns. Other ids are only trimmed.
	"""
	value = str(value or "").strip()
	try:
		return str(uuid.UUID(value))
	except ValueError:
		return value


class MessageStatus(str, Enum):
	SENT = "sent"
	DELIVERED = "delivered"
	READ = "read"
	DELETED = "deleted"


@dataclass(slots=True, frozen=True)
class ConversationKey:
	"""Canonical representation of a 1:1 conversation (unordered pair)."""

	user_a: str
	user_b: str

	@classmethod
	def from_participants(cls, user_one: str, user_two: str) -> "ConversationKey":
		ordered = tuple(sorted((str(user_one), str(user_two))))
		return cls(user_a=ordered[0], user_b=ordered[1])

	@property
	def conversation_id(self) -> str:
		return f"chat:{self.user_a}:{self.user_b}"

	def participants(self) -> Tuple[str, str]:
		return (self.user_a, self.user_b)

	def other(self, user_id: str) -> str:
		return self.user_b if user_id == self.user_a else self.user_a


@dataclass(slots=True, frozen=True)
class MediaRef:
	"""Reference to an already-uploaded attachment."""

	content_type: str
	url: str
	thumbnail_url: Optional[str] = None
	size_bytes: Optional[int] = None
	duration_seconds: Optional[float] = None
	title: Optional[str] = None

	def to_dict(self) -> dict:
		return {
			"content_type": self.content_type,
			"url": self.url,
			"thumbnail_url": self.thumbnail_url,
			"size_bytes": self.size_bytes,
			"duration_seconds": self.duration_seconds,
			"title": self.title,
		}

	@classmethod
	def from_value(cls, raw: Any) -> Optional["MediaRef"]:
		if raw is None:
			return None
		if isinstance(raw, MediaRef):
			return raw
		if isinstance(raw, str):
			raw = json.loads(raw) if raw else None
			if raw is None:
				return None
		return cls(
			content_type=str(raw["content_type"]),
			url=str(raw["url"]),
			thumbnail_url=raw.get("thumbnail_url"),
			size_bytes=raw.get("size_bytes"),
			duration_seconds=raw.get("duration_seconds"),
			title=raw.get("title"),
		)


@dataclass(slots=True)
class Message:
	message_id: str
	seq: int
	sender_id: str
	receiver_id: str
	body: Optional[str]
	media: Optional[MediaRef]
	status: MessageStatus
	sent_at: datetime
	delivered_at: Optional[datetime] = None
	read_at: Optional[datetime] = None
	deleted_at: Optional[datetime] = None

	@property
	def is_deleted(self) -> bool:
		return self.deleted_at is not None

	def counterparty(self, user_id: str) -> str:
		return self.receiver_id if user_id == self.sender_id else self.sender_id

	def is_participant(self, user_id: str) -> bool:
		return user_id in (self.sender_id, self.receiver_id)

	def to_dict(self) -> dict:
		return {
			"message_id": self.message_id,
			"seq": self.seq,
			"sender_id": self.sender_id,
			"receiver_id": self.receiver_id,
			"body": self.body,
			"media": self.media.to_dict() if self.media else None,
			"status": self.status.value,
			"sent_at": self.sent_at.isoformat(),
			"delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
			"read_at": self.read_at.isoformat() if self.read_at else None,
			"deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
		}

	@classmethod
	def from_record(cls, record: Mapping[str, Any]) -> "Message":
		return cls(
			message_id=str(record["message_id"]),
			seq=int(record["seq"]),
			sender_id=str(record["sender_id"]),
			receiver_id=str(record["receiver_id"]),
			body=record["body"],
			media=MediaRef.from_value(record["media"]),
			status=MessageStatus(record["status"]),
			sent_at=record["sent_at"],
			delivered_at=record["delivered_at"],
			read_at=record["read_at"],
			deleted_at=record["deleted_at"],
		)


@dataclass(slots=True)
class UserProfile:
	user_id: str
	name: Optional[str]
	email: Optional[str] = None
	phone: Optional[str] = None
	avatar_url: Optional[str] = None

	@classmethod
	def from_record(cls, record: Mapping[str, Any]) -> "UserProfile":
		return cls(
			user_id=str(record["id"]),
			name=record.get("full_name"),
			email=record.get("email"),
			phone=record.get("phone_number"),
			avatar_url=record.get("profile_picture_url"),
		)


@dataclass(slots=True)
class ContactEntry:
	user_id: str
	name: Optional[str]
	email: Optional[str]
	phone: Optional[str]
	avatar_url: Optional[str]
	unread_count: int = 0
	last_interaction: Optional[datetime] = None
	is_online: bool = False

	def to_dict(self) -> dict:
		return {
			"user_id": self.user_id,
			"name": self.name,
			"email": self.email,
			"phone": self.phone,
			"avatar_url": self.avatar_url,
			"unread_count": self.unread_count,
			"last_interaction": self.last_interaction.isoformat() if self.last_interaction else None,
			"is_online": self.is_online,
		}

	@classmethod
	def from_dict(cls, raw: Mapping[str, Any]) -> "ContactEntry":
		last = raw.get("last_interaction")
		return cls(
			user_id=str(raw["user_id"]),
			name=raw.get("name"),
			email=raw.get("email"),
			phone=raw.get("phone"),
			avatar_url=raw.get("avatar_url"),
			unread_count=int(raw.get("unread_count") or 0),
			last_interaction=datetime.fromisoformat(last) if isinstance(last, str) else last,
			is_online=bool(raw.get("is_online", False)),
		)


@dataclass(slots=True)
class ConversationPreview:
	"""One row of a user's conversation list."""

	counterparty_id: str
	last_message: Message
	unread_count: int
	counterparty_name: Optional[str] = None
	counterparty_avatar_url: Optional[str] = None
	is_online: bool = False

	def to_dict(self) -> dict:
		return {
			"counterparty_id": self.counterparty_id,
			"counterparty_name": self.counterparty_name,
			"counterparty_avatar_url": self.counterparty_avatar_url,
			"last_message": self.last_message.to_dict(),
			"unread_count": self.unread_count,
			"is_online": self.is_online,
		}

	@classmethod
	def from_dict(cls, raw: Mapping[str, Any]) -> "ConversationPreview":
		message = dict(raw["last_message"])
		for key in ("sent_at", "delivered_at", "read_at", "deleted_at"):
			if isinstance(message.get(key), str):
				message[key] = datetime.fromisoformat(message[key])
		return cls(
			counterparty_id=str(raw["counterparty_id"]),
			last_message=Message.from_record(message),
			unread_count=int(raw.get("unread_count") or 0),
			counterparty_name=raw.get("counterparty_name"),
			counterparty_avatar_url=raw.get("counterparty_avatar_url"),
			is_online=bool(raw.get("is_online", False)),
		)


@dataclass(slots=True)
class ConversationMeta:
	"""Reconstructable metadata for a conversation; never persisted."""

	participants: Tuple[str, str]
	created_at: Optional[datetime]
	last_active: Optional[datetime]

	def to_dict(self) -> dict:
		return {
			"participants": list(self.participants),
			"created_at": self.created_at.isoformat() if self.created_at else None,
			"last_active": self.last_active.isoformat() if self.last_active else None,
		}


@dataclass(slots=True)
class StatusSummary:
	counts: dict[str, int] = field(default_factory=dict)
	total: int = 0
	last_message_at: Optional[datetime] = None

	def to_dict(self) -> dict:
		return {
			"counts": dict(self.counts),
			"total": self.total,
			"last_message_at": self.last_message_at.isoformat() if self.last_message_at else None,
		}


@dataclass(slots=True)
class UnreadBySender:
	sender_id: str
	sender_name: Optional[str]
	unread_count: int


@dataclass(slots=True)
class ImportResult:
	added: int = 0
	already_exists: int = 0
	not_found: int = 0
	contacts: list[str] = field(default_factory=list)

	def to_dict(self) -> dict:
		return {
			"added": self.added,
			"already_exists": self.already_exists,
			"not_found": self.not_found,
			"contacts": list(self.contacts),
		}
