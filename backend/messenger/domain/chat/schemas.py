"""Pydantic schemas for the messaging HTTP API and socket payloads."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from messenger.settings import settings

from .models import (
	ContactEntry,
	ConversationMeta,
	ConversationPreview,
	ImportResult,
	MediaRef,
	Message,
	StatusSummary,
	UnreadBySender,
	canonical_user_id,
)


def _user_id(value: Optional[str]) -> Optional[str]:
	if value is None:
		return None
	value = canonical_user_id(value)
	if not value:
		raise ValueError("user id is blank")
	return value


class MediaPayload(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	content_type: str = Field(..., min_length=1, max_length=128, alias="contentType")
	url: str = Field(..., min_length=1, max_length=2048)
	thumbnail_url: Optional[str] = Field(default=None, max_length=2048, alias="thumbnailUrl")
	size_bytes: Optional[int] = Field(default=None, ge=0, alias="size")
	duration_seconds: Optional[float] = Field(default=None, ge=0, alias="duration")
	title: Optional[str] = Field(default=None, max_length=255)

	def to_ref(self) -> MediaRef:
		return MediaRef(
			content_type=self.content_type,
			url=self.url,
			thumbnail_url=self.thumbnail_url,
			size_bytes=self.size_bytes,
			duration_seconds=self.duration_seconds,
			title=self.title,
		)

	@classmethod
	def from_ref(cls, ref: MediaRef) -> "MediaPayload":
		return cls.model_validate(ref.to_dict())


class _MessageContent(BaseModel):
	text: Optional[str] = None
	media: Optional[MediaPayload] = None

	@model_validator(mode="after")
	def _require_content(self):
		if self.text is not None:
			self.text = self.text.strip() or None
		if self.text is None and self.media is None:
			raise ValueError("text or media is required")
		if self.text is not None and len(self.text) > settings.chat_message_max_length:
			raise ValueError("text too long")
		return self


class SendMessageRequest(_MessageContent):
	model_config = ConfigDict(populate_by_name=True)

	receiver_id: str = Field(..., min_length=1, alias="receiverId")
	media: Optional[MediaPayload] = Field(default=None, alias="mediaData")
	message_id: Optional[str] = Field(default=None, alias="messageId", description="Client-generated ULID")

	@field_validator("receiver_id")
	def canonical_receiver(cls, value: str) -> str:
		return _user_id(value)


class MessageResponse(BaseModel):
	message_id: str
	seq: int
	sender_id: str
	receiver_id: str
	body: Optional[str]
	media: Optional[MediaPayload]
	status: str
	sent_at: datetime
	delivered_at: Optional[datetime] = None
	read_at: Optional[datetime] = None

	@classmethod
	def from_model(cls, message: Message) -> "MessageResponse":
		return cls(
			message_id=message.message_id,
			seq=message.seq,
			sender_id=message.sender_id,
			receiver_id=message.receiver_id,
			body=message.body,
			media=MediaPayload.from_ref(message.media) if message.media else None,
			status=message.status.value,
			sent_at=message.sent_at,
			delivered_at=message.delivered_at,
			read_at=message.read_at,
		)


class SendMessageResponse(BaseModel):
	message: MessageResponse
	delivered_live: bool


class MessageListResponse(BaseModel):
	items: List[MessageResponse]
	page: int
	limit: int
	has_more: bool
	marked_read: int = 0


class MessageStatusResponse(BaseModel):
	message_id: str
	status: str
	sent_at: datetime
	delivered_at: Optional[datetime] = None
	read_at: Optional[datetime] = None


class UnreadSenderResponse(BaseModel):
	sender_id: str
	sender_name: Optional[str] = None
	unread_count: int

	@classmethod
	def from_model(cls, row: UnreadBySender) -> "UnreadSenderResponse":
		return cls(sender_id=row.sender_id, sender_name=row.sender_name, unread_count=row.unread_count)


class UnreadResponse(BaseModel):
	count: int
	by_sender: List[UnreadSenderResponse] = Field(default_factory=list)


class ConversationResponse(BaseModel):
	counterparty_id: str
	counterparty_name: Optional[str] = None
	counterparty_avatar_url: Optional[str] = None
	last_message: MessageResponse
	unread_count: int
	is_online: bool

	@classmethod
	def from_model(cls, preview: ConversationPreview) -> "ConversationResponse":
		return cls(
			counterparty_id=preview.counterparty_id,
			counterparty_name=preview.counterparty_name,
			counterparty_avatar_url=preview.counterparty_avatar_url,
			last_message=MessageResponse.from_model(preview.last_message),
			unread_count=preview.unread_count,
			is_online=preview.is_online,
		)


class ConversationListResponse(BaseModel):
	items: List[ConversationResponse]
	page: int
	limit: int


class ConversationMetaResponse(BaseModel):
	participants: List[str]
	created_at: Optional[datetime] = None
	last_active: Optional[datetime] = None

	@classmethod
	def from_model(cls, meta: ConversationMeta) -> "ConversationMetaResponse":
		return cls(participants=list(meta.participants), created_at=meta.created_at, last_active=meta.last_active)


class StatusSummaryResponse(BaseModel):
	counts: dict[str, int]
	total: int
	last_message_at: Optional[datetime] = None

	@classmethod
	def from_model(cls, summary: StatusSummary) -> "StatusSummaryResponse":
		return cls(counts=dict(summary.counts), total=summary.total, last_message_at=summary.last_message_at)


class ContactResponse(BaseModel):
	user_id: str
	name: Optional[str] = None
	email: Optional[str] = None
	phone: Optional[str] = None
	avatar_url: Optional[str] = None
	unread_count: int = 0
	last_interaction: Optional[datetime] = None
	is_online: bool = False

	@classmethod
	def from_model(cls, entry: ContactEntry) -> "ContactResponse":
		return cls(
			user_id=entry.user_id,
			name=entry.name,
			email=entry.email,
			phone=entry.phone,
			avatar_url=entry.avatar_url,
			unread_count=entry.unread_count,
			last_interaction=entry.last_interaction,
			is_online=entry.is_online,
		)


class ContactListResponse(BaseModel):
	items: List[ContactResponse]
	page: int
	limit: int


class AddContactRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	contact_user_id: str = Field(..., min_length=1, alias="contactUserId")

	@field_validator("contact_user_id")
	def canonical_contact(cls, value: str) -> str:
		return _user_id(value)


class AddContactResponse(BaseModel):
	contact_user_id: str
	created: bool


class ImportContactsRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	phone_numbers: List[str] = Field(..., min_length=1, max_length=500, alias="phoneNumbers")


class ImportContactsResponse(BaseModel):
	added: int
	already_exists: int
	not_found: int
	contacts: List[str]

	@classmethod
	def from_model(cls, result: ImportResult) -> "ImportContactsResponse":
		return cls(**result.to_dict())


# Socket wire payloads; events.py converts these into typed inbound events.


class AuthenticatePayload(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	user_id: str = Field(..., min_length=1, alias="userId")
	token: str = Field(..., min_length=1)

	@field_validator("user_id")
	def canonical_user(cls, value: str) -> str:
		return _user_id(value)


class SocketSendPayload(SendMessageRequest):
	pass


class MarkReadPayload(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	sender_id: str = Field(..., min_length=1, alias="senderId")

	@field_validator("sender_id")
	def canonical_sender(cls, value: str) -> str:
		return _user_id(value)


class TypingPayload(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	receiver_id: str = Field(..., min_length=1, alias="receiverId")
	is_typing: bool = Field(..., alias="isTyping")

	@field_validator("receiver_id")
	def canonical_receiver(cls, value: str) -> str:
		return _user_id(value)


class DeleteMessagePayload(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	message_id: str = Field(..., min_length=1, alias="messageId")
	receiver_id: Optional[str] = Field(default=None, alias="receiverId")

	@field_validator("receiver_id")
	def canonical_receiver(cls, value: Optional[str]) -> Optional[str]:
		return _user_id(value)
