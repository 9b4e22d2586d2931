"""Typed inbound socket events.

Each wire event name maps to exactly one frozen dataclass. ``parse_event``
validates the raw payload and returns the matching variant, so the gateway
dispatches over a closed set of types instead of event-name strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

import pydantic

from . import schemas
from .exceptions import ValidationError
from .models import MediaRef


@dataclass(slots=True, frozen=True)
class Authenticate:
	user_id: str
	token: str


@dataclass(slots=True, frozen=True)
class SendMessage:
	receiver_id: str
	text: Optional[str]
	media: Optional[MediaRef]
	message_id: Optional[str] = None


@dataclass(slots=True, frozen=True)
class MarkRead:
	sender_id: str


@dataclass(slots=True, frozen=True)
class Typing:
	receiver_id: str
	is_typing: bool


@dataclass(slots=True, frozen=True)
class DeleteMessage:
	message_id: str
	receiver_id: Optional[str] = None


@dataclass(slots=True, frozen=True)
class GetOnlineContacts:
	pass


@dataclass(slots=True, frozen=True)
class Disconnect:
	reason: Optional[str] = None


InboundEvent = Union[Authenticate, SendMessage, MarkRead, Typing, DeleteMessage, GetOnlineContacts, Disconnect]


def _validate(model: type[pydantic.BaseModel], payload: Any) -> Any:
	if not isinstance(payload, dict):
		raise ValidationError("Invalid payload")
	try:
		return model.model_validate(payload)
	except pydantic.ValidationError as exc:
		first = exc.errors()[0] if exc.errors() else {}
		field = ".".join(str(part) for part in first.get("loc", ()))
		raise ValidationError(f"Invalid payload: {field}" if field else "Invalid payload") from exc


def parse_event(name: str, payload: Any = None) -> InboundEvent:
	"""Validate a raw wire event and return its typed variant."""
	match name:
		case "authenticate":
			data = _validate(schemas.AuthenticatePayload, payload)
			return Authenticate(user_id=data.user_id, token=data.token)
		case "send_message":
			data = _validate(schemas.SocketSendPayload, payload)
			return SendMessage(
				receiver_id=data.receiver_id,
				text=data.text,
				media=data.media.to_ref() if data.media else None,
				message_id=data.message_id,
			)
		case "mark_read":
			data = _validate(schemas.MarkReadPayload, payload)
			return MarkRead(sender_id=data.sender_id)
		case "typing":
			data = _validate(schemas.TypingPayload, payload)
			return Typing(receiver_id=data.receiver_id, is_typing=data.is_typing)
		case "delete_message":
			data = _validate(schemas.DeleteMessagePayload, payload)
			return DeleteMessage(message_id=data.message_id, receiver_id=data.receiver_id)
		case "get_online_contacts":
			return GetOnlineContacts()
		case "disconnect":
			return Disconnect(reason=payload if isinstance(payload, str) else None)
		case _:
			raise ValidationError(f"Unknown event: {name}")


__all__ = [
	"Authenticate",
	"DeleteMessage",
	"Disconnect",
	"GetOnlineContacts",
	"InboundEvent",
	"MarkRead",
	"SendMessage",
	"Typing",
	"parse_event",
]
