"""Domain-level exceptions for messaging and contacts."""

from __future__ import annotations


class ChatError(Exception):
	"""Base class for messaging errors."""

	reason: str = "unknown"
	code: str = "chat_error"

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class AuthenticationError(ChatError):
	reason = "Not authenticated"
	code = "unauthenticated"


class AuthorizationError(ChatError):
	reason = "forbidden"
	code = "forbidden"


class NotContactsError(AuthorizationError):
	reason = "Users are not contacts"
	code = "not_contacts"


class NotOwnerError(AuthorizationError):
	reason = "Only the sender can delete a message"
	code = "not_owner"


class ValidationError(ChatError):
	reason = "invalid_payload"
	code = "invalid_payload"


class SelfTargetError(ValidationError):
	reason = "Cannot target yourself"
	code = "self_target"


class NotFoundError(ChatError):
	reason = "not_found"
	code = "not_found"


class PersistenceError(ChatError):
	"""Datastore unavailable or timed out. The detail stays in the logs."""

	reason = "Service temporarily unavailable"
	code = "unavailable"
