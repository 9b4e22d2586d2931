"""FastAPI endpoints for clients without a live socket connection.

Domain errors raised by the service propagate to the handlers installed in
``messenger.api.errors`` which map them onto status codes.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Request, Response, status

from messenger.domain.chat.models import canonical_user_id
from messenger.domain.chat.schemas import (
	AddContactRequest,
	AddContactResponse,
	ContactListResponse,
	ContactResponse,
	ConversationListResponse,
	ConversationMetaResponse,
	ConversationResponse,
	ImportContactsRequest,
	ImportContactsResponse,
	MessageListResponse,
	MessageResponse,
	MessageStatusResponse,
	SendMessageRequest,
	SendMessageResponse,
	StatusSummaryResponse,
	UnreadResponse,
	UnreadSenderResponse,
)
from messenger.domain.chat.service import ChatService
from messenger.infra.auth import AuthenticatedUser, get_current_user
from messenger.settings import settings

router = APIRouter(tags=["chat"])

_MAX_LIMIT = settings.chat_history_max_limit


def get_chat_service(request: Request) -> ChatService:
	return request.app.state.chat.service


def contact_path(contact_id: str = Path(..., min_length=1)) -> str:
	return canonical_user_id(contact_id)


@router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations_endpoint(
	page: int = Query(default=1, ge=1),
	limit: Optional[int] = Query(default=None, ge=1, le=_MAX_LIMIT),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(get_chat_service),
) -> ConversationListResponse:
	previews = await service.list_conversations(auth_user.id, page, limit)
	return ConversationListResponse(
		items=[ConversationResponse.from_model(preview) for preview in previews],
		page=page,
		limit=limit or settings.chat_history_default_limit,
	)


@router.post("/conversations/{contact_id}", response_model=ConversationMetaResponse)
async def open_conversation_endpoint(
	contact_id: str = Depends(contact_path),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(get_chat_service),
) -> ConversationMetaResponse:
	meta = await service.open_conversation(auth_user.id, contact_id)
	return ConversationMetaResponse.from_model(meta)


@router.get("/conversations/{contact_id}/messages", response_model=MessageListResponse)
async def conversation_history_endpoint(
	contact_id: str = Depends(contact_path),
	page: int = Query(default=1, ge=1),
	limit: Optional[int] = Query(default=None, ge=1, le=_MAX_LIMIT),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(get_chat_service),
) -> MessageListResponse:
	effective_limit = limit or settings.chat_history_default_limit
	messages, marked = await service.history(auth_user.id, contact_id, page, effective_limit, mark_read=True)
	return MessageListResponse(
		items=[MessageResponse.from_model(message) for message in messages],
		page=page,
		limit=effective_limit,
		has_more=len(messages) == effective_limit,
		marked_read=marked,
	)


@router.get("/conversations/{contact_id}/summary", response_model=StatusSummaryResponse)
async def conversation_summary_endpoint(
	contact_id: str = Depends(contact_path),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(get_chat_service),
) -> StatusSummaryResponse:
	summary = await service.conversation_summary(auth_user.id, contact_id)
	return StatusSummaryResponse.from_model(summary)


@router.post("/messages", response_model=SendMessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message_endpoint(
	payload: SendMessageRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(get_chat_service),
) -> SendMessageResponse:
	result = await service.send_message(
		auth_user.id,
		payload.receiver_id,
		payload.text,
		payload.media.to_ref() if payload.media else None,
		client_message_id=payload.message_id,
		channel="http",
	)
	return SendMessageResponse(
		message=MessageResponse.from_model(result.message),
		delivered_live=result.delivered_live,
	)


@router.get("/messages/unread", response_model=UnreadResponse)
async def unread_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(get_chat_service),
) -> UnreadResponse:
	count, breakdown = await service.unread(auth_user.id)
	return UnreadResponse(count=count, by_sender=[UnreadSenderResponse.from_model(row) for row in breakdown])


@router.get("/messages/{message_id}/status", response_model=MessageStatusResponse)
async def message_status_endpoint(
	message_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(get_chat_service),
) -> MessageStatusResponse:
	message = await service.message_status(auth_user.id, message_id)
	return MessageStatusResponse(
		message_id=message.message_id,
		status=message.status.value,
		sent_at=message.sent_at,
		delivered_at=message.delivered_at,
		read_at=message.read_at,
	)


@router.delete("/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message_endpoint(
	message_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(get_chat_service),
) -> Response:
	await service.delete_message(auth_user.id, message_id)
	return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/contacts", response_model=ContactListResponse)
async def list_contacts_endpoint(
	search: Optional[str] = Query(default=None, max_length=100),
	page: int = Query(default=1, ge=1),
	limit: Optional[int] = Query(default=None, ge=1, le=_MAX_LIMIT),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(get_chat_service),
) -> ContactListResponse:
	entries = await service.list_contacts(auth_user.id, page, limit, search)
	return ContactListResponse(
		items=[ContactResponse.from_model(entry) for entry in entries],
		page=page,
		limit=limit or settings.contacts_default_limit,
	)


@router.post("/contacts", response_model=AddContactResponse)
async def add_contact_endpoint(
	payload: AddContactRequest,
	response: Response,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(get_chat_service),
) -> AddContactResponse:
	created = await service.add_contact(auth_user.id, payload.contact_user_id)
	response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
	return AddContactResponse(contact_user_id=payload.contact_user_id, created=created)


@router.delete("/contacts/{contact_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_contact_endpoint(
	contact_id: str = Depends(contact_path),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(get_chat_service),
) -> Response:
	await service.remove_contact(auth_user.id, contact_id)
	return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/contacts/import", response_model=ImportContactsResponse)
async def import_contacts_endpoint(
	payload: ImportContactsRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: ChatService = Depends(get_chat_service),
) -> ImportContactsResponse:
	result = await service.import_contacts(auth_user.id, payload.phone_numbers)
	return ImportContactsResponse.from_model(result)
