import pytest

from messenger.domain.chat.exceptions import NotContactsError, SelfTargetError


@pytest.mark.asyncio
async def test_open_conversation_requires_contacts(chat_context):
	with pytest.raises(NotContactsError) as excinfo:
		await chat_context.index.open_conversation("alice", "carol")

	assert excinfo.value.reason == "Users are not contacts"


@pytest.mark.asyncio
async def test_open_conversation_rejects_self(chat_context):
	with pytest.raises(SelfTargetError):
		await chat_context.index.open_conversation("alice", "alice")


@pytest.mark.asyncio
async def test_open_conversation_meta_is_order_independent(chat_context, friends):
	await chat_context.service.send_message("bob", "alice", "first")

	forward = await chat_context.index.open_conversation("alice", "bob")
	backward = await chat_context.index.open_conversation("bob", "alice")

	assert forward.participants == backward.participants == ("alice", "bob")
	assert forward.created_at == backward.created_at


@pytest.mark.asyncio
async def test_conversation_list_reflects_new_messages(chat_context, friends):
	assert await chat_context.index.list_conversations("alice", 1, 20) == []

	await chat_context.service.send_message("bob", "alice", "hello")
	previews = await chat_context.index.list_conversations("alice", 1, 20)

	assert [p.counterparty_id for p in previews] == ["bob"]
	assert previews[0].last_message.body == "hello"
	assert previews[0].unread_count == 1
	assert previews[0].counterparty_name == "Bob Jones"


@pytest.mark.asyncio
async def test_online_flag_is_live_not_cached(chat_context, friends):
	await chat_context.service.send_message("bob", "alice", "hello")
	first = await chat_context.index.list_conversations("alice", 1, 20)
	assert first[0].is_online is False

	await chat_context.presence.register("bob", "sid-bob")
	second = await chat_context.index.list_conversations("alice", 1, 20)

	assert second[0].is_online is True


@pytest.mark.asyncio
async def test_contact_listing_flags_online_contacts(chat_context, friends):
	await chat_context.presence.register("bob", "sid-bob")

	entries = await chat_context.index.list_contacts("alice", 1, 50)

	assert [(entry.user_id, entry.is_online) for entry in entries] == [("bob", True)]
