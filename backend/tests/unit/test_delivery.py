from unittest.mock import AsyncMock

import pytest

from messenger.domain.chat.delivery import ONLINE_ROOM, Dispatcher, user_room
from messenger.domain.chat.presence import PresenceRegistry


@pytest.mark.asyncio
async def test_to_user_reaches_every_local_handle():
	presence = PresenceRegistry()
	await presence.register("bob", "b1")
	await presence.register("bob", "b2")
	sink = AsyncMock()

	reached = await Dispatcher(presence, sink).to_user("bob", "new_message", {"body": "hi"})

	assert reached == 2
	targets = sorted(call.kwargs["to"] for call in sink.emit.await_args_list)
	assert targets == ["b1", "b2"]


@pytest.mark.asyncio
async def test_failed_write_does_not_stop_other_handles():
	presence = PresenceRegistry()
	await presence.register("bob", "b1")
	await presence.register("bob", "b2")
	sink = AsyncMock()

	async def emit(event, data, *, to):
		if to == "b1":
			raise ConnectionResetError("gone")

	sink.emit.side_effect = emit

	assert await Dispatcher(presence, sink).to_user("bob", "new_message", {}) == 1


@pytest.mark.asyncio
async def test_offline_user_gets_nothing():
	sink = AsyncMock()

	assert await Dispatcher(PresenceRegistry(), sink).to_user("bob", "user_typing", {}) == 0
	sink.emit.assert_not_awaited()


@pytest.mark.asyncio
async def test_shared_mode_routes_through_user_room():
	presence = PresenceRegistry()
	await presence.register("bob", "b1")
	sink = AsyncMock()
	dispatcher = Dispatcher(presence, sink, shared=True)

	reached = await dispatcher.to_user("bob", "new_message", {"body": "hi"})

	assert reached == 1
	sink.emit_room.assert_awaited_once_with("new_message", {"body": "hi"}, room=user_room("bob"))
	sink.emit.assert_not_awaited()


@pytest.mark.asyncio
async def test_attach_and_broadcast_use_rooms():
	sink = AsyncMock()
	dispatcher = Dispatcher(PresenceRegistry(), sink)

	await dispatcher.attach("a1", "alice")
	await dispatcher.broadcast("user_status_change", {"userId": "alice"}, skip="a1")

	assert [call.args for call in sink.join.await_args_list] == [("a1", "user:alice"), ("a1", ONLINE_ROOM)]
	sink.emit_room.assert_awaited_once_with("user_status_change", {"userId": "alice"}, room=ONLINE_ROOM, skip="a1")
