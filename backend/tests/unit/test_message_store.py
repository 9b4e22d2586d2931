from datetime import datetime, timedelta, timezone

import pytest

from messenger.domain.chat.models import MediaRef, MessageStatus
from messenger.domain.chat.store import InMemoryMessageStore

FIXED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class SteppingClock:
	def __init__(self, start: datetime = FIXED, step: timedelta = timedelta(seconds=1)) -> None:
		self.now = start
		self.step = step

	def __call__(self) -> datetime:
		current = self.now
		self.now = self.now + self.step
		return current


@pytest.mark.asyncio
async def test_create_is_idempotent_on_message_id():
	store = InMemoryMessageStore()

	first = await store.create("m-1", "alice", "bob", "hello", None)
	again = await store.create("m-1", "alice", "bob", "hello again", None)

	assert again.seq == first.seq
	assert again.body == "hello"
	assert await store.count_all("alice", "bob") == 1


@pytest.mark.asyncio
async def test_new_message_starts_sent():
	store = InMemoryMessageStore()
	media = MediaRef(content_type="image/png", url="https://cdn.example.com/a.png")

	message = await store.create("m-1", "alice", "bob", None, media)

	assert message.status is MessageStatus.SENT
	assert message.delivered_at is None and message.read_at is None
	assert (await store.get("m-1")).media.url == "https://cdn.example.com/a.png"


@pytest.mark.asyncio
async def test_read_at_is_set_once():
	clock = SteppingClock()
	store = InMemoryMessageStore(clock=clock)
	await store.create("m-1", "alice", "bob", "one", None)
	await store.create("m-2", "alice", "bob", "two", None)

	assert await store.mark_read("bob", "alice") == 2
	first_read = (await store.get("m-1")).read_at

	assert await store.mark_read("bob", "alice") == 0
	assert (await store.get("m-1")).read_at == first_read
	assert (await store.get("m-1")).status is MessageStatus.READ


@pytest.mark.asyncio
async def test_mark_read_only_touches_incoming_direction():
	store = InMemoryMessageStore()
	await store.create("m-1", "alice", "bob", "to bob", None)
	await store.create("m-2", "bob", "alice", "to alice", None)

	assert await store.mark_read("bob", "alice") == 1
	assert (await store.get("m-2")).read_at is None


@pytest.mark.asyncio
async def test_mark_delivered_never_downgrades_read():
	store = InMemoryMessageStore()
	await store.create("m-1", "alice", "bob", "hi", None)
	await store.mark_read("bob", "alice")

	assert await store.mark_delivered(["m-1", "missing"]) == 0
	assert (await store.get("m-1")).status is MessageStatus.READ


@pytest.mark.asyncio
async def test_history_pages_do_not_overlap_with_equal_timestamps():
	store = InMemoryMessageStore(clock=lambda: FIXED)
	for index in range(7):
		sender, receiver = ("alice", "bob") if index % 2 == 0 else ("bob", "alice")
		await store.create(f"m-{index}", sender, receiver, f"body {index}", None)

	pages = [await store.history("alice", "bob", page, 3) for page in (1, 2, 3)]
	ids = [message.message_id for page in pages for message in page]

	assert [len(page) for page in pages] == [3, 3, 1]
	assert len(ids) == len(set(ids)) == 7
	assert ids[0] == "m-6"
	assert await store.history("bob", "alice", 1, 3) == pages[0]


@pytest.mark.asyncio
async def test_soft_delete_hides_from_history_but_keeps_row():
	store = InMemoryMessageStore()
	await store.create("m-1", "alice", "bob", "oops", None)
	await store.create("m-2", "alice", "bob", "keep", None)

	assert await store.soft_delete("m-1", "bob") is False
	assert await store.soft_delete("m-1", "alice") is True
	assert await store.soft_delete("m-1", "alice") is False

	visible = await store.history("alice", "bob", 1, 10)
	assert [message.message_id for message in visible] == ["m-2"]
	assert await store.count_all("alice", "bob") == 2
	assert (await store.get("m-1")).status is MessageStatus.DELETED


@pytest.mark.asyncio
async def test_unread_counts_skip_deleted_and_group_by_sender():
	store = InMemoryMessageStore()
	store.names["alice"] = "Alice Smith"
	await store.create("m-1", "alice", "carol", "a", None)
	await store.create("m-2", "alice", "carol", "b", None)
	await store.create("m-3", "bob", "carol", "c", None)
	await store.create("m-4", "bob", "carol", "d", None)
	await store.soft_delete("m-4", "bob")

	assert await store.unread_count("carol") == 3
	breakdown = await store.unread_breakdown("carol")
	assert [(row.sender_id, row.unread_count) for row in breakdown] == [("alice", 2), ("bob", 1)]
	assert breakdown[0].sender_name == "Alice Smith"


@pytest.mark.asyncio
async def test_conversation_previews_one_row_per_counterparty():
	store = InMemoryMessageStore(clock=SteppingClock())
	await store.create("m-1", "bob", "alice", "old from bob", None)
	await store.create("m-2", "carol", "alice", "from carol", None)
	await store.create("m-3", "alice", "bob", "newest to bob", None)

	rows = await store.conversation_previews("alice", limit=10, offset=0)

	assert [(message.message_id, unread) for message, unread, _, _ in rows] == [("m-3", 1), ("m-2", 1)]
	assert await store.conversation_previews("alice", limit=1, offset=1) == rows[1:]


@pytest.mark.asyncio
async def test_status_summary_and_bounds():
	store = InMemoryMessageStore(clock=SteppingClock())
	await store.create("m-1", "alice", "bob", "a", None)
	await store.create("m-2", "alice", "bob", "b", None)
	await store.mark_delivered(["m-2"])

	summary = await store.status_summary("bob", "alice")
	assert summary.total == 2
	assert summary.counts["sent"] == 1
	assert summary.counts["delivered"] == 1
	first, last = await store.conversation_bounds("alice", "bob")
	assert last - first == timedelta(seconds=1)
	assert await store.conversation_bounds("alice", "carol") == (None, None)
