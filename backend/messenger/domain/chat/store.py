"""Message persistence: asyncpg-backed store plus an in-memory twin for tests."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, Tuple

import asyncpg

from messenger.infra.postgres import get_pool

from .models import MediaRef, Message, MessageStatus, StatusSummary, UnreadBySender

_MESSAGE_COLUMNS = """
	message_id, seq, sender_id, receiver_id, body, media, status,
	sent_at, delivered_at, read_at, deleted_at
"""

_PAIR_CLAUSE = "((sender_id = $1 AND receiver_id = $2) OR (sender_id = $2 AND receiver_id = $1))"


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class MessageStore(Protocol):
	async def create(
		self,
		message_id: str,
		sender_id: str,
		receiver_id: str,
		body: Optional[str],
		media: Optional[MediaRef],
	) -> Message: ...

	async def get(self, message_id: str) -> Optional[Message]: ...

	async def mark_delivered(self, message_ids: Sequence[str]) -> int: ...

	async def mark_read(self, receiver_id: str, sender_id: str) -> int: ...

	async def soft_delete(self, message_id: str, requesting_user_id: str) -> bool: ...

	async def history(self, user_a: str, user_b: str, page: int, page_size: int) -> List[Message]: ...

	async def unread_count(self, user_id: str) -> int: ...

	async def unread_breakdown(self, user_id: str) -> List[UnreadBySender]: ...

	async def conversation_previews(
		self, user_id: str, limit: int, offset: int
	) -> List[Tuple[Message, int, Optional[str], Optional[str]]]: ...

	async def conversation_bounds(
		self, user_a: str, user_b: str
	) -> Tuple[Optional[datetime], Optional[datetime]]: ...

	async def status_summary(self, user_a: str, user_b: str) -> StatusSummary: ...

	async def count_all(self, user_a: str, user_b: str) -> int: ...


class PostgresMessageStore:
	"""MessageStore over the ``messages`` table."""

	def __init__(self, pool: asyncpg.Pool | None = None) -> None:
		self._pool = pool

	async def _acquire_pool(self) -> asyncpg.Pool:
		if self._pool is None:
			self._pool = await get_pool()
		return self._pool

	async def create(
		self,
		message_id: str,
		sender_id: str,
		receiver_id: str,
		body: Optional[str],
		media: Optional[MediaRef],
	) -> Message:
		pool = await self._acquire_pool()
		media_json = json.dumps(media.to_dict()) if media else None
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"""
				INSERT INTO messages (message_id, sender_id, receiver_id, body, media, status)
				VALUES ($1, $2, $3, $4, $5::jsonb, 'sent')
				ON CONFLICT (message_id) DO NOTHING
				RETURNING {_MESSAGE_COLUMNS}
				""",
				message_id,
				sender_id,
				receiver_id,
				body,
				media_json,
			)
			if row is None:
				# Retried insert: hand back what the first attempt stored.
				row = await conn.fetchrow(
					f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE message_id = $1",
					message_id,
				)
		return Message.from_record(row)

	async def get(self, message_id: str) -> Optional[Message]:
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE message_id = $1",
				message_id,
			)
		return Message.from_record(row) if row else None

	async def mark_delivered(self, message_ids: Sequence[str]) -> int:
		if not message_ids:
			return 0
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				UPDATE messages
				SET status = 'delivered', delivered_at = COALESCE(delivered_at, NOW())
				WHERE message_id = ANY($1::text[]) AND status = 'sent'
				RETURNING message_id
				""",
				list(message_ids),
			)
		return len(rows)

	async def mark_read(self, receiver_id: str, sender_id: str) -> int:
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				UPDATE messages
				SET read_at = NOW(), status = 'read'
				WHERE receiver_id = $1
					AND sender_id = $2
					AND read_at IS NULL
					AND deleted_at IS NULL
				RETURNING message_id
				""",
				receiver_id,
				sender_id,
			)
		return len(rows)

	async def soft_delete(self, message_id: str, requesting_user_id: str) -> bool:
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"""
				UPDATE messages
				SET deleted_at = NOW(), status = 'deleted'
				WHERE message_id = $1 AND sender_id = $2 AND deleted_at IS NULL
				RETURNING message_id
				""",
				message_id,
				requesting_user_id,
			)
		return row is not None

	async def history(self, user_a: str, user_b: str, page: int, page_size: int) -> List[Message]:
		pool = await self._acquire_pool()
		offset = (max(page, 1) - 1) * page_size
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_MESSAGE_COLUMNS}
				FROM messages
				WHERE {_PAIR_CLAUSE} AND deleted_at IS NULL
				ORDER BY sent_at DESC, seq DESC
				LIMIT $3 OFFSET $4
				""",
				user_a,
				user_b,
				page_size,
				offset,
			)
		return [Message.from_record(row) for row in rows]

	async def unread_count(self, user_id: str) -> int:
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			value = await conn.fetchval(
				"""
				SELECT COUNT(*) FROM messages
				WHERE receiver_id = $1 AND read_at IS NULL AND deleted_at IS NULL
				""",
				user_id,
			)
		return int(value or 0)

	async def unread_breakdown(self, user_id: str) -> List[UnreadBySender]:
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT m.sender_id, u.full_name, COUNT(*) AS unread_count
				FROM messages m
				LEFT JOIN users u ON u.id = m.sender_id
				WHERE m.receiver_id = $1 AND m.read_at IS NULL AND m.deleted_at IS NULL
				GROUP BY m.sender_id, u.full_name
				ORDER BY unread_count DESC, m.sender_id
				""",
				user_id,
			)
		return [
			UnreadBySender(
				sender_id=str(row["sender_id"]),
				sender_name=row["full_name"],
				unread_count=int(row["unread_count"]),
			)
			for row in rows
		]

	async def conversation_previews(
		self, user_id: str, limit: int, offset: int
	) -> List[Tuple[Message, int, Optional[str], Optional[str]]]:
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				WITH latest AS (
					SELECT DISTINCT ON (counterparty_id) *
					FROM (
						SELECT
							CASE WHEN sender_id = $1 THEN receiver_id ELSE sender_id END AS counterparty_id,
							{_MESSAGE_COLUMNS}
						FROM messages
						WHERE (sender_id = $1 OR receiver_id = $1) AND deleted_at IS NULL
					) AS pair_messages
					ORDER BY counterparty_id, sent_at DESC, seq DESC
				)
				SELECT
					latest.*,
					u.full_name,
					u.profile_picture_url,
					(
						SELECT COUNT(*) FROM messages x
						WHERE x.sender_id = latest.counterparty_id
							AND x.receiver_id = $1
							AND x.read_at IS NULL
							AND x.deleted_at IS NULL
					) AS unread_count
				FROM latest
				LEFT JOIN users u ON u.id = latest.counterparty_id
				ORDER BY latest.sent_at DESC, latest.seq DESC
				LIMIT $2 OFFSET $3
				""",
				user_id,
				limit,
				offset,
			)
		return [
			(Message.from_record(row), int(row["unread_count"]), row["full_name"], row["profile_picture_url"])
			for row in rows
		]

	async def conversation_bounds(
		self, user_a: str, user_b: str
	) -> Tuple[Optional[datetime], Optional[datetime]]:
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"SELECT MIN(sent_at) AS first_at, MAX(sent_at) AS last_at FROM messages WHERE {_PAIR_CLAUSE}",
				user_a,
				user_b,
			)
		if row is None:
			return None, None
		return row["first_at"], row["last_at"]

	async def status_summary(self, user_a: str, user_b: str) -> StatusSummary:
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT status, COUNT(*) AS total, MAX(sent_at) AS last_at
				FROM messages
				WHERE {_PAIR_CLAUSE}
				GROUP BY status
				""",
				user_a,
				user_b,
			)
		summary = StatusSummary(counts={status.value: 0 for status in MessageStatus})
		for row in rows:
			summary.counts[str(row["status"])] = int(row["total"])
			summary.total += int(row["total"])
			last_at = row["last_at"]
			if last_at is not None and (summary.last_message_at is None or last_at > summary.last_message_at):
				summary.last_message_at = last_at
		return summary

	async def count_all(self, user_a: str, user_b: str) -> int:
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			value = await conn.fetchval(f"SELECT COUNT(*) FROM messages WHERE {_PAIR_CLAUSE}", user_a, user_b)
		return int(value or 0)


class InMemoryMessageStore:
	"""Process-local MessageStore used in tests and local development."""

	def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
		self._lock = asyncio.Lock()
		self._messages: dict[str, Message] = {}
		self._seq = 0
		self._clock = clock or _utcnow
		self.names: dict[str, str] = {}

	def _pair(self, user_a: str, user_b: str) -> Iterable[Message]:
		pair = {user_a, user_b}
		return (m for m in self._messages.values() if {m.sender_id, m.receiver_id} == pair)

	async def create(
		self,
		message_id: str,
		sender_id: str,
		receiver_id: str,
		body: Optional[str],
		media: Optional[MediaRef],
	) -> Message:
		async with self._lock:
			existing = self._messages.get(message_id)
			if existing is not None:
				return existing
			self._seq += 1
			message = Message(
				message_id=message_id,
				seq=self._seq,
				sender_id=sender_id,
				receiver_id=receiver_id,
				body=body,
				media=media,
				status=MessageStatus.SENT,
				sent_at=self._clock(),
			)
			self._messages[message_id] = message
			return message

	async def get(self, message_id: str) -> Optional[Message]:
		async with self._lock:
			return self._messages.get(message_id)

	async def mark_delivered(self, message_ids: Sequence[str]) -> int:
		changed = 0
		async with self._lock:
			for message_id in message_ids:
				message = self._messages.get(message_id)
				if message is None or message.status is not MessageStatus.SENT:
					continue
				message.status = MessageStatus.DELIVERED
				message.delivered_at = message.delivered_at or self._clock()
				changed += 1
		return changed

	async def mark_read(self, receiver_id: str, sender_id: str) -> int:
		changed = 0
		async with self._lock:
			now = self._clock()
			for message in self._messages.values():
				if message.receiver_id != receiver_id or message.sender_id != sender_id:
					continue
				if message.read_at is not None or message.deleted_at is not None:
					continue
				message.read_at = now
				message.status = MessageStatus.READ
				changed += 1
		return changed

	async def soft_delete(self, message_id: str, requesting_user_id: str) -> bool:
		async with self._lock:
			message = self._messages.get(message_id)
			if message is None or message.sender_id != requesting_user_id or message.deleted_at is not None:
				return False
			message.deleted_at = self._clock()
			message.status = MessageStatus.DELETED
			return True

	async def history(self, user_a: str, user_b: str, page: int, page_size: int) -> List[Message]:
		async with self._lock:
			visible = [m for m in self._pair(user_a, user_b) if m.deleted_at is None]
		visible.sort(key=lambda m: (m.sent_at, m.seq), reverse=True)
		offset = (max(page, 1) - 1) * page_size
		return visible[offset : offset + page_size]

	async def unread_count(self, user_id: str) -> int:
		async with self._lock:
			return sum(
				1
				for m in self._messages.values()
				if m.receiver_id == user_id and m.read_at is None and m.deleted_at is None
			)

	async def unread_breakdown(self, user_id: str) -> List[UnreadBySender]:
		counts: dict[str, int] = {}
		async with self._lock:
			for m in self._messages.values():
				if m.receiver_id == user_id and m.read_at is None and m.deleted_at is None:
					counts[m.sender_id] = counts.get(m.sender_id, 0) + 1
		ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
		return [
			UnreadBySender(sender_id=sender, sender_name=self.names.get(sender), unread_count=count)
			for sender, count in ordered
		]

	async def conversation_previews(
		self, user_id: str, limit: int, offset: int
	) -> List[Tuple[Message, int, Optional[str], Optional[str]]]:
		latest: dict[str, Message] = {}
		unread: dict[str, int] = {}
		async with self._lock:
			for m in self._messages.values():
				if m.deleted_at is not None or not m.is_participant(user_id):
					continue
				other = m.counterparty(user_id)
				current = latest.get(other)
				if current is None or (m.sent_at, m.seq) > (current.sent_at, current.seq):
					latest[other] = m
				if m.receiver_id == user_id and m.read_at is None:
					unread[other] = unread.get(other, 0) + 1
		ordered = sorted(latest.items(), key=lambda item: (item[1].sent_at, item[1].seq), reverse=True)
		return [
			(message, unread.get(other, 0), self.names.get(other), None)
			for other, message in ordered[offset : offset + limit]
		]

	async def conversation_bounds(
		self, user_a: str, user_b: str
	) -> Tuple[Optional[datetime], Optional[datetime]]:
		async with self._lock:
			stamps = [m.sent_at for m in self._pair(user_a, user_b)]
		if not stamps:
			return None, None
		return min(stamps), max(stamps)

	async def status_summary(self, user_a: str, user_b: str) -> StatusSummary:
		summary = StatusSummary(counts={status.value: 0 for status in MessageStatus})
		async with self._lock:
			for m in self._pair(user_a, user_b):
				summary.counts[m.status.value] += 1
				summary.total += 1
				if summary.last_message_at is None or m.sent_at > summary.last_message_at:
					summary.last_message_at = m.sent_at
		return summary

	async def count_all(self, user_a: str, user_b: str) -> int:
		async with self._lock:
			return sum(1 for _ in self._pair(user_a, user_b))

	async def pair_activity(self, user_id: str, other_id: str) -> Tuple[int, Optional[datetime]]:
		"""Unread count from ``other_id`` and the latest message time for the pair."""
		async with self._lock:
			pair = list(self._pair(user_id, other_id))
		unread = sum(
			1 for m in pair if m.receiver_id == user_id and m.read_at is None and m.deleted_at is None
		)
		last = max((m.sent_at for m in pair), default=None)
		return unread, last
