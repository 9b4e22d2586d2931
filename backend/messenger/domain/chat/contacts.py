"""Symmetric contact relationships and the profile lookups built on them."""

from __future__ import annotations

import asyncio
import re
from datetime import datetime
from typing import TYPE_CHECKING, Dict, List, Optional, Protocol, Sequence

import asyncpg

from messenger.infra.postgres import get_pool

from .exceptions import NotFoundError, SelfTargetError
from .models import ContactEntry, ImportResult, UserProfile

if TYPE_CHECKING:  # pragma: no cover - typing only
	from .store import InMemoryMessageStore

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str) -> str:
	return _NON_DIGITS.sub("", raw or "")


class ContactDirectory(Protocol):
	async def are_contacts(self, user_a: str, user_b: str) -> bool: ...

	async def add(self, user_id: str, contact_user_id: str) -> bool: ...

	async def remove(self, user_id: str, contact_user_id: str) -> bool: ...

	async def list_contacts(
		self, user_id: str, page: int, limit: int, search: Optional[str] = None
	) -> List[ContactEntry]: ...

	async def contact_ids(self, user_id: str) -> List[str]: ...

	async def import_from_phone_numbers(self, user_id: str, numbers: Sequence[str]) -> ImportResult: ...

	async def get_profile(self, user_id: str) -> Optional[UserProfile]: ...


def _check_pair(user_id: str, contact_user_id: str) -> None:
	if user_id == contact_user_id:
		raise SelfTargetError("Cannot add yourself as a contact")


class PostgresContactDirectory:
	"""ContactDirectory over ``contacts`` joined with the shared ``users`` table."""

	def __init__(self, pool: asyncpg.Pool | None = None) -> None:
		self._pool = pool

	async def _acquire_pool(self) -> asyncpg.Pool:
		if self._pool is None:
			self._pool = await get_pool()
		return self._pool

	async def are_contacts(self, user_a: str, user_b: str) -> bool:
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			found = await conn.fetchval(
				"""
				SELECT 1 FROM contacts
				WHERE (user_id = $1 AND contact_user_id = $2)
					OR (user_id = $2 AND contact_user_id = $1)
				LIMIT 1
				""",
				user_a,
				user_b,
			)
		return found is not None

	async def add(self, user_id: str, contact_user_id: str) -> bool:
		"""Record the pair; False when it already exists in either ordering."""
		_check_pair(user_id, contact_user_id)
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			exists = await conn.fetchval("SELECT 1 FROM users WHERE id = $1", contact_user_id)
			if exists is None:
				raise NotFoundError("user_not_found")
			row = await conn.fetchrow(
				"""
				INSERT INTO contacts (user_id, contact_user_id)
				VALUES ($1, $2)
				ON CONFLICT DO NOTHING
				RETURNING contact_id
				""",
				user_id,
				contact_user_id,
			)
		return row is not None

	async def remove(self, user_id: str, contact_user_id: str) -> bool:
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				DELETE FROM contacts
				WHERE (user_id = $1 AND contact_user_id = $2)
					OR (user_id = $2 AND contact_user_id = $1)
				RETURNING contact_id
				""",
				user_id,
				contact_user_id,
			)
		return bool(rows)

	async def list_contacts(
		self, user_id: str, page: int, limit: int, search: Optional[str] = None
	) -> List[ContactEntry]:
		pool = await self._acquire_pool()
		offset = (max(page, 1) - 1) * limit
		params: List[object] = [user_id, limit, offset]
		search_clause = ""
		if search:
			params.append(f"%{search}%")
			search_clause = "AND (u.full_name ILIKE $4 OR u.email ILIKE $4 OR u.phone_number ILIKE $4)"
		query = f"""
			WITH pairs AS (
				SELECT CASE WHEN user_id = $1 THEN contact_user_id ELSE user_id END AS other_id
				FROM contacts
				WHERE user_id = $1 OR contact_user_id = $1
			)
			SELECT
				u.id,
				u.full_name,
				u.email,
				u.phone_number,
				u.profile_picture_url,
				(
					SELECT COUNT(*) FROM messages m
					WHERE m.sender_id = u.id AND m.receiver_id = $1
						AND m.read_at IS NULL AND m.deleted_at IS NULL
				) AS unread_count,
				(
					SELECT MAX(sent_at) FROM messages m
					WHERE (m.sender_id = $1 AND m.receiver_id = u.id)
						OR (m.sender_id = u.id AND m.receiver_id = $1)
				) AS last_interaction
			FROM pairs
			JOIN users u ON u.id = pairs.other_id
			WHERE TRUE {search_clause}
			ORDER BY unread_count DESC, last_interaction DESC NULLS LAST, u.full_name
			LIMIT $2 OFFSET $3
		"""
		async with pool.acquire() as conn:
			rows = await conn.fetch(query, *params)
		return [
			ContactEntry(
				user_id=str(row["id"]),
				name=row["full_name"],
				email=row["email"],
				phone=row["phone_number"],
				avatar_url=row["profile_picture_url"],
				unread_count=int(row["unread_count"] or 0),
				last_interaction=row["last_interaction"],
			)
			for row in rows
		]

	async def contact_ids(self, user_id: str) -> List[str]:
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT CASE WHEN user_id = $1 THEN contact_user_id ELSE user_id END AS other_id
				FROM contacts
				WHERE user_id = $1 OR contact_user_id = $1
				""",
				user_id,
			)
		return [str(row["other_id"]) for row in rows]

	async def import_from_phone_numbers(self, user_id: str, numbers: Sequence[str]) -> ImportResult:
		digits = sorted({normalize_phone(number) for number in numbers if normalize_phone(number)})
		result = ImportResult()
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT id, REGEXP_REPLACE(phone_number, '[^0-9]', '', 'g') AS digits
				FROM users
				WHERE REGEXP_REPLACE(phone_number, '[^0-9]', '', 'g') = ANY($1::text[])
					AND id <> $2
				""",
				digits,
				user_id,
			)
			matched = {str(row["digits"]) for row in rows}
			result.not_found = len([d for d in digits if d not in matched])
			async with conn.transaction():
				for row in rows:
					other_id = str(row["id"])
					inserted = await conn.fetchrow(
						"""
						INSERT INTO contacts (user_id, contact_user_id)
						VALUES ($1, $2)
						ON CONFLICT DO NOTHING
						RETURNING contact_id
						""",
						user_id,
						other_id,
					)
					if inserted is None:
						result.already_exists += 1
					else:
						result.added += 1
					result.contacts.append(other_id)
		return result

	async def get_profile(self, user_id: str) -> Optional[UserProfile]:
		pool = await self._acquire_pool()
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"SELECT id, full_name, email, phone_number, profile_picture_url FROM users WHERE id = $1",
				user_id,
			)
		return UserProfile.from_record(dict(row)) if row else None


class InMemoryContactDirectory:
	"""Process-local ContactDirectory used in tests and local development."""

	def __init__(self, messages: "InMemoryMessageStore | None" = None) -> None:
		self._lock = asyncio.Lock()
		self._pairs: set[frozenset[str]] = set()
		self._profiles: Dict[str, UserProfile] = {}
		self._messages = messages

	def add_profile(self, profile: UserProfile) -> None:
		self._profiles[profile.user_id] = profile

	async def are_contacts(self, user_a: str, user_b: str) -> bool:
		async with self._lock:
			return frozenset((user_a, user_b)) in self._pairs

	async def add(self, user_id: str, contact_user_id: str) -> bool:
		_check_pair(user_id, contact_user_id)
		async with self._lock:
			if self._profiles and contact_user_id not in self._profiles:
				raise NotFoundError("user_not_found")
			key = frozenset((user_id, contact_user_id))
			if key in self._pairs:
				return False
			self._pairs.add(key)
			return True

	async def remove(self, user_id: str, contact_user_id: str) -> bool:
		async with self._lock:
			key = frozenset((user_id, contact_user_id))
			if key not in self._pairs:
				return False
			self._pairs.discard(key)
			return True

	async def contact_ids(self, user_id: str) -> List[str]:
		async with self._lock:
			return sorted(
				next(iter(pair - {user_id}))
				for pair in self._pairs
				if user_id in pair and len(pair) == 2
			)

	async def list_contacts(
		self, user_id: str, page: int, limit: int, search: Optional[str] = None
	) -> List[ContactEntry]:
		entries: List[ContactEntry] = []
		for other_id in await self.contact_ids(user_id):
			profile = self._profiles.get(other_id) or UserProfile(user_id=other_id, name=None)
			if search and not _matches(profile, search):
				continue
			unread, last = (0, None)
			if self._messages is not None:
				unread, last = await self._messages.pair_activity(user_id, other_id)
			entries.append(
				ContactEntry(
					user_id=other_id,
					name=profile.name,
					email=profile.email,
					phone=profile.phone,
					avatar_url=profile.avatar_url,
					unread_count=unread,
					last_interaction=last,
				)
			)
		entries.sort(key=_contact_sort_key)
		offset = (max(page, 1) - 1) * limit
		return entries[offset : offset + limit]

	async def import_from_phone_numbers(self, user_id: str, numbers: Sequence[str]) -> ImportResult:
		digits = {normalize_phone(number) for number in numbers if normalize_phone(number)}
		by_phone = {
			normalize_phone(profile.phone or ""): profile.user_id
			for profile in self._profiles.values()
			if profile.phone and profile.user_id != user_id
		}
		result = ImportResult()
		for number in sorted(digits):
			other_id = by_phone.get(number)
			if other_id is None:
				result.not_found += 1
				continue
			if await self.add(user_id, other_id):
				result.added += 1
			else:
				result.already_exists += 1
			result.contacts.append(other_id)
		return result

	async def get_profile(self, user_id: str) -> Optional[UserProfile]:
		return self._profiles.get(user_id)


def _matches(profile: UserProfile, search: str) -> bool:
	needle = search.lower()
	return any(needle in (value or "").lower() for value in (profile.name, profile.email, profile.phone))


def _contact_sort_key(entry: ContactEntry):
	last = entry.last_interaction.timestamp() if isinstance(entry.last_interaction, datetime) else None
	return (-entry.unread_count, last is None, -(last or 0.0), entry.name or "")
