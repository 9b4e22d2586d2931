import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789")

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from messenger.domain.chat.cache import ViewCache
from messenger.domain.chat.container import build_context
from messenger.domain.chat.contacts import InMemoryContactDirectory
from messenger.domain.chat.models import UserProfile
from messenger.domain.chat.store import InMemoryMessageStore
from messenger.infra import postgres
from messenger.infra.auth import AuthVerification
from messenger.settings import settings

USERS = {
	"alice": UserProfile(user_id="alice", name="Alice Smith", email="alice@example.com", phone="+1 (555) 000-0001"),
	"bob": UserProfile(user_id="bob", name="Bob Jones", email="bob@example.com", phone="+1 (555) 000-0002"),
	"carol": UserProfile(user_id="carol", name="Carol White", email="carol@example.com", phone="+1 (555) 000-0003"),
}


class StaticVerifier:
	"""Accepts tokens of the form ``valid:<user_id>``."""

	async def verify(self, token: str) -> AuthVerification:
		if token and token.startswith("valid:"):
			return AuthVerification(user_id=token.split(":", 1)[1], valid=True)
		return AuthVerification(user_id=None, valid=False, error="invalid_token")


class RecordingSink:
	"""EventSink keeping every outbound event, with Socket.IO-like rooms."""

	def __init__(self) -> None:
		self.events: list[tuple[str, str, dict]] = []
		self.rooms: dict[str, set[str]] = {}

	def bind(self, namespace) -> None:
		return None

	async def emit(self, event, data, *, to):
		self.events.append((to, event, data))

	async def emit_room(self, event, data, *, room, skip=None):
		for handle in sorted(self.rooms.get(room, ())):
			if handle != skip:
				self.events.append((handle, event, data))

	async def join(self, handle, room):
		self.rooms.setdefault(room, set()).add(handle)

	def received(self, handle: str, event: str | None = None) -> list[dict]:
		return [data for to, name, data in self.events if to == handle and (event is None or name == event)]

	def clear(self) -> None:
		self.events.clear()


class RecordingNotifier:
	def __init__(self) -> None:
		self.calls: list[tuple[str, str | None, str]] = []

	async def notify(self, message, sender, receiver) -> None:
		self.calls.append((message.message_id, sender.user_id if sender else None, receiver.user_id))


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from messenger.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via the X-User-Id header, which is only accepted in
	dev mode. Store retries run without backoff.
	"""
	original_env = settings.environment
	original_backoff = settings.chat_store_retry_backoff_seconds
	original_timeout = settings.chat_store_timeout_seconds
	settings.environment = "dev"
	settings.chat_store_retry_backoff_seconds = 0
	settings.chat_store_timeout_seconds = 1.0
	try:
		yield
	finally:
		settings.environment = original_env
		settings.chat_store_retry_backoff_seconds = original_backoff
		settings.chat_store_timeout_seconds = original_timeout


@pytest.fixture
def message_store():
	return InMemoryMessageStore()


@pytest.fixture
def directory(message_store):
	contacts = InMemoryContactDirectory(messages=message_store)
	for profile in USERS.values():
		contacts.add_profile(profile)
		message_store.names[profile.user_id] = profile.name
	return contacts


@pytest.fixture
def sink():
	return RecordingSink()


@pytest.fixture
def notifier():
	return RecordingNotifier()


@pytest.fixture
def chat_context(message_store, directory, sink, notifier):
	return build_context(
		store=message_store,
		contacts=directory,
		cache=ViewCache(),
		verifier=StaticVerifier(),
		notifier=notifier,
		sink=sink,
	)


@pytest.fixture
def socket_context(message_store, directory, notifier):
	"""Same wiring as chat_context but writing through the Socket.IO sink."""
	return build_context(
		store=message_store,
		contacts=directory,
		cache=ViewCache(),
		verifier=StaticVerifier(),
		notifier=notifier,
	)


@pytest_asyncio.fixture
async def friends(directory):
	"""alice and bob are contacts; carol knows nobody."""
	await directory.add("alice", "bob")
	return directory


@pytest_asyncio.fixture
async def api_client(chat_context):
	from messenger.main import create_app

	app = create_app(chat_context)
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
