from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from messenger.domain.chat import notifications
from messenger.domain.chat.models import Message, MessageStatus, UserProfile
from messenger.settings import settings


def _message(body="hi") -> Message:
	return Message(
		message_id="m-1",
		seq=1,
		sender_id="alice",
		receiver_id="bob",
		body=body,
		media=None,
		status=MessageStatus.SENT,
		sent_at=datetime.now(timezone.utc),
	)


def test_mask_email_is_stable_and_opaque():
	masked = notifications.mask_email("Bob@Example.com")

	assert masked == notifications.mask_email("bob@example.com")
	assert "bob" not in masked
	assert len(masked) == 12


def test_notifier_disabled_by_default(monkeypatch):
	monkeypatch.setattr(settings, "chat_offline_email_enabled", False)
	assert notifications.build_notifier() is None

	monkeypatch.setattr(settings, "chat_offline_email_enabled", True)
	assert isinstance(notifications.build_notifier(), notifications.EmailOfflineNotifier)


@pytest.mark.asyncio
async def test_email_notifier_sends_through_smtp(monkeypatch):
	send = AsyncMock()
	monkeypatch.setattr(notifications.aiosmtplib, "send", send)
	receiver = UserProfile(user_id="bob", name="Bob", email="bob@example.com")
	sender = UserProfile(user_id="alice", name="Alice")

	await notifications.EmailOfflineNotifier().notify(_message(), sender, receiver)

	send.assert_awaited_once()
	email = send.await_args.args[0]
	assert email["To"] == "bob@example.com"
	assert email["Subject"] == "New message from Alice"


@pytest.mark.asyncio
async def test_email_notifier_skips_receivers_without_email(monkeypatch):
	send = AsyncMock()
	monkeypatch.setattr(notifications.aiosmtplib, "send", send)

	await notifications.EmailOfflineNotifier().notify(_message(), None, UserProfile(user_id="bob", name="Bob"))

	send.assert_not_awaited()


@pytest.mark.asyncio
async def test_spawner_swallows_notifier_failures(directory):
	notifier = AsyncMock()
	notifier.notify.side_effect = OSError("smtp down")
	spawner = notifications.NotificationSpawner(notifier)

	task = spawner.spawn(_message(), directory)
	await spawner.drain()

	assert task.done() and task.exception() is None
	notifier.notify.assert_awaited_once()


def test_spawner_without_notifier_is_inert(directory):
	spawner = notifications.NotificationSpawner(None)

	assert spawner.enabled is False
	assert spawner.spawn(_message(), directory) is None
