"""Best-effort offline notifications for messages nobody received live."""

from __future__ import annotations

import asyncio
import hashlib
import html
import logging
from email.message import EmailMessage
from typing import Optional, Protocol, Set

import aiosmtplib

from messenger.obs import metrics as obs_metrics
from messenger.settings import settings

from .contacts import ContactDirectory
from .models import Message, UserProfile

logger = logging.getLogger(__name__)


def mask_email(email: str) -> str:
    return hashlib.sha256(email.lower().encode("utf-8")).hexdigest()[:12]


class OfflineNotifier(Protocol):
    async def notify(self, message: Message, sender: Optional[UserProfile], receiver: UserProfile) -> None:
        ...


class EmailOfflineNotifier:
    """Send a short "new message" email through the configured SMTP relay."""

    async def notify(self, message: Message, sender: Optional[UserProfile], receiver: UserProfile) -> None:
        if not receiver.email:
            obs_metrics.inc_notification("skipped")
            return
        sender_name = html.escape((sender.name if sender else None) or "A contact")
        msg = EmailMessage()
        msg["From"] = settings.smtp_from_email
        msg["To"] = receiver.email
        msg["Subject"] = f"New message from {sender.name if sender and sender.name else 'a contact'}"
        kind = "a message" if message.body else "an attachment"
        msg.set_content(
            f"""
            <html>
                <body>
                    <p>Hello,</p>
                    <p>{sender_name} sent you {kind} while you were away.</p>
                    <p>Open the app to read it.</p>
                </body>
            </html>
            """,
            subtype="html",
        )
        start_tls = bool(settings.smtp_tls) and int(settings.smtp_port) == 587
        use_tls = bool(settings.smtp_tls) and int(settings.smtp_port) == 465
        await aiosmtplib.send(
            msg,
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            start_tls=start_tls,
            use_tls=use_tls,
        )
        obs_metrics.inc_notification("sent")
        logger.info("offline notification sent to %s", mask_email(receiver.email))


class NotificationSpawner:
    """Runs notifier calls as detached tasks after the message is committed.

    Delivery is at-most-once: failures are logged and counted, never retried,
    and never affect the already-stored message.
    """

    def __init__(self, notifier: Optional[OfflineNotifier]) -> None:
        self._notifier = notifier
        self._tasks: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self._notifier is not None

    def spawn(self, message: Message, contacts: ContactDirectory) -> Optional[asyncio.Task]:
        if self._notifier is None:
            return None
        task = asyncio.create_task(self._run(message, contacts))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, message: Message, contacts: ContactDirectory) -> None:
        try:
            receiver = await contacts.get_profile(message.receiver_id)
            if receiver is None:
                obs_metrics.inc_notification("skipped")
                return
            sender = await contacts.get_profile(message.sender_id)
            await self._notifier.notify(message, sender, receiver)  # type: ignore[union-attr]
        except Exception:
            obs_metrics.inc_notification("failed")
            logger.warning(
                "offline notification failed",
                extra={"message_id": message.message_id},
                exc_info=True,
            )

    async def drain(self) -> None:
        """Wait for in-flight notifications; used on shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def build_notifier() -> Optional[OfflineNotifier]:
    if not settings.chat_offline_email_enabled:
        return None
    return EmailOfflineNotifier()
