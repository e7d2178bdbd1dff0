"""
Outbound notifications for new leads.

Three notifier variants share one `send(payload)` coroutine: web push to every
registered admin browser, a plain-text email, or nothing at all. Which one
runs is decided once from configuration. Notifiers never raise to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from email.message import EmailMessage
from typing import Callable, Protocol

from pywebpush import WebPushException, webpush

from config import Settings
from database import DbClient
from errors import TransportError
from schemas import NotificationPayload, NotificationSubscriber

logger = logging.getLogger(__name__)

# Push service answers for subscriptions that will never work again.
GONE_STATUSES = (404, 410)

SENT = "sent"
GONE = "gone"
FAILED = "failed"


class Notifier(Protocol):
    async def send(self, payload: NotificationPayload) -> None:
        ...


class NoopNotifier:
    async def send(self, payload: NotificationPayload) -> None:
        logger.debug("No notification transport configured; dropping %r", payload.title)


@dataclass
class BroadcastResult:
    sent: int = 0
    removed: int = 0
    failed: int = 0


class Broadcaster:
    """Sends one payload to every registered push subscription."""

    def __init__(
        self,
        db: DbClient,
        vapid_private_key: str,
        vapid_claims_email: str,
        timeout: float = 10.0,
        transport: Callable[..., object] = webpush,
    ):
        self.db = db
        self.vapid_private_key = vapid_private_key
        self.vapid_claims_email = vapid_claims_email
        self.timeout = timeout
        self.transport = transport

    async def broadcast(self, payload: NotificationPayload) -> BroadcastResult:
        """
        Deliver to all subscriptions concurrently and wait for every outcome.

        Every send gets its own worker thread, so the per-send timeout covers
        the send itself and never time spent queued. A subscription the push
        service reports as gone is deleted. Any other failure is logged and
        counted. Only a failure to read the registry propagates.
        """
        subscriptions = await self.db.list_subscriptions()
        result = BroadcastResult()
        if not subscriptions:
            return result

        data = payload.model_dump_json()
        executor = ThreadPoolExecutor(
            max_workers=len(subscriptions), thread_name_prefix="webpush"
        )
        try:
            outcomes = await asyncio.gather(
                *(self._deliver(executor, subscription, data) for subscription in subscriptions),
                return_exceptions=True,
            )
        finally:
            # Timed-out sends keep their thread until pywebpush's own timeout fires.
            executor.shutdown(wait=False)
        for subscription, outcome in zip(subscriptions, outcomes):
            if outcome == SENT:
                result.sent += 1
            elif outcome == GONE:
                result.removed += 1
            else:
                if isinstance(outcome, BaseException):
                    logger.warning("Push delivery to %s failed: %r", subscription.endpoint, outcome)
                result.failed += 1
        logger.info(
            "Broadcast %r: %d sent, %d removed, %d failed",
            payload.title, result.sent, result.removed, result.failed,
        )
        return result

    async def _deliver(self, executor: Executor, subscription: NotificationSubscriber, data: str) -> str:
        endpoint = subscription.endpoint
        send = partial(
            self.transport,
            subscription_info=subscription.subscription_info(),
            data=data,
            vapid_private_key=self.vapid_private_key,
            # webpush adds aud/exp to this dict, so it must not be shared.
            vapid_claims={"sub": self.vapid_claims_email},
            timeout=self.timeout,
        )
        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(loop.run_in_executor(executor, send), timeout=self.timeout)
        except WebPushException as exc:
            # A 4xx requests.Response is falsy, so compare against None.
            status = exc.response.status_code if exc.response is not None else None
            if status in GONE_STATUSES:
                logger.info("Removing expired push subscription %s (status %s)", endpoint, status)
                await self.db.delete_subscription(endpoint)
                return GONE
            logger.warning("Push delivery to %s failed (status %s): %s", endpoint, status, exc.message)
            return FAILED
        except asyncio.TimeoutError:
            logger.warning("Push delivery to %s timed out after %ss", endpoint, self.timeout)
            return FAILED
        except Exception as exc:
            logger.warning("Push delivery to %s failed: %s", endpoint, exc)
            return FAILED
        return SENT


class PushNotifier:
    def __init__(self, broadcaster: Broadcaster):
        self.broadcaster = broadcaster

    async def send(self, payload: NotificationPayload) -> None:
        try:
            await self.broadcaster.broadcast(payload)
        except Exception:
            logger.exception("Could not broadcast %r", payload.title)


class EmailNotifier:
    """Plain-text email to one configured address, sent from a worker thread."""

    def __init__(self, settings: Settings, smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP):
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.username = settings.smtp_username
        self.password = settings.smtp_password
        self.use_tls = settings.smtp_use_tls
        self.sender = settings.notify_email_from or settings.smtp_username or settings.notify_email_to
        self.recipient = settings.notify_email_to
        self.smtp_factory = smtp_factory

    def build_message(self, payload: NotificationPayload) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = payload.title
        message["From"] = self.sender
        message["To"] = self.recipient
        message.set_content(f"{payload.body}\n\nView it in the admin panel: {payload.url}\n")
        return message

    def _deliver(self, message: EmailMessage) -> None:
        try:
            with self.smtp_factory(self.host, self.port, timeout=30) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc

    async def send(self, payload: NotificationPayload) -> None:
        try:
            await asyncio.to_thread(self._deliver, self.build_message(payload))
        except TransportError as exc:
            logger.warning("Failed to email notification %r to %s: %s", payload.title, self.recipient, exc)
        except Exception:
            logger.exception("Could not email notification %r", payload.title)


def create_broadcaster(settings: Settings, db: DbClient) -> Broadcaster | None:
    if not settings.push_configured:
        return None
    return Broadcaster(
        db,
        vapid_private_key=settings.vapid_private_key,
        vapid_claims_email=settings.vapid_claims_email,
        timeout=settings.push_timeout_seconds,
    )


def build_notifier(settings: Settings, broadcaster: Broadcaster | None) -> Notifier:
    if broadcaster is not None:
        return PushNotifier(broadcaster)
    if settings.email_configured:
        return EmailNotifier(settings)
    return NoopNotifier()


def trial_payload(lead: dict) -> NotificationPayload:
    return NotificationPayload(
        title="New trial registration",
        body=f"{lead['PlayerName']} booked a trial at {lead['SelectedCenter']} (phone {lead['PhoneNumber']})",
        url="/admin/trialStudents",
    )


def contact_payload(lead: dict) -> NotificationPayload:
    return NotificationPayload(
        title="New contact message",
        body=f"{lead['ContactName']} <{lead['ContactEmail']}>: {lead['ContactSubject']}",
        url="/admin/contactDetails",
    )
