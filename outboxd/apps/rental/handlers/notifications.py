"""Notification primitives shared by the rental demo handlers."""

import json
import logging
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any

from cachetools import TTLCache

from outboxd.core.handler import Handler, best_effort

logger = logging.getLogger("outboxd.apps.rental")


@dataclass(frozen=True)
class Notification:
    """An in-app notification addressed to one user."""

    user_id: str
    type: str
    title: str
    body: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def dedupe_key(self) -> str:
        return json.dumps(
            [self.user_id, self.type, self.metadata], sort_keys=True, default=str
        )


@dataclass(frozen=True)
class Email:
    to_user_id: str
    subject: str
    body: str
    cta_url: str | None = None


class NotificationCenter:
    """In-memory notification inbox with optional push delivery.

    ``notify`` is idempotent: a notification with the same user, type and
    metadata seen within ``ttl`` seconds is not stored twice, so a handler
    retried after a later step failed does not duplicate the inbox entry.
    """

    def __init__(self, ttl: float = 3600.0, fail_push: bool = False) -> None:
        self.notifications: list[Notification] = []
        self.pushed: list[Notification] = []
        self.push_enabled: dict[str, bool] = {}
        self._seen: TTLCache[str, bool] = TTLCache(maxsize=10000, ttl=ttl)
        self._fail_push = fail_push

    async def notify(self, notification: Notification) -> bool:
        """Store the notification; False if it was already delivered."""
        key = notification.dedupe_key
        if key in self._seen:
            return False
        self._seen[key] = True
        self.notifications.append(notification)
        return True

    async def push(self, notification: Notification) -> None:
        if not self.push_enabled.get(notification.user_id):
            return
        if self._fail_push:
            raise ConnectionError(f"push gateway unreachable for {notification.user_id}")
        self.pushed.append(notification)

    def for_user(self, user_id: str) -> list[Notification]:
        return [n for n in self.notifications if n.user_id == user_id]


class Mailer:
    """Records outgoing emails; honours per-user opt-out."""

    def __init__(self, failures: int = 0) -> None:
        self.sent: list[Email] = []
        self.email_enabled: dict[str, bool] = {}
        self._failures_left = failures

    async def send(self, email: Email) -> bool:
        if self.email_enabled.get(email.to_user_id) is False:
            logger.info(f"Emails disabled for {email.to_user_id}")
            return False
        if self._failures_left > 0:
            self._failures_left -= 1
            raise ConnectionError(f"SMTP connection failed for {email.to_user_id}")
        self.sent.append(email)
        return True


class NotificationHandler(Handler):
    """Turns a payload into notifications (and optionally emails).

    Subclasses implement ``build``. Storing the notification is the primary
    effect and decides success; push delivery is best-effort. Emails are
    primary: a failed send fails the event so it is retried, and the
    notification already stored is not duplicated on the retry.
    """

    required_fields: tuple[str, ...] = ()

    def __init__(
        self,
        center: NotificationCenter,
        mailer: Mailer | None = None,
        name: str | None = None,
    ) -> None:
        super().__init__(name=name)
        self.center = center
        self.mailer = mailer

    @abstractmethod
    def build(self, payload: dict[str, Any]) -> list[Notification]:
        """Return the notifications to deliver for this payload."""
        ...

    def emails(self, payload: dict[str, Any]) -> list[Email]:
        return []

    async def handle(self, event_type: str, payload: dict[str, Any]) -> None:
        missing = [f for f in self.required_fields if payload.get(f) is None]
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")

        for notification in self.build(payload):
            await self.center.notify(notification)
            await best_effort(
                "push",
                lambda n=notification: self.center.push(n),
                logger=logger,
                event_type=event_type,
                user_id=notification.user_id,
            )

        if self.mailer is not None:
            for email in self.emails(payload):
                await self.mailer.send(email)
