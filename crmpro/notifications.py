from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from crmpro.events import OutboundMessage, Outbox

NOTIFICATION_TOPIC = "notifications"
ADMINS = "admins"


@dataclass(frozen=True)
class Notification:
    audience: str
    type: str
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)


class NotificationDispatcher:
    """Fire-and-forget producer of notifications for admins or a specific user."""

    def __init__(self, outbox: Outbox) -> None:
        self._outbox = outbox

    def dispatch(self, notification: Notification) -> None:
        self._outbox.publish(
            NOTIFICATION_TOPIC,
            {
                "audience": notification.audience,
                "type": notification.type,
                "title": notification.title,
                "message": notification.message,
                "data": dict(notification.data),
            },
        )

    def notify_admins(self, type: str, title: str, message: str, data: dict[str, Any] | None = None) -> None:
        self.dispatch(Notification(ADMINS, type, title, message, data or {}))

    def notify_user(self, user_id: str, type: str, title: str, message: str, data: dict[str, Any] | None = None) -> None:
        self.dispatch(Notification(user_id, type, title, message, data or {}))


class NotificationCenter:
    """In-memory delivery target that fans the ``admins`` audience out to admin user ids."""

    def __init__(self, outbox: Outbox, admin_ids: Callable[[], Iterable[str]]) -> None:
        self._admin_ids = admin_ids
        self._inbox: dict[str, list[Notification]] = defaultdict(list)
        outbox.subscribe(NOTIFICATION_TOPIC, self._deliver)

    def _deliver(self, message: OutboundMessage) -> None:
        notification = Notification(**message.payload)
        recipients = list(self._admin_ids()) if notification.audience == ADMINS else [notification.audience]
        for user_id in recipients:
            self._inbox[user_id].append(notification)

    def for_user(self, user_id: str) -> list[Notification]:
        return list(self._inbox.get(user_id, []))
