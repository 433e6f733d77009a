from __future__ import annotations

import itertools
import logging
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from crmpro.store.base import ChangeEvent, ChangeHandler
from crmpro.store.errors import FeedUnavailableError

logger = logging.getLogger(__name__)

_subscription_ids = itertools.count(1)


@dataclass(eq=False)
class FeedSubscription:
    resource_type: str
    handler: ChangeHandler
    filter: dict[str, Any] = field(default_factory=dict)
    id: int = field(default_factory=lambda: next(_subscription_ids))
    _active: bool = True

    @property
    def active(self) -> bool:
        return self._active

    def matches(self, event: ChangeEvent) -> bool:
        return all(event.record.get(key) == value for key, value in self.filter.items() if key in event.record)


class InMemoryChangeFeed:
    """In-process change feed hub.

    Publishers (for example ``SqlBackingStore`` after a commit) call
    ``publish``; each subscriber of the event's resource type is invoked
    synchronously, in subscription order, in the order events were
    published.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[FeedSubscription]] = defaultdict(list)
        self._connected = True

    async def subscribe(
        self,
        resource_type: str,
        handler: ChangeHandler,
        filter: Mapping[str, Any] | None = None,
    ) -> FeedSubscription:
        if not self._connected:
            raise FeedUnavailableError(f"Change feed is disconnected; cannot subscribe to '{resource_type}'")
        subscription = FeedSubscription(resource_type=resource_type, handler=handler, filter=dict(filter or {}))
        self._subscriptions[resource_type].append(subscription)
        logger.debug("feed.subscribed", extra={"resource_type": resource_type})
        return subscription

    def unsubscribe(self, subscription: FeedSubscription) -> None:
        subscription._active = False
        subscriptions = self._subscriptions.get(subscription.resource_type, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)
            logger.debug("feed.unsubscribed", extra={"resource_type": subscription.resource_type})

    def subscriber_count(self, resource_type: str) -> int:
        return len(self._subscriptions.get(resource_type, []))

    def disconnect(self) -> None:
        """Drop every subscription and refuse new ones until ``reconnect``."""

        self._connected = False
        for subscriptions in self._subscriptions.values():
            for subscription in subscriptions:
                subscription._active = False
        self._subscriptions.clear()
        logger.warning("feed.disconnected")

    def reconnect(self) -> None:
        self._connected = True

    def publish(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscriptions.get(event.resource_type, [])):
            if subscription.active and subscription.matches(event):
                subscription.handler(event)
