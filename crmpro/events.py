from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from crmpro.context import get_correlation_id
from crmpro.core.config import get_settings
from crmpro.metrics import observe_outbox_delivery

logger = logging.getLogger(__name__)


@dataclass
class OutboundMessage:
    topic: str
    payload: dict[str, Any]
    correlation_id: str | None = None
    published_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


MessageHandler = Callable[[OutboundMessage], Awaitable[None] | None]


class Outbox:
    """Outbound message queue for fire-and-forget side effects.

    ``publish`` only enqueues, so callers never wait on or observe the
    outcome of audit or notification delivery. A dispatcher task owned by
    the running event loop hands each message to every subscriber of its
    topic. A handler that raises is retried up to ``max_attempts`` times
    (at-least-once); messages that still fail are kept in
    ``dead_letters``.

    Messages published outside a running loop wait in the queue until the
    next ``publish`` or ``drain`` from inside one.
    """

    def __init__(self, *, max_attempts: int | None = None) -> None:
        self._subscribers: dict[str, list[MessageHandler]] = defaultdict(list)
        self._queue: deque[OutboundMessage] = deque()
        self._task: asyncio.Task[None] | None = None
        self._max_attempts = max(1, max_attempts if max_attempts is not None else get_settings().outbox_max_attempts)
        self.dead_letters: list[tuple[OutboundMessage, str]] = []

    def subscribe(self, topic: str, handler: MessageHandler) -> None:
        self._subscribers[topic].append(handler)

    def publish(self, topic: str, payload: dict[str, Any]) -> None:
        self._queue.append(OutboundMessage(topic=topic, payload=payload, correlation_id=get_correlation_id()))
        self._schedule()

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def drain(self) -> None:
        """Wait until every queued message has been handed to its subscribers."""

        while self._queue or self._is_dispatching():
            self._schedule()
            if self._task is not None:
                await self._task

    def _is_dispatching(self) -> bool:
        return self._task is not None and not self._task.done()

    def _schedule(self) -> None:
        if self._is_dispatching():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._task = loop.create_task(self._dispatch())

    async def _dispatch(self) -> None:
        while self._queue:
            message = self._queue.popleft()
            for handler in list(self._subscribers.get(message.topic, [])):
                await self._deliver(handler, message)

    async def _deliver(self, handler: MessageHandler, message: OutboundMessage) -> None:
        last_error = ""
        for attempt in range(1, self._max_attempts + 1):
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                last_error = str(exc)
                observe_outbox_delivery(message.topic, "retry")
                logger.warning(
                    "outbox.delivery_failed",
                    extra={"topic": message.topic, "attempt": attempt, "error": last_error},
                )
                continue
            observe_outbox_delivery(message.topic, "delivered")
            return

        observe_outbox_delivery(message.topic, "dead_letter")
        logger.error("outbox.dead_letter", extra={"topic": message.topic, "error": last_error})
        self.dead_letters.append((message, last_error))
