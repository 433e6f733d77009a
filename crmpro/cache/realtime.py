from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import ValidationError

from crmpro.context import get_correlation_id
from crmpro.metrics import observe_change_event, observe_load_failure, observe_refetch
from crmpro.otel import get_tracer
from crmpro.resources.registry import DEFAULT_RESOURCES, ResourceDefinition, ResourceRegistry
from crmpro.resources.schemas import RecordRead
from crmpro.store.base import (
    BackingStore,
    ChangeEvent,
    ChangeFeed,
    ChangeKind,
    Ordering,
    StoreFailure,
    StoreResult,
    Subscription,
)

logger = logging.getLogger(__name__)
tracer = get_tracer("crmpro.cache.realtime")


class RealtimeCache:
    """Client-side mirror of one server collection, kept current by a change feed.

    The collection is an insertion-ordered mapping of id to record. Records
    are only ever replaced, never mutated in place, so a reader holding a
    record keeps a consistent snapshot.

    Feed events are applied synchronously:

    * ``insert`` schedules a full refetch, since feed rows lack the joined
      display fields;
    * ``update`` merges the changed columns into a known record and is
      ignored for unknown ids;
    * ``delete`` removes the record if present.

    An ``update`` or ``delete`` that lands while a load is in flight is
    applied and also schedules one more load, since the pending snapshot may
    predate it. Every load bumps a generation counter and only the most recently started
    load may publish its result.
    """

    def __init__(
        self,
        resource_type: str,
        store: BackingStore,
        feed: ChangeFeed,
        *,
        resources: ResourceRegistry = DEFAULT_RESOURCES,
        filter: Mapping[str, Any] | None = None,
        ordering: Sequence[Ordering] = (),
    ) -> None:
        self._definition = resources.get(resource_type)
        self._store = store
        self._feed = feed
        self._filter = dict(filter or {})
        self._ordering = tuple(ordering)

        self._items: dict[str, RecordRead] = {}
        self._loading = True
        self._error: StoreFailure | None = None

        self._generation = 0
        self._loads_in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._refetch_task: asyncio.Task[None] | None = None
        self._refetch_reason: str | None = None

        self._subscription: Subscription | None = None
        self._feed_error: StoreFailure | None = None
        self._subscribe_lock = asyncio.Lock()
        self._closed = False

    @property
    def resource_type(self) -> str:
        return self._definition.name

    @property
    def definition(self) -> ResourceDefinition:
        return self._definition

    @property
    def module(self) -> str:
        return self._definition.module

    @property
    def items(self) -> list[RecordRead]:
        return list(self._items.values())

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> StoreFailure | None:
        return self._error

    @property
    def feed_error(self) -> StoreFailure | None:
        """Why the last ``subscribe`` failed; cleared once one succeeds."""
        return self._feed_error

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, record_id: str) -> RecordRead | None:
        return self._items.get(str(record_id))

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    async def initial_load(self) -> StoreResult[list[RecordRead]]:
        self._generation += 1
        generation = self._generation
        self._loading = True
        self._loads_in_flight += 1
        self._idle.clear()
        try:
            with tracer.start_as_current_span("cache.load") as span:
                span.set_attribute("resource_type", self.resource_type)
                span.set_attribute("correlation_id", get_correlation_id() or "")

                result = self._parse(await self._store.select(self.resource_type, self._filter, self._ordering))
                if generation != self._generation or self._closed:
                    span.set_attribute("superseded", True)
                    logger.debug("cache.load_superseded", extra={"resource_type": self.resource_type})
                    return result

                if result.ok:
                    self._items = {record.id: record for record in result.data or []}
                    self._error = None
                    span.set_attribute("record_count", len(self._items))
                else:
                    self._items = {}
                    self._error = result.error
                    observe_load_failure(self.resource_type)
                    logger.warning(
                        "cache.load_failed",
                        extra={"resource_type": self.resource_type, "error": result.error.message if result.error else None},
                    )
                self._loading = False
                return result
        finally:
            self._loads_in_flight -= 1
            if self._loads_in_flight == 0:
                self._idle.set()

    def _parse(self, result: StoreResult[list[dict[str, Any]]]) -> StoreResult[list[RecordRead]]:
        if not result.ok:
            return StoreResult(error=result.error)
        schema = self._definition.schema
        try:
            return StoreResult.success([schema.model_validate(row) for row in result.data or []])
        except ValidationError as exc:
            return StoreResult.failure("invalid_record", str(exc), resource_type=self.resource_type)

    async def subscribe(self) -> StoreResult[None]:
        """Open the collection's feed subscription; a second call is a no-op.

        A feed failure is returned, not retried. A subscription that resolves
        after ``teardown`` is closed straight away.
        """

        async with self._subscribe_lock:
            if self._closed:
                return StoreResult.failure("closed", f"Cache for '{self.resource_type}' was torn down")
            if self._subscription is not None:
                return StoreResult.success(None)

            try:
                subscription = await self._feed.subscribe(self.resource_type, self.apply_event, self._filter or None)
            except ConnectionError as exc:
                logger.warning("cache.subscribe_failed", extra={"resource_type": self.resource_type, "error": str(exc)})
                failed: StoreResult[None] = StoreResult.failure("feed_unavailable", str(exc))
                self._feed_error = failed.error
                return failed

            if self._closed:
                self._feed.unsubscribe(subscription)
                return StoreResult.failure("closed", f"Cache for '{self.resource_type}' was torn down")

            self._subscription = subscription
            self._feed_error = None
            return StoreResult.success(None)

    def apply_event(self, event: ChangeEvent) -> None:
        if self._closed or event.resource_type != self.resource_type:
            return

        if event.kind == ChangeKind.INSERT:
            observe_change_event(self.resource_type, event.kind, "refetch")
            self.request_refetch("insert")
            return

        record_id = event.record_id
        applied = False
        if record_id is not None:
            if event.kind == ChangeKind.UPDATE:
                applied = self.apply_local_patch(record_id, event.record)
            elif event.kind == ChangeKind.DELETE:
                applied = self.apply_local_delete(record_id)

        if self._loads_in_flight:
            self.request_refetch(str(event.kind))

        observe_change_event(self.resource_type, event.kind, "applied" if applied else "ignored")
        logger.debug(
            "cache.event",
            extra={
                "resource_type": self.resource_type,
                "resource_id": record_id,
                "event_kind": str(event.kind),
                "state": "applied" if applied else "ignored",
            },
        )

    def apply_local_patch(self, record_id: str, patch: Mapping[str, Any]) -> bool:
        current = self._items.get(record_id)
        if current is None:
            return False
        merged = {**current.model_dump(), **dict(patch), "id": record_id}
        try:
            self._items[record_id] = self._definition.schema.model_validate(merged)
        except ValidationError as exc:
            logger.warning(
                "cache.patch_rejected",
                extra={"resource_type": self.resource_type, "resource_id": record_id, "error": str(exc)},
            )
            return False
        return True

    def apply_local_insert(self, record: Mapping[str, Any]) -> RecordRead | None:
        try:
            parsed = self._definition.schema.model_validate(dict(record))
        except ValidationError as exc:
            logger.warning("cache.insert_rejected", extra={"resource_type": self.resource_type, "error": str(exc)})
            return None
        rest = {key: value for key, value in self._items.items() if key != parsed.id}
        self._items = {parsed.id: parsed, **rest}
        return parsed

    def apply_local_delete(self, record_id: str) -> bool:
        return self._items.pop(record_id, None) is not None

    def request_refetch(self, reason: str) -> None:
        """Schedule a full reload; requests made while one is queued coalesce."""

        if self._closed:
            return
        self._refetch_reason = reason
        if self._refetch_task is None or self._refetch_task.done():
            self._refetch_task = asyncio.get_running_loop().create_task(self._run_refetches())

    async def _run_refetches(self) -> None:
        while self._refetch_reason is not None and not self._closed:
            reason, self._refetch_reason = self._refetch_reason, None
            observe_refetch(self.resource_type, reason)
            await self.initial_load()

    async def refetch(self, reason: str = "manual") -> StoreResult[list[RecordRead]]:
        observe_refetch(self.resource_type, reason)
        logger.info("cache.refetch", extra={"resource_type": self.resource_type, "reason": reason})
        result = await self.initial_load()
        await self.wait_idle()
        return result

    async def wait_idle(self) -> None:
        while True:
            task = self._refetch_task
            if task is not None and not task.done():
                await asyncio.wait({task})
                continue
            if self._loads_in_flight:
                await self._idle.wait()
                continue
            return

    def teardown(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._generation += 1
        if self._subscription is not None:
            self._feed.unsubscribe(self._subscription)
            self._subscription = None
        if self._refetch_task is not None and not self._refetch_task.done():
            self._refetch_task.cancel()
        logger.debug("cache.teardown", extra={"resource_type": self.resource_type})
