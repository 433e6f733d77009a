from __future__ import annotations

import logging

from crmpro.cache.realtime import RealtimeCache
from crmpro.resources.registry import DEFAULT_RESOURCES, ResourceRegistry
from crmpro.store.base import BackingStore, ChangeFeed

logger = logging.getLogger(__name__)


class CacheRegistry:
    """Per-session owner of the shared collection for each resource type.

    ``acquire`` hands every consumer of a resource type the same
    ``RealtimeCache``; the first consumer subscribes it and runs its initial
    load. ``release`` tears the cache down once its last consumer leaves.
    """

    def __init__(
        self,
        store: BackingStore,
        feed: ChangeFeed,
        *,
        resources: ResourceRegistry = DEFAULT_RESOURCES,
    ) -> None:
        self._store = store
        self._feed = feed
        self._resources = resources
        self._caches: dict[str, RealtimeCache] = {}
        self._consumers: dict[str, int] = {}

    async def acquire(self, resource_type: str) -> RealtimeCache:
        """Join the shared collection, subscribing it again if its feed had failed.

        A subscription failure is left on ``cache.feed_error``; the next
        ``acquire`` of the same resource type retries it.
        """

        cache = self._caches.get(resource_type)
        if cache is not None:
            self._consumers[resource_type] += 1
            if not cache.subscribed:
                await self._subscribe(cache)
            return cache

        cache = RealtimeCache(resource_type, self._store, self._feed, resources=self._resources)
        self._caches[resource_type] = cache
        self._consumers[resource_type] = 1
        logger.info("cache.acquired", extra={"resource_type": resource_type})

        await self._subscribe(cache)
        await cache.initial_load()
        return cache

    async def _subscribe(self, cache: RealtimeCache) -> None:
        result = await cache.subscribe()
        if not result.ok and result.error is not None:
            logger.warning(
                "cache.feed_unavailable",
                extra={"resource_type": cache.resource_type, "error": result.error.message},
            )

    def release(self, resource_type: str) -> None:
        count = self._consumers.get(resource_type)
        if count is None:
            return
        if count > 1:
            self._consumers[resource_type] = count - 1
            return

        del self._consumers[resource_type]
        cache = self._caches.pop(resource_type)
        cache.teardown()
        logger.info("cache.released", extra={"resource_type": resource_type})

    def consumers(self, resource_type: str) -> int:
        return self._consumers.get(resource_type, 0)

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._caches

    def close(self) -> None:
        for resource_type, cache in list(self._caches.items()):
            cache.teardown()
            logger.debug("cache.closed", extra={"resource_type": resource_type})
        self._caches.clear()
        self._consumers.clear()
