from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import pytest

from crmpro.cache.registry import CacheRegistry
from crmpro.store.base import Ordering, Row, StoreResult
from crmpro.store.memory import InMemoryChangeFeed


class CountingStore:
    def __init__(self) -> None:
        self.selects: list[str] = []

    async def select(
        self,
        resource_type: str,
        filter: Mapping[str, Any] | None = None,
        ordering: Sequence[Ordering] = (),
    ) -> StoreResult[list[Row]]:
        self.selects.append(resource_type)
        if resource_type == "deals":
            return StoreResult.success([{"id": "d1", "title": "Acme renewal", "owner_id": "s1"}])
        return StoreResult.success([])


@pytest.fixture()
def feed() -> InMemoryChangeFeed:
    return InMemoryChangeFeed()


@pytest.fixture()
def store() -> CountingStore:
    return CountingStore()


@pytest.fixture()
def registry(store: CountingStore, feed: InMemoryChangeFeed) -> CacheRegistry:
    return CacheRegistry(store, feed)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_consumers_share_one_collection(registry: CacheRegistry, store: CountingStore, feed: InMemoryChangeFeed) -> None:
    first = await registry.acquire("deals")
    second = await registry.acquire("deals")

    assert first is second
    assert registry.consumers("deals") == 2
    assert store.selects == ["deals"]
    assert feed.subscriber_count("deals") == 1
    assert [record.id for record in first.items] == ["d1"]


@pytest.mark.asyncio
async def test_feed_failure_is_visible_and_retried_on_next_acquire(
    registry: CacheRegistry, store: CountingStore, feed: InMemoryChangeFeed
) -> None:
    feed.disconnect()
    first = await registry.acquire("deals")

    assert first.subscribed is False
    assert first.feed_error is not None
    assert first.feed_error.code == "feed_unavailable"
    assert [record.id for record in first.items] == ["d1"]

    feed.reconnect()
    second = await registry.acquire("deals")

    assert second is first
    assert first.subscribed is True
    assert first.feed_error is None
    assert feed.subscriber_count("deals") == 1
    assert registry.consumers("deals") == 2
    assert store.selects == ["deals"]


@pytest.mark.asyncio
async def test_last_release_tears_down(registry: CacheRegistry, feed: InMemoryChangeFeed) -> None:
    cache = await registry.acquire("deals")
    await registry.acquire("deals")

    registry.release("deals")
    assert not cache.closed
    assert "deals" in registry

    registry.release("deals")
    assert cache.closed
    assert "deals" not in registry
    assert feed.subscriber_count("deals") == 0

    registry.release("deals")


@pytest.mark.asyncio
async def test_reacquire_after_release_builds_a_fresh_collection(registry: CacheRegistry, store: CountingStore) -> None:
    first = await registry.acquire("deals")
    registry.release("deals")

    second = await registry.acquire("deals")

    assert second is not first
    assert store.selects == ["deals", "deals"]


@pytest.mark.asyncio
async def test_close_tears_down_everything(registry: CacheRegistry, feed: InMemoryChangeFeed) -> None:
    deals = await registry.acquire("deals")
    candidates = await registry.acquire("candidates")

    registry.close()

    assert deals.closed and candidates.closed
    assert feed.subscriber_count("deals") == 0
    assert feed.subscriber_count("candidates") == 0
    assert registry.consumers("deals") == 0
