from crmpro.store.base import (
    BackingStore,
    ChangeEvent,
    ChangeFeed,
    ChangeKind,
    Ordering,
    Row,
    StoreFailure,
    StoreResult,
    Subscription,
)
from crmpro.store.errors import FeedUnavailableError, UnknownResourceError
from crmpro.store.memory import FeedSubscription, InMemoryChangeFeed

__all__ = [
    "BackingStore",
    "ChangeEvent",
    "ChangeFeed",
    "ChangeKind",
    "FeedSubscription",
    "FeedUnavailableError",
    "InMemoryChangeFeed",
    "Ordering",
    "Row",
    "StoreFailure",
    "StoreResult",
    "Subscription",
    "UnknownResourceError",
]
