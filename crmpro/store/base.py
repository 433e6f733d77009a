from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Generic, Protocol, TypeVar


T = TypeVar("T")


class ChangeKind(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """One committed mutation of a resource type as delivered by a change feed.

    ``record`` is the full row for inserts, the changed columns (at least) for
    updates and at least the ``id`` for deletes.
    """

    kind: ChangeKind
    resource_type: str
    record: Mapping[str, Any]

    @property
    def record_id(self) -> str | None:
        value = self.record.get("id")
        return str(value) if value is not None else None


@dataclass(frozen=True, slots=True)
class StoreFailure:
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class StoreResult(Generic[T]):
    """Success-with-data or a typed failure; store calls never raise for store errors."""

    data: T | None = None
    error: StoreFailure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: T | None = None) -> StoreResult[T]:
        return cls(data=data)

    @classmethod
    def failure(cls, code: str, message: str, **details: Any) -> StoreResult[T]:
        return cls(error=StoreFailure(code=code, message=message, details=details))


@dataclass(frozen=True, slots=True)
class Ordering:
    field: str
    descending: bool = False


Row = dict[str, Any]
ChangeHandler = Callable[[ChangeEvent], None]


class Subscription(Protocol):
    resource_type: str

    @property
    def active(self) -> bool:
        ...


class ChangeFeed(Protocol):
    """Push-based feed of committed changes, delivered in commit order per resource type."""

    async def subscribe(
        self,
        resource_type: str,
        handler: ChangeHandler,
        filter: Mapping[str, Any] | None = None,
    ) -> Subscription:
        ...

    def unsubscribe(self, subscription: Subscription) -> None:
        ...


class BackingStore(Protocol):
    """Request/response access to the server-of-record."""

    async def select(
        self,
        resource_type: str,
        filter: Mapping[str, Any] | None = None,
        ordering: Sequence[Ordering] = (),
    ) -> StoreResult[list[Row]]:
        ...

    async def insert(self, resource_type: str, record: Mapping[str, Any]) -> StoreResult[Row]:
        ...

    async def update(self, resource_type: str, record_id: str, patch: Mapping[str, Any]) -> StoreResult[Row]:
        ...

    async def delete(self, resource_type: str, record_id: str) -> StoreResult[None]:
        ...

    async def update_many(
        self, resource_type: str, record_ids: Sequence[str], patch: Mapping[str, Any]
    ) -> StoreResult[list[Row]]:
        ...

    async def delete_many(self, resource_type: str, record_ids: Sequence[str]) -> StoreResult[None]:
        ...
