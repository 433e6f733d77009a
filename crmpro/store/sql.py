from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from crmpro.core.database import Base
from crmpro.resources.registry import DEFAULT_RESOURCES, ResourceDefinition, ResourceRegistry
from crmpro.store.base import ChangeEvent, ChangeKind, Ordering, Row, StoreResult
from crmpro.store.errors import UnknownResourceError
from crmpro.store.memory import InMemoryChangeFeed

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


class SqlBackingStore:
    """SQLAlchemy implementation of the request/response store API.

    Reads fill each resource's joined sub-structures (``JoinSpec``); the
    change events emitted after a commit only carry the raw table columns,
    like a database replication feed would. Blocking database work runs in
    a worker thread so the event loop stays responsive; calls are serialized
    per store instance.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        resources: ResourceRegistry = DEFAULT_RESOURCES,
        *,
        change_feed: InMemoryChangeFeed | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._resources = resources
        self._change_feed = change_feed
        self._lock = asyncio.Lock()

    async def select(
        self,
        resource_type: str,
        filter: Mapping[str, Any] | None = None,
        ordering: Sequence[Ordering] = (),
    ) -> StoreResult[list[Row]]:
        return await self._run(resource_type, "select", self._select, dict(filter or {}), tuple(ordering))

    async def insert(self, resource_type: str, record: Mapping[str, Any]) -> StoreResult[Row]:
        result = await self._run(resource_type, "insert", self._insert, dict(record))
        if result.ok and result.data is not None:
            self._emit(ChangeKind.INSERT, resource_type, [result.data])
        return result

    async def update(self, resource_type: str, record_id: str, patch: Mapping[str, Any]) -> StoreResult[Row]:
        result = await self._run(resource_type, "update", self._update_many, [record_id], dict(patch))
        if not result.ok:
            return StoreResult(error=result.error)
        self._emit(ChangeKind.UPDATE, resource_type, result.data or [])
        rows = result.data or []
        return StoreResult.success(rows[0] if rows else None)

    async def delete(self, resource_type: str, record_id: str) -> StoreResult[None]:
        return await self.delete_many(resource_type, [record_id])

    async def update_many(
        self, resource_type: str, record_ids: Sequence[str], patch: Mapping[str, Any]
    ) -> StoreResult[list[Row]]:
        result = await self._run(resource_type, "update", self._update_many, list(record_ids), dict(patch))
        if result.ok:
            self._emit(ChangeKind.UPDATE, resource_type, result.data or [])
        return result

    async def delete_many(self, resource_type: str, record_ids: Sequence[str]) -> StoreResult[None]:
        result = await self._run(resource_type, "delete", self._delete_many, list(record_ids))
        if not result.ok:
            return StoreResult(error=result.error)
        self._emit(ChangeKind.DELETE, resource_type, [{"id": record_id} for record_id in result.data or []])
        return StoreResult.success(None)

    async def _run(self, resource_type: str, operation: str, fn: Any, *args: Any) -> StoreResult[Any]:
        try:
            definition = self._resources.get(resource_type)
        except UnknownResourceError as exc:
            return StoreResult.failure("unknown_resource", str(exc))

        try:
            async with self._lock:
                return await asyncio.to_thread(fn, definition, *args)
        except IntegrityError as exc:
            logger.warning(
                "store.write_rejected",
                extra={"resource_type": resource_type, "reason": operation, "error": str(exc.orig)},
            )
            return StoreResult.failure("constraint_violation", str(exc.orig), operation=operation)
        except SQLAlchemyError as exc:
            logger.exception("store.error", extra={"resource_type": resource_type, "reason": operation})
            return StoreResult.failure("store_error", str(exc), operation=operation)

    def _emit(self, kind: ChangeKind, resource_type: str, rows: Sequence[Row]) -> None:
        if self._change_feed is None:
            return
        for row in rows:
            self._change_feed.publish(ChangeEvent(kind=kind, resource_type=resource_type, record=dict(row)))

    def _select(self, definition: ResourceDefinition, filter: dict[str, Any], ordering: tuple[Ordering, ...]) -> StoreResult[list[Row]]:
        model = definition.model
        unknown = _unknown_columns(model, filter)
        if unknown:
            return StoreResult.failure("invalid_field", f"Unknown filter fields: {', '.join(unknown)}")

        ordering = ordering or definition.default_ordering
        unknown = _unknown_columns(model, {order.field: None for order in ordering})
        if unknown:
            return StoreResult.failure("invalid_field", f"Unknown ordering fields: {', '.join(unknown)}")

        stmt = select(model)
        for key, value in filter.items():
            stmt = stmt.where(getattr(model, key) == value)
        for order in ordering:
            column = getattr(model, order.field)
            stmt = stmt.order_by(column.desc() if order.descending else column.asc())

        with self._session_factory() as session:
            rows = [_to_row(item) for item in session.scalars(stmt).all()]
            self._fill_joins(session, definition, rows)
        return StoreResult.success(rows)

    def _fill_joins(self, session: Session, definition: ResourceDefinition, rows: list[Row]) -> None:
        for join in definition.joins:
            keys = {row[join.foreign_key] for row in rows if row.get(join.foreign_key) is not None}
            lookup: dict[Any, dict[str, Any]] = {}
            if keys:
                targets = session.scalars(select(join.target).where(join.target.id.in_(keys))).all()  # type: ignore[attr-defined]
                lookup = {target.id: {column: getattr(target, column) for column in join.columns} for target in targets}  # type: ignore[attr-defined]
            for row in rows:
                row[join.name] = lookup.get(row.get(join.foreign_key))

    def _insert(self, definition: ResourceDefinition, record: dict[str, Any]) -> StoreResult[Row]:
        model = definition.model
        values = {key: value for key, value in record.items() if key != "created_at"}
        unknown = _unknown_columns(model, values)
        if unknown:
            return StoreResult.failure("invalid_field", f"Unknown fields: {', '.join(unknown)}")

        with self._session_factory() as session:
            item = model(**values)
            session.add(item)
            session.commit()
            session.refresh(item)
            return StoreResult.success(_to_row(item))

    def _update_many(self, definition: ResourceDefinition, record_ids: list[str], patch: dict[str, Any]) -> StoreResult[list[Row]]:
        model = definition.model
        unknown = _unknown_columns(model, patch)
        if unknown:
            return StoreResult.failure("invalid_field", f"Unknown fields: {', '.join(unknown)}")
        immutable = sorted(set(patch) & _IMMUTABLE_FIELDS)
        if immutable:
            return StoreResult.failure("invalid_field", f"Immutable fields: {', '.join(immutable)}")

        with self._session_factory() as session:
            items = self._load_all(session, model, record_ids)
            if items is None:
                return StoreResult.failure("not_found", "One or more records were not found", ids=record_ids)
            now = datetime.now(timezone.utc)
            for item in items:
                for key, value in patch.items():
                    setattr(item, key, value)
                if hasattr(item, "updated_at") and "updated_at" not in patch:
                    item.updated_at = now
            session.commit()
            for item in items:
                session.refresh(item)
            return StoreResult.success([_to_row(item) for item in items])

    def _delete_many(self, definition: ResourceDefinition, record_ids: list[str]) -> StoreResult[list[str]]:
        with self._session_factory() as session:
            items = self._load_all(session, definition.model, record_ids)
            if items is None:
                return StoreResult.failure("not_found", "One or more records were not found", ids=record_ids)
            for item in items:
                session.delete(item)
            session.commit()
        return StoreResult.success([str(record_id) for record_id in dict.fromkeys(record_ids)])

    @staticmethod
    def _load_all(session: Session, model: type[Base], record_ids: list[str]) -> list[Any] | None:
        wanted = list(dict.fromkeys(record_ids))
        items = session.scalars(select(model).where(model.id.in_(wanted))).all()  # type: ignore[attr-defined]
        if len(items) != len(wanted):
            return None
        return list(items)


def _to_row(item: Base) -> Row:
    return {column.name: getattr(item, column.name) for column in item.__table__.columns}


def _unknown_columns(model: type[Base], values: Mapping[str, Any]) -> list[str]:
    columns = set(model.__table__.columns.keys())
    return sorted(key for key in values if key not in columns)
