from __future__ import annotations

import logging
from collections.abc import Awaitable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from crmpro import audit
from crmpro.cache.realtime import RealtimeCache
from crmpro.context import get_correlation_id
from crmpro.events import Outbox
from crmpro.metrics import observe_optimistic_write
from crmpro.otel import get_tracer
from crmpro.resources.models import new_id
from crmpro.resources.schemas import RecordRead
from crmpro.security.context import CapabilitySet, Session
from crmpro.security.permissions import Module
from crmpro.security.policies import ModuleAction, PolicyEngine
from crmpro.store.base import BackingStore, StoreFailure, StoreResult

logger = logging.getLogger(__name__)
tracer = get_tracer("crmpro.cache.mutator")


@dataclass(frozen=True, slots=True)
class MutationResult:
    operation: str
    record_ids: tuple[str, ...]
    error: StoreFailure | None = None
    rolled_back: bool = False
    record: RecordRead | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class OptimisticMutator:
    """Writes that show up in the cached collection before the server confirms them.

    Each write first changes the local collection, then sends the request.
    Success needs no further work: the change feed delivers the committed
    row. On failure the whole collection is reloaded from the server before
    the failure is returned, so the collection never keeps an unconfirmed
    change.

    When built with a ``Session`` the mutator also enforces that session's
    capabilities on the collection's module. A refused write never touches
    the collection or the store; it is returned as a ``denied`` failure and
    recorded as an ``access.denied`` audit entry.
    Moving a payroll record to ``processed`` or ``approved`` is audited as
    the matching payroll action.
    """

    def __init__(
        self,
        cache: RealtimeCache,
        store: BackingStore,
        *,
        session: Session | None = None,
        capabilities: CapabilitySet | None = None,
        policy: PolicyEngine | None = None,
        outbox: Outbox | None = None,
    ) -> None:
        self._cache = cache
        self._store = store
        self._session = session
        self._policy = policy or PolicyEngine()
        self._outbox = outbox
        if capabilities is None and session is not None:
            capabilities = self._policy.capabilities(session.role, cache.module)
        self._capabilities = capabilities

    @property
    def resource_type(self) -> str:
        return self._cache.resource_type

    async def apply(self, record_id: str, patch: Mapping[str, Any]) -> MutationResult:
        record_ids = (str(record_id),)
        denied = self._check(ModuleAction.EDIT, "update", record_ids, patch=patch)
        if denied is not None:
            return denied

        self._cache.apply_local_patch(record_ids[0], patch)
        result = await self._commit("update", record_ids, self._store.update(self.resource_type, record_ids[0], dict(patch)))
        self._audit_payroll(result, patch)
        return result

    async def move(self, record_id: str, stage: str, field: str = "stage") -> MutationResult:
        return await self.apply(record_id, {field: stage})

    async def apply_many(self, record_ids: Sequence[str], patch: Mapping[str, Any]) -> MutationResult:
        ids = tuple(str(record_id) for record_id in record_ids)
        denied = self._check(ModuleAction.EDIT, "update_many", ids, patch=patch)
        if denied is not None:
            return denied

        for record_id in ids:
            self._cache.apply_local_patch(record_id, patch)
        result = await self._commit("update_many", ids, self._store.update_many(self.resource_type, ids, dict(patch)))
        self._audit_payroll(result, patch)
        return result

    async def create(self, record: Mapping[str, Any]) -> MutationResult:
        values = dict(record)
        values.setdefault("id", new_id())
        record_ids = (str(values["id"]),)
        try:
            candidate = self._cache.definition.schema.model_validate(values)
        except ValidationError as exc:
            observe_optimistic_write(self.resource_type, "insert", "invalid")
            return MutationResult(
                "insert",
                record_ids,
                error=StoreFailure("invalid_record", str(exc), {"resource_type": self.resource_type}),
            )

        denied = self._check(ModuleAction.EDIT, "insert", record_ids, new_record=candidate)
        if denied is not None:
            return denied

        local = self._cache.apply_local_insert(values)
        result = await self._commit("insert", record_ids, self._store.insert(self.resource_type, values))
        if result.ok:
            return MutationResult("insert", record_ids, record=local)
        return result

    async def delete(self, record_id: str) -> MutationResult:
        record_ids = (str(record_id),)
        denied = self._check(ModuleAction.DELETE, "delete", record_ids)
        if denied is not None:
            return denied

        self._cache.apply_local_delete(record_ids[0])
        return await self._commit("delete", record_ids, self._store.delete(self.resource_type, record_ids[0]))

    async def delete_many(self, record_ids: Sequence[str]) -> MutationResult:
        ids = tuple(str(record_id) for record_id in record_ids)
        denied = self._check(ModuleAction.DELETE, "delete_many", ids)
        if denied is not None:
            return denied

        for record_id in ids:
            self._cache.apply_local_delete(record_id)
        return await self._commit("delete_many", ids, self._store.delete_many(self.resource_type, ids))

    async def _commit(
        self,
        operation: str,
        record_ids: tuple[str, ...],
        write: Awaitable[StoreResult[Any]],
    ) -> MutationResult:
        with tracer.start_as_current_span(f"mutator.{operation}") as span:
            span.set_attribute("resource_type", self.resource_type)
            span.set_attribute("record_count", len(record_ids))
            span.set_attribute("correlation_id", get_correlation_id() or "")

            result = await write
            if result.ok:
                observe_optimistic_write(self.resource_type, operation, "success")
                span.set_attribute("outcome", "success")
                return MutationResult(operation, record_ids)

            observe_optimistic_write(self.resource_type, operation, "rolled_back")
            span.set_attribute("outcome", "rolled_back")
            logger.warning(
                "mutator.write_failed",
                extra={
                    "resource_type": self.resource_type,
                    "resource_count": len(record_ids),
                    "reason": operation,
                    "error": result.error.message if result.error else None,
                },
            )
            await self._cache.refetch("rollback")
            return MutationResult(operation, record_ids, error=result.error, rolled_back=True)

    def _check(
        self,
        action: ModuleAction,
        operation: str,
        record_ids: tuple[str, ...],
        *,
        patch: Mapping[str, Any] | None = None,
        new_record: RecordRead | None = None,
    ) -> MutationResult | None:
        if self._session is None or self._capabilities is None:
            return None

        capabilities = self._capabilities
        decision = self._policy.authorize_action(capabilities.role, capabilities.module or self._cache.module, action)
        if decision.allowed:
            return None
        if capabilities.is_own_only and self._owns(self._session, record_ids, patch, new_record):
            return None

        reason = decision.reason
        observe_optimistic_write(self.resource_type, operation, "denied")
        logger.warning(
            "mutator.denied",
            extra={
                "resource_type": self.resource_type,
                "crm_module": self._cache.module,
                "role": self._session.role,
                "user_id": self._session.user_id,
                "reason": operation,
            },
        )
        if self._outbox is not None:
            audit.log_access_denied(
                self._outbox,
                self._session,
                self._cache.module,
                str(action),
                resource_type=self.resource_type,
                resource_ids=record_ids,
                reason=reason,
            )
        return MutationResult(
            operation,
            record_ids,
            error=StoreFailure("denied", reason or "Access denied", {"action": str(action)}),
        )

    def _owns(
        self,
        session: Session,
        record_ids: tuple[str, ...],
        patch: Mapping[str, Any] | None,
        new_record: RecordRead | None,
    ) -> bool:
        """Own-only writes must target the session's records and leave them its own."""

        if new_record is not None:
            targets: list[RecordRead | None] = [new_record]
        else:
            targets = [self._cache.get(record_id) for record_id in record_ids]
            if patch:
                targets += [self._patched(target, patch) for target in targets if target is not None]
        return bool(targets) and all(
            target is not None and self._policy.can_access_record(session, self._cache.module, target)
            for target in targets
        )

    def _patched(self, record: RecordRead, patch: Mapping[str, Any]) -> RecordRead | None:
        try:
            return self._cache.definition.schema.model_validate({**record.model_dump(), **dict(patch), "id": record.id})
        except ValidationError:
            return None

    def _audit_payroll(self, result: MutationResult, patch: Mapping[str, Any]) -> None:
        if not result.ok or self._outbox is None or self._cache.module != Module.PAYROLL:
            return
        status = patch.get("status")
        action = audit.PAYROLL_STATUS_ACTIONS.get(str(status))
        if action is not None:
            audit.log_payroll_action(self._outbox, self._session, action, resource_ids=result.record_ids, details={"status": status})
