from __future__ import annotations

from typing import Any

from crmpro import audit
from crmpro.cache.realtime import RealtimeCache
from crmpro.events import Outbox
from crmpro.resources.schemas import RecordRead
from crmpro.security.context import CapabilitySet, Session
from crmpro.security.masking import mask_sensitive_fields, masked_fields_for, sensitive_fields_for
from crmpro.security.permissions import Module
from crmpro.security.policies import PolicyEngine
from crmpro.store.base import StoreFailure


class CollectionView:
    """What one session may see of a cached collection.

    Nothing without ``can_view``; only the session's own records for an
    ``own`` level; sensitive fields masked for the session's role.

    With an outbox, opening a record that holds sensitive data and exporting
    the collection are audited.
    """

    def __init__(
        self,
        cache: RealtimeCache,
        session: Session,
        policy: PolicyEngine,
        capabilities: CapabilitySet | None = None,
        *,
        outbox: Outbox | None = None,
    ) -> None:
        self._cache = cache
        self._session = session
        self._policy = policy
        self._outbox = outbox
        self.capabilities = capabilities or policy.capabilities(session.role, cache.module)

    @property
    def loading(self) -> bool:
        return self._cache.loading

    @property
    def error(self) -> StoreFailure | None:
        return self._cache.error or self._cache.feed_error

    def list(self) -> list[RecordRead]:
        if not self.capabilities.can_view:
            return []
        return [self._present(record) for record in self._cache.items if self._visible(record)]

    def get(self, record_id: str) -> RecordRead | None:
        if not self.capabilities.can_view:
            return None
        record = self._cache.get(record_id)
        if record is None or not self._visible(record):
            return None
        self._audit_access(record)
        return self._present(record)

    def export(self, export_type: str = "csv") -> list[dict[str, Any]]:
        rows = [record.model_dump(mode="json") for record in self.list()]
        if self._outbox is not None and self.capabilities.can_view:
            audit.log_data_export(self._outbox, self._session, self._cache.module, export_type, len(rows))
        return rows

    def _visible(self, record: RecordRead) -> bool:
        if not self.capabilities.is_own_only:
            return True
        return self._policy.can_access_record(self._session, self._cache.module, record)

    def _present(self, record: RecordRead) -> RecordRead:
        return mask_sensitive_fields(record, self._session.role, self._cache.module)

    def _audit_access(self, record: RecordRead) -> None:
        if self._outbox is None:
            return
        module = self._cache.module
        held = sorted(name for name in sensitive_fields_for(module) if getattr(record, name, None))
        if not held:
            return

        masked = sorted(set(held) & set(masked_fields_for(self._session.role, module)))
        if masked:
            access, action = "view_masked", None
        else:
            access = "view_sensitive"
            action = audit.AuditAction.CANDIDATE_VIEW_SENSITIVE if module == Module.CANDIDATES else None
        audit.log_data_access(
            self._outbox,
            self._session,
            module,
            self._cache.resource_type,
            record.id,
            access=access,
            action=action,
            details={"fields": held, "masked_fields": masked},
        )
