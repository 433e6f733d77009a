from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from crmpro.events import OutboundMessage, Outbox
from crmpro.notifications import NotificationDispatcher
from crmpro.security.context import Session

AUDIT_TOPIC = "audit"


class AuditAction(StrEnum):
    LOGIN = "auth.login"
    LOGOUT = "auth.logout"
    LOGIN_FAILED = "auth.login_failed"
    PASSWORD_CHANGE = "auth.password_change"
    CANDIDATE_VIEW_SENSITIVE = "candidate.view_sensitive"
    PAYROLL_PROCESS = "payroll.process"
    PAYROLL_APPROVE = "payroll.approve"
    DATA_EXPORT = "data.export"
    ACCESS_DENIED = "access.denied"
    UNAUTHORIZED_ATTEMPT = "access.unauthorized_attempt"


class Severity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


ACTION_SEVERITY: dict[str, Severity] = {
    AuditAction.LOGIN: Severity.INFO,
    AuditAction.LOGOUT: Severity.INFO,
    AuditAction.LOGIN_FAILED: Severity.WARNING,
    AuditAction.PASSWORD_CHANGE: Severity.CRITICAL,
    AuditAction.PAYROLL_PROCESS: Severity.CRITICAL,
    AuditAction.PAYROLL_APPROVE: Severity.CRITICAL,
    AuditAction.DATA_EXPORT: Severity.WARNING,
    AuditAction.ACCESS_DENIED: Severity.WARNING,
    AuditAction.UNAUTHORIZED_ATTEMPT: Severity.CRITICAL,
}

# payroll status -> audited payroll action
PAYROLL_STATUS_ACTIONS: dict[str, AuditAction] = {
    "processed": AuditAction.PAYROLL_PROCESS,
    "approved": AuditAction.PAYROLL_APPROVE,
}


def record(
    outbox: Outbox,
    *,
    action: str,
    actor: Session | None,
    module: str | None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Queue an audit entry; never waits for, or fails on, the sink."""

    payload = {
        "action": str(action),
        "actor_id": actor.user_id if actor else "unknown",
        "actor_email": (actor.email if actor else None) or "unknown",
        "actor_role": actor.role if actor else "unknown",
        "module": module,
        "resource_type": resource_type,
        "resource_id": resource_id,
        "details": details or {},
        "severity": str(ACTION_SEVERITY.get(action, Severity.INFO)),
    }
    outbox.publish(AUDIT_TOPIC, payload)
    return payload


def log_unauthorized_access(outbox: Outbox, session: Session, module: str, attempted_action: str) -> dict[str, Any]:
    return record(
        outbox,
        action=AuditAction.UNAUTHORIZED_ATTEMPT,
        actor=session,
        module=module,
        details={
            "attempted_action": attempted_action,
            "blocked_at": datetime.now(timezone.utc).isoformat(),
        },
    )


def log_access_denied(
    outbox: Outbox,
    session: Session,
    module: str | None,
    action: str,
    *,
    resource_type: str,
    resource_ids: Sequence[str],
    reason: str | None = None,
) -> dict[str, Any]:
    return record(
        outbox,
        action=AuditAction.ACCESS_DENIED,
        actor=session,
        module=module,
        resource_type=resource_type,
        resource_id=resource_ids[0] if len(resource_ids) == 1 else None,
        details={"attempted_action": action, "resource_ids": list(resource_ids), "reason": reason},
    )


def log_data_access(
    outbox: Outbox,
    session: Session,
    module: str,
    resource_type: str,
    resource_id: str | None,
    *,
    access: str = "view",
    action: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return record(
        outbox,
        action=action or f"{module}.{access}",
        actor=session,
        module=module,
        resource_type=resource_type,
        resource_id=resource_id,
        details={**(details or {}), "access_type": access},
    )


def log_payroll_action(
    outbox: Outbox,
    session: Session | None,
    action: AuditAction,
    *,
    resource_ids: Sequence[str] = (),
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return record(
        outbox,
        action=action,
        actor=session,
        module="payroll",
        resource_type="payroll_records",
        resource_id=resource_ids[0] if len(resource_ids) == 1 else None,
        details={
            **(details or {}),
            "resource_ids": list(resource_ids),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


def log_data_export(outbox: Outbox, session: Session, module: str, export_type: str, record_count: int) -> dict[str, Any]:
    return record(
        outbox,
        action=AuditAction.DATA_EXPORT,
        actor=session,
        module=module,
        details={
            "export_type": export_type,
            "record_count": record_count,
            "exported_at": datetime.now(timezone.utc).isoformat(),
        },
    )


def log_auth_event(
    outbox: Outbox,
    action: AuditAction,
    session: Session,
    *,
    success: bool = True,
    details: dict[str, Any] | None = None,
    notifications: NotificationDispatcher | None = None,
) -> dict[str, Any]:
    """Audit an authentication event; a successful login also notifies admins."""

    entry = record(
        outbox,
        action=action if success else AuditAction.LOGIN_FAILED,
        actor=session,
        module="auth",
        details={**(details or {}), "success": success},
    )
    if success and action == AuditAction.LOGIN and notifications is not None:
        notifications.notify_admins(
            "login",
            "User Logged In",
            f"{session.email or session.user_id} has logged in.",
            {"user_id": session.user_id, "user_email": session.email},
        )
    return entry


class AuditLog:
    """In-memory audit sink fed by the outbox."""

    def __init__(self, outbox: Outbox) -> None:
        self.entries: list[dict[str, Any]] = []
        outbox.subscribe(AUDIT_TOPIC, self._store)

    def _store(self, message: OutboundMessage) -> None:
        self.entries.append(
            {
                "id": str(uuid.uuid4()),
                **message.payload,
                "correlation_id": message.correlation_id,
                "occurred_at": message.published_at,
            }
        )

    def query(
        self,
        *,
        actor_id: str | None = None,
        action: str | None = None,
        module: str | None = None,
        severity: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = [
            entry
            for entry in reversed(self.entries)
            if (actor_id is None or entry["actor_id"] == actor_id)
            and (action is None or entry["action"] == action)
            and (module is None or entry["module"] == module)
            and (severity is None or entry["severity"] == severity)
        ]
        return rows[:limit] if limit is not None else rows
