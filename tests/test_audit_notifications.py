from __future__ import annotations

import pytest

from crmpro import audit
from crmpro.audit import AuditAction, AuditLog
from crmpro.events import Outbox
from crmpro.notifications import NotificationCenter, NotificationDispatcher
from crmpro.security.context import Session


@pytest.fixture()
def outbox() -> Outbox:
    return Outbox(max_attempts=1)


@pytest.fixture()
def audit_log(outbox: Outbox) -> AuditLog:
    return AuditLog(outbox)


@pytest.fixture()
def center(outbox: Outbox) -> NotificationCenter:
    return NotificationCenter(outbox, lambda: ["admin-1", "admin-2"])


@pytest.mark.asyncio
async def test_login_is_audited_and_notifies_admins(
    outbox: Outbox, audit_log: AuditLog, center: NotificationCenter
) -> None:
    session = Session(user_id="u1", role="sales", email="sam@example.com")

    audit.log_auth_event(outbox, AuditAction.LOGIN, session, notifications=NotificationDispatcher(outbox))
    await outbox.drain()

    [entry] = audit_log.entries
    assert entry["action"] == "auth.login"
    assert entry["module"] == "auth"
    assert entry["details"] == {"success": True}
    assert entry["severity"] == "info"
    assert entry["occurred_at"]

    for admin_id in ("admin-1", "admin-2"):
        [notification] = center.for_user(admin_id)
        assert notification.title == "User Logged In"
        assert notification.message == "sam@example.com has logged in."
        assert notification.data["user_id"] == "u1"
    assert center.for_user("u1") == []


@pytest.mark.asyncio
async def test_failed_login_is_recorded_without_notification(
    outbox: Outbox, audit_log: AuditLog, center: NotificationCenter
) -> None:
    session = Session(user_id="u1", role="sales")

    audit.log_auth_event(
        outbox,
        AuditAction.LOGIN,
        session,
        success=False,
        details={"reason": "bad password"},
        notifications=NotificationDispatcher(outbox),
    )
    await outbox.drain()

    [entry] = audit_log.entries
    assert entry["action"] == "auth.login_failed"
    assert entry["severity"] == "warning"
    assert entry["details"] == {"reason": "bad password", "success": False}
    assert entry["actor_email"] == "unknown"
    assert center.for_user("admin-1") == []


@pytest.mark.asyncio
async def test_user_notification_goes_to_that_user_only(outbox: Outbox, center: NotificationCenter) -> None:
    NotificationDispatcher(outbox).notify_user("u7", "placement", "Placed", "Candidate placed", {"candidate_id": "c1"})
    await outbox.drain()

    [notification] = center.for_user("u7")
    assert notification.type == "placement"
    assert notification.data == {"candidate_id": "c1"}
    assert center.for_user("admin-1") == []


@pytest.mark.asyncio
async def test_access_denied_entry_lists_resource_ids(outbox: Outbox, audit_log: AuditLog) -> None:
    session = Session(user_id="e1", role="employee")

    audit.log_access_denied(
        outbox,
        session,
        "payroll",
        "delete",
        resource_type="payroll_records",
        resource_ids=["p1", "p2"],
        reason="not allowed",
    )
    await outbox.drain()

    [entry] = audit_log.entries
    assert entry["action"] == "access.denied"
    assert entry["resource_type"] == "payroll_records"
    assert entry["resource_id"] is None
    assert entry["details"]["resource_ids"] == ["p1", "p2"]


@pytest.mark.asyncio
async def test_query_filters_newest_first(outbox: Outbox, audit_log: AuditLog) -> None:
    alice = Session(user_id="alice", role="admin")
    bob = Session(user_id="bob", role="hr")

    audit.record(outbox, action=AuditAction.DATA_EXPORT, actor=alice, module="candidates")
    audit.record(outbox, action=AuditAction.PAYROLL_APPROVE, actor=bob, module="payroll")
    audit.record(outbox, action=AuditAction.PASSWORD_CHANGE, actor=alice, module="auth")
    await outbox.drain()

    assert [entry["action"] for entry in audit_log.query(actor_id="alice")] == ["auth.password_change", "data.export"]
    assert [entry["actor_id"] for entry in audit_log.query(severity="critical")] == ["alice", "bob"]
    assert len(audit_log.query(limit=1)) == 1
    assert audit_log.query(module="payroll")[0]["action"] == "payroll.approve"


@pytest.mark.asyncio
async def test_sensitive_data_operations_are_recorded(outbox: Outbox, audit_log: AuditLog) -> None:
    finance = Session(user_id="f1", role="finance", email="fin@example.com")

    audit.log_data_access(outbox, finance, "payroll", "payroll_records", "p1")
    audit.log_payroll_action(outbox, finance, AuditAction.PAYROLL_PROCESS, resource_ids=["p1"], details={"status": "processed"})
    audit.log_data_export(outbox, finance, "invoices", "csv", 12)
    audit.log_auth_event(outbox, AuditAction.PASSWORD_CHANGE, finance)
    await outbox.drain()

    access, payroll, export, password = audit_log.entries
    assert access["action"] == "payroll.view"
    assert access["resource_id"] == "p1"
    assert access["details"] == {"access_type": "view"}
    assert access["severity"] == "info"

    assert payroll["action"] == "payroll.process"
    assert payroll["module"] == "payroll"
    assert payroll["resource_id"] == "p1"
    assert payroll["details"]["status"] == "processed"
    assert payroll["details"]["timestamp"]
    assert payroll["severity"] == "critical"

    assert export["action"] == "data.export"
    assert export["details"]["export_type"] == "csv"
    assert export["details"]["record_count"] == 12
    assert export["severity"] == "warning"

    assert password["action"] == "auth.password_change"
    assert password["severity"] == "critical"
