from __future__ import annotations

from types import MappingProxyType

import pytest

from crmpro.security.context import Session
from crmpro.security.permissions import NAVIGATION_CONFIG, PERMISSION_MATRIX, Module, PermissionLevel, Role, build_matrix
from crmpro.security.policies import ModuleAction, PolicyEngine


@pytest.fixture()
def policy() -> PolicyEngine:
    return PolicyEngine()


def test_every_module_and_role_has_a_level() -> None:
    assert set(PERMISSION_MATRIX) == {str(module) for module in Module}
    for levels in PERMISSION_MATRIX.values():
        assert set(levels) == {str(role) for role in Role}


def test_finance_has_full_payroll_access(policy: PolicyEngine) -> None:
    assert policy.resolve_level("finance", "payroll") == PermissionLevel.FULL
    assert policy.can_delete("finance", "payroll") is True
    assert policy.can_edit("finance", "payroll") is True


def test_sales_has_no_compliance_access(policy: PolicyEngine) -> None:
    assert policy.has_access("sales", "compliance") is False
    assert policy.has_access("sales", "dashboard") is True


@pytest.mark.parametrize(
    ("role", "module"),
    [
        (None, "payroll"),
        ("", "payroll"),
        ("finance", None),
        ("Finance", "payroll"),
        ("superuser", "payroll"),
        ("admin", "unknown-module"),
    ],
)
def test_unknown_inputs_fail_closed(policy: PolicyEngine, role: str | None, module: str | None) -> None:
    assert policy.resolve_level(role, module) == PermissionLevel.NONE
    assert policy.has_access(role, module) is False
    assert policy.can_edit(role, module) is False
    assert policy.can_delete(role, module) is False


def test_invalid_level_in_matrix_resolves_to_none() -> None:
    matrix = MappingProxyType({"payroll": MappingProxyType({"finance": "superpower"})})
    policy = PolicyEngine(matrix)  # type: ignore[arg-type]

    assert policy.resolve_level("finance", "payroll") == PermissionLevel.NONE
    assert policy.has_access("finance", "payroll") is False


def test_level_flags(policy: PolicyEngine) -> None:
    assert policy.can_edit("recruiter", "submissions") is True
    assert policy.can_delete("recruiter", "submissions") is False
    assert policy.is_own_only("employee", "payroll") is True
    assert policy.can_edit("employee", "payroll") is False
    assert policy.is_limited("hr", "account-settings") is True
    assert policy.has_access("hr", "account-settings") is True


def test_capabilities_bundle(policy: PolicyEngine) -> None:
    caps = policy.capabilities("employee", "payroll")

    assert caps.level == PermissionLevel.OWN
    assert caps.can_view is True
    assert caps.can_edit is False
    assert caps.can_delete is False
    assert caps.is_own_only is True
    assert caps.is_limited is False


def test_default_capabilities_for_unbound_routes(policy: PolicyEngine) -> None:
    admin = policy.default_capabilities("admin")
    sales = policy.default_capabilities("sales")

    assert admin.level == PermissionLevel.FULL
    assert admin.can_delete is True
    assert admin.module is None
    assert sales.level == PermissionLevel.VIEW
    assert sales.can_view is True
    assert sales.can_edit is False


def test_own_level_requires_matching_owner(policy: PolicyEngine) -> None:
    record = {"id": "p1", "owner_id": "u9"}

    assert policy.can_access_record(Session(user_id="u9", role="employee"), "payroll", record) is True
    assert policy.can_access_record(Session(user_id="u5", role="employee"), "payroll", record) is False
    assert policy.can_access_record(Session(user_id="u5", role="employee"), "payroll", {"id": "p2"}) is False


def test_non_own_levels_ignore_ownership(policy: PolicyEngine) -> None:
    record = {"id": "p1", "owner_id": "u9"}

    assert policy.can_access_record(Session(user_id="f1", role="finance"), "payroll", record) is True
    assert policy.can_access_record(Session(user_id="s1", role="sales"), "payroll", record) is False


def test_authorize_action_messages(policy: PolicyEngine) -> None:
    assert policy.authorize_action("finance", "payroll", ModuleAction.DELETE).allowed is True

    no_access = policy.authorize_action("sales", "payroll", ModuleAction.VIEW)
    assert no_access.allowed is False
    assert no_access.reason == "Role 'sales' does not have access to module 'payroll'"

    no_edit = policy.authorize_action("hr", "payroll", "edit")
    assert no_edit.reason == "Role 'hr' cannot edit in module 'payroll'"

    no_delete = policy.authorize_action("recruiter", "submissions", ModuleAction.DELETE)
    assert no_delete.reason == "Role 'recruiter' cannot delete in module 'submissions'"


def test_navigation_for_employee(policy: PolicyEngine) -> None:
    items = policy.navigation_for("employee")

    assert [item.module for item in items] == ["dashboard", "hr-onboarding", "payroll", "compliance"]
    assert all(item.read_only for item in items)


def test_navigation_for_admin_lists_everything(policy: PolicyEngine) -> None:
    items = policy.navigation_for("admin")

    assert len(items) == 13
    assert not any(item.read_only for item in items)


@pytest.mark.parametrize("role", list(Role))
def test_navigation_lists_exactly_the_accessible_modules(policy: PolicyEngine, role: Role) -> None:
    items = policy.navigation_for(role)

    assert [item.module for item in items] == [
        module for _, _, _, module in NAVIGATION_CONFIG if policy.has_access(role, module)
    ]
    for item in items:
        assert policy.has_access(role, item.module)
        assert item.read_only is (not policy.can_edit(role, item.module))


def test_navigation_for_missing_role_is_empty(policy: PolicyEngine) -> None:
    assert policy.navigation_for(None) == []
    assert policy.navigation_for("ghost") == []


def test_user_menu_for_finance(policy: PolicyEngine) -> None:
    labels = [item.label for item in policy.user_menu_for("finance")]

    assert labels == ["Profile Settings", "Account Settings", "Billing & Plans"]


def test_user_menu_for_sales(policy: PolicyEngine) -> None:
    items = policy.user_menu_for("sales")

    assert [item.path for item in items] == ["/profile"]
    assert items[0].description == "Manage your personal information"


def test_accessible_modules(policy: PolicyEngine) -> None:
    assert policy.accessible_modules("employee") == ["dashboard", "hr-onboarding", "payroll", "compliance", "profile"]
    assert policy.accessible_modules(None) == []


def test_account_settings_sections(policy: PolicyEngine) -> None:
    assert [section.id for section in policy.account_settings_sections("hr")] == ["notifications", "hr"]
    assert [section.id for section in policy.account_settings_sections("finance")] == ["notifications", "finance"]
    assert len(policy.account_settings_sections("admin")) == 7
    assert policy.account_settings_sections("sales") == []


def test_route_map_lookup(policy: PolicyEngine) -> None:
    assert policy.module_for_path("/candidate-pipeline") == "pipeline"
    assert policy.module_for_path("/settings/billing") == "billing"
    assert policy.module_for_path("/not-a-route") is None
    assert policy.path_for_module("dashboard") == "/dashboard"


def test_injected_matrix_replaces_default() -> None:
    matrix = build_matrix({"payroll": {"employee": PermissionLevel.FULL}})
    policy = PolicyEngine(matrix)

    assert policy.can_delete("employee", "payroll") is True
    assert policy.has_access("admin", "payroll") is False
