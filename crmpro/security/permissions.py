from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from types import MappingProxyType


class Role(StrEnum):
    ADMIN = "admin"
    SALES = "sales"
    RECRUITER = "recruiter"
    HR = "hr"
    FINANCE = "finance"
    EMPLOYEE = "employee"


class Module(StrEnum):
    DASHBOARD = "dashboard"
    PIPELINE = "pipeline"
    CANDIDATES = "candidates"
    SUBMISSIONS = "submissions"
    INTERVIEWS = "interviews"
    PLACEMENTS = "placements"
    HR_ONBOARDING = "hr-onboarding"
    PAYROLL = "payroll"
    INVOICES = "invoices"
    COMPLIANCE = "compliance"
    ANALYTICS = "analytics"
    SETTINGS = "settings"
    PROFILE = "profile"
    ACCOUNT_SETTINGS = "account-settings"
    BILLING = "billing"
    ADMIN_ACTIVITY = "admin-activity"


class PermissionLevel(StrEnum):
    """Qualitative access levels. Only ``NONE`` is ordered (it is minimal)."""

    FULL = "full"
    EDIT = "edit"
    VIEW = "view"
    OWN = "own"
    LIMITED = "limited"
    NONE = "none"


PermissionMatrix = Mapping[str, Mapping[str, PermissionLevel]]

_FULL = PermissionLevel.FULL
_EDIT = PermissionLevel.EDIT
_VIEW = PermissionLevel.VIEW
_OWN = PermissionLevel.OWN
_LIMITED = PermissionLevel.LIMITED
_NONE = PermissionLevel.NONE


def _row(
    admin: PermissionLevel,
    sales: PermissionLevel,
    recruiter: PermissionLevel,
    hr: PermissionLevel,
    finance: PermissionLevel,
    employee: PermissionLevel,
) -> Mapping[str, PermissionLevel]:
    return MappingProxyType(
        {
            Role.ADMIN: admin,
            Role.SALES: sales,
            Role.RECRUITER: recruiter,
            Role.HR: hr,
            Role.FINANCE: finance,
            Role.EMPLOYEE: employee,
        }
    )


def build_matrix(rows: Mapping[str, Mapping[str, PermissionLevel]]) -> PermissionMatrix:
    """Freeze a module -> role -> level mapping."""

    return MappingProxyType({str(module): MappingProxyType(dict(levels)) for module, levels in rows.items()})


#                                  admin  sales  recruiter hr     finance employee
PERMISSION_MATRIX: PermissionMatrix = build_matrix(
    {
        Module.DASHBOARD: _row(_FULL, _VIEW, _VIEW, _VIEW, _VIEW, _VIEW),
        Module.PIPELINE: _row(_FULL, _FULL, _VIEW, _NONE, _NONE, _NONE),
        # finance reads candidates masked, see masking.py
        Module.CANDIDATES: _row(_FULL, _VIEW, _FULL, _VIEW, _VIEW, _NONE),
        Module.SUBMISSIONS: _row(_FULL, _FULL, _EDIT, _NONE, _NONE, _NONE),
        Module.INTERVIEWS: _row(_FULL, _FULL, _VIEW, _VIEW, _NONE, _NONE),
        Module.PLACEMENTS: _row(_FULL, _FULL, _VIEW, _VIEW, _VIEW, _NONE),
        Module.HR_ONBOARDING: _row(_FULL, _NONE, _NONE, _FULL, _NONE, _OWN),
        Module.PAYROLL: _row(_FULL, _NONE, _NONE, _VIEW, _FULL, _OWN),
        Module.INVOICES: _row(_FULL, _NONE, _NONE, _NONE, _FULL, _NONE),
        Module.COMPLIANCE: _row(_FULL, _NONE, _NONE, _FULL, _NONE, _OWN),
        Module.ANALYTICS: _row(_FULL, _VIEW, _VIEW, _VIEW, _VIEW, _NONE),
        Module.SETTINGS: _row(_FULL, _NONE, _NONE, _NONE, _NONE, _NONE),
        Module.PROFILE: _row(_FULL, _FULL, _FULL, _FULL, _FULL, _FULL),
        Module.ACCOUNT_SETTINGS: _row(_FULL, _NONE, _NONE, _LIMITED, _LIMITED, _NONE),
        Module.BILLING: _row(_FULL, _NONE, _NONE, _NONE, _FULL, _NONE),
        Module.ADMIN_ACTIVITY: _row(_FULL, _NONE, _NONE, _NONE, _NONE, _NONE),
    }
)


# (label, path, icon, module)
NAVIGATION_CONFIG: tuple[tuple[str, str, str, str], ...] = (
    ("Dashboard", "/dashboard", "LayoutDashboard", Module.DASHBOARD),
    ("Pipeline", "/candidate-pipeline", "Kanban", Module.PIPELINE),
    ("Candidates", "/candidates", "Users", Module.CANDIDATES),
    ("Submissions", "/submissions", "Send", Module.SUBMISSIONS),
    ("Interviews", "/interviews", "Calendar", Module.INTERVIEWS),
    ("Placements", "/placements", "Briefcase", Module.PLACEMENTS),
    ("HR & Onboarding", "/hr-onboarding", "UserCheck", Module.HR_ONBOARDING),
    ("Payroll", "/payroll", "DollarSign", Module.PAYROLL),
    ("Invoices", "/invoices", "FileText", Module.INVOICES),
    ("Compliance", "/compliance", "Shield", Module.COMPLIANCE),
    ("Analytics", "/analytics", "BarChart3", Module.ANALYTICS),
    ("Activity Log", "/admin/activity", "Activity", Module.ADMIN_ACTIVITY),
    ("Settings", "/settings", "Settings", Module.SETTINGS),
)

# (label, path, icon, module, description)
USER_MENU_CONFIG: tuple[tuple[str, str, str, str, str], ...] = (
    ("Profile Settings", "/profile", "User", Module.PROFILE, "Manage your personal information"),
    ("Account Settings", "/settings/account", "Settings", Module.ACCOUNT_SETTINGS, "Configure account preferences"),
    ("Billing & Plans", "/settings/billing", "CreditCard", Module.BILLING, "Manage subscription and payments"),
)

MODULE_ROUTE_MAP: Mapping[str, str] = MappingProxyType(
    {
        "/dashboard": Module.DASHBOARD,
        "/candidate-pipeline": Module.PIPELINE,
        "/candidates": Module.CANDIDATES,
        "/submissions": Module.SUBMISSIONS,
        "/interviews": Module.INTERVIEWS,
        "/placements": Module.PLACEMENTS,
        "/hr-onboarding": Module.HR_ONBOARDING,
        "/payroll": Module.PAYROLL,
        "/invoices": Module.INVOICES,
        "/compliance": Module.COMPLIANCE,
        "/analytics": Module.ANALYTICS,
        "/settings": Module.SETTINGS,
        "/profile": Module.PROFILE,
        "/settings/account": Module.ACCOUNT_SETTINGS,
        "/settings/billing": Module.BILLING,
        "/admin/activity": Module.ADMIN_ACTIVITY,
    }
)

# section id -> (label, roles)
ACCOUNT_SETTINGS_SECTIONS: tuple[tuple[str, str, frozenset[str]], ...] = (
    ("general", "General", frozenset({Role.ADMIN})),
    ("security", "Security", frozenset({Role.ADMIN})),
    ("notifications", "Notifications", frozenset({Role.ADMIN, Role.HR, Role.FINANCE})),
    ("integrations", "Integrations", frozenset({Role.ADMIN})),
    ("hr", "HR Settings", frozenset({Role.ADMIN, Role.HR})),
    ("finance", "Finance Settings", frozenset({Role.ADMIN, Role.FINANCE})),
    ("api", "API Access", frozenset({Role.ADMIN})),
)
