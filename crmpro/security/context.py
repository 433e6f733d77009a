from __future__ import annotations

from dataclasses import dataclass

from crmpro.security.permissions import PermissionLevel


@dataclass(frozen=True, slots=True)
class Session:
    """Identity the policy engine consumes once authentication has happened."""

    user_id: str
    role: str
    email: str | None = None


@dataclass(frozen=True, slots=True)
class CapabilitySet:
    """Resolved flags for one (role, module) pair."""

    role: str
    module: str | None
    level: PermissionLevel
    can_view: bool
    can_edit: bool
    can_delete: bool
    is_own_only: bool
    is_limited: bool


@dataclass(frozen=True, slots=True)
class NavigationItem:
    label: str
    path: str
    icon: str
    module: str
    description: str | None = None
    read_only: bool = False
