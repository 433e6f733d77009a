from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from crmpro.security.context import CapabilitySet, NavigationItem, Session
from crmpro.security.permissions import (
    ACCOUNT_SETTINGS_SECTIONS,
    MODULE_ROUTE_MAP,
    NAVIGATION_CONFIG,
    PERMISSION_MATRIX,
    USER_MENU_CONFIG,
    PermissionLevel,
    PermissionMatrix,
    Role,
)


_EDIT_LEVELS = frozenset({PermissionLevel.FULL, PermissionLevel.EDIT})


class ModuleAction(StrEnum):
    VIEW = "view"
    EDIT = "edit"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class AccessDecision:
    allowed: bool
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class SettingsSection:
    id: str
    label: str


class PolicyEngine:
    """Pure role/module policy evaluation over an immutable permission matrix.

    Every resolver is total: a role or module missing from the matrix, or a
    value outside the enumerated sets, resolves to ``PermissionLevel.NONE``.
    Role names are matched exactly.
    """

    def __init__(
        self,
        matrix: PermissionMatrix | None = None,
        *,
        navigation: Iterable[tuple[str, str, str, str]] = NAVIGATION_CONFIG,
        user_menu: Iterable[tuple[str, str, str, str, str]] = USER_MENU_CONFIG,
        route_map: Mapping[str, str] = MODULE_ROUTE_MAP,
    ) -> None:
        self._matrix = matrix if matrix is not None else PERMISSION_MATRIX
        self._navigation = tuple(navigation)
        self._user_menu = tuple(user_menu)
        self._route_map = route_map

    def resolve_level(self, role: str | None, module: str | None) -> PermissionLevel:
        if not role or not module:
            return PermissionLevel.NONE
        levels = self._matrix.get(module)
        if levels is None:
            return PermissionLevel.NONE
        level = levels.get(role)
        if level is None:
            return PermissionLevel.NONE
        try:
            return PermissionLevel(level)
        except ValueError:
            return PermissionLevel.NONE

    def has_access(self, role: str | None, module: str | None) -> bool:
        return self.resolve_level(role, module) != PermissionLevel.NONE

    def can_edit(self, role: str | None, module: str | None) -> bool:
        return self.resolve_level(role, module) in _EDIT_LEVELS

    def can_delete(self, role: str | None, module: str | None) -> bool:
        return self.resolve_level(role, module) == PermissionLevel.FULL

    def is_own_only(self, role: str | None, module: str | None) -> bool:
        return self.resolve_level(role, module) == PermissionLevel.OWN

    def is_limited(self, role: str | None, module: str | None) -> bool:
        return self.resolve_level(role, module) == PermissionLevel.LIMITED

    def capabilities(self, role: str, module: str) -> CapabilitySet:
        level = self.resolve_level(role, module)
        return CapabilitySet(
            role=role,
            module=module,
            level=level,
            can_view=level != PermissionLevel.NONE,
            can_edit=level in _EDIT_LEVELS,
            can_delete=level == PermissionLevel.FULL,
            is_own_only=level == PermissionLevel.OWN,
            is_limited=level == PermissionLevel.LIMITED,
        )

    def default_capabilities(self, role: str) -> CapabilitySet:
        """Capabilities for routes that are not bound to a module."""

        level = PermissionLevel.FULL if role == Role.ADMIN else PermissionLevel.VIEW
        is_admin = level == PermissionLevel.FULL
        return CapabilitySet(
            role=role,
            module=None,
            level=level,
            can_view=True,
            can_edit=is_admin,
            can_delete=is_admin,
            is_own_only=False,
            is_limited=False,
        )

    def can_access_record(self, session: Session, module: str, record: Any) -> bool:
        """Apply ownership on top of module access.

        ``own`` grants access only to records whose ``owner_id`` is the
        session's user; every other non-``none`` level grants access to any
        record of the module.
        """

        level = self.resolve_level(session.role, module)
        if level == PermissionLevel.NONE:
            return False
        if level != PermissionLevel.OWN:
            return True
        owner_id = _owner_of(record)
        return owner_id is not None and owner_id == session.user_id

    def authorize_action(self, role: str | None, module: str | None, action: ModuleAction | str) -> AccessDecision:
        if not self.has_access(role, module):
            return AccessDecision(False, f"Role '{role}' does not have access to module '{module}'")
        if action == ModuleAction.EDIT and not self.can_edit(role, module):
            return AccessDecision(False, f"Role '{role}' cannot edit in module '{module}'")
        if action == ModuleAction.DELETE and not self.can_delete(role, module):
            return AccessDecision(False, f"Role '{role}' cannot delete in module '{module}'")
        return AccessDecision(True)

    def navigation_for(self, role: str | None) -> list[NavigationItem]:
        if not role:
            return []

        items: list[NavigationItem] = []
        for label, path, icon, module in self._navigation:
            if role != Role.ADMIN and not self.has_access(role, module):
                continue
            items.append(
                NavigationItem(
                    label=label,
                    path=path,
                    icon=icon,
                    module=module,
                    read_only=not self.can_edit(role, module),
                )
            )
        return items

    def user_menu_for(self, role: str | None) -> list[NavigationItem]:
        if not role:
            return []
        return [
            NavigationItem(
                label=label,
                path=path,
                icon=icon,
                module=module,
                description=description,
                read_only=not self.can_edit(role, module),
            )
            for label, path, icon, module, description in self._user_menu
            if self.has_access(role, module)
        ]

    def accessible_modules(self, role: str | None) -> list[str]:
        return [module for module in self._matrix if self.has_access(role, module)]

    def account_settings_sections(self, role: str | None) -> list[SettingsSection]:
        return [SettingsSection(id=section_id, label=label) for section_id, label, roles in ACCOUNT_SETTINGS_SECTIONS if role in roles]

    def module_for_path(self, path: str) -> str | None:
        return self._route_map.get(path)

    def path_for_module(self, module: str) -> str | None:
        for path, mapped in self._route_map.items():
            if mapped == module:
                return path
        return None


def _owner_of(record: Any) -> str | None:
    if isinstance(record, Mapping):
        owner = record.get("owner_id")
    else:
        owner = getattr(record, "owner_id", None)
    return str(owner) if owner is not None else None
