from crmpro.security.context import CapabilitySet, NavigationItem, Session
from crmpro.security.guard import Identity, Profile, RouteDecision, RouteGuard, RouteState, SessionProvider
from crmpro.security.masking import mask_many, mask_sensitive_fields
from crmpro.security.permissions import PERMISSION_MATRIX, Module, PermissionLevel, Role
from crmpro.security.policies import AccessDecision, ModuleAction, PolicyEngine, SettingsSection

__all__ = [
    "AccessDecision",
    "CapabilitySet",
    "Identity",
    "Module",
    "ModuleAction",
    "NavigationItem",
    "PERMISSION_MATRIX",
    "PermissionLevel",
    "PolicyEngine",
    "Profile",
    "Role",
    "RouteDecision",
    "RouteGuard",
    "RouteState",
    "Session",
    "SessionProvider",
    "SettingsSection",
    "mask_many",
    "mask_sensitive_fields",
]
