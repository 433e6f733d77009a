from __future__ import annotations

import asyncio
import logging
from collections.abc import Collection
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from crmpro import audit
from crmpro.core.config import Settings, get_settings
from crmpro.events import Outbox
from crmpro.metrics import observe_guard_decision
from crmpro.security.context import CapabilitySet, Session
from crmpro.security.policies import PolicyEngine

logger = logging.getLogger(__name__)

ROUTE_ACCESS = "route_access"


class RouteState(StrEnum):
    PENDING = "pending"
    UNAUTHENTICATED = "unauthenticated"
    AUTHORIZED = "authorized"
    DENIED = "denied"


@dataclass(frozen=True, slots=True)
class Identity:
    user_id: str
    email: str | None = None


@dataclass(frozen=True, slots=True)
class Profile:
    user_id: str
    role: str | None = None
    full_name: str | None = None


class SessionProvider(Protocol):
    """Two-phase session source: identity first, then the role-bearing profile."""

    async def get_identity(self) -> Identity | None:
        ...

    async def get_profile(self, user_id: str) -> Profile | None:
        ...


@dataclass(frozen=True, slots=True)
class RouteDecision:
    state: RouteState
    path: str
    module: str | None = None
    session: Session | None = None
    capabilities: CapabilitySet | None = None
    redirect_to: str | None = None


class RouteGuard:
    """Decides whether a navigation attempt may render its route.

    Session resolution (identity, then profile) runs under a single bounded
    wait. No decision is returned before the profile phase has finished or
    timed out, so a route is never authorized against a half-loaded session.
    A missing or late session is *unauthenticated*, not denied.
    """

    def __init__(self, policy: PolicyEngine, outbox: Outbox, *, settings: Settings | None = None) -> None:
        self._policy = policy
        self._outbox = outbox
        self._settings = settings or get_settings()

    async def authorize(
        self,
        path: str,
        provider: SessionProvider,
        *,
        module: str | None = None,
        allowed_roles: Collection[str] = (),
    ) -> RouteDecision:
        session = await self.resolve_session(provider)
        return self.decide(path, session, module=module, allowed_roles=allowed_roles)

    async def resolve_session(self, provider: SessionProvider) -> Session | None:
        try:
            async with asyncio.timeout(self._settings.session_timeout_seconds):
                identity = await provider.get_identity()
                if identity is None:
                    return None
                profile = await provider.get_profile(identity.user_id)
        except TimeoutError:
            logger.warning("guard.session_timeout", extra={"reason": "session_timeout"})
            return None
        except ConnectionError as exc:
            logger.warning("guard.session_unavailable", extra={"error": str(exc)})
            return None

        role = profile.role if profile is not None and profile.role else self._settings.default_role
        return Session(user_id=identity.user_id, role=role, email=identity.email)

    def decide(
        self,
        path: str,
        session: Session | None,
        *,
        module: str | None = None,
        allowed_roles: Collection[str] = (),
    ) -> RouteDecision:
        if session is None:
            return self._finish(RouteDecision(RouteState.UNAUTHENTICATED, path, module, redirect_to=self._settings.login_path))

        current_module = module or self._policy.module_for_path(path)
        if current_module:
            if not self._policy.has_access(session.role, current_module):
                return self._deny(path, session, current_module)
            return self._finish(
                RouteDecision(
                    RouteState.AUTHORIZED,
                    path,
                    current_module,
                    session=session,
                    capabilities=self._policy.capabilities(session.role, current_module),
                )
            )

        if allowed_roles and session.role not in allowed_roles:
            return self._finish(
                RouteDecision(RouteState.DENIED, path, None, session=session, redirect_to=self._landing_path())
            )

        return self._finish(
            RouteDecision(
                RouteState.AUTHORIZED,
                path,
                None,
                session=session,
                capabilities=self._policy.default_capabilities(session.role),
            )
        )

    def _deny(self, path: str, session: Session, module: str) -> RouteDecision:
        audit.log_unauthorized_access(self._outbox, session, module, ROUTE_ACCESS)

        if self._policy.has_access(session.role, self._settings.landing_module):
            redirect_to = self._settings.unauthorized_path
        else:
            redirect_to = self._settings.login_path
        return self._finish(RouteDecision(RouteState.DENIED, path, module, session=session, redirect_to=redirect_to))

    def _landing_path(self) -> str:
        return self._policy.path_for_module(self._settings.landing_module) or "/"

    @staticmethod
    def _finish(decision: RouteDecision) -> RouteDecision:
        observe_guard_decision(decision.state)
        logger.info(
            "guard.decision",
            extra={
                "path": decision.path,
                "crm_module": decision.module,
                "role": decision.session.role if decision.session else None,
                "state": str(decision.state),
            },
        )
        return decision
