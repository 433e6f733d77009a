from __future__ import annotations

from collections.abc import Awaitable, Callable, Collection

from fastapi import HTTPException, Request, status

from crmpro.security.context import CapabilitySet
from crmpro.security.guard import RouteGuard, RouteState, SessionProvider

ProviderFactory = Callable[[Request], SessionProvider]


def guarded(
    guard: RouteGuard,
    provider_factory: ProviderFactory,
    *,
    path: str | None = None,
    module: str | None = None,
    allowed_roles: Collection[str] = (),
) -> Callable[[Request], Awaitable[CapabilitySet]]:
    """Build a FastAPI dependency that runs the route guard for an endpoint.

    An authorized request gets the resolved ``CapabilitySet`` injected and the
    decision stored on ``request.state``; anything else is answered with a
    307 redirect before the endpoint body runs.
    """

    async def dependency(request: Request) -> CapabilitySet:
        decision = await guard.authorize(
            path or request.url.path,
            provider_factory(request),
            module=module,
            allowed_roles=allowed_roles,
        )
        request.state.route_decision = decision
        if decision.state != RouteState.AUTHORIZED or decision.capabilities is None:
            raise HTTPException(
                status_code=status.HTTP_307_TEMPORARY_REDIRECT,
                detail=str(decision.state),
                headers={"Location": decision.redirect_to or "/"},
            )
        request.state.session = decision.session
        return decision.capabilities

    return dependency
