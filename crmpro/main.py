from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status

from crmpro.audit import AuditLog
from crmpro.context import reset_correlation_id, set_correlation_id
from crmpro.core.config import Settings, get_settings
from crmpro.events import Outbox
from crmpro.logging import configure_logging
from crmpro.metrics import render_latest
from crmpro.otel import setup_otel
from crmpro.security.context import CapabilitySet, NavigationItem
from crmpro.security.guard import RouteGuard
from crmpro.security.permissions import Role
from crmpro.security.policies import PolicyEngine
from crmpro.security.web import ProviderFactory, guarded

logger = logging.getLogger("crmpro.lifecycle")

CORRELATION_HEADER = "x-correlation-id"


def create_app(provider_factory: ProviderFactory, *, settings: Settings | None = None) -> FastAPI:
    """Assemble the HTTP surface around one policy engine, outbox and route guard.

    ``provider_factory`` turns a request into the session provider the
    guard resolves identity and profile through.
    """

    settings = settings or get_settings()
    configure_logging(settings)
    setup_otel(settings)

    policy = PolicyEngine()
    outbox = Outbox(max_attempts=settings.outbox_max_attempts)
    guard = RouteGuard(policy, outbox, settings=settings)

    app = FastAPI(title=settings.app_name)
    app.state.policy = policy
    app.state.outbox = outbox
    app.state.audit_log = AuditLog(outbox)
    app.state.guard = guard

    @app.middleware("http")
    async def correlation_id(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        value = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = value
        token = set_correlation_id(value)
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)
        response.headers[CORRELATION_HEADER] = value
        return response

    @app.get("/health", tags=["system"])
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/metrics", tags=["system"])
    def metrics(_: CapabilitySet = Depends(guarded(guard, provider_factory, allowed_roles=(Role.ADMIN,)))) -> Response:
        if not settings.metrics_enabled:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="metrics disabled")
        payload, content_type = render_latest()
        return Response(content=payload, media_type=content_type)

    @app.get("/navigation", tags=["access"])
    def navigation(request: Request, capabilities: CapabilitySet = Depends(guarded(guard, provider_factory))) -> dict[str, object]:
        role = capabilities.role
        return {
            "user_id": request.state.session.user_id,
            "role": role,
            "navigation": [_item(item) for item in policy.navigation_for(role)],
            "user_menu": [_item(item) for item in policy.user_menu_for(role)],
            "account_settings": [{"id": section.id, "label": section.label} for section in policy.account_settings_sections(role)],
        }

    logger.info("app.created")
    return app


def _item(item: NavigationItem) -> dict[str, object]:
    return {
        "label": item.label,
        "path": item.path,
        "icon": item.icon,
        "module": str(item.module),
        "read_only": item.read_only,
    }
