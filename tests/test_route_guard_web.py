from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from crmpro.audit import AuditLog
from crmpro.core.config import Settings
from crmpro.events import Outbox
from crmpro.security.context import CapabilitySet
from crmpro.security.guard import Identity, Profile, RouteGuard
from crmpro.security.policies import PolicyEngine
from crmpro.security.web import guarded


class HeaderSessionProvider:
    def __init__(self, request: Request) -> None:
        self._user_id = request.headers.get("x-user-id")
        self._role = request.headers.get("x-user-role")

    async def get_identity(self) -> Identity | None:
        if not self._user_id:
            return None
        return Identity(user_id=self._user_id, email=f"{self._user_id}@example.com")

    async def get_profile(self, user_id: str) -> Profile | None:
        return Profile(user_id=user_id, role=self._role)


@pytest.fixture()
def outbox() -> Outbox:
    return Outbox(max_attempts=1)


@pytest.fixture()
def client(outbox: Outbox) -> Generator[TestClient, None, None]:
    guard = RouteGuard(PolicyEngine(), outbox, settings=Settings())
    app = FastAPI()

    @app.get("/payroll")
    async def payroll(
        request: Request,
        capabilities: CapabilitySet = Depends(guarded(guard, HeaderSessionProvider)),
    ) -> dict[str, object]:
        return {
            "module": capabilities.module,
            "level": str(capabilities.level),
            "user_id": request.state.session.user_id,
        }

    @app.get("/reports")
    async def reports(
        capabilities: CapabilitySet = Depends(guarded(guard, HeaderSessionProvider, allowed_roles=("admin",))),
    ) -> dict[str, object]:
        return {"level": str(capabilities.level)}

    with TestClient(app) as test_client:
        yield test_client


def test_authorized_request_reaches_endpoint(client: TestClient) -> None:
    response = client.get("/payroll", headers={"x-user-id": "e1", "x-user-role": "employee"})

    assert response.status_code == 200
    assert response.json() == {"module": "payroll", "level": "own", "user_id": "e1"}


def test_anonymous_request_redirects_to_login(client: TestClient) -> None:
    response = client.get("/payroll", follow_redirects=False)

    assert response.status_code == 307
    assert response.headers["location"] == "/login"


def test_denied_request_redirects_to_unauthorized(client: TestClient) -> None:
    response = client.get("/payroll", headers={"x-user-id": "s1", "x-user-role": "sales"}, follow_redirects=False)

    assert response.status_code == 307
    assert response.headers["location"] == "/unauthorized"


def test_denied_request_publishes_audit_entry(client: TestClient, outbox: Outbox) -> None:
    audit_log = AuditLog(outbox)

    client.get("/payroll", headers={"x-user-id": "s1", "x-user-role": "sales"}, follow_redirects=False)
    client.get("/payroll", headers={"x-user-id": "f1", "x-user-role": "finance"})

    assert [entry["action"] for entry in audit_log.entries] == ["access.unauthorized_attempt"]
    assert audit_log.entries[0]["actor_id"] == "s1"


def test_allow_list_route(client: TestClient) -> None:
    allowed = client.get("/reports", headers={"x-user-id": "a1", "x-user-role": "admin"})
    denied = client.get("/reports", headers={"x-user-id": "h1", "x-user-role": "hr"}, follow_redirects=False)

    assert allowed.json() == {"level": "full"}
    assert denied.status_code == 307
    assert denied.headers["location"] == "/dashboard"
