"""
Tests for registration and workspace creation, including duplicate-submit coalescing.
"""

import asyncio
import json
from unittest.mock import MagicMock

import httpx
import pytest

from bff.infrastructure.observability.error_reporting import ErrorReporter
from bff.models.domain.result import Err, Ok
from bff.services.auth_service import AuthService
from bff.services.edge_function_client import SignedRequestClient
from bff.services.onboarding_errors import ConflictError
from bff.services.request_coalescer import RequestCoalescer

REGISTRATION = {"user": {"email": "ada@example.com"}, "tenant": {"name": "Acme", "plan": "pro"}}


def test_complete_registration(client, backend):
    response = client.post(
        "/api/auth/complete-registration", json=REGISTRATION, headers={"Authorization": "Bearer user-token"}
    )

    assert response.status_code == 200
    assert response.json()["tenant"]["name"] == "Acme"

    sent = backend.requests[-1]
    assert sent.url.path == "/functions/v1/auth/complete-registration"
    assert sent.headers["apikey"] == "service-role-key"
    assert json.loads(sent.content)["tenant"] == {"name": "Acme", "plan": "pro"}

    row = backend.audit_rows[-1]
    assert row["action"] == "USER_CREATE"
    assert row["resource"] == "AUTH"


def test_complete_registration_requires_auth(client, backend):
    response = client.post("/api/auth/complete-registration", json=REGISTRATION)

    assert response.status_code == 401
    assert backend.requests == []


def test_complete_registration_requires_tenant_name(client, backend):
    response = client.post(
        "/api/auth/complete-registration",
        json={"user": {}, "tenant": {}},
        headers={"Authorization": "Bearer user-token"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Tenant name is required"}
    assert backend.requests == []


def test_create_google_tenant(client, backend):
    response = client.post(
        "/api/tenants/create-google",
        json={"name": "Acme", "workspace_code": "acme"},
        headers={"Authorization": "Bearer user-token"},
    )

    assert response.status_code == 201
    assert response.json()["tenant_id"] == "tenant-new"
    assert backend.requests[-1].url.path == "/functions/v1/create-google"

    row = backend.audit_rows[-1]
    assert row["action"] == "TENANT_CREATE"
    assert row["resource_id"] == "tenant-new"


@pytest.mark.parametrize("body", [{"name": "Acme"}, {"workspace_code": "acme"}, {}])
def test_create_google_tenant_requires_fields(client, backend, body):
    response = client.post("/api/tenants/create-google", json=body, headers={"Authorization": "Bearer t"})

    assert response.status_code == 400
    assert backend.requests == []


def test_create_google_tenant_upstream_conflict(client, backend):
    backend.forced["create-google"] = (409, {"error": "Workspace code already taken"})

    response = client.post(
        "/api/tenants/create-google",
        json={"name": "Acme", "workspace_code": "acme"},
        headers={"Authorization": "Bearer t"},
    )

    assert response.status_code == 409
    assert response.json()["error"] == "Workspace code already taken"
    assert backend.audit_rows[-1]["success"] is False


# ==========================================
# Coalescing
# ==========================================


def _auth_service(handler) -> tuple[AuthService, RequestCoalescer]:
    coalescer = RequestCoalescer()
    client = SignedRequestClient(
        httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        "https://test.supabase.co/functions/v1",
        "secret",
    )
    return AuthService(client, coalescer, reporter=MagicMock(spec=ErrorReporter)), coalescer


@pytest.mark.asyncio
async def test_double_submit_registration_calls_upstream_once():
    calls = []

    async def handler(request):
        calls.append(request)
        await asyncio.sleep(0.01)
        return httpx.Response(200, json={"success": True, "tenant_id": "t-1"})

    service, coalescer = _auth_service(handler)

    first, second = await asyncio.gather(
        service.complete_registration("Bearer a", {"email": "x"}, {"name": "Acme"}),
        service.complete_registration("Bearer a", {"email": "x"}, {"name": "Acme"}),
    )

    assert len(calls) == 1
    assert isinstance(first, Ok)
    assert first is second
    assert len(coalescer) == 0


@pytest.mark.asyncio
async def test_double_submit_shares_failure():
    calls = []

    async def handler(request):
        calls.append(request)
        await asyncio.sleep(0.01)
        return httpx.Response(409, json={"error": "Workspace code already taken"})

    service, _ = _auth_service(handler)

    first, second = await asyncio.gather(
        service.create_google_tenant("Bearer a", "Acme", "acme"),
        service.create_google_tenant("Bearer a", "Acme", "acme"),
    )

    assert len(calls) == 1
    assert isinstance(first, Err)
    assert isinstance(first.error, ConflictError)
    assert first is second


@pytest.mark.asyncio
async def test_different_actors_are_not_coalesced():
    calls = []

    async def handler(request):
        calls.append(request)
        await asyncio.sleep(0.01)
        return httpx.Response(201, json={"tenant_id": "t"})

    service, _ = _auth_service(handler)

    await asyncio.gather(
        service.create_google_tenant("Bearer a", "Acme", "acme"),
        service.create_google_tenant("Bearer b", "Acme", "acme"),
    )

    assert len(calls) == 2
