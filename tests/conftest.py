import asyncio
import json
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from bff.config import Settings
from bff.main import create_app
from bff.models.domain.onboarding_domain import STEP_CATALOG, TOTAL_STEPS, is_required_step

SUPABASE_URL = "https://test.supabase.co"
SIGNING_SECRET = "test-signing-secret"


class FakeOnboardingBackend:
    """
    In-memory stand-in for the onboarding, auth and audit endpoints.

    Holds one onboarding record per tenant, honours idempotency-key on
    complete-step, and counts every call so tests can tell effective state
    changes apart from upstream traffic.
    """

    def __init__(self):
        self.records: dict[str, dict[str, Any]] = {}
        self.idempotent_responses: dict[tuple[str, str], dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        self.audit_rows: list[dict[str, Any]] = []
        self.calls: dict[str, int] = {}
        self.state_changes = 0

        # Knobs
        self.forced: dict[str, tuple[int, Any]] = {}
        self.raise_on: dict[str, Exception] = {}
        self.fail_audit = False
        self.delay = 0.0

    # ------------------------------------------------------------------
    # Transport entry point
    # ------------------------------------------------------------------

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path

        if path.startswith("/rest/v1/rpc/"):
            if self.fail_audit:
                return httpx.Response(500, json={"message": "audit store unavailable"})
            self.audit_rows.extend(json.loads(request.content)["logs"])
            return httpx.Response(204)

        self.requests.append(request)
        endpoint = path.rsplit("/", 1)[-1]
        self.calls[endpoint] = self.calls.get(endpoint, 0) + 1

        if self.delay:
            await asyncio.sleep(self.delay)
        if endpoint in self.raise_on:
            raise self.raise_on[endpoint]
        if endpoint in self.forced:
            status, body = self.forced[endpoint]
            return httpx.Response(status, json=body)

        body = json.loads(request.content) if request.content else {}
        tenant_id = request.headers.get("x-tenant-id")

        if path == "/functions/v1/auth/complete-registration":
            return httpx.Response(200, json={"success": True, "user": body.get("user"), "tenant": body["tenant"]})
        if path == "/functions/v1/create-google":
            return httpx.Response(
                201, json={"success": True, "tenant_id": "tenant-new", "name": body["name"]}
            )

        handlers = {
            "status": self._status,
            "initialize": self._initialize,
            "complete-step": self._complete_step,
            "skip-step": self._skip_step,
            "update-progress": self._update_progress,
            "complete": self._complete,
        }
        return handlers[endpoint](tenant_id, body, request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, endpoint: str) -> int:
        return self.calls.get(endpoint, 0)

    # ------------------------------------------------------------------
    # Onboarding endpoints
    # ------------------------------------------------------------------

    def _not_initialized(self) -> httpx.Response:
        return httpx.Response(404, json={"error": "Onboarding not initialized", "code": "ONBOARDING_NOT_INITIALIZED"})

    def _steps(self, record: dict[str, Any]) -> list[dict[str, Any]]:
        rows = []
        for step in STEP_CATALOG:
            step_id = step.id.value
            if step_id in record["completed_steps"]:
                status = "completed"
            elif step_id in record["skipped_steps"]:
                status = "skipped"
            else:
                status = "pending"
            rows.append({"step_id": step_id, "step_sequence": step.sequence, "status": status, "attempts": 0})
        return rows

    def _status(self, tenant_id, body, request) -> httpx.Response:
        record = self.records.get(tenant_id)
        if record is None:
            return httpx.Response(200, json={"needs_onboarding": True, "onboarding": None, "steps": []})
        return httpx.Response(
            200,
            json={
                "needs_onboarding": not record["is_completed"],
                "onboarding": record,
                "steps": self._steps(record),
                "current_step": record["current_step"],
                "total_steps": record["total_steps"],
                "completed_steps": record["completed_steps"],
                "skipped_steps": record["skipped_steps"],
            },
        )

    def _initialize(self, tenant_id, body, request) -> httpx.Response:
        record = self.records.get(tenant_id)
        if record is not None:
            return httpx.Response(
                200,
                json={
                    "id": record["id"],
                    "message": "Onboarding already initialized",
                    "is_completed": record["is_completed"],
                    "current_step": record["current_step"],
                },
            )

        record = {
            "id": f"onb-{tenant_id}",
            "tenant_id": tenant_id,
            "onboarding_type": "business",
            "current_step": 1,
            "total_steps": TOTAL_STEPS,
            "completed_steps": [],
            "skipped_steps": [],
            "step_data": {},
            "is_completed": False,
        }
        self.records[tenant_id] = record
        self.state_changes += 1
        return httpx.Response(
            201,
            json={"id": record["id"], "message": "Onboarding initialized", "current_step": 1},
        )

    def _advance(self, record: dict[str, Any]) -> None:
        record["current_step"] = min(record["current_step"] + 1, record["total_steps"])
        self.state_changes += 1

    def _complete_step(self, tenant_id, body, request) -> httpx.Response:
        record = self.records.get(tenant_id)
        if record is None:
            return self._not_initialized()

        key = request.headers.get("idempotency-key")
        if key and (tenant_id, key) in self.idempotent_responses:
            return httpx.Response(200, json=self.idempotent_responses[(tenant_id, key)])

        step_id = body["stepId"]
        if step_id not in record["completed_steps"]:
            record["completed_steps"].append(step_id)
            if step_id in record["skipped_steps"]:
                record["skipped_steps"].remove(step_id)
            if body.get("data"):
                record["step_data"][step_id] = body["data"]
            self._advance(record)

        response = {
            "success": True,
            "message": "Step completed successfully",
            "current_step": record["current_step"],
            "completed_steps": list(record["completed_steps"]),
        }
        if key:
            self.idempotent_responses[(tenant_id, key)] = response
        return httpx.Response(200, json=response)

    def _skip_step(self, tenant_id, body, request) -> httpx.Response:
        record = self.records.get(tenant_id)
        if record is None:
            return self._not_initialized()

        step_id = body["stepId"]
        if is_required_step(step_id):
            return httpx.Response(400, json={"error": "Cannot skip required step"})
        if step_id not in record["skipped_steps"] and step_id not in record["completed_steps"]:
            record["skipped_steps"].append(step_id)
            self._advance(record)

        return httpx.Response(
            200,
            json={
                "success": True,
                "message": "Step skipped",
                "current_step": record["current_step"],
                "skipped_steps": list(record["skipped_steps"]),
            },
        )

    def _update_progress(self, tenant_id, body, request) -> httpx.Response:
        record = self.records.get(tenant_id)
        if record is None:
            return self._not_initialized()

        if "current_step" in body:
            record["current_step"] = body["current_step"]
        record["step_data"].update(body.get("step_data") or {})
        self.state_changes += 1
        return httpx.Response(200, json={"success": True, "message": "Progress updated", "data": record})

    def _complete(self, tenant_id, body, request) -> httpx.Response:
        record = self.records.get(tenant_id)
        if record is None:
            return self._not_initialized()

        record["is_completed"] = True
        self.state_changes += 1
        return httpx.Response(200, json={"success": True, "message": "Onboarding completed"})


@pytest.fixture
def backend():
    return FakeOnboardingBackend()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        SUPABASE_URL=SUPABASE_URL,
        SUPABASE_KEY="service-role-key",
        INTERNAL_SIGNING_SECRET=SIGNING_SECRET,
        COALESCER_SWEEP_INTERVAL=3600.0,
        AUDIT_BACKGROUND_WRITES=False,
    )


@pytest.fixture
def app(test_settings, backend):
    return create_app(test_settings, transport=backend.transport())


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    return {"Authorization": "Bearer user-token", "x-tenant-id": "tenant-1"}
