"""
Registration and workspace creation against the auth edge functions.

Both calls create records upstream, so identical concurrent submissions
(double clicks, client retries) are collapsed into a single upstream call
through the request coalescer.
"""

from typing import Any

import httpx

from bff.infrastructure.observability.error_reporting import ErrorReporter, error_reporter
from bff.infrastructure.observability.logging import get_logger
from bff.models.domain.result import Err, Ok, Result
from bff.services.edge_function_client import SignedRequestClient
from bff.services.onboarding_errors import OnboardingError, ResponseShapeError
from bff.services.onboarding_service import transform_error
from bff.services.request_coalescer import RequestCoalescer, fingerprint

logger = get_logger(__name__)


class AuthService:
    def __init__(
        self,
        client: SignedRequestClient,
        coalescer: RequestCoalescer,
        reporter: ErrorReporter = error_reporter,
    ):
        self.client = client
        self.coalescer = coalescer
        self.reporter = reporter

    async def complete_registration(
        self, auth_header: str, user: dict[str, Any] | None, tenant: dict[str, Any]
    ) -> Result[dict[str, Any], OnboardingError]:
        key = fingerprint("complete_registration", auth_header, tenant.get("name"))
        return await self.coalescer.run(
            key,
            lambda: self._post(
                "completeRegistration",
                "/auth/complete-registration",
                auth_header,
                {"user": user, "tenant": tenant},
                "Failed to complete registration",
            ),
        )

    async def create_google_tenant(
        self, auth_header: str, name: str, workspace_code: str
    ) -> Result[dict[str, Any], OnboardingError]:
        key = fingerprint("create_tenant", auth_header, workspace_code)
        return await self.coalescer.run(
            key,
            lambda: self._post(
                "createGoogleTenant",
                "/create-google",
                auth_header,
                {"name": name, "workspace_code": workspace_code},
                "Failed to create workspace",
            ),
        )

    async def _post(
        self,
        operation: str,
        path: str,
        auth_header: str,
        body: dict[str, Any],
        default_message: str,
    ) -> Result[dict[str, Any], OnboardingError]:
        logger.info("Calling auth edge function", operation=operation)
        try:
            response = await self.client.request("POST", path, auth_header, json_body=body)
        except httpx.HTTPError as e:
            return self._fail(e, transform_error(e, default_message), operation)

        if not response.is_success:
            return self._fail(None, transform_error(None, default_message, response=response), operation)

        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            return self._fail(None, ResponseShapeError("Invalid response format: expected object"), operation)

        logger.info("Auth edge function call succeeded", operation=operation)
        return Ok(payload)

    def _fail(
        self, original: BaseException | None, error: OnboardingError, operation: str
    ) -> Err[OnboardingError]:
        logger.error("Auth edge function call failed", operation=operation, error=error.message)
        self.reporter.capture_exception(
            original or error,
            tags={"source": "api_auth", "action": operation},
            extra={"status": error.upstream_status, "code": error.code.value},
        )
        return Err(error)
