"""
Onboarding service for the tenant onboarding flow.
Forwards status, initialization, step completion/skip, progress updates and
completion to the onboarding edge function.

Every public method returns ``Ok(value)`` or ``Err(OnboardingError)``; the
route layer is the only place that turns errors into HTTP responses.
Failures are reported to monitoring without affecting the returned result.
"""

from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel

from bff.infrastructure.observability.error_reporting import ErrorReporter, error_reporter
from bff.infrastructure.observability.logging import get_logger
from bff.models.api.onboarding_response import (
    CompleteStepResponse,
    ConnectionTestResponse,
    InitializeOnboardingResponse,
    OnboardingStatusResponse,
    OperationResult,
    SkipStepResponse,
)
from bff.models.domain.onboarding_domain import missing_required_steps
from bff.models.domain.result import Err, Ok, Result, ShapeError, validate_shape
from bff.services.edge_function_client import SignedRequestClient
from bff.services.onboarding_errors import (
    AuthError,
    ConflictError,
    ConnectivityError,
    ForbiddenError,
    NotFoundError,
    OnboardingError,
    OnboardingErrorCode,
    OnboardingValidationError,
    RateLimitError,
    ResponseShapeError,
    UpstreamError,
)
from bff.services.request_coalescer import RequestCoalescer, fingerprint

logger = get_logger(__name__)


@dataclass(frozen=True)
class InitializeOutcome:
    response: InitializeOnboardingResponse
    created: bool


def transform_error(
    error: BaseException | None,
    default_message: str,
    response: httpx.Response | None = None,
) -> OnboardingError:
    """
    Map transport failures and HTTP error responses onto the onboarding taxonomy.

    | status          | error              |
    |-----------------|--------------------|
    | 400             | validation         |
    | 401 / 403       | auth / forbidden   |
    | 404             | not found          |
    | 409 / 422       | conflict           |
    | 429             | rate limited       |
    | 5xx, other      | upstream           |
    | network/timeout | connectivity       |
    """
    if isinstance(error, OnboardingError):
        return error

    if isinstance(error, httpx.TimeoutException):
        return ConnectivityError(timed_out=True)

    if isinstance(error, httpx.TransportError):
        return ConnectivityError()

    if response is not None:
        status = response.status_code
        data = _json_or_none(response)
        message, code = _upstream_error_details(data)
        kwargs: dict[str, Any] = {"upstream_status": status, "response_data": data}
        if code:
            kwargs["code"] = code

        if status == 400:
            message = message or "Invalid request data"
            return OnboardingValidationError(message, details=[message], **kwargs)
        if status == 401:
            return AuthError(**kwargs)
        if status == 403:
            return ForbiddenError(**kwargs)
        if status == 404:
            return NotFoundError(**kwargs)
        if status in (409, 422):
            return ConflictError(message, **kwargs)
        if status == 429:
            return RateLimitError(**kwargs)
        if status >= 500:
            return UpstreamError(message or "Onboarding service error", **kwargs)
        return UpstreamError(message or f"Service error ({status})", **kwargs)

    if error is not None and str(error):
        return OnboardingError(str(error))
    return OnboardingError(default_message)


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json() if response.content else None
    except ValueError:
        return None


def _upstream_error_details(data: Any) -> tuple[str | None, OnboardingErrorCode | None]:
    """Pull a message and a known error code out of an upstream error body."""
    if not isinstance(data, dict):
        return None, None

    raw_error = data.get("error")
    raw_code = data.get("code")
    message = None
    if isinstance(raw_error, str):
        message = raw_error
    elif isinstance(raw_error, dict):
        message = raw_error.get("message")
        raw_code = raw_code or raw_error.get("code")
    if message is None and isinstance(data.get("message"), str):
        message = data["message"]

    code = None
    if isinstance(raw_code, str) and raw_code in OnboardingErrorCode.__members__:
        code = OnboardingErrorCode(raw_code)
    return message, code


class OnboardingService:
    """
    Client-side orchestration of the onboarding edge function.

    Args:
        client: signed client bound to the onboarding edge function URL
        reporter: monitoring collaborator for failures
        coalescer: optional; collapses concurrent step completions that share
            an idempotency key
    """

    def __init__(
        self,
        client: SignedRequestClient,
        reporter: ErrorReporter = error_reporter,
        coalescer: RequestCoalescer | None = None,
    ):
        self.client = client
        self.reporter = reporter
        self.coalescer = coalescer

    # ==========================================
    # OPERATIONS
    # ==========================================

    async def get_status(
        self, auth_token: str, tenant_id: str
    ) -> Result[OnboardingStatusResponse, OnboardingError]:
        logger.info("Fetching onboarding status", tenant_id=tenant_id)

        result = await self._call(
            "getOnboardingStatus",
            "GET",
            "/status",
            auth_token,
            tenant_id,
            default_message="Failed to fetch onboarding status",
            context={"tenantId": tenant_id},
        )
        validated = self._validated(result, OnboardingStatusResponse, "getOnboardingStatus", {"tenantId": tenant_id})
        if isinstance(validated, Ok) and validated.value.onboarding is not None:
            violations = validated.value.onboarding.invariant_violations()
            if violations:
                logger.warning("Onboarding record out of shape", tenant_id=tenant_id, violations=violations)
        return validated

    async def initialize(self, auth_token: str, tenant_id: str) -> Result[InitializeOutcome, OnboardingError]:
        """
        Create the onboarding record, or resume the existing one.

        The backend answers 201 for a new record and 200 when one already
        existed; ``InitializeOutcome.created`` carries that distinction.
        """
        logger.info("Initializing onboarding", tenant_id=tenant_id)
        context = {"tenantId": tenant_id}

        result = await self._call(
            "initializeOnboarding",
            "POST",
            "/initialize",
            auth_token,
            tenant_id,
            json_body={},
            default_message="Failed to initialize onboarding",
            context=context,
        )
        validated = self._validated(result, InitializeOnboardingResponse, "initializeOnboarding", context)
        if isinstance(validated, Err):
            return validated

        _, status_code = result.value
        response = validated.value
        created = status_code == 201 and not response.is_completed

        logger.info(
            "Onboarding initialized",
            tenant_id=tenant_id,
            onboarding_id=response.id,
            created=created,
        )
        return Ok(InitializeOutcome(response=response, created=created))

    async def complete_step(
        self,
        auth_token: str,
        tenant_id: str,
        step_id: str,
        data: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> Result[CompleteStepResponse, OnboardingError]:
        """
        Mark a step completed. The idempotency key, when given, is forwarded
        so the backend can recognise retried submissions.
        """
        logger.info("Completing onboarding step", tenant_id=tenant_id, step_id=step_id)

        async def _send() -> Result[CompleteStepResponse, OnboardingError]:
            context = {"tenantId": tenant_id, "stepId": step_id, "data": data}
            result = await self._call(
                "completeStep",
                "POST",
                "/complete-step",
                auth_token,
                tenant_id,
                json_body={"stepId": step_id, "data": data},
                idempotency_key=idempotency_key,
                default_message="Failed to complete step",
                context=context,
            )
            return self._validated(result, CompleteStepResponse, "completeStep", context)

        if idempotency_key and self.coalescer is not None:
            key = fingerprint("complete_step", auth_token, f"{tenant_id}:{idempotency_key}")
            result = await self.coalescer.run(key, _send)
        else:
            result = await _send()

        if isinstance(result, Ok):
            logger.info(
                "Onboarding step completed",
                tenant_id=tenant_id,
                step_id=step_id,
                current_step=result.value.current_step,
            )
        return result

    async def skip_step(
        self, auth_token: str, tenant_id: str, step_id: str
    ) -> Result[SkipStepResponse, OnboardingError]:
        """Skip an optional step. Callers reject required steps before getting here."""
        logger.info("Skipping onboarding step", tenant_id=tenant_id, step_id=step_id)
        context = {"tenantId": tenant_id, "stepId": step_id}

        result = await self._call(
            "skipStep",
            "PUT",
            "/skip-step",
            auth_token,
            tenant_id,
            json_body={"stepId": step_id},
            default_message="Failed to skip step",
            context=context,
        )
        return self._validated(result, SkipStepResponse, "skipStep", context)

    async def update_progress(
        self, auth_token: str, tenant_id: str, progress: dict[str, Any]
    ) -> Result[OperationResult, OnboardingError]:
        """Set progress directly. Not subject to step ordering."""
        logger.info(
            "Updating onboarding progress",
            tenant_id=tenant_id,
            current_step=progress.get("current_step"),
        )
        context = {"tenantId": tenant_id, "progressData": progress}

        result = await self._call(
            "updateProgress",
            "PUT",
            "/update-progress",
            auth_token,
            tenant_id,
            json_body=progress,
            default_message="Failed to update progress",
            context=context,
        )
        return self._validated(result, OperationResult, "updateProgress", context)

    async def complete_onboarding(
        self, auth_token: str, tenant_id: str
    ) -> Result[OperationResult, OnboardingError]:
        """
        Finalize onboarding.

        Required steps are checked against the current status before the
        completion call; the backend may still reject, and that rejection is
        returned as-is.
        """
        logger.info("Completing onboarding", tenant_id=tenant_id)

        status = await self.get_status(auth_token, tenant_id)
        if isinstance(status, Err):
            return status

        precondition = self._check_completion_allowed(status.value)
        if precondition is not None:
            logger.warning(
                "Onboarding completion rejected",
                tenant_id=tenant_id,
                code=precondition.code.value,
                details=precondition.details,
            )
            return Err(precondition)

        context = {"tenantId": tenant_id}
        result = await self._call(
            "completeOnboarding",
            "POST",
            "/complete",
            auth_token,
            tenant_id,
            json_body={},
            default_message="Failed to complete onboarding",
            context=context,
        )
        validated = self._validated(result, OperationResult, "completeOnboarding", context)
        if isinstance(validated, Ok):
            logger.info("Onboarding completed", tenant_id=tenant_id)
        return validated

    async def test_connection(self, auth_token: str, tenant_id: str) -> ConnectionTestResponse:
        """Reachability check. Never raises."""
        try:
            result = await self.get_status(auth_token, tenant_id)
        except Exception as e:
            logger.error("Onboarding connectivity test crashed", error=str(e))
            return ConnectionTestResponse(success=False, message=f"Edge Function connectivity failed: {e}")

        if isinstance(result, Ok):
            return ConnectionTestResponse(success=True, message="Onboarding Edge Function is accessible")

        logger.warning("Onboarding connectivity test failed", error=result.error.message)
        return ConnectionTestResponse(
            success=False,
            message=f"Edge Function connectivity failed: {result.error.message}",
        )

    # ==========================================
    # HELPERS
    # ==========================================

    @staticmethod
    def _check_completion_allowed(status: OnboardingStatusResponse) -> OnboardingError | None:
        if status.onboarding is None:
            return NotFoundError(code=OnboardingErrorCode.ONBOARDING_NOT_INITIALIZED)

        if status.onboarding.is_completed:
            return ConflictError(code=OnboardingErrorCode.ONBOARDING_ALREADY_COMPLETED)

        completed = set(status.completed_steps) | set(status.onboarding.completed_steps)
        missing = missing_required_steps(completed)
        if missing:
            return ConflictError(
                code=OnboardingErrorCode.REQUIRED_STEPS_INCOMPLETE,
                details=[f"Required step not completed: {step}" for step in missing],
            )
        return None

    async def _call(
        self,
        operation: str,
        method: str,
        path: str,
        auth_token: str,
        tenant_id: str,
        *,
        default_message: str,
        context: dict[str, Any],
        json_body: Any = None,
        idempotency_key: str | None = None,
    ) -> Result[tuple[Any, int], OnboardingError]:
        """Send one request; return the decoded body and status, or a classified error."""
        try:
            response = await self.client.request(
                method,
                path,
                auth_token,
                tenant_id,
                json_body=json_body,
                idempotency_key=idempotency_key,
            )
        except httpx.HTTPError as e:
            error = transform_error(e, default_message)
            self._report_failure(e, error, operation, context)
            return Err(error)

        if not response.is_success:
            error = transform_error(None, default_message, response=response)
            self._report_failure(error, error, operation, context)
            return Err(error)

        try:
            payload = response.json()
        except ValueError as e:
            error = ResponseShapeError("Invalid response format: body is not JSON")
            self._report_failure(e, error, operation, context)
            return Err(error)

        return Ok((payload, response.status_code))

    def _validated(
        self,
        result: Result[tuple[Any, int], OnboardingError],
        model: type[BaseModel],
        operation: str,
        context: dict[str, Any],
    ) -> Result[Any, OnboardingError]:
        if isinstance(result, Err):
            return result

        payload, _ = result.value
        shape = validate_shape(model, payload)
        if isinstance(shape, ShapeError):
            error = ResponseShapeError(f"Invalid response format: {shape.reason}", details=list(shape.errors))
            self._report_failure(error, error, operation, context)
            return Err(error)
        return shape

    def _report_failure(
        self,
        original: BaseException,
        error: OnboardingError,
        operation: str,
        context: dict[str, Any],
    ) -> None:
        """Log and capture a failure. Must never raise into the operation."""
        try:
            details = {
                "operation": operation,
                "context": context,
                "error": {
                    "message": error.message,
                    "kind": error.kind,
                    "code": error.code.value,
                    "status": error.upstream_status,
                },
                "url": self.client.base_url,
            }
            logger.error(
                "Onboarding service error",
                operation=operation,
                tenant_id=context.get("tenantId"),
                error=error.message,
                error_kind=error.kind,
                upstream_status=error.upstream_status,
            )
            self.reporter.capture_exception(
                original,
                tags={"source": "onboarding_service", "operation": operation, "service": "edge_function"},
                extra=details,
            )
        except Exception as e:
            logger.error("Failed to report onboarding failure", operation=operation, error=str(e))
