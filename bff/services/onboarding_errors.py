"""
Error taxonomy for onboarding operations.

Every failure the operation service can produce is one of these classes.
The route layer turns them into HTTP responses using ``status_code`` and
``to_response()``; nothing below the routes knows about HTTP responses.
"""

from enum import Enum
from typing import Any


class OnboardingErrorCode(str, Enum):
    # Validation errors
    INVALID_STEP_ID = "INVALID_STEP_ID"
    STEP_NOT_FOUND = "STEP_NOT_FOUND"
    REQUIRED_STEP_CANNOT_SKIP = "REQUIRED_STEP_CANNOT_SKIP"
    INVALID_STEP_DATA = "INVALID_STEP_DATA"
    INVALID_RESPONSE = "INVALID_RESPONSE"

    # Business rule errors
    ONBOARDING_ALREADY_COMPLETED = "ONBOARDING_ALREADY_COMPLETED"
    ONBOARDING_NOT_INITIALIZED = "ONBOARDING_NOT_INITIALIZED"
    STEP_ALREADY_COMPLETED = "STEP_ALREADY_COMPLETED"
    PREVIOUS_STEP_NOT_COMPLETED = "PREVIOUS_STEP_NOT_COMPLETED"
    REQUIRED_STEPS_INCOMPLETE = "REQUIRED_STEPS_INCOMPLETE"

    # System errors
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    RATE_LIMITED = "RATE_LIMITED"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ONBOARDING_ERROR_MESSAGES: dict[OnboardingErrorCode, str] = {
    OnboardingErrorCode.INVALID_STEP_ID: "Invalid step identifier",
    OnboardingErrorCode.STEP_NOT_FOUND: "Onboarding step not found",
    OnboardingErrorCode.REQUIRED_STEP_CANNOT_SKIP: "Cannot skip required step",
    OnboardingErrorCode.INVALID_STEP_DATA: "Invalid step data provided",
    OnboardingErrorCode.INVALID_RESPONSE: "Invalid response format",
    OnboardingErrorCode.ONBOARDING_ALREADY_COMPLETED: "Onboarding has already been completed",
    OnboardingErrorCode.ONBOARDING_NOT_INITIALIZED: "Onboarding has not been initialized",
    OnboardingErrorCode.STEP_ALREADY_COMPLETED: "This step has already been completed",
    OnboardingErrorCode.PREVIOUS_STEP_NOT_COMPLETED: "Please complete the previous step first",
    OnboardingErrorCode.REQUIRED_STEPS_INCOMPLETE: "Required onboarding steps are not completed",
    OnboardingErrorCode.NETWORK_ERROR: "Unable to connect to onboarding service",
    OnboardingErrorCode.TIMEOUT: "Onboarding service request timed out",
    OnboardingErrorCode.UNAUTHORIZED: "Authentication required",
    OnboardingErrorCode.FORBIDDEN: "Insufficient permissions",
    OnboardingErrorCode.NOT_FOUND: "Onboarding resource not found",
    OnboardingErrorCode.CONFLICT: "Onboarding request conflicts with current state",
    OnboardingErrorCode.RATE_LIMITED: "Too many requests - please try again later",
    OnboardingErrorCode.UPSTREAM_ERROR: "Onboarding service error",
    OnboardingErrorCode.INTERNAL_ERROR: "Internal server error",
}


class OnboardingError(Exception):
    """Base class for onboarding failures."""

    status_code: int = 500
    default_code: OnboardingErrorCode = OnboardingErrorCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str | None = None,
        *,
        code: OnboardingErrorCode | None = None,
        details: list[str] | None = None,
        upstream_status: int | None = None,
        response_data: Any = None,
    ):
        self.code = code or self.default_code
        self.message = message or ONBOARDING_ERROR_MESSAGES[self.code]
        super().__init__(self.message)
        self.details = details or []
        self.upstream_status = upstream_status
        self.response_data = response_data

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "code": self.code.value}
        if self.details:
            body["details"] = list(self.details)
        return body


class OnboardingValidationError(OnboardingError):
    """Bad step id, required-step skip attempt or malformed step data."""

    status_code = 400
    default_code = OnboardingErrorCode.INVALID_STEP_DATA


class ResponseShapeError(OnboardingValidationError):
    """Upstream answered with a payload that does not match the expected shape."""

    status_code = 502
    default_code = OnboardingErrorCode.INVALID_RESPONSE


class AuthError(OnboardingError):
    status_code = 401
    default_code = OnboardingErrorCode.UNAUTHORIZED


class ForbiddenError(AuthError):
    status_code = 403
    default_code = OnboardingErrorCode.FORBIDDEN


class NotFoundError(OnboardingError):
    status_code = 404
    default_code = OnboardingErrorCode.NOT_FOUND


class ConflictError(OnboardingError):
    status_code = 409
    default_code = OnboardingErrorCode.CONFLICT


class RateLimitError(OnboardingError):
    status_code = 429
    default_code = OnboardingErrorCode.RATE_LIMITED
    retryable = True


class UpstreamError(OnboardingError):
    default_code = OnboardingErrorCode.UPSTREAM_ERROR

    def __init__(self, message: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        # Mirror the upstream status so callers see what the backend reported
        if self.upstream_status and self.upstream_status >= 400:
            self.status_code = self.upstream_status


class ConnectivityError(OnboardingError):
    """Network failure or timeout talking to the onboarding backend."""

    status_code = 503
    default_code = OnboardingErrorCode.NETWORK_ERROR
    retryable = True

    def __init__(self, message: str | None = None, *, timed_out: bool = False, **kwargs):
        if timed_out:
            kwargs.setdefault("code", OnboardingErrorCode.TIMEOUT)
        super().__init__(message, **kwargs)
        self.timed_out = timed_out
