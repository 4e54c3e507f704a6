"""
Error capture for upstream failures.

Failures are reported as structured log events carrying tags, extras and a
severity level. Reporting is best-effort: ``capture_exception`` never raises
and never blocks the operation that produced the error.
"""

from typing import Any, Literal

import httpx

from bff.infrastructure.observability.logging import get_logger
from bff.services.onboarding_errors import ConnectivityError

logger = get_logger("monitoring")

Level = Literal["info", "warning", "error"]


def level_for(error: BaseException) -> Level:
    """
    Severity for an error: connectivity and 4xx are warnings, 5xx are errors.

    Works on both transport exceptions and classified onboarding errors.
    """
    if isinstance(error, (httpx.TransportError, ConnectivityError)):
        return "warning"

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
    else:
        status = getattr(error, "upstream_status", None) or getattr(error, "status_code", None)

    if isinstance(status, int):
        if 400 <= status < 500:
            return "warning"
        if status >= 500:
            return "error"

    return "error"


class ErrorReporter:
    """Structured-log backed exception capture."""

    def __init__(self, source: str = "bff"):
        self.source = source
        self.captured = 0

    def capture_exception(
        self,
        error: BaseException,
        tags: dict[str, Any] | None = None,
        extra: dict[str, Any] | None = None,
        level: Level | None = None,
    ) -> bool:
        """Record an exception. Returns False if recording itself failed."""
        try:
            level = level or level_for(error)
            log = getattr(logger, level, logger.error)
            log(
                "Exception captured",
                source=self.source,
                error=str(error),
                error_type=type(error).__name__,
                tags=tags or {},
                extra=extra or {},
            )
            self.captured += 1
            return True
        except Exception as e:
            logger.error("Failed to capture exception", error=str(e))
            return False


error_reporter = ErrorReporter()
