"""
Shared FastAPI dependencies: request headers and app-scoped components.

Components are built once in the application lifespan and stored on
``app.state``; routes reach them through these dependencies so tests can
swap them out on a freshly created app.
"""

from dataclasses import dataclass

from fastapi import Header, HTTPException, Request, status

from bff.config import Settings
from bff.infrastructure.audit import AuditLogger
from bff.infrastructure.observability.logging import get_logger
from bff.services.auth_service import AuthService
from bff.services.onboarding_service import OnboardingService
from bff.services.request_coalescer import RequestCoalescer

logger = get_logger(__name__)


@dataclass(frozen=True)
class TenantContext:
    auth_token: str
    tenant_id: str


def require_auth_header(authorization: str | None = Header(None)) -> str:
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Authorization header is required"
        )
    return authorization


def tenant_context(
    authorization: str | None = Header(None),
    x_tenant_id: str | None = Header(None),
) -> TenantContext:
    """
    Authorization and x-tenant-id for onboarding routes.

    Raises:
        401: Authorization header missing (checked first)
        400: x-tenant-id header missing
    """
    auth_token = require_auth_header(authorization)
    if not x_tenant_id:
        logger.warning("Onboarding request without tenant header")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="x-tenant-id header is required")
    return TenantContext(auth_token=auth_token, tenant_id=x_tenant_id)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def require_supabase_config(request: Request) -> None:
    if not get_settings(request).supabase_configured():
        logger.error("Supabase configuration missing", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server configuration error: Missing Supabase configuration",
        )


def get_onboarding_service(request: Request) -> OnboardingService:
    return request.app.state.onboarding_service


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_audit_logger(request: Request) -> AuditLogger:
    return request.app.state.audit_logger


def get_coalescer(request: Request) -> RequestCoalescer:
    return request.app.state.coalescer
