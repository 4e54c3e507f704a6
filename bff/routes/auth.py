"""
Registration and workspace creation endpoints.

Both are forwarded to auth edge functions through AuthService, which
collapses duplicate in-flight submissions into one upstream call.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from bff.infrastructure.audit import AuditAction, AuditEntry, AuditLogger, AuditResource
from bff.infrastructure.observability.logging import get_logger
from bff.models.api.onboarding_request import CompleteRegistrationRequest, CreateGoogleTenantRequest
from bff.models.domain.result import Err
from bff.routes.dependencies import (
    get_audit_logger,
    get_auth_service,
    require_auth_header,
    require_supabase_config,
)
from bff.services.auth_service import AuthService

logger = get_logger(__name__)

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])
tenants_router = APIRouter(prefix="/api/tenants", tags=["tenants"])


@auth_router.post("/complete-registration")
async def complete_registration(
    request: Request,
    body: CompleteRegistrationRequest,
    _config: None = Depends(require_supabase_config),
    auth_header: str = Depends(require_auth_header),
    service: AuthService = Depends(get_auth_service),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Finish sign-up: create the user's profile and tenant upstream.

    Raises:
        500: Supabase configuration missing
        401: Authorization header missing
        400: tenant.name missing
    """
    if body.tenant is None or not body.tenant.name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Tenant name is required")

    tenant = body.tenant.model_dump()
    result = await service.complete_registration(auth_header, body.user, tenant)

    if isinstance(result, Err):
        await audit.log_audit(
            request,
            AuditEntry(
                action=AuditAction.USER_CREATE,
                resource=AuditResource.AUTH,
                success=False,
                error=result.error.message,
                metadata={"operation": "complete_registration", "tenantName": body.tenant.name},
            ),
        )
        return JSONResponse(status_code=result.error.status_code, content=result.error.to_response())

    await audit.log_audit(
        request,
        AuditEntry(
            action=AuditAction.USER_CREATE,
            resource=AuditResource.AUTH,
            metadata={"operation": "complete_registration", "tenantName": body.tenant.name},
        ),
    )

    logger.info("Registration completed", tenant_name=body.tenant.name)
    return result.value


@tenants_router.post("/create-google", status_code=status.HTTP_201_CREATED)
async def create_google_tenant(
    request: Request,
    body: CreateGoogleTenantRequest,
    _config: None = Depends(require_supabase_config),
    auth_header: str = Depends(require_auth_header),
    service: AuthService = Depends(get_auth_service),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Create a workspace for a Google sign-up.

    Raises:
        500: Supabase configuration missing
        401: Authorization header missing
        400: name or workspace_code missing
    """
    if not body.name or not body.workspace_code:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Workspace name and workspace code are required",
        )

    metadata = {"operation": "create_google_tenant", "workspaceCode": body.workspace_code}
    result = await service.create_google_tenant(auth_header, body.name, body.workspace_code)

    if isinstance(result, Err):
        await audit.log_audit(
            request,
            AuditEntry(
                action=AuditAction.TENANT_CREATE,
                resource=AuditResource.TENANT,
                success=False,
                error=result.error.message,
                metadata=metadata,
            ),
        )
        return JSONResponse(status_code=result.error.status_code, content=result.error.to_response())

    tenant_id = result.value.get("tenant_id") or result.value.get("id")
    await audit.log_audit(
        request,
        AuditEntry(
            action=AuditAction.TENANT_CREATE,
            resource=AuditResource.TENANT,
            resource_id=str(tenant_id) if tenant_id else None,
            metadata=metadata,
        ),
    )

    logger.info("Workspace created", workspace_code=body.workspace_code)
    return result.value
