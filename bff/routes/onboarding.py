"""
onboarding.py
-------------
Purpose:
    API endpoints for the tenant onboarding flow.
    Forwards to the onboarding edge function through OnboardingService and
    records an audit event for every outcome.

Architecture:
    - API layer: headers, step validation against the catalog, audit, HTTP status
    - Service layer: returns Ok(model) / Err(OnboardingError), never raises
    - API layer: converts Err → {"error", "code", "details"?} with the error's status

Usage:
    1. GET  /api/onboarding/status        - Current onboarding state plus progress
    2. POST /api/onboarding/initialize    - Create (201) or resume (200) onboarding
    3. POST /api/onboarding/step/complete - Complete a step (optional idempotency-key)
    4. PUT  /api/onboarding/step/skip     - Skip an optional step
    5. PUT  /api/onboarding/progress      - Set progress directly
    6. POST /api/onboarding/complete      - Finish onboarding
    7. GET  /api/onboarding/test          - Edge function connectivity check
    8. GET  /api/onboarding/steps         - Step catalog
"""

import json
from collections.abc import Awaitable
from typing import Any, TypeVar

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from bff.infrastructure.audit import AuditAction, AuditEntry, AuditLogger, AuditResource
from bff.infrastructure.observability.logging import get_logger
from bff.models.api.onboarding_request import (
    CompleteStepRequest,
    SkipStepRequest,
    UpdateProgressRequest,
)
from bff.models.api.onboarding_response import OnboardingStatusResponse, StepCatalogResponse
from bff.models.domain.onboarding_domain import (
    REQUIRED_STEPS,
    TOTAL_STEPS,
    StepValidation,
    calculate_progress,
    get_next_step,
    order_step_ids,
    ordered_steps,
    validate_complete_step,
    validate_skip_step,
)
from bff.models.domain.result import Err, Result
from bff.routes.dependencies import (
    TenantContext,
    get_audit_logger,
    get_onboarding_service,
    require_supabase_config,
    tenant_context,
)
from bff.services.onboarding_errors import OnboardingError, OnboardingErrorCode, OnboardingValidationError
from bff.services.onboarding_service import OnboardingService, transform_error

router = APIRouter(prefix="/api/onboarding", tags=["onboarding"])
logger = get_logger(__name__)

B = TypeVar("B", bound=BaseModel)


# ==========================================
# HELPERS
# ==========================================


async def _invoke(call: Awaitable[Result[Any, OnboardingError]], default_message: str) -> Result[Any, OnboardingError]:
    """Await a service call; anything it raises becomes an Err."""
    try:
        return await call
    except Exception as e:
        logger.error("Unexpected onboarding service failure", error=str(e), error_type=type(e).__name__)
        return Err(transform_error(e, default_message))


def _error_response(error: OnboardingError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_response())


def _validation_error(validation: StepValidation) -> OnboardingValidationError:
    return OnboardingValidationError("Validation failed", code=validation.code, details=validation.errors)


async def _parse_step_body(request: Request, model: type[B]) -> tuple[B, Any, StepValidation]:
    """
    Parse a step route body by hand so malformed bodies go through the same
    rejected-and-audited path as bad step ids.

    Returns the parsed body (empty on failure), the raw JSON value and the
    outcome of this first validation stage.
    """
    raw_bytes = await request.body()
    if not raw_bytes:
        return model(), None, StepValidation(is_valid=True)

    try:
        raw = json.loads(raw_bytes)
    except ValueError:
        return model(), None, _invalid_body(["body: Invalid JSON"])

    if raw is None:
        return model(), None, StepValidation(is_valid=True)

    try:
        return model.model_validate(raw), raw, StepValidation(is_valid=True)
    except ValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in e.errors()]
        return model(), raw, _invalid_body(errors)


def _invalid_body(errors: list[str]) -> StepValidation:
    return StepValidation(is_valid=False, errors=errors, code=OnboardingErrorCode.INVALID_STEP_DATA)


def _audited_body(body: BaseModel, raw: Any, parsed: StepValidation) -> Any:
    return body.model_dump(by_alias=True) if parsed.is_valid else raw


def _raw_step_id(raw: Any) -> Any:
    return raw.get("stepId") if isinstance(raw, dict) else None


def _json_body_schema(model: type[BaseModel]) -> dict[str, Any]:
    """OpenAPI request body for routes that read their JSON body by hand."""
    return {"requestBody": {"content": {"application/json": {"schema": model.model_json_schema(by_alias=True)}}}}


async def _audit_failure(
    request: Request,
    audit: AuditLogger,
    action: AuditAction,
    error: OnboardingError,
    metadata: dict[str, Any],
    resource_id: str | None = None,
) -> None:
    await audit.log_audit(
        request,
        AuditEntry(
            action=action,
            resource=AuditResource.ONBOARDING,
            resource_id=resource_id,
            success=False,
            error=error.message,
            metadata={**metadata, "errorCode": error.code.value, "details": error.details or None},
        ),
    )


def _enrich_status(status_response: OnboardingStatusResponse) -> OnboardingStatusResponse:
    """Add progress_percentage and next_step; order step lists by catalog sequence."""
    onboarding = status_response.onboarding
    completed = status_response.completed_steps or (onboarding.completed_steps if onboarding else [])
    skipped = status_response.skipped_steps or (onboarding.skipped_steps if onboarding else [])
    current_step = status_response.current_step
    if current_step is None and onboarding is not None:
        current_step = onboarding.current_step
    total_steps = onboarding.total_steps if onboarding else status_response.total_steps

    return status_response.model_copy(
        update={
            "current_step": current_step,
            "total_steps": total_steps,
            "completed_steps": order_step_ids(completed),
            "skipped_steps": order_step_ids(skipped),
            "progress_percentage": calculate_progress(completed, total_steps),
            "next_step": get_next_step(current_step) if current_step is not None else None,
        }
    )


# ==========================================
# ROUTES
# ==========================================


@router.get("/status")
async def get_status(
    request: Request,
    ctx: TenantContext = Depends(tenant_context),
    _config: None = Depends(require_supabase_config),
    service: OnboardingService = Depends(get_onboarding_service),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Get onboarding status for the tenant.

    Returns:
        OnboardingStatusResponse with progress_percentage and next_step added

    Raises:
        401: Authorization header missing
        400: x-tenant-id header missing
        500: Supabase configuration missing
    """
    metadata = {"operation": "get_status", "tenantId": ctx.tenant_id}

    result = await _invoke(service.get_status(ctx.auth_token, ctx.tenant_id), "Failed to fetch onboarding status")
    if isinstance(result, Err):
        await _audit_failure(request, audit, AuditAction.ONBOARDING_STATUS_VIEW, result.error, metadata)
        return _error_response(result.error)

    response = _enrich_status(result.value)

    await audit.log_audit(
        request,
        AuditEntry(
            action=AuditAction.ONBOARDING_STATUS_VIEW,
            resource=AuditResource.ONBOARDING,
            resource_id=response.onboarding.id if response.onboarding else None,
            metadata={
                **metadata,
                "needsOnboarding": response.needs_onboarding,
                "currentStep": response.current_step,
                "progressPercentage": response.progress_percentage,
            },
        ),
    )

    logger.info(
        "Onboarding status retrieved",
        tenant_id=ctx.tenant_id,
        needs_onboarding=response.needs_onboarding,
        current_step=response.current_step,
    )
    return response.model_dump(mode="json")


@router.post("/initialize")
async def initialize(
    request: Request,
    ctx: TenantContext = Depends(tenant_context),
    _config: None = Depends(require_supabase_config),
    service: OnboardingService = Depends(get_onboarding_service),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Initialize onboarding for the tenant.

    Returns:
        201 when a new onboarding record was created, 200 when an existing
        one was resumed.
    """
    metadata = {"operation": "initialize", "tenantId": ctx.tenant_id}

    result = await _invoke(service.initialize(ctx.auth_token, ctx.tenant_id), "Failed to initialize onboarding")
    if isinstance(result, Err):
        await _audit_failure(request, audit, AuditAction.ONBOARDING_INITIALIZE, result.error, metadata)
        return _error_response(result.error)

    outcome = result.value
    await audit.log_audit(
        request,
        AuditEntry(
            action=AuditAction.ONBOARDING_INITIALIZE,
            resource=AuditResource.ONBOARDING,
            resource_id=outcome.response.id,
            metadata={**metadata, "created": outcome.created},
        ),
    )

    status_code = status.HTTP_201_CREATED if outcome.created else status.HTTP_200_OK
    return JSONResponse(status_code=status_code, content=outcome.response.model_dump(mode="json"))


@router.post("/step/complete", openapi_extra=_json_body_schema(CompleteStepRequest))
async def complete_step(
    request: Request,
    idempotency_key: str | None = Header(None),
    ctx: TenantContext = Depends(tenant_context),
    _config: None = Depends(require_supabase_config),
    service: OnboardingService = Depends(get_onboarding_service),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Mark an onboarding step completed.

    The optional idempotency-key header is forwarded so retried submissions
    do not advance the flow twice.

    Raises:
        400: stepId missing or not a catalog step (audited, service not called)
        400: body is not JSON or data is not an object (audited, service not called)
    """
    body, raw_body, parsed = await _parse_step_body(request, CompleteStepRequest)
    step_id = body.step_id if parsed.is_valid else _raw_step_id(raw_body)
    request_body = _audited_body(body, raw_body, parsed)
    metadata = {
        "operation": "complete_step",
        "tenantId": ctx.tenant_id,
        "stepId": step_id,
        "idempotencyKey": idempotency_key,
    }

    validation = parsed if not parsed.is_valid else validate_complete_step(step_id)
    if not validation.is_valid:
        error = _validation_error(validation)
        logger.warning("Step completion rejected", tenant_id=ctx.tenant_id, step_id=step_id, errors=validation.errors)
        await _audit_failure(
            request,
            audit,
            AuditAction.ONBOARDING_STEP_COMPLETE,
            error,
            {**metadata, "requestBody": request_body},
            resource_id=step_id if isinstance(step_id, str) else None,
        )
        return _error_response(error)

    result = await _invoke(
        service.complete_step(ctx.auth_token, ctx.tenant_id, step_id, body.data, idempotency_key),
        "Failed to complete step",
    )
    if isinstance(result, Err):
        await _audit_failure(
            request,
            audit,
            AuditAction.ONBOARDING_STEP_COMPLETE,
            result.error,
            {**metadata, "requestBody": request_body},
            resource_id=step_id,
        )
        return _error_response(result.error)

    response = result.value
    await audit.log_audit(
        request,
        AuditEntry(
            action=AuditAction.ONBOARDING_STEP_COMPLETE,
            resource=AuditResource.ONBOARDING,
            resource_id=step_id,
            metadata={
                **metadata,
                "currentStep": response.current_step,
                "completedSteps": response.completed_steps,
            },
        ),
    )
    return response.model_dump(mode="json")


@router.put("/step/skip", openapi_extra=_json_body_schema(SkipStepRequest))
async def skip_step(
    request: Request,
    ctx: TenantContext = Depends(tenant_context),
    _config: None = Depends(require_supabase_config),
    service: OnboardingService = Depends(get_onboarding_service),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Skip an optional onboarding step.

    Raises:
        400: stepId missing, unknown, or a required step (audited, service not called)
        400: body is not a JSON object (audited, service not called)
    """
    body, raw_body, parsed = await _parse_step_body(request, SkipStepRequest)
    step_id = body.step_id if parsed.is_valid else _raw_step_id(raw_body)
    request_body = _audited_body(body, raw_body, parsed)
    metadata = {"operation": "skip_step", "tenantId": ctx.tenant_id, "stepId": step_id}

    validation = parsed if not parsed.is_valid else validate_skip_step(step_id)
    if not validation.is_valid:
        error = _validation_error(validation)
        logger.warning("Step skip rejected", tenant_id=ctx.tenant_id, step_id=step_id, errors=validation.errors)
        await _audit_failure(
            request,
            audit,
            AuditAction.ONBOARDING_STEP_SKIP,
            error,
            {**metadata, "requestBody": request_body},
            resource_id=step_id if isinstance(step_id, str) else None,
        )
        return _error_response(error)

    result = await _invoke(service.skip_step(ctx.auth_token, ctx.tenant_id, step_id), "Failed to skip step")
    if isinstance(result, Err):
        await _audit_failure(
            request,
            audit,
            AuditAction.ONBOARDING_STEP_SKIP,
            result.error,
            {**metadata, "requestBody": request_body},
            resource_id=step_id,
        )
        return _error_response(result.error)

    response = result.value
    await audit.log_audit(
        request,
        AuditEntry(
            action=AuditAction.ONBOARDING_STEP_SKIP,
            resource=AuditResource.ONBOARDING,
            resource_id=step_id,
            metadata={
                **metadata,
                "currentStep": response.current_step,
                "skippedSteps": response.skipped_steps,
            },
        ),
    )
    return response.model_dump(mode="json")


@router.put("/progress")
async def update_progress(
    request: Request,
    body: UpdateProgressRequest | None = None,
    ctx: TenantContext = Depends(tenant_context),
    service: OnboardingService = Depends(get_onboarding_service),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Set onboarding progress directly.

    Not subject to step ordering; used to resume partially completed flows.
    """
    progress = body.model_dump(exclude_none=True) if body else {}
    metadata = {
        "operation": "update_progress",
        "tenantId": ctx.tenant_id,
        "currentStep": progress.get("current_step"),
    }

    result = await _invoke(
        service.update_progress(ctx.auth_token, ctx.tenant_id, progress), "Failed to update progress"
    )
    if isinstance(result, Err):
        await _audit_failure(
            request,
            audit,
            AuditAction.ONBOARDING_PROGRESS_UPDATE,
            result.error,
            {**metadata, "requestBody": progress},
        )
        return _error_response(result.error)

    await audit.log_audit(
        request,
        AuditEntry(
            action=AuditAction.ONBOARDING_PROGRESS_UPDATE,
            resource=AuditResource.ONBOARDING,
            metadata={**metadata, "hasStepData": "step_data" in progress},
        ),
    )
    return result.value.model_dump(mode="json")


@router.post("/complete")
async def complete(
    request: Request,
    ctx: TenantContext = Depends(tenant_context),
    service: OnboardingService = Depends(get_onboarding_service),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Finish onboarding.

    Raises:
        404: onboarding was never initialized
        409: already completed, or required steps are still open
    """
    metadata = {"operation": "complete_onboarding", "tenantId": ctx.tenant_id}

    result = await _invoke(
        service.complete_onboarding(ctx.auth_token, ctx.tenant_id), "Failed to complete onboarding"
    )
    if isinstance(result, Err):
        await _audit_failure(request, audit, AuditAction.ONBOARDING_COMPLETE, result.error, metadata)
        return _error_response(result.error)

    await audit.log_audit(
        request,
        AuditEntry(
            action=AuditAction.ONBOARDING_COMPLETE,
            resource=AuditResource.ONBOARDING,
            metadata=metadata,
        ),
    )

    logger.info("Onboarding completed successfully", tenant_id=ctx.tenant_id)
    return result.value.model_dump(mode="json")


@router.get("/test")
async def test_connection(
    ctx: TenantContext = Depends(tenant_context),
    service: OnboardingService = Depends(get_onboarding_service),
):
    """Edge function reachability check: 200 when reachable, 503 otherwise."""
    result = await service.test_connection(ctx.auth_token, ctx.tenant_id)
    status_code = status.HTTP_200_OK if result.success else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=status_code, content=result.model_dump())


@router.get("/steps", response_model=StepCatalogResponse)
async def list_steps(ctx: TenantContext = Depends(tenant_context)):
    """Step catalog in sequence order. No upstream call."""
    return StepCatalogResponse(
        steps=ordered_steps(),
        total_steps=TOTAL_STEPS,
        required_steps=[step.value for step in REQUIRED_STEPS],
    )
