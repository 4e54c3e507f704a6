# bff/models/api/onboarding_request.py
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CompleteStepRequest(BaseModel):
    """Request body for POST /api/onboarding/step/complete."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Left untyped: the step catalog decides validity, not the schema
    step_id: Any = Field(None, alias="stepId")
    data: dict[str, Any] | None = None


class SkipStepRequest(BaseModel):
    """Request body for PUT /api/onboarding/step/skip."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    step_id: Any = Field(None, alias="stepId")


class UpdateProgressRequest(BaseModel):
    """
    Request body for PUT /api/onboarding/progress.

    No bounds on current_step: progress updates deliberately bypass the
    step-by-step rules so partially completed flows can be resumed.
    """

    model_config = ConfigDict(extra="ignore")

    current_step: int | None = None
    step_data: dict[str, Any] | None = None


class TenantInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str | None = None


class CompleteRegistrationRequest(BaseModel):
    """Request body for POST /api/auth/complete-registration."""

    model_config = ConfigDict(extra="allow")

    user: dict[str, Any] | None = None
    tenant: TenantInfo | None = None


class CreateGoogleTenantRequest(BaseModel):
    """Request body for POST /api/tenants/create-google."""

    name: str | None = None
    workspace_code: str | None = None
