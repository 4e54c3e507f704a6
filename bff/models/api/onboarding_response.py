# bff/models/api/onboarding_response.py
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator

from bff.models.domain.onboarding_domain import (
    TOTAL_STEPS,
    OnboardingStepStatus,
    StepDefinition,
    TenantOnboarding,
)


class OnboardingStatusResponse(BaseModel):
    """Response for GET /api/onboarding/status (upstream payload plus progress fields)."""

    model_config = ConfigDict(extra="allow")

    needs_onboarding: StrictBool
    onboarding: TenantOnboarding | None = None
    steps: list[OnboardingStepStatus] = Field(default_factory=list)
    current_step: int | None = None
    total_steps: int = TOTAL_STEPS
    completed_steps: list[str] = Field(default_factory=list)
    skipped_steps: list[str] = Field(default_factory=list)

    # Computed by this layer
    progress_percentage: int | None = None
    next_step: str | None = None

    @field_validator("steps", mode="before")
    @classmethod
    def null_steps_to_empty(cls, value: Any) -> Any:
        if value is None:
            return []
        return value


class InitializeOnboardingResponse(BaseModel):
    """Response for POST /api/onboarding/initialize"""

    model_config = ConfigDict(extra="allow")

    id: str
    message: str = ""
    is_completed: bool | None = None


class CompleteStepResponse(BaseModel):
    """Response for POST /api/onboarding/step/complete"""

    model_config = ConfigDict(extra="allow")

    success: bool
    message: str = ""
    current_step: int
    completed_steps: list[str]


class SkipStepResponse(BaseModel):
    """Response for PUT /api/onboarding/step/skip"""

    model_config = ConfigDict(extra="allow")

    success: bool
    message: str = ""
    current_step: int
    skipped_steps: list[str]


class OperationResult(BaseModel):
    """Generic result for progress updates and onboarding completion."""

    model_config = ConfigDict(extra="allow")

    success: bool
    message: str = ""
    data: Any = None
    error: str | None = None


class ConnectionTestResponse(BaseModel):
    """Response for GET /api/onboarding/test"""

    success: bool
    message: str


class StepCatalogResponse(BaseModel):
    """Response for GET /api/onboarding/steps"""

    steps: list[StepDefinition]
    total_steps: int
    required_steps: list[str]


class ErrorResponse(BaseModel):
    error: str
    code: str | None = None
    details: list[str] | None = None
