"""
Onboarding domain models and the step catalog.

The catalog is the fixed list of onboarding steps. Ordering comes from each
step's ``sequence`` field, never from its position in the list.

Step numbering convention: ``current_step`` on an onboarding record is
1-indexed and counts steps already behind the tenant, so
``get_next_step(n)`` returns the step whose sequence is ``n + 1``.
"""

import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from bff.services.onboarding_errors import ONBOARDING_ERROR_MESSAGES, OnboardingErrorCode


class OnboardingType(str, Enum):
    BUSINESS = "business"
    USER = "user"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class StepId(str, Enum):
    USER_PROFILE = "user-profile"
    BUSINESS_PROFILE = "business-profile"
    DATA_SETUP = "data-setup"
    STORAGE = "storage"
    TEAM = "team"
    TOUR = "tour"


class StepDefinition(BaseModel):
    """Static catalog entry. Never persisted by this layer."""

    model_config = ConfigDict(frozen=True)

    id: StepId
    sequence: int = Field(..., ge=1)
    title: str
    description: str
    is_required: bool
    estimated_time: str | None = None
    icon: str | None = None


STEP_CATALOG: tuple[StepDefinition, ...] = (
    StepDefinition(
        id=StepId.USER_PROFILE,
        sequence=1,
        title="Your Profile",
        description="Set up your personal information",
        is_required=True,
        estimated_time="2 min",
        icon="User",
    ),
    StepDefinition(
        id=StepId.BUSINESS_PROFILE,
        sequence=2,
        title="Business Profile",
        description="Tell us about your business",
        is_required=True,
        estimated_time="3 min",
        icon="Building",
    ),
    StepDefinition(
        id=StepId.DATA_SETUP,
        sequence=3,
        title="Data Setup",
        description="Import or set up your data",
        is_required=False,
        estimated_time="5 min",
        icon="Database",
    ),
    StepDefinition(
        id=StepId.STORAGE,
        sequence=4,
        title="Storage Setup",
        description="Configure your file storage",
        is_required=False,
        estimated_time="1 min",
        icon="HardDrive",
    ),
    StepDefinition(
        id=StepId.TEAM,
        sequence=5,
        title="Invite Team",
        description="Add your team members",
        is_required=False,
        estimated_time="2 min",
        icon="Users",
    ),
    StepDefinition(
        id=StepId.TOUR,
        sequence=6,
        title="Product Tour",
        description="Learn the basics",
        is_required=False,
        estimated_time="3 min",
        icon="Map",
    ),
)

_BY_ID: dict[str, StepDefinition] = {step.id.value: step for step in STEP_CATALOG}
_BY_SEQUENCE: dict[int, StepDefinition] = {step.sequence: step for step in STEP_CATALOG}

TOTAL_STEPS = len(STEP_CATALOG)
REQUIRED_STEPS: tuple[StepId, ...] = tuple(
    step.id for step in sorted(STEP_CATALOG, key=lambda s: s.sequence) if step.is_required
)


# =================================================================
# CATALOG LOOKUPS
# =================================================================


def ordered_steps() -> list[StepDefinition]:
    """Catalog in canonical (sequence) order."""
    return sorted(STEP_CATALOG, key=lambda s: s.sequence)


def get_step_definition(step_id: Any) -> StepDefinition | None:
    if not isinstance(step_id, str):
        return None
    return _BY_ID.get(step_id)


def is_valid_step_id(step_id: Any) -> bool:
    return isinstance(step_id, str) and step_id in _BY_ID


def is_required_step(step_id: Any) -> bool:
    step = get_step_definition(step_id)
    return step is not None and step.is_required


def get_next_step(current_step: int) -> str | None:
    """
    Step that follows position ``current_step``.

    Returns None when ``current_step`` is below 1 or at/after the last step.
    """
    if isinstance(current_step, bool) or not isinstance(current_step, int):
        return None
    if 1 <= current_step < TOTAL_STEPS:
        step = _BY_SEQUENCE.get(current_step + 1)
        return step.id.value if step else None
    return None


def calculate_progress(completed_steps: Iterable[str], total_steps: int) -> int:
    """Percentage of steps completed, rounded half-up. 0 when total_steps is 0."""
    if total_steps <= 0:
        return 0
    count = len(set(completed_steps))
    return int(math.floor(count / total_steps * 100 + 0.5))


def order_step_ids(step_ids: Iterable[str]) -> list[str]:
    """Display order: catalog sequence first, unknown ids last in input order."""
    unique = list(dict.fromkeys(step_ids))
    known = sorted((s for s in unique if s in _BY_ID), key=lambda s: _BY_ID[s].sequence)
    unknown = [s for s in unique if s not in _BY_ID]
    return known + unknown


def missing_required_steps(completed_steps: Iterable[str]) -> list[str]:
    completed = set(completed_steps)
    return [step.value for step in REQUIRED_STEPS if step.value not in completed]


# =================================================================
# REQUEST VALIDATION
# =================================================================


@dataclass
class StepValidation:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    code: OnboardingErrorCode | None = None


def _fail(code: OnboardingErrorCode) -> StepValidation:
    return StepValidation(is_valid=False, errors=[ONBOARDING_ERROR_MESSAGES[code]], code=code)


def validate_complete_step(step_id: Any) -> StepValidation:
    """stepId must be present, then must be a catalog id."""
    if not step_id:
        return _fail(OnboardingErrorCode.INVALID_STEP_ID)
    if not is_valid_step_id(step_id):
        return _fail(OnboardingErrorCode.STEP_NOT_FOUND)
    return StepValidation(is_valid=True)


def validate_skip_step(step_id: Any) -> StepValidation:
    """As validate_complete_step, and the step must not be required."""
    result = validate_complete_step(step_id)
    if not result.is_valid:
        return result
    if is_required_step(step_id):
        return _fail(OnboardingErrorCode.REQUIRED_STEP_CANNOT_SKIP)
    return result


# =================================================================
# RECORDS RETURNED BY THE ONBOARDING BACKEND
# =================================================================


class TenantOnboarding(BaseModel):
    """Onboarding record owned by the backend, treated as a value object."""

    model_config = ConfigDict(extra="allow")

    id: str
    tenant_id: str
    onboarding_type: OnboardingType = OnboardingType.BUSINESS
    current_step: int
    total_steps: int = TOTAL_STEPS
    completed_steps: list[str] = Field(default_factory=list)
    skipped_steps: list[str] = Field(default_factory=list)
    step_data: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    is_completed: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def invariant_violations(self) -> list[str]:
        """
        Describe any broken record invariants. Empty when the record is consistent.

        Progress updates can move current_step anywhere, so a record that fails
        these checks is still a valid record to return.
        """
        violations = []
        overlap = set(self.completed_steps) & set(self.skipped_steps)
        if overlap:
            violations.append(f"steps both completed and skipped: {sorted(overlap)}")
        required_skipped = [s for s in self.skipped_steps if is_required_step(s)]
        if required_skipped:
            violations.append(f"required steps skipped: {required_skipped}")
        if not 1 <= self.current_step <= max(self.total_steps, 1):
            violations.append(f"current_step {self.current_step} outside [1, {self.total_steps}]")
        return violations


class OnboardingStepStatus(BaseModel):
    """Per-step progress row."""

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    tenant_id: str | None = None
    step_id: str
    step_sequence: int | None = None
    status: StepStatus = StepStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    attempts: int = 0
    error_log: dict[str, Any] | None = None
