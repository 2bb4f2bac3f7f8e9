"""Request-shape contracts validated at the API boundary.

The HTTP layer parses raw payloads with `parse_request` before handing
them to the engine. Pydantic issues are converted into a single
ValidationError with one entry per violated field.

Provides:
- CreateTRARequest, UpdateTRARequest: TRA authoring payloads
- ApprovalDecisionRequest: Approve/reject the current workflow step
- CreateLMRARequest, CompleteLMRARequest, StopWorkRequest: LMRA payloads
- parse_request: Parse a payload into a request model or raise ValidationError
"""

from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from safework.core.errors import FieldError, ValidationError

from .enums import (
    ComplianceFramework,
    ControlMeasureType,
    DecisionType,
    HazardCategory,
    HazardSource,
    ImplementationStatus,
    LMRAAssessment,
)
from .lmra import GeoPoint
from .scales import EFFECT_VALUES, EXPOSURE_VALUES, PROBABILITY_VALUES, is_scale_value
from .tra import TaskStep

RequestT = TypeVar("RequestT", bound=BaseModel)


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid")


def _check_scale(value: Any, allowed: frozenset, name: str) -> Any:
    if value is None:
        return value
    if not is_scale_value(value, allowed):
        raise ValueError(f"{name} must be one of {sorted(allowed)}")
    return value


class ControlMeasureInput(_Request):
    type: ControlMeasureType
    description: str = Field(min_length=10, max_length=1000)
    responsible_person: Optional[str] = None
    implementation_status: ImplementationStatus = ImplementationStatus.PLANNED
    priority: Optional[int] = Field(default=None, ge=1)
    verification_method: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)


class HazardInput(_Request):
    description: str = Field(min_length=10, max_length=1000)
    category: HazardCategory
    source: HazardSource = HazardSource.CUSTOM
    effect_score: float
    exposure_score: float
    probability_score: float
    control_measures: list[ControlMeasureInput] = Field(min_length=1)
    residual_effect_score: Optional[float] = None
    residual_exposure_score: Optional[float] = None
    residual_probability_score: Optional[float] = None

    @field_validator("effect_score", "residual_effect_score", mode="before")
    @classmethod
    def _effect(cls, value):
        return _check_scale(value, EFFECT_VALUES, "effect")

    @field_validator("exposure_score", "residual_exposure_score", mode="before")
    @classmethod
    def _exposure(cls, value):
        return _check_scale(value, EXPOSURE_VALUES, "exposure")

    @field_validator("probability_score", "residual_probability_score", mode="before")
    @classmethod
    def _probability(cls, value):
        return _check_scale(value, PROBABILITY_VALUES, "probability")


class TaskStepInput(_Request):
    step_number: int = Field(gt=0)
    description: str = Field(min_length=1, max_length=2000)
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    required_personnel: Optional[int] = Field(default=None, gt=0)
    location: Optional[str] = Field(default=None, max_length=500)
    equipment: list[str] = Field(default_factory=list)
    hazards: list[HazardInput] = Field(min_length=1)
    notes: Optional[str] = Field(default=None, max_length=2000)


def _check_sequential(step_numbers: list[int]) -> None:
    for expected, actual in enumerate(sorted(step_numbers), start=1):
        if expected != actual:
            raise ValueError("task step numbers must be sequential starting from 1")


class CreateTRARequest(_Request):
    title: str = Field(min_length=5, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    project_id: Optional[str] = None
    template_id: Optional[str] = None
    task_steps: list[TaskStepInput] = Field(min_length=1)
    team_members: list[str] = Field(default_factory=list)
    required_competencies: list[str] = Field(default_factory=list)
    compliance_framework: ComplianceFramework = ComplianceFramework.VCA

    @model_validator(mode="after")
    def _sequential_steps(self) -> "CreateTRARequest":
        _check_sequential([s.step_number for s in self.task_steps])
        return self


class UpdateTRARequest(_Request):
    """Partial TRA edit. Lifecycle fields (status, validity) are not editable."""

    title: Optional[str] = Field(default=None, min_length=5, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    project_id: Optional[str] = None
    task_steps: Optional[list[TaskStep]] = None
    team_members: Optional[list[str]] = None
    required_competencies: Optional[list[str]] = None
    compliance_framework: Optional[ComplianceFramework] = None


class ApprovalDecisionRequest(_Request):
    tra_id: str = Field(min_length=1)
    step_number: int = Field(ge=0)
    decision: DecisionType
    comments: Optional[str] = Field(default=None, max_length=2000)


class LocationInput(_Request):
    coordinates: GeoPoint
    accuracy: float = Field(ge=0, le=1000)
    manual_override_reason: Optional[str] = Field(default=None, max_length=500)


class CreateLMRARequest(_Request):
    tra_id: str = Field(min_length=1)
    project_id: Optional[str] = None
    team_members: list[str] = Field(min_length=1)
    location: LocationInput

    @field_validator("team_members")
    @classmethod
    def _non_empty_members(cls, value: list[str]) -> list[str]:
        if any(not member for member in value):
            raise ValueError("team member ids must be non-empty")
        return value


class CompleteLMRARequest(_Request):
    session_id: str = Field(min_length=1)
    overall_assessment: LMRAAssessment
    stop_work_reason: Optional[str] = Field(default=None, max_length=1000)
    comments: Optional[str] = Field(default=None, max_length=2000)


class StopWorkRequest(_Request):
    session_id: str = Field(min_length=1)
    reason: str = Field(min_length=10, max_length=1000)
    triggered_by: str = Field(min_length=1)


def parse_request(model: type[RequestT], payload: dict[str, Any]) -> RequestT:
    """Parse a raw payload into a request model.

    Args:
        model: Request model class
        payload: Raw decoded JSON payload

    Returns:
        Validated request instance

    Raises:
        ValidationError: One FieldError per pydantic issue
    """
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        errors = [
            FieldError(".".join(str(part) for part in issue["loc"]) or "__root__", issue["msg"])
            for issue in e.errors()
        ]
        raise ValidationError(errors) from e
