"""Task Risk Analysis (TRA) documents.

Models:
- ControlMeasure: Action mitigating a hazard, typed by hierarchy of controls
- Hazard: Risk within a task step, scored with Kinney & Wiruth factors
- TaskStep: Numbered breakdown of the work with its hazards
- TRA: Complete risk analysis document with lifecycle state and the
  compliance report recorded at its last submission

Structural types are enforced here; business rules (description lengths,
contiguous step numbers, discrete factor scales) are enforced by the
hazard validator so drafts can be saved incomplete.
"""

from datetime import datetime
from typing import Iterator, Optional

from pydantic import Field

from .base import DomainModel, new_id
from .compliance import ComplianceReport
from .enums import (
    ComplianceFramework,
    ControlMeasureType,
    HazardCategory,
    HazardSource,
    ImplementationStatus,
    RiskLevel,
    TRAStatus,
)
from .workflow import ApprovalWorkflow


class ControlMeasure(DomainModel):
    """Control measure planned against a hazard.

    `priority` is the 1-based preference rank; when omitted the position
    in the hazard's control list is used.
    """

    id: str = Field(default_factory=new_id)
    type: ControlMeasureType
    description: str
    responsible_person: Optional[str] = None
    implementation_status: ImplementationStatus = ImplementationStatus.PLANNED
    priority: Optional[int] = Field(default=None, ge=1)
    deadline: Optional[datetime] = None
    verification_method: Optional[str] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    notes: Optional[str] = None


class Hazard(DomainModel):
    """Hazard with initial and optional residual Kinney & Wiruth factors."""

    id: str = Field(default_factory=new_id)
    description: str
    category: HazardCategory
    source: HazardSource = HazardSource.CUSTOM

    effect_score: float
    exposure_score: float
    probability_score: float
    risk_score: Optional[float] = None
    risk_level: Optional[RiskLevel] = None

    control_measures: list[ControlMeasure] = Field(default_factory=list)

    residual_effect_score: Optional[float] = None
    residual_exposure_score: Optional[float] = None
    residual_probability_score: Optional[float] = None
    residual_risk_score: Optional[float] = None
    residual_risk_level: Optional[RiskLevel] = None

    @property
    def has_residual_factors(self) -> bool:
        return None not in (
            self.residual_effect_score,
            self.residual_exposure_score,
            self.residual_probability_score,
        )


class TaskStep(DomainModel):
    """Numbered task step (1-based, contiguous within a TRA)."""

    step_number: int
    description: str
    duration_minutes: Optional[int] = None
    required_personnel: Optional[int] = None
    location: Optional[str] = None
    equipment: list[str] = Field(default_factory=list)
    hazards: list[Hazard] = Field(default_factory=list)
    notes: Optional[str] = None


class TRA(DomainModel):
    """Task Risk Analysis document."""

    id: str = Field(default_factory=new_id)
    title: str
    description: Optional[str] = None
    organization_id: str
    project_id: Optional[str] = None
    template_id: Optional[str] = None

    task_steps: list[TaskStep] = Field(default_factory=list)
    overall_risk_score: float = 0.0
    overall_risk_level: RiskLevel = RiskLevel.TRIVIAL

    team_members: list[str] = Field(default_factory=list)
    required_competencies: list[str] = Field(default_factory=list)

    status: TRAStatus = TRAStatus.DRAFT
    approval_workflow: Optional[ApprovalWorkflow] = None

    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    compliance_framework: ComplianceFramework = ComplianceFramework.VCA
    compliance: Optional[ComplianceReport] = None

    created_by: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    submitted_at: Optional[datetime] = None
    submitted_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    archived_by: Optional[str] = None

    def iter_hazards(self) -> Iterator[tuple[TaskStep, Hazard]]:
        for step in self.task_steps:
            for hazard in step.hazards:
                yield step, hazard

    @property
    def hazard_count(self) -> int:
        return sum(len(step.hazards) for step in self.task_steps)
