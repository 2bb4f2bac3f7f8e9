"""Approval workflow documents.

Models:
- ApprovalStepDefinition: Input describing one step to create
- ApprovalStep: Step state with decision metadata
- ApprovalWorkflow: Ordered steps with the current step index
"""

from datetime import datetime
from typing import Optional

from pydantic import Field

from .base import DomainModel
from .enums import ApprovalRole, ApprovalStepStatus, WorkflowStatus


class ApprovalStepDefinition(DomainModel):
    """Definition of a workflow step, e.g. "Safety Manager Approval"."""

    name: str
    required_role: ApprovalRole
    approvers: list[str] = Field(default_factory=list)


class ApprovalStep(DomainModel):
    """Single approval step.

    `step_number` is the 0-based position of the step in its workflow and
    is what decisions reference.
    """

    step_number: int
    name: str
    required_role: ApprovalRole
    approvers: list[str]
    status: ApprovalStepStatus = ApprovalStepStatus.PENDING

    decided_by: Optional[str] = None
    decided_by_role: Optional[ApprovalRole] = None
    decided_at: Optional[datetime] = None
    comments: Optional[str] = None


class ApprovalWorkflow(DomainModel):
    """Ordered multi-approver workflow; belongs 1:1 to a submitted TRA."""

    steps: list[ApprovalStep]
    current_step: int = 0
    status: WorkflowStatus = WorkflowStatus.IN_PROGRESS
    completed_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return bool(self.steps) and all(s.status == ApprovalStepStatus.APPROVED for s in self.steps)

    @property
    def is_rejected(self) -> bool:
        return any(s.status == ApprovalStepStatus.REJECTED for s in self.steps)

    def next_step(self) -> ApprovalStep | None:
        """Step awaiting a decision, or None once the workflow is closed."""
        if self.status != WorkflowStatus.IN_PROGRESS or self.current_step >= len(self.steps):
            return None
        return self.steps[self.current_step]
