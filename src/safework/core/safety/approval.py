"""Ordered multi-approver approval workflow.

Each step moves `pending -> approved | rejected`. Decisions are only
accepted for the current step, by an eligible approver holding the
step's required role. A rejection closes the workflow; later steps stay
pending so a cancelled workflow is visibly incomplete.

Provides:
- ApprovalWorkflowEngine: create_workflow / record_decision (pure)
- DEFAULT_STEP_NAMES: Conventional step names per role
"""

from datetime import datetime
from typing import Optional, Sequence

from safework.core.domain.base import utcnow
from safework.core.domain.enums import (
    ApprovalRole,
    ApprovalStepStatus,
    DecisionType,
    WorkflowStatus,
)
from safework.core.domain.workflow import ApprovalStep, ApprovalStepDefinition, ApprovalWorkflow
from safework.core.errors import (
    AlreadyDecided,
    FieldError,
    StateTransitionError,
    Unauthorized,
    ValidationError,
)

DEFAULT_STEP_NAMES = {
    ApprovalRole.SUPERVISOR: "Supervisor Review",
    ApprovalRole.SAFETY_MANAGER: "Safety Manager Approval",
    ApprovalRole.ADMIN: "Administrative Sign-off",
}


class ApprovalWorkflowEngine:
    """Pure approval workflow transitions.

    Workflows are never mutated in place; every decision returns a new
    ApprovalWorkflow.
    """

    def create_workflow(self, step_defs: Sequence[ApprovalStepDefinition]) -> ApprovalWorkflow:
        """Build a workflow with all steps pending and current_step = 0.

        Args:
            step_defs: Ordered step definitions

        Returns:
            New in-progress ApprovalWorkflow

        Raises:
            ValidationError: No steps, or a step without approvers
        """
        errors: list[FieldError] = []
        if not step_defs:
            errors.append(FieldError("steps", "an approval workflow needs at least one step"))
        for index, definition in enumerate(step_defs):
            if not definition.approvers:
                errors.append(FieldError(f"steps.{index}.approvers", "at least one approver is required"))
        if errors:
            raise ValidationError(errors)

        steps = [
            ApprovalStep(
                step_number=index,
                name=definition.name or DEFAULT_STEP_NAMES[definition.required_role],
                required_role=definition.required_role,
                approvers=list(dict.fromkeys(definition.approvers)),
            )
            for index, definition in enumerate(step_defs)
        ]
        return ApprovalWorkflow(steps=steps)

    def record_decision(
        self,
        workflow: ApprovalWorkflow,
        step_number: int,
        decision: DecisionType,
        actor_id: str,
        actor_role: ApprovalRole,
        comments: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ApprovalWorkflow:
        """Record an approve/reject decision on the current step.

        Args:
            workflow: Workflow to decide on
            step_number: 0-based step index; must equal workflow.current_step
            decision: approve or reject
            actor_id: Deciding user
            actor_role: Role the user acts in
            comments: Optional decision comments
            now: Decision timestamp (defaults to current UTC time)

        Returns:
            Updated workflow

        Raises:
            ValidationError: step_number does not exist
            AlreadyDecided: Step is no longer pending
            StateTransitionError: Workflow closed or step out of order
            Unauthorized: Actor not an approver or role mismatch
        """
        now = now or utcnow()
        decision = DecisionType(decision)

        if step_number < 0 or step_number >= len(workflow.steps):
            raise ValidationError.single("step_number", f"workflow has no step {step_number}")

        step = workflow.steps[step_number]
        if step.status != ApprovalStepStatus.PENDING:
            raise AlreadyDecided(f"step {step_number} is already {step.status.value}")
        current = workflow.next_step()
        if current is None:
            raise StateTransitionError(f"workflow is {workflow.status.value}, no further decisions")
        if step_number != current.step_number:
            raise StateTransitionError(
                f"step {step_number} cannot be decided before step {current.step_number}"
            )
        if actor_id not in step.approvers or actor_role != step.required_role:
            raise Unauthorized(
                f"{actor_id} ({ApprovalRole(actor_role).value}) may not decide step "
                f"{step_number}, requires {step.required_role.value}"
            )

        decided = step.model_copy(update={
            "status": (
                ApprovalStepStatus.APPROVED
                if decision == DecisionType.APPROVE
                else ApprovalStepStatus.REJECTED
            ),
            "decided_by": actor_id,
            "decided_by_role": actor_role,
            "decided_at": now,
            "comments": comments,
        })
        steps = list(workflow.steps)
        steps[step_number] = decided

        if decision == DecisionType.REJECT:
            return workflow.model_copy(update={
                "steps": steps,
                "status": WorkflowStatus.REJECTED,
                "completed_at": now,
            })

        current_step = step_number + 1
        if current_step >= len(steps):
            return workflow.model_copy(update={
                "steps": steps,
                "current_step": current_step,
                "status": WorkflowStatus.COMPLETED,
                "completed_at": now,
            })
        return workflow.model_copy(update={"steps": steps, "current_step": current_step})
