"""TRA document lifecycle.

States: draft, submitted, in_review, approved, rejected, active, expired,
archived. Allowed transitions:

    draft -> submitted -> in_review          submit()
    in_review -> approved -> active          record_decision() on the last step
    in_review -> rejected                    record_decision() reject
    rejected -> draft                        reopen() / update()
    active -> expired                        check_expiry(), idempotent
    any non-archived -> archived             archive()

Every operation is pure: it returns a Transition with the new TRA and the
audit events to publish once the compare-and-swap succeeds. Anything
else raises StateTransitionError.
"""

from datetime import datetime, timedelta
from typing import Optional, Sequence

from safework.core.config import Config
from safework.core.domain.base import add_months, utcnow
from safework.core.domain.enums import (
    ApprovalRole,
    AuditSeverity,
    DecisionType,
    IssueSeverity,
    TRAStatus,
)
from safework.core.domain.events import AuditEvent, Transition
from safework.core.domain.requests import CreateTRARequest, UpdateTRARequest
from safework.core.domain.tra import TRA, TaskStep
from safework.core.domain.workflow import ApprovalStepDefinition, ApprovalWorkflow
from safework.core.errors import StateTransitionError
from safework.core.safety.approval import ApprovalWorkflowEngine
from safework.core.safety.compliance import validate_compliance
from safework.core.safety.hazards import HazardValidator, validate_control_hierarchy
from safework.core.safety.risk import RiskScoreCalculator

EDITABLE_STATUSES = frozenset({TRAStatus.DRAFT, TRAStatus.REJECTED})

# Fields an update may clear by sending null.
NULLABLE_FIELDS = frozenset({"description", "project_id"})


def _event(
    tra: TRA,
    event_type: str,
    actor_id: str,
    severity: AuditSeverity = AuditSeverity.INFO,
    **metadata,
) -> AuditEvent:
    return AuditEvent(
        event_type=event_type,
        severity=severity,
        actor_id=actor_id,
        subject_id=tra.id,
        subject_type="tra",
        organization_id=tra.organization_id,
        metadata={"status": tra.status.value, **metadata},
    )


class TRALifecycleStateMachine:
    """Pure TRA state machine.

    Collaborators are injected so policy (risk bands, description length,
    validity windows) comes from Config rather than module constants.

    Example:
        >>> machine = TRALifecycleStateMachine(load_config())
        >>> result = machine.submit(tra, step_defs, actor_id="u-1")
        >>> result.entity.status
        <TRAStatus.IN_REVIEW: 'in_review'>
    """

    SYSTEM_ACTOR = "system"

    def __init__(
        self,
        config: Optional[Config] = None,
        calculator: Optional[RiskScoreCalculator] = None,
        validator: Optional[HazardValidator] = None,
        workflow_engine: Optional[ApprovalWorkflowEngine] = None,
    ):
        self.config = config or Config()
        self.calculator = calculator or RiskScoreCalculator(self.config.risk_bands)
        self.validator = validator or HazardValidator(self.config.hazard_description_min_length)
        self.workflow_engine = workflow_engine or ApprovalWorkflowEngine()

    # Authoring

    def _scored(self, tra: TRA, task_steps: list[TaskStep]) -> TRA:
        steps = self.calculator.score_task_steps(task_steps)
        score, level = self.calculator.overall_risk(steps)
        return tra.model_copy(update={
            "task_steps": steps,
            "overall_risk_score": score,
            "overall_risk_level": level,
        })

    def create(
        self,
        request: CreateTRARequest,
        organization_id: str,
        created_by: str,
        now: Optional[datetime] = None,
    ) -> Transition[TRA]:
        """Create a scored draft TRA from a validated request."""
        now = now or utcnow()
        payload = request.model_dump(exclude={"task_steps"})
        steps = [TaskStep.model_validate(step.model_dump()) for step in request.task_steps]
        tra = TRA(
            **payload,
            organization_id=organization_id,
            created_by=created_by,
            created_at=now,
        )
        tra = self._scored(tra, steps)
        return Transition(
            entity=tra,
            events=[_event(
                tra, "tra_created", created_by,
                title=tra.title, overall_risk_score=tra.overall_risk_score,
            )],
        )

    def update(
        self,
        tra: TRA,
        request: UpdateTRARequest,
        actor_id: str,
        now: Optional[datetime] = None,
    ) -> Transition[TRA]:
        """Apply a partial edit. Editing a rejected TRA reopens it as a draft.

        Raises:
            StateTransitionError: TRA is not draft or rejected
            InvalidScoreValue: An edited hazard carries an off-scale factor
        """
        now = now or utcnow()
        if tra.status not in EDITABLE_STATUSES:
            raise StateTransitionError(f"TRA {tra.id} cannot be edited while {tra.status.value}")

        transition: Transition[TRA] = Transition(entity=tra, changed=False)
        if tra.status == TRAStatus.REJECTED:
            transition = self.reopen(tra, actor_id, now)

        changes = {
            name: getattr(request, name)
            for name in request.model_fields_set
            if getattr(request, name) is not None or name in NULLABLE_FIELDS
        }
        updated = transition.entity.model_copy(update={
            **changes,
            "updated_at": now,
            "updated_by": actor_id,
        })
        updated = self._scored(updated, updated.task_steps)
        return transition.merge(Transition(
            entity=updated,
            events=[_event(updated, "tra_updated", actor_id, fields=sorted(changes))],
        ))

    # Review

    def submit(
        self,
        tra: TRA,
        step_defs: Sequence[ApprovalStepDefinition],
        actor_id: str,
        now: Optional[datetime] = None,
    ) -> Transition[TRA]:
        """Validate, score and send a draft into review.

        Runs the full task-step validation (every violation collected),
        creates the approval workflow and moves draft -> submitted ->
        in_review. Hierarchy-of-controls findings come back as warnings, as
        do critical and major compliance issues; the full compliance report
        is recorded on the TRA.

        Raises:
            StateTransitionError: TRA is not a draft
            ValidationError: Task steps, hazards or workflow definition invalid
        """
        now = now or utcnow()
        if tra.status != TRAStatus.DRAFT:
            raise StateTransitionError(f"only draft TRAs can be submitted, {tra.id} is {tra.status.value}")

        self.validator.validate_task_steps(tra.task_steps)
        workflow = self.workflow_engine.create_workflow(step_defs)
        scored = self._scored(tra, tra.task_steps)

        warnings: list[str] = []
        for step, hazard in scored.iter_hazards():
            for message in validate_control_hierarchy(hazard.control_measures):
                warnings.append(f"step {step.step_number}: {message}")

        submitted = scored.model_copy(update={
            "status": TRAStatus.SUBMITTED,
            "submitted_at": now,
            "submitted_by": actor_id,
        })
        in_review = submitted.model_copy(update={
            "status": TRAStatus.IN_REVIEW,
            "approval_workflow": workflow,
        })
        report = validate_compliance(in_review, now)
        in_review = in_review.model_copy(update={"compliance": report})
        for issue in report.issues:
            if issue.severity != IssueSeverity.MINOR:
                warnings.append(f"compliance {issue.severity.value}: {issue.message}")
        return Transition(
            entity=in_review,
            events=[
                _event(
                    submitted, "tra_submitted", actor_id,
                    hazard_count=submitted.hazard_count,
                    overall_risk_score=submitted.overall_risk_score,
                    overall_risk_level=submitted.overall_risk_level.value,
                ),
                _event(
                    in_review, "tra_review_started", actor_id,
                    steps=len(workflow.steps),
                    compliance_score=report.score,
                    compliant=report.is_compliant,
                ),
            ],
            warnings=warnings,
        )

    def record_decision(
        self,
        tra: TRA,
        step_number: int,
        decision: DecisionType,
        actor_id: str,
        actor_role: ApprovalRole,
        comments: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Transition[TRA]:
        """Record an approval decision; completes or rejects the TRA when final.

        Approving the last step chains approved -> active through
        finalize_approval in the same transition.

        Raises:
            StateTransitionError: TRA not in review (or step out of order)
            AlreadyDecided, Unauthorized, ValidationError: From the workflow engine
        """
        now = now or utcnow()
        if tra.status != TRAStatus.IN_REVIEW or tra.approval_workflow is None:
            raise StateTransitionError(f"TRA {tra.id} is not in review ({tra.status.value})")

        workflow = self.workflow_engine.record_decision(
            tra.approval_workflow, step_number, decision, actor_id, actor_role, comments, now
        )
        decided = tra.model_copy(update={"approval_workflow": workflow})
        events = [_event(
            decided, "tra_approval_decision", actor_id,
            step_number=step_number,
            decision=DecisionType(decision).value,
            actor_role=ApprovalRole(actor_role).value,
            comments=comments,
        )]

        if workflow.is_rejected:
            rejected = decided.model_copy(update={"status": TRAStatus.REJECTED})
            events.append(_event(
                rejected, "tra_rejected", actor_id, AuditSeverity.WARNING, step_number=step_number
            ))
            return Transition(entity=rejected, events=events)

        if workflow.is_completed:
            approved = decided.model_copy(update={"status": TRAStatus.APPROVED, "approved_at": now})
            events.append(_event(approved, "tra_approved", actor_id))
            return Transition(entity=approved, events=events).merge(
                self.finalize_approval(approved, workflow, now)
            )

        return Transition(entity=decided, events=events)

    def finalize_approval(
        self,
        tra: TRA,
        workflow: Optional[ApprovalWorkflow] = None,
        now: Optional[datetime] = None,
    ) -> Transition[TRA]:
        """Stamp the validity window and activate an approved TRA.

        valid_until = valid_from + the framework's window, never beyond
        12 months.

        Raises:
            StateTransitionError: TRA not approved or workflow not completed
        """
        now = now or utcnow()
        workflow = workflow or tra.approval_workflow
        if tra.status != TRAStatus.APPROVED:
            raise StateTransitionError(f"TRA {tra.id} must be approved to activate ({tra.status.value})")
        if workflow is None or not workflow.is_completed:
            raise StateTransitionError(f"approval workflow for TRA {tra.id} is not completed")

        months = self.config.validity_window_months(tra.compliance_framework)
        active = tra.model_copy(update={
            "status": TRAStatus.ACTIVE,
            "approval_workflow": workflow,
            "valid_from": now,
            "valid_until": add_months(now, months),
        })
        return Transition(
            entity=active,
            events=[_event(
                active, "tra_activated", self.SYSTEM_ACTOR,
                valid_from=active.valid_from.isoformat(),
                valid_until=active.valid_until.isoformat(),
                compliance_framework=active.compliance_framework.value,
            )],
        )

    # Lifecycle maintenance

    def check_expiry(self, tra: TRA, now: Optional[datetime] = None) -> Transition[TRA]:
        """Expire an active TRA whose window has passed.

        Idempotent: an expired TRA (or any TRA that is not active and
        overdue) comes back unchanged with `changed=False`.
        """
        now = now or utcnow()
        if tra.status != TRAStatus.ACTIVE or tra.valid_until is None or now <= tra.valid_until:
            return Transition(entity=tra, changed=False)

        expired = tra.model_copy(update={"status": TRAStatus.EXPIRED, "updated_at": now})
        return Transition(
            entity=expired,
            events=[_event(
                expired, "tra_expired", self.SYSTEM_ACTOR, AuditSeverity.WARNING,
                valid_until=tra.valid_until.isoformat(),
            )],
        )

    def reopen(self, tra: TRA, actor_id: str, now: Optional[datetime] = None) -> Transition[TRA]:
        """Return a rejected TRA to draft for re-editing."""
        now = now or utcnow()
        if tra.status != TRAStatus.REJECTED:
            raise StateTransitionError(f"only rejected TRAs can be reopened, {tra.id} is {tra.status.value}")
        draft = tra.model_copy(update={
            "status": TRAStatus.DRAFT,
            "updated_at": now,
            "updated_by": actor_id,
        })
        return Transition(entity=draft, events=[_event(draft, "tra_reopened", actor_id)])

    def archive(self, tra: TRA, actor_id: str, now: Optional[datetime] = None) -> Transition[TRA]:
        """Archive a TRA. Terminal; TRAs are never physically deleted."""
        now = now or utcnow()
        if tra.status == TRAStatus.ARCHIVED:
            raise StateTransitionError(f"TRA {tra.id} is already archived")
        archived = tra.model_copy(update={
            "status": TRAStatus.ARCHIVED,
            "archived_at": now,
            "archived_by": actor_id,
        })
        return Transition(
            entity=archived,
            events=[_event(archived, "tra_archived", actor_id, previous_status=tra.status.value)],
        )

    # Predicates

    def is_valid(self, tra: TRA, now: Optional[datetime] = None) -> bool:
        """Whether the TRA is active and inside its validity window."""
        now = now or utcnow()
        if tra.status != TRAStatus.ACTIVE or tra.valid_from is None or tra.valid_until is None:
            return False
        return tra.valid_from <= now <= tra.valid_until

    def is_expiring_soon(self, tra: TRA, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        if not self.is_valid(tra, now):
            return False
        return tra.valid_until - now <= timedelta(days=self.config.expiring_soon_days)
