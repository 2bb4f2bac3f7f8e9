"""Unit tests for the ordered multi-approver workflow engine."""

import pytest

from conftest import NOW, SAFETY_MANAGER, SUPERVISOR, step_defs
from safework.core.domain.enums import ApprovalRole, ApprovalStepStatus, DecisionType, WorkflowStatus
from safework.core.domain.workflow import ApprovalStepDefinition
from safework.core.errors import AlreadyDecided, StateTransitionError, Unauthorized, ValidationError
from safework.core.safety.approval import ApprovalWorkflowEngine


@pytest.fixture
def engine():
    return ApprovalWorkflowEngine()


@pytest.fixture
def workflow(engine):
    return engine.create_workflow(step_defs())


def test_create_workflow_starts_at_first_step(workflow):
    assert workflow.current_step == 0
    assert workflow.status == WorkflowStatus.IN_PROGRESS
    assert [s.step_number for s in workflow.steps] == [0, 1]
    assert all(s.status == ApprovalStepStatus.PENDING for s in workflow.steps)
    assert workflow.next_step() == workflow.steps[0]
    assert not workflow.is_rejected


def test_create_workflow_requires_steps(engine):
    with pytest.raises(ValidationError):
        engine.create_workflow([])


def test_create_workflow_requires_approvers(engine):
    defs = [ApprovalStepDefinition(name="Review", required_role=ApprovalRole.SUPERVISOR, approvers=[])]
    with pytest.raises(ValidationError) as exc_info:
        engine.create_workflow(defs)
    assert exc_info.value.fields == ["steps.0.approvers"]


def test_duplicate_approvers_collapsed(engine):
    defs = [ApprovalStepDefinition(
        name="Review", required_role=ApprovalRole.SUPERVISOR, approvers=["a", "b", "a"]
    )]
    assert engine.create_workflow(defs).steps[0].approvers == ["a", "b"]


def test_approving_every_step_completes(engine, workflow):
    workflow = engine.record_decision(
        workflow, 0, DecisionType.APPROVE, SUPERVISOR, ApprovalRole.SUPERVISOR, "looks fine", NOW
    )
    assert workflow.current_step == 1
    assert workflow.steps[0].decided_by == SUPERVISOR
    assert workflow.steps[0].comments == "looks fine"
    assert workflow.next_step().step_number == 1

    workflow = engine.record_decision(
        workflow, 1, DecisionType.APPROVE, SAFETY_MANAGER, ApprovalRole.SAFETY_MANAGER, now=NOW
    )
    assert workflow.status == WorkflowStatus.COMPLETED
    assert workflow.is_completed
    assert workflow.completed_at == NOW
    assert workflow.next_step() is None


def test_reject_closes_workflow_and_leaves_later_steps_pending(engine, workflow):
    workflow = engine.record_decision(
        workflow, 0, DecisionType.REJECT, SUPERVISOR, ApprovalRole.SUPERVISOR, "missing controls", NOW
    )
    assert workflow.status == WorkflowStatus.REJECTED
    assert workflow.steps[0].status == ApprovalStepStatus.REJECTED
    assert workflow.steps[1].status == ApprovalStepStatus.PENDING
    assert workflow.is_rejected
    assert not workflow.is_completed
    assert workflow.next_step() is None


def test_no_decisions_after_rejection(engine, workflow):
    workflow = engine.record_decision(workflow, 0, DecisionType.REJECT, SUPERVISOR, ApprovalRole.SUPERVISOR)
    with pytest.raises(StateTransitionError) as exc_info:
        engine.record_decision(
            workflow, 1, DecisionType.APPROVE, SAFETY_MANAGER, ApprovalRole.SAFETY_MANAGER
        )
    assert "no further decisions" in str(exc_info.value)


def test_out_of_order_step_rejected(engine, workflow):
    with pytest.raises(StateTransitionError) as exc_info:
        engine.record_decision(
            workflow, 1, DecisionType.APPROVE, SAFETY_MANAGER, ApprovalRole.SAFETY_MANAGER
        )
    assert not isinstance(exc_info.value, AlreadyDecided)
    assert "before step 0" in str(exc_info.value)


def test_duplicate_decision_is_already_decided(engine, workflow):
    workflow = engine.record_decision(workflow, 0, DecisionType.APPROVE, SUPERVISOR, ApprovalRole.SUPERVISOR)
    with pytest.raises(AlreadyDecided):
        engine.record_decision(workflow, 0, DecisionType.APPROVE, SUPERVISOR, ApprovalRole.SUPERVISOR)


def test_unknown_step_is_validation_error(engine, workflow):
    with pytest.raises(ValidationError):
        engine.record_decision(workflow, 5, DecisionType.APPROVE, SUPERVISOR, ApprovalRole.SUPERVISOR)


@pytest.mark.parametrize("actor,role", [
    ("intruder", ApprovalRole.SUPERVISOR),
    (SUPERVISOR, ApprovalRole.ADMIN),
])
def test_ineligible_actor_or_role_unauthorized(engine, workflow, actor, role):
    with pytest.raises(Unauthorized):
        engine.record_decision(workflow, 0, DecisionType.APPROVE, actor, role)


def test_decisions_do_not_mutate_input(engine, workflow):
    engine.record_decision(workflow, 0, DecisionType.APPROVE, SUPERVISOR, ApprovalRole.SUPERVISOR)
    assert workflow.current_step == 0
    assert workflow.steps[0].status == ApprovalStepStatus.PENDING
