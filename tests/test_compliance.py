"""Unit tests for VCA compliance scoring."""

from datetime import timedelta

from conftest import AUTHOR, NOW, ORG, build_active_tra, control, hazard, step_defs, task_step, tra_request
from safework.core.domain.base import add_months
from safework.core.domain.enums import IssueSeverity, TRAStatus
from safework.core.domain.tra import TRA
from safework.core.safety.compliance import validate_compliance

HIGH_RISK = {"effect_score": 40, "exposure_score": 6, "probability_score": 3}


def draft_with(tra_machine, *hazards):
    request = tra_request(task_steps=[task_step(1, hazards=list(hazards) or None)])
    return tra_machine.create(request, ORG, AUTHOR, now=NOW).entity


def replace_hazards(tra, *hazards):
    step = tra.task_steps[0].model_copy(update={"hazards": list(hazards)})
    return tra.model_copy(update={"task_steps": [step]})


def messages(report, severity=None):
    return [i.message for i in report.issues if severity is None or i.severity == severity]


def test_active_tra_is_certification_ready(tra_machine):
    report = validate_compliance(build_active_tra(tra_machine), NOW)
    assert report.score == 100
    assert report.issues == []
    assert report.is_compliant
    assert report.certification_ready
    assert report.recommendations == ["TRA meets VCA requirements, no further action needed"]


def test_draft_without_workflow_scores_lower(tra_machine):
    report = validate_compliance(draft_with(tra_machine), NOW)
    assert report.score == 85
    assert report.is_compliant
    assert not report.certification_ready
    assert messages(report) == ["TRA is still a draft", "no approval workflow defined"]
    assert report.recommendations == ["address 1 major issue(s) to raise the score"]


def test_missing_project_is_critical(tra_machine):
    tra = build_active_tra(tra_machine).model_copy(update={"project_id": None})
    report = validate_compliance(tra, NOW)
    assert report.score == 80
    assert not report.is_compliant
    assert messages(report, IssueSeverity.CRITICAL) == ["TRA is not linked to a project"]
    assert report.recommendations[0] == "resolve the 1 critical issue(s) first"


def test_ppe_only_on_high_risk(tra_machine):
    tra = draft_with(tra_machine, hazard(**HIGH_RISK, control_measures=[control("ppe", "Wear hearing protection")]))
    report = validate_compliance(tra, NOW)
    assert "only PPE for high risk: Contact with rotating conveyor parts" in messages(report, IssueSeverity.MAJOR)
    assert "Follow the hierarchy of controls when choosing control measures" in report.recommendations


def test_ppe_only_on_acceptable_risk_passes(tra_machine):
    tra = draft_with(tra_machine, hazard(control_measures=[control("ppe", "Wear cut resistant gloves")]))
    report = validate_compliance(tra, NOW)
    assert not [m for m in messages(report) if m.startswith("only PPE")]


def test_uncontrolled_high_risk_and_low_coverage(tra_machine):
    tra = draft_with(tra_machine, hazard(**HIGH_RISK), hazard())
    high, acceptable = tra.task_steps[0].hazards
    tra = replace_hazards(tra, high.model_copy(update={"control_measures": []}), acceptable)

    report = validate_compliance(tra, NOW)
    assert messages(report, IssueSeverity.CRITICAL) == [
        "high risk without control measures: Contact with rotating conveyor parts"
    ]
    assert "only 50% of hazards have control measures" in messages(report, IssueSeverity.MAJOR)
    assert not report.is_compliant


def test_step_without_hazards_is_critical(tra_machine):
    tra = replace_hazards(draft_with(tra_machine))
    report = validate_compliance(tra, NOW)
    assert "1 task step(s) without hazards" in messages(report, IssueSeverity.CRITICAL)
    assert "only 0% of hazards have control measures" in messages(report)


def test_empty_tra_score_floors_at_zero():
    tra = TRA(title="", organization_id=ORG, created_by=AUTHOR, created_at=NOW)
    report = validate_compliance(tra, NOW)
    assert report.score == 0
    assert not report.is_compliant
    assert not report.certification_ready
    assert "no task steps defined" in messages(report, IssueSeverity.CRITICAL)


def test_validity_longer_than_twelve_months(tra_machine):
    active = build_active_tra(tra_machine)
    tra = active.model_copy(update={"valid_until": add_months(active.valid_from, 14)})
    report = validate_compliance(tra, NOW)
    assert [i.category for i in report.issues] == ["validity"]
    assert report.issues[0].severity == IssueSeverity.CRITICAL
    assert report.issues[0].message.startswith("validity period too long")


def test_expired_tra_is_critical(tra_machine):
    active = build_active_tra(tra_machine)
    report = validate_compliance(active, active.valid_until + timedelta(days=1))
    assert messages(report, IssueSeverity.CRITICAL) == ["TRA has expired"]
    assert report.score == 75


def test_validity_only_required_once_approved(tra_machine):
    active = build_active_tra(tra_machine)
    unset = {"valid_from": None, "valid_until": None}

    in_review = active.model_copy(update={**unset, "status": TRAStatus.IN_REVIEW})
    assert validate_compliance(in_review, NOW).issues == []

    approved = active.model_copy(update={**unset, "status": TRAStatus.APPROVED})
    report = validate_compliance(approved, NOW)
    assert messages(report, IssueSeverity.MAJOR) == ["validity period not set"]


def test_short_hazard_description_is_documented(tra_machine):
    tra = draft_with(tra_machine)
    short = tra.task_steps[0].hazards[0].model_copy(update={"description": "Noise"})
    report = validate_compliance(replace_hazards(tra, short), NOW)
    assert "step 1: hazard description is too short" in messages(report, IssueSeverity.MINOR)


def test_team_and_competencies(tra_machine):
    tra = build_active_tra(tra_machine).model_copy(update={"team_members": [], "required_competencies": []})
    report = validate_compliance(tra, NOW)
    assert [i.category for i in report.issues] == ["team", "competencies"]
    assert report.score == 85


# Submission


def test_submit_records_report(tra_machine):
    draft = tra_machine.create(tra_request(), ORG, AUTHOR, now=NOW).entity
    result = tra_machine.submit(draft, step_defs(), AUTHOR, now=NOW)

    report = result.entity.compliance
    assert report.score == 100
    assert report.checked_at == NOW
    assert result.warnings == []
    assert result.events[1].metadata["compliance_score"] == 100
    assert result.events[1].metadata["compliant"] is True


def test_submit_warns_on_critical_issues(tra_machine):
    draft = tra_machine.create(tra_request(project_id=None), ORG, AUTHOR, now=NOW).entity
    result = tra_machine.submit(draft, step_defs(), AUTHOR, now=NOW)

    assert result.entity.status == TRAStatus.IN_REVIEW
    assert not result.entity.compliance.is_compliant
    assert result.warnings == ["compliance critical: TRA is not linked to a project"]
    assert result.events[1].metadata["compliant"] is False
