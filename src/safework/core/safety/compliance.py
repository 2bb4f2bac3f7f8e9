"""VCA compliance scoring of a TRA.

Starts from 100 and deducts a capped penalty per check area. A TRA is
compliant at a score of at least 85 with no critical issue, and ready
for certification at 95 or above with no issue at all. Everything here
is pure; the result is advisory and never blocks a transition.

Provides:
- validate_compliance: Score, issues and recommendations for one TRA
"""

from datetime import datetime
from typing import Optional

from safework.core.config import MAX_VALIDITY_MONTHS
from safework.core.domain.base import add_months, utcnow
from safework.core.domain.compliance import ComplianceIssue, ComplianceReport
from safework.core.domain.enums import ControlMeasureType, IssueSeverity, RiskLevel, TRAStatus
from safework.core.domain.tra import TRA

MIN_COMPLIANCE_SCORE = 85
CERTIFICATION_SCORE = 95
MIN_CONTROL_COVERAGE = 80
MIN_TITLE_LENGTH = 5
MIN_HAZARD_DESCRIPTION_LENGTH = 10

BASIC_INFORMATION = "basic_information"
RISK_ASSESSMENT = "risk_assessment"
CONTROL_MEASURES = "control_measures"
TEAM = "team"
COMPETENCIES = "competencies"
APPROVAL = "approval"
VALIDITY = "validity"
DOCUMENTATION = "documentation"

HIGH_RISK = frozenset({RiskLevel.HIGH, RiskLevel.VERY_HIGH})
LOW_RISK = frozenset({RiskLevel.TRIVIAL, RiskLevel.ACCEPTABLE})

# Validity is assigned at activation; earlier statuses are not checked for it.
VALIDITY_REQUIRED = frozenset({TRAStatus.APPROVED, TRAStatus.ACTIVE, TRAStatus.EXPIRED})

CATEGORY_RECOMMENDATIONS = {
    RISK_ASSESSMENT: "Carry out a thorough risk analysis for every task step",
    CONTROL_MEASURES: "Follow the hierarchy of controls when choosing control measures",
    VALIDITY: "Review the validity period against VCA guidelines",
}


def _issue(
    issues: list[ComplianceIssue],
    severity: IssueSeverity,
    category: str,
    message: str,
    requirement: str,
    suggestion: Optional[str] = None,
) -> None:
    issues.append(ComplianceIssue(
        severity=severity, category=category, message=message,
        requirement=requirement, suggestion=suggestion,
    ))


def _check_basic_information(tra: TRA, issues: list[ComplianceIssue]) -> int:
    penalty = 0
    if len((tra.title or "").strip()) < MIN_TITLE_LENGTH:
        _issue(
            issues, IssueSeverity.MAJOR, BASIC_INFORMATION,
            "title is missing or too short",
            f"a descriptive title of at least {MIN_TITLE_LENGTH} characters",
            "describe the work in the title",
        )
        penalty += 10
    if not tra.description:
        _issue(
            issues, IssueSeverity.MINOR, BASIC_INFORMATION,
            "description is missing",
            "a description giving context for the work",
            "add details about the work to the description",
        )
        penalty += 5
    if not tra.project_id:
        _issue(
            issues, IssueSeverity.CRITICAL, BASIC_INFORMATION,
            "TRA is not linked to a project",
            "every TRA belongs to a project",
        )
        penalty += 20
    return penalty


def _check_risk_assessment(tra: TRA, issues: list[ComplianceIssue]) -> int:
    if not tra.task_steps:
        _issue(
            issues, IssueSeverity.CRITICAL, RISK_ASSESSMENT,
            "no task steps defined",
            "at least one task step",
        )
        return 30

    penalty = 0
    without_hazards = [step for step in tra.task_steps if not step.hazards]
    if without_hazards:
        _issue(
            issues, IssueSeverity.CRITICAL, RISK_ASSESSMENT,
            f"{len(without_hazards)} task step(s) without hazards",
            "every task step has at least one hazard",
            "identify the hazards of every task step",
        )
        penalty += 15

    for _, hazard in tra.iter_hazards():
        if hazard.risk_level in HIGH_RISK and not hazard.control_measures:
            _issue(
                issues, IssueSeverity.CRITICAL, CONTROL_MEASURES,
                f"high risk without control measures: {hazard.description}",
                "high risks have control measures",
                "add control measures following the hierarchy of controls",
            )
            penalty += 10
    return min(penalty, 30)


def _check_control_measures(tra: TRA, issues: list[ComplianceIssue]) -> int:
    penalty = 0
    total = 0
    covered = 0
    for _, hazard in tra.iter_hazards():
        total += 1
        controls = hazard.control_measures
        if controls:
            covered += 1
        only_ppe = bool(controls) and all(c.type == ControlMeasureType.PPE for c in controls)
        if only_ppe and hazard.risk_level is not None and hazard.risk_level not in LOW_RISK:
            _issue(
                issues, IssueSeverity.MAJOR, CONTROL_MEASURES,
                f"only PPE for {hazard.risk_level.value} risk: {hazard.description}",
                "hierarchy of controls: elimination > substitution > engineering > administrative > PPE",
                "consider controls higher in the hierarchy",
            )
            penalty += 5

    coverage = covered / total * 100 if total else 0
    if coverage < MIN_CONTROL_COVERAGE:
        _issue(
            issues, IssueSeverity.MAJOR, CONTROL_MEASURES,
            f"only {coverage:.0f}% of hazards have control measures",
            f"at least {MIN_CONTROL_COVERAGE}% coverage",
            "add control measures for every identified hazard",
        )
        penalty += 15
    return min(penalty, 25)


def _check_team(tra: TRA, issues: list[ComplianceIssue]) -> int:
    penalty = 0
    if not tra.team_members:
        _issue(
            issues, IssueSeverity.MAJOR, TEAM,
            "no team members assigned",
            "at least one team member",
            "assign team members to this TRA",
        )
        penalty += 10
    if not tra.required_competencies:
        _issue(
            issues, IssueSeverity.MINOR, COMPETENCIES,
            "no required competencies defined",
            "required certificates and training listed",
            "define the certificates and training the work requires",
        )
        penalty += 5
    return penalty


def _check_approval(tra: TRA, issues: list[ComplianceIssue]) -> int:
    penalty = 0
    if tra.status == TRAStatus.DRAFT:
        _issue(
            issues, IssueSeverity.MINOR, APPROVAL,
            "TRA is still a draft",
            "a TRA is approved before use",
            "submit the TRA for approval",
        )
        penalty += 5
    if tra.approval_workflow is None:
        _issue(
            issues, IssueSeverity.MAJOR, APPROVAL,
            "no approval workflow defined",
            "an approval workflow with at least one approver",
        )
        penalty += 10
    return penalty


def _check_validity(tra: TRA, issues: list[ComplianceIssue], now: datetime) -> int:
    if tra.valid_from is None or tra.valid_until is None:
        if tra.status not in VALIDITY_REQUIRED:
            return 0
        _issue(
            issues, IssueSeverity.MAJOR, VALIDITY,
            "validity period not set",
            f"a validity period of at most {MAX_VALIDITY_MONTHS} months",
        )
        return 15

    penalty = 0
    if tra.valid_until > add_months(tra.valid_from, MAX_VALIDITY_MONTHS):
        months = (tra.valid_until - tra.valid_from).days / 30
        _issue(
            issues, IssueSeverity.CRITICAL, VALIDITY,
            f"validity period too long ({months:.1f} months)",
            f"at most {MAX_VALIDITY_MONTHS} months",
            f"shorten the validity period to {MAX_VALIDITY_MONTHS} months or less",
        )
        penalty += 20
    if tra.valid_until < now:
        _issue(
            issues, IssueSeverity.CRITICAL, VALIDITY,
            "TRA has expired",
            "a TRA is used only within its validity period",
            "renew the TRA or create a new version",
        )
        penalty += 25
    return penalty


def _check_documentation(tra: TRA, issues: list[ComplianceIssue]) -> int:
    penalty = 0
    for step, hazard in tra.iter_hazards():
        if len((hazard.description or "").strip()) < MIN_HAZARD_DESCRIPTION_LENGTH:
            _issue(
                issues, IssueSeverity.MINOR, DOCUMENTATION,
                f"step {step.step_number}: hazard description is too short",
                f"hazard descriptions of at least {MIN_HAZARD_DESCRIPTION_LENGTH} characters",
            )
            penalty += 2
    return min(penalty, 10)


def _recommendations(issues: list[ComplianceIssue]) -> list[str]:
    critical = sum(1 for issue in issues if issue.severity == IssueSeverity.CRITICAL)
    major = sum(1 for issue in issues if issue.severity == IssueSeverity.MAJOR)
    recommendations: list[str] = []
    if critical:
        recommendations.append(f"resolve the {critical} critical issue(s) first")
    if major:
        recommendations.append(f"address {major} major issue(s) to raise the score")

    categories = {issue.category for issue in issues}
    for category, text in CATEGORY_RECOMMENDATIONS.items():
        if category in categories:
            recommendations.append(text)
    if not recommendations:
        recommendations.append("TRA meets VCA requirements, no further action needed")
    return recommendations


def validate_compliance(tra: TRA, now: Optional[datetime] = None) -> ComplianceReport:
    """Check a TRA against VCA requirements.

    Risk levels are read from the hazards as stored, so score the TRA
    first when it may hold unscored hazards.

    Args:
        tra: TRA to assess
        now: Reference time for expiry (defaults to current UTC time)

    Returns:
        ComplianceReport with the score clamped to 0-100
    """
    now = now or utcnow()
    issues: list[ComplianceIssue] = []
    penalty = (
        _check_basic_information(tra, issues)
        + _check_risk_assessment(tra, issues)
        + _check_control_measures(tra, issues)
        + _check_team(tra, issues)
        + _check_approval(tra, issues)
        + _check_validity(tra, issues, now)
        + _check_documentation(tra, issues)
    )
    score = max(0, 100 - penalty)
    has_critical = any(issue.severity == IssueSeverity.CRITICAL for issue in issues)
    return ComplianceReport(
        score=score,
        issues=issues,
        recommendations=_recommendations(issues),
        is_compliant=score >= MIN_COMPLIANCE_SCORE and not has_critical,
        certification_ready=score >= CERTIFICATION_SCORE and not issues,
        checked_at=now,
    )
