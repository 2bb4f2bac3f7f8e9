"""Risk scoring, hazard validation, compliance scoring and approval workflow."""

from .approval import ApprovalWorkflowEngine
from .compliance import validate_compliance
from .hazards import (
    HazardValidator,
    validate_control_hierarchy,
    validate_hazard,
    validate_task_step_sequence,
    validate_task_steps,
)
from .risk import (
    RiskScoreCalculator,
    compute_risk_score,
    get_risk_description,
    risk_level_for_score,
)

__all__ = [
    "ApprovalWorkflowEngine",
    "validate_compliance",
    "HazardValidator",
    "validate_control_hierarchy",
    "validate_hazard",
    "validate_task_step_sequence",
    "validate_task_steps",
    "RiskScoreCalculator",
    "compute_risk_score",
    "get_risk_description",
    "risk_level_for_score",
]
