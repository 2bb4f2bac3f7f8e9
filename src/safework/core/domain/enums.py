"""Closed value sets shared by TRA, approval and LMRA documents.

Values match the stored document representation, so every enum is a
`str` subclass and serializes as its value.
"""

from enum import Enum


class TRAStatus(str, Enum):
    """TRA lifecycle states."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIVE = "active"
    EXPIRED = "expired"
    ARCHIVED = "archived"


class HazardCategory(str, Enum):
    """Hazard categories based on VCA/ISO45001."""

    ELECTRICAL = "electrical"
    MECHANICAL = "mechanical"
    CHEMICAL = "chemical"
    BIOLOGICAL = "biological"
    PHYSICAL = "physical"
    ERGONOMIC = "ergonomic"
    PSYCHOSOCIAL = "psychosocial"
    FIRE_EXPLOSION = "fire_explosion"
    ENVIRONMENTAL = "environmental"
    OTHER = "other"


class HazardSource(str, Enum):
    TEMPLATE = "template"
    LIBRARY = "library"
    CUSTOM = "custom"


class RiskLevel(str, Enum):
    """Kinney & Wiruth risk bands, lowest first."""

    TRIVIAL = "trivial"
    ACCEPTABLE = "acceptable"
    POSSIBLE = "possible"
    SUBSTANTIAL = "substantial"
    HIGH = "high"
    VERY_HIGH = "very_high"


class ControlMeasureType(str, Enum):
    """Hierarchy of controls, most preferred first."""

    ELIMINATION = "elimination"
    SUBSTITUTION = "substitution"
    ENGINEERING = "engineering"
    ADMINISTRATIVE = "administrative"
    PPE = "ppe"


class ImplementationStatus(str, Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VERIFIED = "verified"


class ComplianceFramework(str, Enum):
    VCA = "vca"
    ISO45001 = "iso45001"
    BOTH = "both"


class ApprovalRole(str, Enum):
    SAFETY_MANAGER = "safety_manager"
    SUPERVISOR = "supervisor"
    ADMIN = "admin"


class ApprovalStepStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class WorkflowStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"


class DecisionType(str, Enum):
    """Decision an approver records on the current step."""

    APPROVE = "approve"
    REJECT = "reject"


class LMRAStage(str, Enum):
    """Ordered LMRA execution stages."""

    LOCATION_PENDING = "location_pending"
    ENVIRONMENT_PENDING = "environment_pending"
    PERSONNEL_PENDING = "personnel_pending"
    EQUIPMENT_PENDING = "equipment_pending"
    HAZARD_REVIEW_PENDING = "hazard_review_pending"
    DECISION_PENDING = "decision_pending"
    DOCUMENTATION_PENDING = "documentation_pending"
    SIGNATURE_PENDING = "signature_pending"
    COMPLETED = "completed"


STAGE_ORDER: list[LMRAStage] = list(LMRAStage)


class LMRAAssessment(str, Enum):
    SAFE_TO_PROCEED = "safe_to_proceed"
    PROCEED_WITH_CAUTION = "proceed_with_caution"
    STOP_WORK = "stop_work"


class LocationVerificationStatus(str, Enum):
    VERIFIED = "verified"
    APPROXIMATE = "approximate"
    MANUAL_OVERRIDE = "manual_override"


class CheckStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    CAUTION = "caution"
    NOT_APPLICABLE = "not_applicable"


class EquipmentCondition(str, Enum):
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    DAMAGED = "damaged"
    EXPIRED = "expired"


class CompetencyStatus(str, Enum):
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    MISSING = "missing"


class PhotoCategory(str, Enum):
    WORK_AREA = "work_area"
    EQUIPMENT = "equipment"
    HAZARD = "hazard"
    TEAM = "team"
    ENVIRONMENTAL = "environmental"
    OTHER = "other"


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class IssueSeverity(str, Enum):
    """Weight of a compliance finding; any critical issue blocks compliance."""

    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"
