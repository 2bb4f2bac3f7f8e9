"""Strongly-typed domain documents for TRAs, approvals and LMRA sessions."""

from .base import DomainModel, add_months, new_id, utcnow
from .compliance import ComplianceIssue, ComplianceReport
from .enums import (
    ApprovalRole,
    ApprovalStepStatus,
    AuditSeverity,
    CheckStatus,
    CompetencyStatus,
    ComplianceFramework,
    ControlMeasureType,
    DecisionType,
    EquipmentCondition,
    HazardCategory,
    HazardSource,
    ImplementationStatus,
    IssueSeverity,
    LMRAAssessment,
    LMRAStage,
    LocationVerificationStatus,
    PhotoCategory,
    RiskLevel,
    TRAStatus,
    WorkflowStatus,
)
from .events import AuditEvent, StopWorkNotice, Transition
from .lmra import (
    Annotation,
    CompetencyValidation,
    EnvironmentalCheck,
    EquipmentCheck,
    GeoPoint,
    HazardReview,
    LMRASession,
    LocationVerification,
    PersonnelCheck,
    Photo,
    Signature,
    StageResult,
    WeatherConditions,
)
from .sync import OfflineMutation, SyncReport
from .tra import TRA, ControlMeasure, Hazard, TaskStep
from .workflow import ApprovalStep, ApprovalStepDefinition, ApprovalWorkflow

__all__ = [
    "DomainModel",
    "add_months",
    "new_id",
    "utcnow",
    "ApprovalRole",
    "ApprovalStepStatus",
    "AuditSeverity",
    "CheckStatus",
    "CompetencyStatus",
    "ComplianceFramework",
    "ControlMeasureType",
    "DecisionType",
    "EquipmentCondition",
    "HazardCategory",
    "HazardSource",
    "ImplementationStatus",
    "IssueSeverity",
    "ComplianceIssue",
    "ComplianceReport",
    "LMRAAssessment",
    "LMRAStage",
    "LocationVerificationStatus",
    "PhotoCategory",
    "RiskLevel",
    "TRAStatus",
    "WorkflowStatus",
    "AuditEvent",
    "StopWorkNotice",
    "Transition",
    "Annotation",
    "CompetencyValidation",
    "EnvironmentalCheck",
    "EquipmentCheck",
    "GeoPoint",
    "HazardReview",
    "LMRASession",
    "LocationVerification",
    "PersonnelCheck",
    "Photo",
    "Signature",
    "StageResult",
    "WeatherConditions",
    "OfflineMutation",
    "SyncReport",
    "TRA",
    "ControlMeasure",
    "Hazard",
    "TaskStep",
    "ApprovalStep",
    "ApprovalStepDefinition",
    "ApprovalWorkflow",
]
