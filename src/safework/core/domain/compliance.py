"""Compliance assessment of a TRA against VCA requirements.

Models:
- ComplianceIssue: One finding with its severity and suggested fix
- ComplianceReport: Score, findings and verdict for one TRA
"""

from datetime import datetime
from typing import Optional

from pydantic import Field

from .base import DomainModel
from .enums import IssueSeverity


class ComplianceIssue(DomainModel):
    severity: IssueSeverity
    category: str
    message: str
    requirement: str
    suggestion: Optional[str] = None


class ComplianceReport(DomainModel):
    """Result of a compliance check, stored on the TRA at submission."""

    score: int = Field(ge=0, le=100)
    issues: list[ComplianceIssue] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    is_compliant: bool
    certification_ready: bool
    checked_at: datetime
