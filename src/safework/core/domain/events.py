"""Outbound effects produced by pure transitions.

State machines never perform I/O. Each operation returns a Transition
holding the new entity plus the audit events and stop-work notices the
boundary must publish once the compare-and-swap succeeds.

Provides:
- AuditEvent: Audit trail record {eventType, severity, actor, subject, org, metadata}
- StopWorkNotice: Request to notify about a stop-work decision
- Transition: New entity with its pending effects
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import Field

from .base import DomainModel
from .enums import AuditSeverity

T = TypeVar("T")


class AuditEvent(DomainModel):
    """Audit trail event written through AuditTrailService.write_log."""

    event_type: str
    severity: AuditSeverity = AuditSeverity.INFO
    actor_id: str
    subject_id: str
    subject_type: str
    organization_id: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    compliance_relevant: bool = True


class StopWorkNotice(DomainModel):
    """Stop-work notification request.

    `(session_id, timestamp)` is the dedup key: delivery is requested at
    most once per key.
    """

    session_id: str
    reason: str
    timestamp: datetime

    @property
    def dedup_key(self) -> tuple[str, datetime]:
        return (self.session_id, self.timestamp)


@dataclass
class Transition(Generic[T]):
    """Result of a pure state transition."""
    entity: T
    events: list[AuditEvent] = field(default_factory=list)
    notices: list[StopWorkNotice] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    changed: bool = True

    def merge(self, other: "Transition[T]") -> "Transition[T]":
        """Chain a follow-up transition, keeping effects from both."""
        return Transition(
            entity=other.entity,
            events=self.events + other.events,
            notices=self.notices + other.notices,
            warnings=self.warnings + other.warnings,
            changed=self.changed or other.changed,
        )
