"""Offline mutation documents queued by field clients.

Models:
- SetFieldsPayload: Partial scalar update, last-writer-wins per field
- AppendItemsPayload: Array append merged by item identity
- StageCommandPayload: Replay of an LMRA stage operation
- OfflineMutation: Client-generated mutation with logical sequence number
- RejectedMutation / SyncReport: Outcome of a reconciliation batch
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Union

from pydantic import Field

from .base import DomainModel

# Session fields a client may overwrite directly; everything else is
# governed by stage operations.
SCALAR_FIELDS = frozenset({"comments", "additional_hazards", "weather"})

# Array fields merged by item identity.
ARRAY_FIELDS = frozenset({
    "photos",
    "environmental_checks",
    "personnel_checks",
    "equipment_checks",
    "hazard_reviews",
    "annotations",
})


class StageCommand(str, Enum):
    COMPLETE_LOCATION = "complete_location"
    COMPLETE_ENVIRONMENT = "complete_environment"
    COMPLETE_PERSONNEL = "complete_personnel"
    COMPLETE_EQUIPMENT = "complete_equipment"
    COMPLETE_HAZARD_REVIEW = "complete_hazard_review"
    COMPLETE_DECISION = "complete_decision"
    TRIGGER_STOP_WORK = "trigger_stop_work"
    COMPLETE_DOCUMENTATION = "complete_documentation"
    COMPLETE_SIGNATURE = "complete_signature"
    FINALIZE = "finalize"


class SetFieldsPayload(DomainModel):
    kind: Literal["set_fields"] = "set_fields"
    fields: dict[str, Any]


class AppendItemsPayload(DomainModel):
    kind: Literal["append_items"] = "append_items"
    field: str
    items: list[dict[str, Any]]


class StageCommandPayload(DomainModel):
    kind: Literal["stage_command"] = "stage_command"
    command: StageCommand
    args: dict[str, Any] = Field(default_factory=dict)


MutationPayload = Union[SetFieldsPayload, AppendItemsPayload, StageCommandPayload]


class OfflineMutation(DomainModel):
    """Mutation recorded on a device while offline.

    `mutation_id` is generated by the client and is the idempotency key;
    `sequence` is the client's logical clock for the target session.
    """

    mutation_id: str
    session_id: str
    sequence: int = Field(ge=0)
    actor_id: str
    occurred_at: datetime
    payload: MutationPayload = Field(discriminator="kind")


class RejectedMutation(DomainModel):
    mutation_id: str
    sequence: int
    reason: str
    details: list[str] = Field(default_factory=list)


class SyncReport(DomainModel):
    """Outcome of draining one session's queue."""

    session_id: str
    applied: list[str] = Field(default_factory=list)
    duplicates: list[str] = Field(default_factory=list)
    rejected: list[RejectedMutation] = Field(default_factory=list)
    cursor: int = -1
    halted: bool = False
