"""Error taxonomy for the risk assessment and safety workflow engine.

Provides:
- FieldError: One violated field with a human-readable message
- ValidationError: User-correctable input/business-rule violations (all collected)
- InvalidScoreValue: Risk factor outside its discrete Kinney & Wiruth scale
- StateTransitionError: Illegal state transition (caller or integrity bug)
- AlreadyDecided: Duplicate decision on a finalized approval step
- MutationRejected: Offline mutation that would violate a stage invariant
- Conflict: Optimistic-concurrency version mismatch
- Unauthorized: Actor/role not permitted for the requested decision
- NotFoundError: Entity does not exist
"""

from dataclasses import dataclass
from typing import Any


class SafeWorkError(Exception):
    """Base class for all engine errors."""


@dataclass(frozen=True)
class FieldError:
    """Single violated field."""
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class ValidationError(SafeWorkError):
    """Malformed input or violated business rule.

    Carries one FieldError per violated field so callers can show every
    problem at once instead of failing on the first.
    """

    def __init__(self, errors: list[FieldError] | FieldError):
        if isinstance(errors, FieldError):
            errors = [errors]
        self.errors: list[FieldError] = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors) or "validation failed")

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([FieldError(field, message)])

    @property
    def fields(self) -> list[str]:
        return [e.field for e in self.errors]

    def to_dict(self) -> dict[str, str]:
        """Field -> message mapping (first message wins per field)."""
        result: dict[str, str] = {}
        for error in self.errors:
            result.setdefault(error.field, error.message)
        return result


class InvalidScoreValue(ValidationError):
    """Risk factor value not in its fixed discrete set."""


class StateTransitionError(SafeWorkError):
    """Illegal state transition attempted.

    Never retried silently. `details` holds any per-field reasons that
    made the transition illegal (e.g. failed stage invariants).
    """

    def __init__(self, message: str, details: list[FieldError] | None = None):
        self.details: list[FieldError] = list(details or [])
        if self.details:
            message = f"{message} ({'; '.join(str(d) for d in self.details)})"
        super().__init__(message)


class AlreadyDecided(StateTransitionError):
    """Decision recorded against an approval step that is no longer pending."""


class MutationRejected(StateTransitionError):
    """Offline mutation rejected because it would violate a stage invariant."""

    def __init__(self, mutation_id: str, reason: str, details: list[FieldError] | None = None):
        self.mutation_id = mutation_id
        self.reason = reason
        super().__init__(f"mutation {mutation_id} rejected: {reason}", details)


class Conflict(SafeWorkError):
    """Stored version advanced past the caller's expected version."""

    def __init__(self, entity_id: str, expected_version: int, actual_version: Any = None):
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"version conflict on {entity_id}: expected {expected_version}, "
            f"found {actual_version}"
        )


class Unauthorized(SafeWorkError):
    """Actor or role is not permitted to make the requested decision."""


class NotFoundError(SafeWorkError):
    """Requested entity does not exist."""

    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} not found: {entity_id}")
