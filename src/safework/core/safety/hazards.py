"""Structural and policy validation of hazards and control measures.

All checks collect every violation before raising, so callers can
show the complete list of problems at once.

Provides:
- HazardValidator: Policy-bound validator
- validate_hazard / collect_hazard_errors: Hazard field checks
- validate_control_hierarchy: Non-fatal hierarchy-of-controls warnings
- validate_task_step_sequence: Contiguous 1-based step numbering
- validate_task_steps: Full pre-submission check of a TRA's steps
"""

from collections import Counter
from typing import Any, Mapping, Sequence

from pydantic import BaseModel

from safework.core.domain.enums import ControlMeasureType, HazardCategory
from safework.core.domain.scales import (
    EFFECT_VALUES,
    EXPOSURE_VALUES,
    PROBABILITY_VALUES,
    is_scale_value,
)
from safework.core.errors import FieldError, ValidationError

HAZARD_CATEGORIES = frozenset(c.value for c in HazardCategory)
CONTROL_TYPES = frozenset(c.value for c in ControlMeasureType)

# Highest priority number (1 = top) each control type may carry before a
# hierarchy warning is raised; PPE must rank at 3 or lower.
ELIMINATION_MAX_PRIORITY = 2
SUBSTITUTION_MAX_PRIORITY = 3
PPE_MIN_PRIORITY = 3


def _as_dict(item: Any) -> Mapping[str, Any]:
    if isinstance(item, BaseModel):
        return item.model_dump(mode="json")
    return item


def _join(prefix: str, name: str) -> str:
    return f"{prefix}.{name}" if prefix else name


class HazardValidator:
    """Hazard validator bound to a minimum description length."""

    def __init__(self, description_min_length: int = 10):
        self.description_min_length = description_min_length

    def collect_hazard_errors(self, hazard: Any, prefix: str = "") -> list[FieldError]:
        """Every violated field of a hazard (model or mapping)."""
        data = _as_dict(hazard)
        errors: list[FieldError] = []

        description = data.get("description") or ""
        if len(description.strip()) < self.description_min_length:
            errors.append(FieldError(
                _join(prefix, "description"),
                f"must be at least {self.description_min_length} characters",
            ))

        category = data.get("category")
        if category not in HAZARD_CATEGORIES:
            errors.append(FieldError(_join(prefix, "category"), f"unknown category {category!r}"))

        for name, allowed in (
            ("effect_score", EFFECT_VALUES),
            ("exposure_score", EXPOSURE_VALUES),
            ("probability_score", PROBABILITY_VALUES),
        ):
            if not is_scale_value(data.get(name), allowed):
                errors.append(FieldError(_join(prefix, name), f"must be one of {sorted(allowed)}"))
            residual = data.get(f"residual_{name}")
            if residual is not None and not is_scale_value(residual, allowed):
                errors.append(
                    FieldError(_join(prefix, f"residual_{name}"), f"must be one of {sorted(allowed)}")
                )

        controls = data.get("control_measures") or []
        if not controls:
            errors.append(FieldError(
                _join(prefix, "control_measures"), "at least one control measure is required"
            ))
        for index, control in enumerate(controls):
            control_type = _as_dict(control).get("type")
            if control_type not in CONTROL_TYPES:
                errors.append(FieldError(
                    _join(prefix, f"control_measures.{index}.type"),
                    f"unknown control type {control_type!r}",
                ))

        return errors

    def validate_hazard(self, hazard: Any) -> None:
        """Validate a hazard.

        Raises:
            ValidationError: Enumerating every violated field
        """
        errors = self.collect_hazard_errors(hazard)
        if errors:
            raise ValidationError(errors)

    def validate_task_steps(self, steps: Sequence[Any]) -> None:
        """Pre-submission check: numbering, >=1 hazard per step, every hazard.

        Raises:
            ValidationError: With all violations across all steps
        """
        errors: list[FieldError] = []
        if not steps:
            errors.append(FieldError("task_steps", "at least one task step is required"))
        errors.extend(collect_sequence_errors(steps))

        for index, step in enumerate(steps):
            data = _as_dict(step)
            prefix = f"task_steps.{index}"
            hazards = data.get("hazards") or []
            if not hazards:
                errors.append(FieldError(
                    f"{prefix}.hazards",
                    f"step {data.get('step_number')} must identify at least one hazard",
                ))
            for h_index, hazard in enumerate(hazards):
                errors.extend(self.collect_hazard_errors(hazard, f"{prefix}.hazards.{h_index}"))

        if errors:
            raise ValidationError(errors)


def validate_control_hierarchy(controls: Sequence[Any]) -> list[str]:
    """Check controls against the hierarchy-of-controls preference.

    Elimination > substitution > engineering > administrative > PPE.
    Priority is the control's explicit `priority` or its 1-based position.
    This is a policy check: it only returns warnings, it never raises.

    Args:
        controls: Control measures (models or mappings) in planned order

    Returns:
        Warning messages, empty when the ordering follows the hierarchy
    """
    warnings: list[str] = []
    for position, control in enumerate(controls, start=1):
        data = _as_dict(control)
        control_type = data.get("type")
        priority = data.get("priority") or position
        description = data.get("description", "")

        if control_type == ControlMeasureType.ELIMINATION.value and priority > ELIMINATION_MAX_PRIORITY:
            warnings.append(
                f"Elimination control '{description}' should carry top priority "
                f"(1-{ELIMINATION_MAX_PRIORITY}), has {priority}"
            )
        elif control_type == ControlMeasureType.SUBSTITUTION.value and priority > SUBSTITUTION_MAX_PRIORITY:
            warnings.append(
                f"Substitution control '{description}' should carry high priority "
                f"(1-{SUBSTITUTION_MAX_PRIORITY}), has {priority}"
            )
        elif control_type == ControlMeasureType.PPE.value and priority < PPE_MIN_PRIORITY:
            warnings.append(
                f"PPE control '{description}' carries priority {priority}; PPE is the last "
                "resort in the hierarchy of controls"
            )
    return warnings


def collect_sequence_errors(steps: Sequence[Any]) -> list[FieldError]:
    numbers = []
    for step in steps:
        number = step.step_number if isinstance(step, BaseModel) else step.get("step_number")
        numbers.append(number)

    errors: list[FieldError] = []
    if any(not isinstance(n, int) or isinstance(n, bool) for n in numbers):
        return [FieldError("task_steps", "every task step needs an integer step_number")]

    duplicates = sorted(n for n, count in Counter(numbers).items() if count > 1)
    for number in duplicates:
        errors.append(FieldError("task_steps", f"step number {number} is used more than once"))

    present = set(numbers)
    for expected in range(1, len(numbers) + 1):
        if expected not in present:
            errors.append(FieldError("task_steps", f"step number {expected} is missing"))
            break
    return errors


def validate_task_step_sequence(steps: Sequence[Any]) -> None:
    """Steps sorted by number must form a contiguous run starting at 1.

    Raises:
        ValidationError: Naming the first missing step number (and duplicates)

    Example:
        >>> validate_task_step_sequence([{"step_number": n} for n in (1, 2, 4)])
        Traceback (most recent call last):
        ...
        safework.core.errors.ValidationError: task_steps: step number 3 is missing
    """
    errors = collect_sequence_errors(steps)
    if errors:
        raise ValidationError(errors)


_default_validator = HazardValidator()


def validate_hazard(hazard: Any) -> None:
    _default_validator.validate_hazard(hazard)


def collect_hazard_errors(hazard: Any, prefix: str = "") -> list[FieldError]:
    return _default_validator.collect_hazard_errors(hazard, prefix)


def validate_task_steps(steps: Sequence[Any]) -> None:
    _default_validator.validate_task_steps(steps)
