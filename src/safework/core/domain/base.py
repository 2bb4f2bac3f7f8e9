"""Shared base for strongly-typed domain documents."""

import calendar
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day to the target month's end.

    Example:
        >>> add_months(datetime(2024, 1, 31), 1)
        datetime.datetime(2024, 2, 29, 0, 0)
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def as_aware(value: Any) -> Any:
    """Treat a naive datetime as UTC; anything else passes through."""
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DomainModel(BaseModel):
    """Base for stored documents.

    Unknown fields are rejected so a stored or submitted document that
    does not match the schema fails closed at the boundary. Client
    timestamps without an offset are read as UTC, so every datetime on a
    document compares safely with the engine's clock.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=False)

    @field_validator("*", mode="after")
    @classmethod
    def _utc_datetimes(cls, value: Any) -> Any:
        return as_aware(value)
