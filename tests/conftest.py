"""Shared builders and fixtures for engine tests."""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from safework.core.config import Config
from safework.core.domain.enums import (
    ApprovalRole,
    CheckStatus,
    CompetencyStatus,
    DecisionType,
    EquipmentCondition,
)
from safework.core.domain.lmra import (
    CompetencyValidation,
    EnvironmentalCheck,
    EquipmentCheck,
    HazardReview,
    PersonnelCheck,
    Signature,
)
from safework.core.domain.requests import CreateLMRARequest, CreateTRARequest, parse_request
from safework.core.domain.workflow import ApprovalStepDefinition
from safework.core.lifecycle.lmra import LMRAExecutionStateMachine
from safework.core.lifecycle.tra import TRALifecycleStateMachine
from safework.core.persistence.database import create_session_factory, init_database
from safework.services import build_services

# Recent enough that TRAs approved at NOW are still inside their window
NOW = datetime.now(timezone.utc).replace(microsecond=0) - timedelta(days=1)

ORG = "org-1"
AUTHOR = "author-1"
SUPERVISOR = "sup-1"
SAFETY_MANAGER = "sm-1"
PERFORMER = "worker-1"
TEAM = ["worker-1", "worker-2"]


def control(type_="engineering", description="Install fixed machine guarding", priority=None) -> dict:
    data = {"type": type_, "description": description}
    if priority is not None:
        data["priority"] = priority
    return data


def hazard(**overrides) -> dict:
    data = {
        "description": "Contact with rotating conveyor parts",
        "category": "mechanical",
        "effect_score": 15,
        "exposure_score": 3,
        "probability_score": 1,
        "control_measures": [control()],
    }
    data.update(overrides)
    return data


def task_step(number: int, hazards=None) -> dict:
    return {
        "step_number": number,
        "description": f"Step {number} of conveyor maintenance",
        "hazards": hazards if hazards is not None else [hazard()],
    }


def tra_payload(steps: int = 1, **overrides) -> dict:
    data = {
        "title": "Conveyor belt maintenance",
        "description": "Replace worn rollers on line 3",
        "project_id": "proj-1",
        "task_steps": [task_step(n) for n in range(1, steps + 1)],
        "team_members": list(TEAM),
        "required_competencies": ["VCA Basis"],
        "compliance_framework": "vca",
    }
    data.update(overrides)
    return data


def tra_request(steps: int = 1, **overrides) -> CreateTRARequest:
    return parse_request(CreateTRARequest, tra_payload(steps, **overrides))


def step_defs() -> list[ApprovalStepDefinition]:
    return [
        ApprovalStepDefinition(
            name="Supervisor Review", required_role=ApprovalRole.SUPERVISOR, approvers=[SUPERVISOR]
        ),
        ApprovalStepDefinition(
            name="Safety Manager Approval",
            required_role=ApprovalRole.SAFETY_MANAGER,
            approvers=[SAFETY_MANAGER],
        ),
    ]


def approve_all(machine: TRALifecycleStateMachine, tra, now=NOW):
    """Run a submitted TRA through both default approval steps."""
    tra = machine.record_decision(
        tra, 0, DecisionType.APPROVE, SUPERVISOR, ApprovalRole.SUPERVISOR, now=now
    ).entity
    return machine.record_decision(
        tra, 1, DecisionType.APPROVE, SAFETY_MANAGER, ApprovalRole.SAFETY_MANAGER, now=now
    ).entity


def build_active_tra(machine: TRALifecycleStateMachine, now=NOW, **overrides):
    draft = machine.create(tra_request(**overrides), ORG, AUTHOR, now=now).entity
    submitted = machine.submit(draft, step_defs(), AUTHOR, now=now).entity
    return approve_all(machine, submitted, now)


def lmra_request(tra_id: str, accuracy: float = 5.0, reason=None) -> CreateLMRARequest:
    location = {"coordinates": {"latitude": 52.37, "longitude": 4.89}, "accuracy": accuracy}
    if reason is not None:
        location["manual_override_reason"] = reason
    return parse_request(CreateLMRARequest, {
        "tra_id": tra_id,
        "team_members": list(TEAM),
        "location": location,
    })


def environment_checks() -> list[EnvironmentalCheck]:
    return [
        EnvironmentalCheck(id="env-gas", check_type="gas_levels", status=CheckStatus.PASS),
        EnvironmentalCheck(id="env-light", check_type="lighting", status=CheckStatus.PASS),
    ]


def personnel_checks(expiry=None, status=CompetencyStatus.VALID) -> list[PersonnelCheck]:
    return [
        PersonnelCheck(
            user_id=member,
            checked_in=True,
            check_in_time=NOW,
            competencies_verified=True,
            competencies=[CompetencyValidation(
                competency_name="VCA Basis", status=status, expiry_date=expiry,
            )],
        )
        for member in TEAM
    ]


def equipment_checks() -> list[EquipmentCheck]:
    return [
        EquipmentCheck(
            id="eq-harness", equipment_name="Safety harness", available=True, condition=EquipmentCondition.GOOD
        )
    ]


def hazard_reviews(session) -> list[HazardReview]:
    return [HazardReview(hazard_id=hazard_id, acknowledged=True) for hazard_id in session.tra_hazard_ids]


def signature(signed_by: str = PERFORMER, now=NOW) -> Signature:
    return Signature(id=f"sig-{signed_by}", signed_by=signed_by, signature_ref="blob://sig", signed_at=now)


def run_to_decision(machine: LMRAExecutionStateMachine, session, now=NOW, personnel=None):
    """Complete environment through hazard review on a started session."""
    session = machine.complete_environment_stage(session, environment_checks(), now).entity
    session = machine.complete_personnel_stage(session, personnel or personnel_checks(), now).entity
    session = machine.complete_equipment_stage(session, equipment_checks(), now).entity
    return machine.complete_hazard_review_stage(session, hazard_reviews(session), None, now).entity


@pytest.fixture
def config():
    return Config(
        database_url="sqlite+aiosqlite:///:memory:",
        telegram_bot_token="",
        stop_work_chat_id="",
        audit_backoff_seconds=0,
    )


@pytest.fixture
def tra_machine(config):
    return TRALifecycleStateMachine(config)


@pytest.fixture
def lmra_machine(config, tra_machine):
    return LMRAExecutionStateMachine(config, tra_machine)


@pytest.fixture
def active_tra(tra_machine):
    return build_active_tra(tra_machine)


@pytest.fixture
def started_session(lmra_machine, active_tra):
    """Session past the location stage, at environment_pending."""
    return lmra_machine.start(active_tra, lmra_request(active_tra.id), PERFORMER, now=NOW).entity


@pytest.fixture
async def db_engine():
    """Fresh in-memory database for each test."""
    engine = await init_database("sqlite+aiosqlite:///:memory:")
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def notifier():
    mock = AsyncMock()
    mock.notify_stop_work = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def services(session_factory, config, notifier):
    return build_services(session_factory, config, notifier)


@pytest.fixture
async def test_db_path():
    """Temporary database file, for tests that dispose and reopen the engine."""
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield db_path
    try:
        os.unlink(db_path)
    except OSError:
        pass
