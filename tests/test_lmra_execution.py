"""Unit tests for the LMRA execution state machine."""

from datetime import timedelta

import pytest

from conftest import (
    NOW,
    PERFORMER,
    TEAM,
    environment_checks,
    equipment_checks,
    hazard_reviews,
    lmra_request,
    personnel_checks,
    run_to_decision,
    signature,
)
from safework.core.config import Config
from safework.core.domain.enums import (
    AuditSeverity,
    CheckStatus,
    CompetencyStatus,
    EquipmentCondition,
    LMRAAssessment,
    LMRAStage,
    LocationVerificationStatus,
    TRAStatus,
)
from safework.core.config import WeatherLimits
from safework.core.domain.lmra import (
    EnvironmentalCheck,
    EquipmentCheck,
    GeoPoint,
    HazardReview,
    Photo,
    WeatherConditions,
)
from safework.core.errors import StateTransitionError, ValidationError
from safework.core.lifecycle.lmra import LMRAExecutionStateMachine, append_absent, merge_items

LATER = NOW + timedelta(hours=1)
SITE = GeoPoint(latitude=52.37, longitude=4.89)


@pytest.fixture
def decision_session(lmra_machine, started_session):
    return run_to_decision(lmra_machine, started_session, LATER)


def finish_safe(machine, session, now=LATER):
    session = machine.complete_decision_stage(session, LMRAAssessment.SAFE_TO_PROCEED, now=now).entity
    session = machine.complete_documentation_stage(session, comments="All clear", now=now).entity
    return machine.complete_signature_stage(session, [signature(now=now)], now).entity


def weather(**overrides) -> WeatherConditions:
    fields = {
        "temperature": 18.0,
        "humidity": 60.0,
        "wind_speed": 12.0,
        "visibility": 10.0,
        "conditions": "Clouds",
        "description": "scattered clouds",
        "api_source": "openweathermap",
        "fetched_at": NOW,
    }
    fields.update(overrides)
    return WeatherConditions(**fields)


# Start


def test_start_snapshots_tra_and_verifies_location(lmra_machine, active_tra):
    result = lmra_machine.start(active_tra, lmra_request(active_tra.id), PERFORMER, now=NOW)
    session = result.entity
    assert session.stage == LMRAStage.ENVIRONMENT_PENDING
    assert session.team_members == TEAM
    assert session.tra_hazard_ids == [h.id for _, h in active_tra.iter_hazards()]
    assert session.location.verification_status == LocationVerificationStatus.VERIFIED
    assert [e.event_type for e in result.events] == ["lmra_started", "lmra_stage_completed"]


def test_start_requires_active_tra(lmra_machine, tra_machine, active_tra):
    expired = active_tra.model_copy(update={"status": TRAStatus.EXPIRED})
    with pytest.raises(StateTransitionError):
        lmra_machine.start(expired, lmra_request(expired.id), PERFORMER, now=NOW)


def test_start_outside_validity_window_rejected(lmra_machine, active_tra):
    after = active_tra.valid_until + timedelta(minutes=1)
    with pytest.raises(StateTransitionError):
        lmra_machine.start(active_tra, lmra_request(active_tra.id), PERFORMER, now=after)


def test_start_request_must_reference_tra(lmra_machine, active_tra):
    with pytest.raises(ValidationError):
        lmra_machine.start(active_tra, lmra_request("other-tra"), PERFORMER, now=NOW)


def test_inaccurate_location_waits_for_override(lmra_machine, active_tra):
    result = lmra_machine.start(active_tra, lmra_request(active_tra.id, accuracy=85.0), PERFORMER, now=NOW)
    session = result.entity
    assert session.stage == LMRAStage.LOCATION_PENDING
    assert result.warnings

    with pytest.raises(ValidationError):
        lmra_machine.complete_location_stage(session, SITE, 85.0, now=NOW)

    advanced = lmra_machine.complete_location_stage(
        session, SITE, 85.0, "Under steel roof, GPS degraded", now=NOW
    )
    assert advanced.entity.stage == LMRAStage.ENVIRONMENT_PENDING
    assert advanced.entity.location.verification_status == LocationVerificationStatus.APPROXIMATE
    assert advanced.warnings


def test_accuracy_threshold_from_config(active_tra):
    machine = LMRAExecutionStateMachine(Config(location_accuracy_threshold_m=100.0))
    session = machine.start(active_tra, lmra_request(active_tra.id, accuracy=85.0), PERFORMER, now=NOW).entity
    assert session.location.verification_status == LocationVerificationStatus.VERIFIED


# Stages


def test_stages_must_run_in_order(lmra_machine, started_session):
    with pytest.raises(StateTransitionError):
        lmra_machine.complete_equipment_stage(started_session, equipment_checks(), LATER)


def test_failed_required_environment_check_blocks(lmra_machine, started_session):
    checks = [EnvironmentalCheck(check_type="gas_levels", status=CheckStatus.FAIL)]
    with pytest.raises(ValidationError):
        lmra_machine.complete_environment_stage(started_session, checks, LATER)


def test_optional_failure_and_caution_are_warnings(lmra_machine, started_session):
    checks = [
        EnvironmentalCheck(check_type="gas_levels", status=CheckStatus.PASS),
        EnvironmentalCheck(check_type="noise", required=False, status=CheckStatus.FAIL),
        EnvironmentalCheck(check_type="wind", status=CheckStatus.CAUTION),
    ]
    result = lmra_machine.complete_environment_stage(started_session, checks, LATER)
    assert result.entity.stage == LMRAStage.PERSONNEL_PENDING
    assert len(result.warnings) == 2
    assert result.entity.stage_results[LMRAStage.ENVIRONMENT_PENDING].warnings == result.warnings


def test_environment_stage_needs_a_check(lmra_machine, started_session):
    with pytest.raises(ValidationError):
        lmra_machine.complete_environment_stage(started_session, [], LATER)


def test_weather_within_limits_is_recorded(lmra_machine, started_session):
    snapshot = weather()
    result = lmra_machine.complete_environment_stage(started_session, environment_checks(), LATER, snapshot)
    assert result.entity.weather == snapshot
    assert result.warnings == []


@pytest.mark.parametrize("overrides,expected", [
    ({"wind_speed": 55.0}, "wind speed 55 km/h exceeds 40 km/h"),
    ({"visibility": 0.4}, "visibility 0.4 km below 1 km"),
    ({"temperature": 42.0}, "temperature 42 C above 40 C"),
    ({"temperature": -14.0}, "temperature -14 C below -10 C"),
    ({"conditions": "Thunderstorm", "description": "thunderstorm with heavy rain"},
     "severe weather: thunderstorm with heavy rain"),
    ({"conditions": "Snow", "description": None}, "severe weather: Snow"),
])
def test_weather_outside_limits_warns(lmra_machine, started_session, overrides, expected):
    result = lmra_machine.complete_environment_stage(
        started_session, environment_checks(), LATER, weather(**overrides)
    )
    assert result.entity.stage == LMRAStage.PERSONNEL_PENDING
    assert result.warnings == [expected]
    assert result.entity.stage_results[LMRAStage.ENVIRONMENT_PENDING].warnings == [expected]


def test_weather_at_limits_does_not_warn(lmra_machine):
    assert lmra_machine.check_weather(weather(wind_speed=40.0, visibility=1.0, temperature=40.0)) == []
    assert lmra_machine.check_weather(weather(temperature=-10.0)) == []


def test_previously_recorded_weather_is_evaluated(lmra_machine, started_session):
    session = started_session.model_copy(update={"weather": weather(wind_speed=70.0)})
    result = lmra_machine.complete_environment_stage(session, environment_checks(), LATER)
    assert result.warnings == ["wind speed 70 km/h exceeds 40 km/h"]
    assert result.entity.weather.wind_speed == 70.0


def test_weather_limits_from_config():
    config = Config(weather_limits=WeatherLimits(max_wind_speed_kmh=25, severe_conditions=["Fog"]))
    machine = LMRAExecutionStateMachine(config)
    warnings = machine.check_weather(weather(wind_speed=30.0, conditions="Fog", description="dense fog"))
    assert warnings == ["wind speed 30 km/h exceeds 25 km/h", "severe weather: dense fog"]
    assert machine.check_weather(weather(conditions="Snow")) == []


def test_personnel_stage_requires_every_member(lmra_machine, started_session):
    session = lmra_machine.complete_environment_stage(started_session, environment_checks(), LATER).entity
    with pytest.raises(ValidationError) as exc_info:
        lmra_machine.complete_personnel_stage(session, personnel_checks()[:1], LATER)
    assert exc_info.value.fields == ["personnel_checks.worker-2"]


@pytest.mark.parametrize("status,expiry", [
    (CompetencyStatus.EXPIRED, None),
    (CompetencyStatus.MISSING, None),
    (CompetencyStatus.VALID, NOW - timedelta(days=1)),
])
def test_blocking_competency(lmra_machine, started_session, status, expiry):
    session = lmra_machine.complete_environment_stage(started_session, environment_checks(), LATER).entity
    with pytest.raises(ValidationError):
        lmra_machine.complete_personnel_stage(session, personnel_checks(expiry, status), LATER)


def test_expiring_competency_warns(lmra_machine, started_session):
    session = lmra_machine.complete_environment_stage(started_session, environment_checks(), LATER).entity
    result = lmra_machine.complete_personnel_stage(
        session, personnel_checks(status=CompetencyStatus.EXPIRING_SOON), LATER
    )
    assert result.entity.stage == LMRAStage.EQUIPMENT_PENDING
    assert len(result.warnings) == len(TEAM)


def test_naive_competency_expiry_read_as_utc(lmra_machine, started_session):
    session = lmra_machine.complete_environment_stage(started_session, environment_checks(), LATER).entity
    expiry = (LATER + timedelta(days=30)).replace(tzinfo=None)
    result = lmra_machine.complete_personnel_stage(session, personnel_checks(expiry), LATER)
    assert result.entity.stage == LMRAStage.EQUIPMENT_PENDING
    stored = result.entity.personnel_checks[0].competencies[0].expiry_date
    assert stored.tzinfo is not None


def test_naive_past_competency_expiry_blocks(lmra_machine, started_session):
    session = lmra_machine.complete_environment_stage(started_session, environment_checks(), LATER).entity
    expiry = (LATER - timedelta(days=1)).replace(tzinfo=None)
    with pytest.raises(ValidationError):
        lmra_machine.complete_personnel_stage(session, personnel_checks(expiry), LATER)


def test_damaged_required_equipment_blocks(lmra_machine, started_session):
    session = lmra_machine.complete_environment_stage(started_session, environment_checks(), LATER).entity
    session = lmra_machine.complete_personnel_stage(session, personnel_checks(), LATER).entity
    damaged = [EquipmentCheck(equipment_name="Ladder", available=True, condition=EquipmentCondition.DAMAGED)]
    with pytest.raises(ValidationError):
        lmra_machine.complete_equipment_stage(session, damaged, LATER)

    optional = [EquipmentCheck(
        equipment_name="Spare torch", required=False, available=False, condition=EquipmentCondition.GOOD
    )]
    result = lmra_machine.complete_equipment_stage(session, optional, LATER)
    assert result.warnings == ["optional equipment 'Spare torch' is unavailable"]


def test_every_tra_hazard_must_be_acknowledged(lmra_machine, started_session):
    session = lmra_machine.complete_environment_stage(started_session, environment_checks(), LATER).entity
    session = lmra_machine.complete_personnel_stage(session, personnel_checks(), LATER).entity
    session = lmra_machine.complete_equipment_stage(session, equipment_checks(), LATER).entity

    with pytest.raises(ValidationError):
        lmra_machine.complete_hazard_review_stage(session, [], now=LATER)

    reviews = [*hazard_reviews(session), HazardReview(hazard_id="not-in-tra", acknowledged=True)]
    with pytest.raises(ValidationError) as exc_info:
        lmra_machine.complete_hazard_review_stage(session, reviews, now=LATER)
    assert exc_info.value.fields == ["hazard_reviews.not-in-tra"]


def test_stage_inputs_merge_by_identity(lmra_machine, started_session):
    first = [EnvironmentalCheck(id="env-1", check_type="gas_levels", status=CheckStatus.FAIL)]
    retry = [EnvironmentalCheck(id="env-1", check_type="gas_levels", status=CheckStatus.PASS)]
    session = started_session.model_copy(update={"environmental_checks": first})
    result = lmra_machine.complete_environment_stage(session, retry, LATER)
    assert [c.status for c in result.entity.environmental_checks] == [CheckStatus.PASS]


# Decision and stop work


def test_stop_work_without_reason_rejected(lmra_machine, decision_session):
    with pytest.raises(ValidationError) as exc_info:
        lmra_machine.complete_decision_stage(decision_session, LMRAAssessment.STOP_WORK, now=LATER)
    assert exc_info.value.fields == ["stop_work_reason"]

    with pytest.raises(ValidationError):
        lmra_machine.complete_decision_stage(decision_session, LMRAAssessment.STOP_WORK, "too windy", now=LATER)


def test_stop_work_decision_emits_notice(lmra_machine, decision_session):
    reason = "Gas detector alarm at the pit entrance"
    result = lmra_machine.complete_decision_stage(
        decision_session, LMRAAssessment.STOP_WORK, reason, "worker-2", LATER
    )
    session = result.entity
    assert session.is_stop_work
    assert session.stage == LMRAStage.DOCUMENTATION_PENDING
    assert session.stop_work_at == LATER
    assert session.stop_work_triggered_by == "worker-2"
    assert result.events[0].severity == AuditSeverity.CRITICAL
    assert len(result.notices) == 1
    assert result.notices[0].dedup_key == (session.id, LATER)


def test_stop_work_is_terminal_without_documentation(lmra_machine, decision_session):
    stopped = lmra_machine.complete_decision_stage(
        decision_session, LMRAAssessment.STOP_WORK, "Unexpected live cable found", now=LATER
    ).entity
    result = lmra_machine.finalize_session(stopped, LATER)
    assert result.entity.stage == LMRAStage.COMPLETED
    assert result.entity.overall_assessment == LMRAAssessment.STOP_WORK
    assert result.events[0].severity == AuditSeverity.CRITICAL


def test_stop_work_triggered_from_any_open_stage(lmra_machine, started_session):
    result = lmra_machine.trigger_stop_work(started_session, "Thunderstorm approaching site", "worker-2", LATER)
    session = result.entity
    assert session.stage == LMRAStage.DOCUMENTATION_PENDING
    assert session.stage_results[LMRAStage.DECISION_PENDING].warnings == [
        "stop work triggered at environment_pending"
    ]
    assert lmra_machine.finalize_session(session, LATER).entity.is_completed

    with pytest.raises(StateTransitionError):
        lmra_machine.trigger_stop_work(session, "Thunderstorm approaching site", "worker-2", LATER)


def test_caution_decision_warns(lmra_machine, decision_session):
    result = lmra_machine.complete_decision_stage(
        decision_session, LMRAAssessment.PROCEED_WITH_CAUTION, now=LATER
    )
    assert result.entity.stage == LMRAStage.DOCUMENTATION_PENDING
    assert result.events[-1].severity == AuditSeverity.WARNING


# Finalization


def test_full_session_completes(lmra_machine, decision_session):
    session = finish_safe(lmra_machine, decision_session)
    assert session.stage == LMRAStage.SIGNATURE_PENDING

    result = lmra_machine.finalize_session(session, LATER)
    assert result.entity.stage == LMRAStage.COMPLETED
    assert result.entity.completed_at == LATER
    assert result.entity.duration_seconds == 3600


def test_signature_of_performer_required(lmra_machine, decision_session):
    session = lmra_machine.complete_decision_stage(decision_session, LMRAAssessment.SAFE_TO_PROCEED, now=LATER).entity
    session = lmra_machine.complete_documentation_stage(session, now=LATER).entity
    with pytest.raises(ValidationError):
        lmra_machine.complete_signature_stage(session, [signature("worker-2")], LATER)


def test_competency_expired_before_finalize_blocks(lmra_machine, started_session):
    expiry = LATER + timedelta(hours=1)
    session = run_to_decision(lmra_machine, started_session, LATER, personnel_checks(expiry))
    session = finish_safe(lmra_machine, session)

    with pytest.raises(StateTransitionError) as exc_info:
        lmra_machine.finalize_session(session, expiry + timedelta(minutes=1))
    assert any(d.field.endswith(".competencies") for d in exc_info.value.details)


def test_finalize_requires_assessment(lmra_machine, decision_session):
    with pytest.raises(StateTransitionError):
        lmra_machine.finalize_session(decision_session, LATER)


def test_finalize_rechecks_skipped_stages(lmra_machine, decision_session):
    session = lmra_machine.complete_decision_stage(decision_session, LMRAAssessment.SAFE_TO_PROCEED, now=LATER).entity
    session = lmra_machine.complete_documentation_stage(session, now=LATER).entity
    with pytest.raises(StateTransitionError) as exc_info:
        lmra_machine.finalize_session(session, LATER)
    fields = [d.field for d in exc_info.value.details]
    assert "signatures" in fields
    assert "stage_results.signature_pending" in fields


def test_photos_required_when_configured(active_tra):
    machine = LMRAExecutionStateMachine(Config(require_photo_documentation=True))
    session = machine.start(active_tra, lmra_request(active_tra.id), PERFORMER, now=NOW).entity
    session = run_to_decision(machine, session, LATER)
    safe = machine.complete_decision_stage(session, LMRAAssessment.SAFE_TO_PROCEED, now=LATER).entity
    with pytest.raises(ValidationError):
        machine.complete_documentation_stage(safe, now=LATER)

    photo = Photo(id="p-1", url="blob://p-1", taken_at=LATER, taken_by=PERFORMER)
    assert machine.complete_documentation_stage(safe, [photo], now=LATER).entity.photos == [photo]

    stopped = machine.complete_decision_stage(
        session, LMRAAssessment.STOP_WORK, "Scaffold tag missing and unsafe", now=LATER
    ).entity
    assert machine.complete_documentation_stage(stopped, now=LATER).entity.stage == LMRAStage.SIGNATURE_PENDING


# After completion


def test_completed_session_is_immutable_except_annotations(lmra_machine, decision_session):
    completed = lmra_machine.finalize_session(finish_safe(lmra_machine, decision_session), LATER).entity

    with pytest.raises(StateTransitionError):
        lmra_machine.complete_signature_stage(completed, [signature()], LATER)
    with pytest.raises(StateTransitionError):
        lmra_machine.finalize_session(completed, LATER)
    with pytest.raises(StateTransitionError):
        lmra_machine.trigger_stop_work(completed, "Too late to stop the work now", PERFORMER, LATER)

    annotated = lmra_machine.annotate(completed, "auditor-1", "Reviewed during site audit", now=LATER).entity
    assert annotated.annotations[-1].note == "Reviewed during site audit"
    assert annotated.stage == LMRAStage.COMPLETED


def test_empty_annotation_rejected(lmra_machine, started_session):
    with pytest.raises(ValidationError):
        lmra_machine.annotate(started_session, "auditor-1", "   ")


def test_stop_work_acknowledgement(lmra_machine, started_session):
    with pytest.raises(StateTransitionError):
        lmra_machine.acknowledge_stop_work(started_session, "sup-1")

    stopped = lmra_machine.trigger_stop_work(started_session, "Crane load swinging over path", "worker-2", LATER)
    result = lmra_machine.acknowledge_stop_work(stopped.entity, "sup-1", now=LATER)
    assert result.entity.stop_work_acknowledged_by == "sup-1"
    assert result.entity.annotations[-1].kind == "stop_work_acknowledgement"

    with pytest.raises(StateTransitionError):
        lmra_machine.acknowledge_stop_work(result.entity, "sup-2")


def test_item_merge_helpers():
    a = HazardReview(hazard_id="h-1", acknowledged=False)
    b = HazardReview(hazard_id="h-1", acknowledged=True)
    c = HazardReview(hazard_id="h-2", acknowledged=True)
    assert merge_items([a], [b, c]) == [b, c]
    assert append_absent([a], [b, c]) == [a, c]
