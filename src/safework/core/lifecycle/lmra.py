"""LMRA field-execution state machine.

Stages run in a fixed order:

    location_pending -> environment_pending -> personnel_pending ->
    equipment_pending -> hazard_review_pending -> decision_pending ->
    documentation_pending -> signature_pending -> completed

Each stage validates its inputs without side effects before advancing.
A stop-work decision (from the decision stage, or triggered from any
open stage) is a valid terminal outcome: finalize_session accepts it
without documentation or signature. For safe_to_proceed and
proceed_with_caution every stage invariant is re-evaluated on the
current session data at finalization.

Completed sessions are immutable except for annotate() and
acknowledge_stop_work().
"""

from datetime import datetime
from typing import Optional, Sequence, TypeVar

from safework.core.config import Config
from safework.core.domain.base import utcnow
from safework.core.domain.enums import (
    STAGE_ORDER,
    AuditSeverity,
    CheckStatus,
    CompetencyStatus,
    EquipmentCondition,
    LMRAAssessment,
    LMRAStage,
    LocationVerificationStatus,
)
from safework.core.domain.events import AuditEvent, StopWorkNotice, Transition
from safework.core.domain.lmra import (
    Annotation,
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
from safework.core.domain.requests import CreateLMRARequest
from safework.core.domain.tra import TRA
from safework.core.errors import FieldError, StateTransitionError, ValidationError
from safework.core.lifecycle.tra import TRALifecycleStateMachine

ItemT = TypeVar("ItemT")

BLOCKING_COMPETENCY = frozenset({CompetencyStatus.EXPIRED, CompetencyStatus.MISSING})
BLOCKING_CONDITION = frozenset({EquipmentCondition.DAMAGED, EquipmentCondition.EXPIRED})

# (errors, warnings) produced by a stage check
StageCheck = tuple[list[FieldError], list[str]]


def merge_items(existing: Sequence[ItemT], incoming: Sequence[ItemT]) -> list[ItemT]:
    """Merge by item_key; incoming items replace existing ones with the same key."""
    merged = {item.item_key: item for item in existing}
    for item in incoming:
        merged[item.item_key] = item
    return list(merged.values())


def append_absent(existing: Sequence[ItemT], incoming: Sequence[ItemT]) -> list[ItemT]:
    """Append incoming items whose key is not present yet (never duplicates)."""
    seen = {item.item_key for item in existing}
    result = list(existing)
    for item in incoming:
        if item.item_key not in seen:
            seen.add(item.item_key)
            result.append(item)
    return result


def next_stage(stage: LMRAStage) -> LMRAStage:
    return STAGE_ORDER[min(STAGE_ORDER.index(stage) + 1, len(STAGE_ORDER) - 1)]


def session_event(
    session: LMRASession,
    event_type: str,
    actor_id: str,
    severity: AuditSeverity = AuditSeverity.INFO,
    **metadata,
) -> AuditEvent:
    return AuditEvent(
        event_type=event_type,
        severity=severity,
        actor_id=actor_id,
        subject_id=session.id,
        subject_type="lmra_session",
        organization_id=session.organization_id,
        metadata={"tra_id": session.tra_id, "stage": session.stage.value, **metadata},
    )


class LMRAExecutionStateMachine:
    """Pure LMRA stage transitions bound to Config policy.

    Example:
        >>> machine = LMRAExecutionStateMachine(load_config())
        >>> result = machine.start(tra, request, performed_by="u-1")
        >>> result = machine.complete_environment_stage(result.entity, checks)
    """

    def __init__(self, config: Optional[Config] = None, tra_lifecycle: Optional[TRALifecycleStateMachine] = None):
        self.config = config or Config()
        self.tra_lifecycle = tra_lifecycle or TRALifecycleStateMachine(self.config)

    # Helpers

    def _require_stage(self, session: LMRASession, expected: LMRAStage) -> None:
        if session.is_completed:
            raise StateTransitionError(f"LMRA session {session.id} is completed and immutable")
        if session.stage != expected:
            raise StateTransitionError(
                f"LMRA session {session.id} is at {session.stage.value}, not {expected.value}"
            )

    def _advance(
        self,
        session: LMRASession,
        update: dict,
        warnings: list[str],
        now: datetime,
    ) -> Transition[LMRASession]:
        stage = session.stage
        results = dict(session.stage_results)
        results[stage] = StageResult(passed=True, completed_at=now, warnings=warnings)
        advanced = session.model_copy(update={
            **update,
            "stage_results": results,
            "stage": next_stage(stage),
        })
        return Transition(
            entity=advanced,
            events=[session_event(
                advanced, "lmra_stage_completed", session.performed_by,
                completed_stage=stage.value, warnings=warnings,
            )],
            warnings=warnings,
        )

    @staticmethod
    def _raise_if(errors: list[FieldError]) -> None:
        if errors:
            raise ValidationError(errors)

    # Stage checks (shared by stage completion and finalization)

    def verify_location(
        self,
        coordinates: GeoPoint,
        accuracy: float,
        manual_override_reason: Optional[str],
        now: datetime,
    ) -> LocationVerification:
        """Location record: `approximate` when accuracy exceeds the threshold."""
        status = (
            LocationVerificationStatus.APPROXIMATE
            if accuracy > self.config.location_accuracy_threshold_m
            else LocationVerificationStatus.VERIFIED
        )
        return LocationVerification(
            coordinates=coordinates,
            accuracy=accuracy,
            verification_status=status,
            manual_override_reason=manual_override_reason,
            captured_at=now,
        )

    def check_location(self, location: Optional[LocationVerification]) -> StageCheck:
        if location is None:
            return [FieldError("location", "location has not been captured")], []
        if location.verification_status == LocationVerificationStatus.VERIFIED:
            return [], []
        if not (location.manual_override_reason or "").strip():
            return [FieldError(
                "location.manual_override_reason",
                f"accuracy {location.accuracy}m exceeds "
                f"{self.config.location_accuracy_threshold_m}m, a manual override reason is required",
            )], []
        return [], [f"location is approximate ({location.accuracy}m): {location.manual_override_reason}"]

    def check_environment(self, checks: Sequence[EnvironmentalCheck]) -> StageCheck:
        errors: list[FieldError] = []
        warnings: list[str] = []
        if not checks:
            errors.append(FieldError("environmental_checks", "at least one environmental check is required"))
        for index, check in enumerate(checks):
            if check.status == CheckStatus.FAIL:
                if check.required:
                    errors.append(FieldError(
                        f"environmental_checks.{index}.status", f"required check '{check.check_type}' failed"
                    ))
                else:
                    warnings.append(f"optional check '{check.check_type}' failed")
            elif check.status == CheckStatus.CAUTION:
                warnings.append(f"check '{check.check_type}' requires caution")
        return errors, warnings

    def check_weather(self, weather: WeatherConditions) -> list[str]:
        limits = self.config.weather_limits
        warnings: list[str] = []
        if weather.wind_speed > limits.max_wind_speed_kmh:
            warnings.append(f"wind speed {weather.wind_speed:g} km/h exceeds {limits.max_wind_speed_kmh:g} km/h")
        if weather.visibility < limits.min_visibility_km:
            warnings.append(f"visibility {weather.visibility:g} km below {limits.min_visibility_km:g} km")
        if weather.temperature > limits.max_temperature_c:
            warnings.append(f"temperature {weather.temperature:g} C above {limits.max_temperature_c:g} C")
        if weather.temperature < limits.min_temperature_c:
            warnings.append(f"temperature {weather.temperature:g} C below {limits.min_temperature_c:g} C")
        if any(severe.lower() in weather.conditions.lower() for severe in limits.severe_conditions):
            warnings.append(f"severe weather: {weather.description or weather.conditions}")
        return warnings

    def check_personnel(
        self,
        team_members: Sequence[str],
        checks: Sequence[PersonnelCheck],
        now: datetime,
    ) -> StageCheck:
        errors: list[FieldError] = []
        warnings: list[str] = []
        by_user = {check.user_id: check for check in checks}

        for member in team_members:
            field = f"personnel_checks.{member}"
            check = by_user.get(member)
            if check is None:
                errors.append(FieldError(field, "no personnel check recorded"))
                continue
            if not check.checked_in:
                errors.append(FieldError(f"{field}.checked_in", "team member is not checked in"))
            if not check.competencies_verified:
                errors.append(FieldError(f"{field}.competencies_verified", "competencies are not verified"))
            for competency in check.competencies:
                status = competency.status
                if competency.expiry_date is not None and competency.expiry_date < now:
                    status = CompetencyStatus.EXPIRED
                if status in BLOCKING_COMPETENCY:
                    errors.append(FieldError(
                        f"{field}.competencies",
                        f"competency '{competency.competency_name}' is {status.value}",
                    ))
                elif status == CompetencyStatus.EXPIRING_SOON:
                    warnings.append(f"{member}: competency '{competency.competency_name}' expires soon")
        return errors, warnings

    def check_equipment(self, checks: Sequence[EquipmentCheck]) -> StageCheck:
        errors: list[FieldError] = []
        warnings: list[str] = []
        for index, check in enumerate(checks):
            problems = []
            if not check.available:
                problems.append("unavailable")
            if check.condition in BLOCKING_CONDITION:
                problems.append(check.condition.value)
            if not problems:
                continue
            message = f"'{check.equipment_name}' is {' and '.join(problems)}"
            if check.required:
                errors.append(FieldError(f"equipment_checks.{index}", f"required equipment {message}"))
            else:
                warnings.append(f"optional equipment {message}")
        return errors, warnings

    def check_hazard_reviews(
        self,
        hazard_ids: Sequence[str],
        reviews: Sequence[HazardReview],
    ) -> StageCheck:
        errors: list[FieldError] = []
        warnings: list[str] = []
        by_hazard = {review.hazard_id: review for review in reviews}
        for hazard_id in hazard_ids:
            review = by_hazard.get(hazard_id)
            if review is None or not review.acknowledged:
                errors.append(FieldError(f"hazard_reviews.{hazard_id}", "hazard has not been acknowledged"))
            elif not review.controls_in_place:
                warnings.append(f"hazard {hazard_id}: control measures not in place")
        for hazard_id in by_hazard:
            if hazard_id not in hazard_ids:
                errors.append(FieldError(f"hazard_reviews.{hazard_id}", "hazard is not part of the TRA"))
        return errors, warnings

    def check_documentation(self, session: LMRASession) -> StageCheck:
        if self.config.require_photo_documentation and not session.is_stop_work and not session.photos:
            return [FieldError("photos", "at least one photo is required")], []
        return [], []

    def check_signature(self, session: LMRASession) -> StageCheck:
        if not any(s.signed_by == session.performed_by for s in session.signatures):
            return [FieldError("signatures", f"signature of {session.performed_by} is required")], []
        return [], []

    def evaluate(self, session: LMRASession, now: Optional[datetime] = None) -> list[FieldError]:
        """Re-run every stage invariant against the session's current data."""
        now = now or utcnow()
        errors: list[FieldError] = []
        for check in (
            self.check_location(session.location),
            self.check_environment(session.environmental_checks),
            self.check_personnel(session.team_members, session.personnel_checks, now),
            self.check_equipment(session.equipment_checks),
            self.check_hazard_reviews(session.tra_hazard_ids, session.hazard_reviews),
            self.check_documentation(session),
            self.check_signature(session),
        ):
            errors.extend(check[0])
        for stage in STAGE_ORDER[:-1]:
            result = session.stage_results.get(stage)
            if result is None or not result.passed:
                errors.append(FieldError(f"stage_results.{stage.value}", "stage has not passed"))
        return errors

    # Operations

    def start(
        self,
        tra: TRA,
        request: CreateLMRARequest,
        performed_by: str,
        now: Optional[datetime] = None,
    ) -> Transition[LMRASession]:
        """Start a session against an active TRA.

        Takes a snapshot of the TRA's hazard ids and records the initial
        location. The location stage completes immediately when the fix is
        accurate enough or an override reason was given; otherwise the
        session stays at location_pending with a warning.

        Raises:
            ValidationError: Request references another TRA
            StateTransitionError: TRA is not active or outside its validity window
        """
        now = now or utcnow()
        if request.tra_id != tra.id:
            raise ValidationError.single("tra_id", f"request references {request.tra_id}, not {tra.id}")
        if not self.tra_lifecycle.is_valid(tra, now):
            raise StateTransitionError(
                f"TRA {tra.id} is not active and valid ({tra.status.value}); LMRA cannot start"
            )

        session = LMRASession(
            tra_id=tra.id,
            organization_id=tra.organization_id,
            project_id=request.project_id or tra.project_id,
            performed_by=performed_by,
            team_members=list(dict.fromkeys(request.team_members)),
            tra_hazard_ids=[hazard.id for _, hazard in tra.iter_hazards()],
            started_at=now,
        )
        started = Transition(
            entity=session,
            events=[session_event(session, "lmra_started", performed_by, team_size=len(session.team_members))],
        )

        location = request.location
        verification = self.verify_location(
            location.coordinates, location.accuracy, location.manual_override_reason, now
        )
        errors, _ = self.check_location(verification)
        if errors:
            pending = session.model_copy(update={"location": verification})
            return started.merge(Transition(
                entity=pending,
                warnings=[str(error) for error in errors],
            ))
        return started.merge(self.complete_location_stage(
            session, location.coordinates, location.accuracy, location.manual_override_reason, now
        ))

    def complete_location_stage(
        self,
        session: LMRASession,
        coordinates: GeoPoint,
        accuracy: float,
        manual_override_reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Transition[LMRASession]:
        """Verify the site location.

        Raises:
            ValidationError: Accuracy above threshold without an override reason
        """
        now = now or utcnow()
        self._require_stage(session, LMRAStage.LOCATION_PENDING)
        verification = self.verify_location(coordinates, accuracy, manual_override_reason, now)
        errors, warnings = self.check_location(verification)
        self._raise_if(errors)
        return self._advance(session, {"location": verification}, warnings, now)

    def complete_environment_stage(
        self,
        session: LMRASession,
        checks: Optional[Sequence[EnvironmentalCheck]] = None,
        now: Optional[datetime] = None,
        weather: Optional[WeatherConditions] = None,
    ) -> Transition[LMRASession]:
        """Record environmental checks; any failed required check blocks the stage.

        A weather snapshot, passed here or recorded earlier, is stored on the
        session and compared against the configured site limits. Weather
        outside the limits only produces warnings.
        """
        now = now or utcnow()
        self._require_stage(session, LMRAStage.ENVIRONMENT_PENDING)
        merged = merge_items(session.environmental_checks, checks or [])
        errors, warnings = self.check_environment(merged)
        self._raise_if(errors)
        weather = weather or session.weather
        if weather is not None:
            warnings.extend(self.check_weather(weather))
        return self._advance(session, {"environmental_checks": merged, "weather": weather}, warnings, now)

    def complete_personnel_stage(
        self,
        session: LMRASession,
        checks: Optional[Sequence[PersonnelCheck]] = None,
        now: Optional[datetime] = None,
    ) -> Transition[LMRASession]:
        """Every team member checked in with verified, unexpired competencies."""
        now = now or utcnow()
        self._require_stage(session, LMRAStage.PERSONNEL_PENDING)
        merged = merge_items(session.personnel_checks, checks or [])
        errors, warnings = self.check_personnel(session.team_members, merged, now)
        self._raise_if(errors)
        return self._advance(session, {"personnel_checks": merged}, warnings, now)

    def complete_equipment_stage(
        self,
        session: LMRASession,
        checks: Optional[Sequence[EquipmentCheck]] = None,
        now: Optional[datetime] = None,
    ) -> Transition[LMRASession]:
        now = now or utcnow()
        self._require_stage(session, LMRAStage.EQUIPMENT_PENDING)
        merged = merge_items(session.equipment_checks, checks or [])
        errors, warnings = self.check_equipment(merged)
        self._raise_if(errors)
        return self._advance(session, {"equipment_checks": merged}, warnings, now)

    def complete_hazard_review_stage(
        self,
        session: LMRASession,
        reviews: Optional[Sequence[HazardReview]] = None,
        additional_hazards: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Transition[LMRASession]:
        """Every hazard in the TRA snapshot must be acknowledged on site."""
        now = now or utcnow()
        self._require_stage(session, LMRAStage.HAZARD_REVIEW_PENDING)
        merged = merge_items(session.hazard_reviews, reviews or [])
        errors, warnings = self.check_hazard_reviews(session.tra_hazard_ids, merged)
        self._raise_if(errors)
        update: dict = {"hazard_reviews": merged}
        if additional_hazards is not None:
            update["additional_hazards"] = additional_hazards
        return self._advance(session, update, warnings, now)

    def _stop_work(
        self,
        session: LMRASession,
        reason: Optional[str],
        triggered_by: str,
        now: datetime,
    ) -> Transition[LMRASession]:
        reason = (reason or "").strip()
        minimum = self.config.stop_work_reason_min_length
        if len(reason) < minimum:
            raise ValidationError.single(
                "stop_work_reason", f"a stop-work reason of at least {minimum} characters is required"
            )
        if session.is_stop_work:
            raise StateTransitionError(f"stop work already recorded for LMRA session {session.id}")

        origin = session.stage
        results = dict(session.stage_results)
        results[LMRAStage.DECISION_PENDING] = StageResult(
            passed=True,
            completed_at=now,
            warnings=[] if origin == LMRAStage.DECISION_PENDING else [f"stop work triggered at {origin.value}"],
        )
        stage = max(origin, LMRAStage.DOCUMENTATION_PENDING, key=STAGE_ORDER.index)
        stopped = session.model_copy(update={
            "overall_assessment": LMRAAssessment.STOP_WORK,
            "stop_work_reason": reason,
            "stop_work_at": now,
            "stop_work_triggered_by": triggered_by,
            "stage_results": results,
            "stage": stage,
        })
        return Transition(
            entity=stopped,
            events=[session_event(
                stopped, "lmra_stop_work", triggered_by, AuditSeverity.CRITICAL,
                reason=reason, triggered_at_stage=origin.value, stop_work_at=now.isoformat(),
            )],
            notices=[StopWorkNotice(session_id=session.id, reason=reason, timestamp=now)],
        )

    def complete_decision_stage(
        self,
        session: LMRASession,
        assessment: LMRAAssessment,
        stop_work_reason: Optional[str] = None,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Transition[LMRASession]:
        """Record the overall assessment.

        A stop_work assessment needs a reason of the configured minimum
        length; it emits a critical audit event and a stop-work notice.

        Raises:
            ValidationError: stop_work without a sufficient reason
            StateTransitionError: Session not at decision_pending
        """
        now = now or utcnow()
        actor_id = actor_id or session.performed_by
        assessment = LMRAAssessment(assessment)
        self._require_stage(session, LMRAStage.DECISION_PENDING)

        if assessment == LMRAAssessment.STOP_WORK:
            return self._stop_work(session, stop_work_reason, actor_id, now)

        warnings = []
        if assessment == LMRAAssessment.PROCEED_WITH_CAUTION:
            warnings.append("work proceeds with caution")
        transition = self._advance(session, {"overall_assessment": assessment}, warnings, now)
        severity = (
            AuditSeverity.WARNING
            if assessment == LMRAAssessment.PROCEED_WITH_CAUTION
            else AuditSeverity.INFO
        )
        transition.events.append(session_event(
            transition.entity, "lmra_decision_recorded", actor_id, severity, assessment=assessment.value
        ))
        return transition

    def trigger_stop_work(
        self,
        session: LMRASession,
        reason: str,
        triggered_by: str,
        now: Optional[datetime] = None,
    ) -> Transition[LMRASession]:
        """Stop work from any open stage; jumps ahead to documentation."""
        now = now or utcnow()
        if session.is_completed:
            raise StateTransitionError(f"LMRA session {session.id} is completed and immutable")
        return self._stop_work(session, reason, triggered_by, now)

    def complete_documentation_stage(
        self,
        session: LMRASession,
        photos: Optional[Sequence[Photo]] = None,
        comments: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Transition[LMRASession]:
        now = now or utcnow()
        self._require_stage(session, LMRAStage.DOCUMENTATION_PENDING)
        merged = merge_items(session.photos, photos or [])
        update: dict = {"photos": merged}
        if comments is not None:
            update["comments"] = comments
        errors, warnings = self.check_documentation(session.model_copy(update=update))
        self._raise_if(errors)
        return self._advance(session, update, warnings, now)

    def complete_signature_stage(
        self,
        session: LMRASession,
        signatures: Optional[Sequence[Signature]] = None,
        now: Optional[datetime] = None,
    ) -> Transition[LMRASession]:
        """Collect signatures; the performer's own signature is required.

        The session stays at signature_pending until finalize_session.
        """
        now = now or utcnow()
        self._require_stage(session, LMRAStage.SIGNATURE_PENDING)
        merged = merge_items(session.signatures, signatures or [])
        signed = session.model_copy(update={"signatures": merged})
        errors, warnings = self.check_signature(signed)
        self._raise_if(errors)

        results = dict(session.stage_results)
        results[LMRAStage.SIGNATURE_PENDING] = StageResult(passed=True, completed_at=now, warnings=warnings)
        signed = signed.model_copy(update={"stage_results": results})
        return Transition(
            entity=signed,
            events=[session_event(signed, "lmra_signed", session.performed_by, signatures=len(merged))],
            warnings=warnings,
        )

    def finalize_session(self, session: LMRASession, now: Optional[datetime] = None) -> Transition[LMRASession]:
        """Complete the session.

        Stop-work sessions complete from any stage. Other outcomes need
        every stage invariant to hold on the current data.

        Raises:
            StateTransitionError: Assessment unset, session completed, or an
                invariant fails (listed in `details`)
        """
        now = now or utcnow()
        if session.is_completed:
            raise StateTransitionError(f"LMRA session {session.id} is already completed")
        if session.overall_assessment is None:
            raise StateTransitionError(f"LMRA session {session.id} has no overall assessment")

        if not session.is_stop_work:
            errors = self.evaluate(session, now)
            if errors:
                raise StateTransitionError(
                    f"LMRA session {session.id} cannot be finalized", details=errors
                )

        completed = session.model_copy(update={"stage": LMRAStage.COMPLETED, "completed_at": now})
        severity = AuditSeverity.CRITICAL if completed.is_stop_work else AuditSeverity.INFO
        return Transition(
            entity=completed,
            events=[session_event(
                completed, "lmra_completed", session.performed_by, severity,
                assessment=completed.overall_assessment.value,
                duration_seconds=completed.duration_seconds,
                photo_count=len(completed.photos),
            )],
        )

    def annotate(
        self,
        session: LMRASession,
        author_id: str,
        note: str,
        kind: str = "note",
        now: Optional[datetime] = None,
    ) -> Transition[LMRASession]:
        """Append an audit annotation; allowed at any stage, including completed."""
        now = now or utcnow()
        if not note.strip():
            raise ValidationError.single("note", "annotation text is required")
        annotation = Annotation(author_id=author_id, kind=kind, note=note, created_at=now)
        annotated = session.model_copy(update={"annotations": [*session.annotations, annotation]})
        return Transition(
            entity=annotated,
            events=[session_event(annotated, "lmra_annotated", author_id, kind=kind, annotation_id=annotation.id)],
        )

    def acknowledge_stop_work(
        self,
        session: LMRASession,
        supervisor_id: str,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Transition[LMRASession]:
        """Record a supervisor's acknowledgement of a stop-work session."""
        now = now or utcnow()
        if not session.is_stop_work:
            raise StateTransitionError(f"LMRA session {session.id} has no stop-work decision")
        if session.stop_work_acknowledged_by is not None:
            raise StateTransitionError(
                f"stop work on {session.id} already acknowledged by {session.stop_work_acknowledged_by}"
            )
        annotation = Annotation(
            author_id=supervisor_id,
            kind="stop_work_acknowledgement",
            note=note or "Stop work acknowledged",
            created_at=now,
        )
        acknowledged = session.model_copy(update={
            "stop_work_acknowledged_by": supervisor_id,
            "annotations": [*session.annotations, annotation],
        })
        return Transition(
            entity=acknowledged,
            events=[session_event(
                acknowledged, "lmra_stop_work_acknowledged", supervisor_id, AuditSeverity.WARNING,
                stop_work_at=session.stop_work_at.isoformat() if session.stop_work_at else None,
            )],
        )
