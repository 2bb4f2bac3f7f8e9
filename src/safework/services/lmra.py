"""LMRA service: persistence boundary around LMRAExecutionStateMachine.

Provides:
- LMRAService: start, per-stage completion, stop work, complete, finalize,
  annotate and stop-work acknowledgement with optimistic concurrency
"""

from typing import Optional, Sequence

from safework.core.config import Config
from safework.core.domain.enums import LMRAAssessment, LMRAStage
from safework.core.domain.events import Transition
from safework.core.domain.lmra import (
    EnvironmentalCheck,
    EquipmentCheck,
    GeoPoint,
    HazardReview,
    LMRASession,
    PersonnelCheck,
    Photo,
    Signature,
    WeatherConditions,
)
from safework.core.domain.requests import CompleteLMRARequest, CreateLMRARequest, StopWorkRequest
from safework.core.domain.tra import TRA
from safework.core.errors import StateTransitionError
from safework.core.lifecycle.lmra import LMRAExecutionStateMachine
from safework.core.persistence.store import DocumentStore

from .base import BaseService, Committed
from .effects import EffectDispatcher


class LMRAService(BaseService[LMRASession]):
    """LMRA session operations.

    TRAs are read-only here; a session only needs the TRA to start.
    """

    def __init__(
        self,
        store: DocumentStore[LMRASession],
        tra_store: DocumentStore[TRA],
        dispatcher: EffectDispatcher,
        config: Optional[Config] = None,
        machine: Optional[LMRAExecutionStateMachine] = None,
    ):
        super().__init__(store, dispatcher, config)
        self.tra_store = tra_store
        self.machine = machine or LMRAExecutionStateMachine(self.config)

    async def start(self, request: CreateLMRARequest, performed_by: str) -> Committed[LMRASession]:
        """Start a session against an active TRA.

        Raises:
            NotFoundError: TRA does not exist
            StateTransitionError: TRA not active or outside its validity window
        """
        tra, _ = await self.tra_store.get(request.tra_id)
        transition = self.machine.start(tra, request, performed_by)
        version = await self.store.create(transition.entity)
        self.log.info(
            "lmra_started",
            session_id=transition.entity.id,
            tra_id=tra.id,
            stage=transition.entity.stage.value,
        )
        await self.dispatcher.dispatch(transition)
        return Committed(transition.entity, version, transition.warnings)

    async def complete_location_stage(
        self,
        session_id: str,
        expected_version: int,
        coordinates: GeoPoint,
        accuracy: float,
        manual_override_reason: Optional[str] = None,
    ) -> Committed[LMRASession]:
        return await self.apply(
            session_id,
            expected_version,
            lambda s: self.machine.complete_location_stage(s, coordinates, accuracy, manual_override_reason),
        )

    async def complete_environment_stage(
        self,
        session_id: str,
        expected_version: int,
        checks: Sequence[EnvironmentalCheck],
        weather: Optional[WeatherConditions] = None,
    ) -> Committed[LMRASession]:
        return await self.apply(
            session_id,
            expected_version,
            lambda s: self.machine.complete_environment_stage(s, checks, weather=weather),
        )

    async def complete_personnel_stage(
        self,
        session_id: str,
        expected_version: int,
        checks: Sequence[PersonnelCheck],
    ) -> Committed[LMRASession]:
        return await self.apply(
            session_id, expected_version, lambda s: self.machine.complete_personnel_stage(s, checks)
        )

    async def complete_equipment_stage(
        self,
        session_id: str,
        expected_version: int,
        checks: Sequence[EquipmentCheck],
    ) -> Committed[LMRASession]:
        return await self.apply(
            session_id, expected_version, lambda s: self.machine.complete_equipment_stage(s, checks)
        )

    async def complete_hazard_review_stage(
        self,
        session_id: str,
        expected_version: int,
        reviews: Sequence[HazardReview],
        additional_hazards: Optional[str] = None,
    ) -> Committed[LMRASession]:
        return await self.apply(
            session_id,
            expected_version,
            lambda s: self.machine.complete_hazard_review_stage(s, reviews, additional_hazards),
        )

    async def complete_decision_stage(
        self,
        session_id: str,
        expected_version: int,
        assessment: LMRAAssessment,
        stop_work_reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Committed[LMRASession]:
        result = await self.apply(
            session_id,
            expected_version,
            lambda s: self.machine.complete_decision_stage(s, assessment, stop_work_reason, actor_id),
        )
        self.log.info("lmra_decision_recorded", session_id=session_id, assessment=LMRAAssessment(assessment).value)
        return result

    async def trigger_stop_work(self, request: StopWorkRequest, expected_version: int) -> Committed[LMRASession]:
        result = await self.apply(
            request.session_id,
            expected_version,
            lambda s: self.machine.trigger_stop_work(s, request.reason, request.triggered_by),
        )
        self.log.warning("lmra_stop_work", session_id=request.session_id, triggered_by=request.triggered_by)
        return result

    async def complete_documentation_stage(
        self,
        session_id: str,
        expected_version: int,
        photos: Sequence[Photo] = (),
        comments: Optional[str] = None,
    ) -> Committed[LMRASession]:
        return await self.apply(
            session_id,
            expected_version,
            lambda s: self.machine.complete_documentation_stage(s, photos, comments),
        )

    async def complete_signature_stage(
        self,
        session_id: str,
        expected_version: int,
        signatures: Sequence[Signature],
    ) -> Committed[LMRASession]:
        return await self.apply(
            session_id, expected_version, lambda s: self.machine.complete_signature_stage(s, signatures)
        )

    async def finalize(self, session_id: str, expected_version: int) -> Committed[LMRASession]:
        result = await self.apply(session_id, expected_version, self.machine.finalize_session)
        self.log.info(
            "lmra_completed",
            session_id=session_id,
            assessment=result.entity.overall_assessment.value,
        )
        return result

    async def complete(self, request: CompleteLMRARequest, expected_version: int) -> Committed[LMRASession]:
        """Record the assessment (if still pending) and finalize in one swap.

        Raises:
            StateTransitionError: Assessment differs from the one already
                recorded, or finalization invariants fail
            ValidationError: stop_work without a sufficient reason
        """
        def operation(session: LMRASession):
            if session.stage == LMRAStage.DECISION_PENDING:
                transition = self.machine.complete_decision_stage(
                    session, request.overall_assessment, request.stop_work_reason
                )
            elif session.overall_assessment != request.overall_assessment:
                raise StateTransitionError(
                    f"LMRA session {session.id} is at {session.stage.value} with assessment "
                    f"{session.overall_assessment.value if session.overall_assessment else 'unset'}"
                )
            else:
                transition = Transition(entity=session, changed=False)
            if request.comments is not None:
                transition.entity = transition.entity.model_copy(update={"comments": request.comments})
            return transition.merge(self.machine.finalize_session(transition.entity))

        result = await self.apply(request.session_id, expected_version, operation)
        self.log.info(
            "lmra_completed",
            session_id=request.session_id,
            assessment=request.overall_assessment.value,
        )
        return result

    async def annotate(
        self,
        session_id: str,
        expected_version: int,
        author_id: str,
        note: str,
        kind: str = "note",
    ) -> Committed[LMRASession]:
        return await self.apply(
            session_id, expected_version, lambda s: self.machine.annotate(s, author_id, note, kind)
        )

    async def acknowledge_stop_work(
        self,
        session_id: str,
        expected_version: int,
        supervisor_id: str,
        note: Optional[str] = None,
    ) -> Committed[LMRASession]:
        result = await self.apply(
            session_id,
            expected_version,
            lambda s: self.machine.acknowledge_stop_work(s, supervisor_id, note),
        )
        self.log.info("lmra_stop_work_acknowledged", session_id=session_id, supervisor_id=supervisor_id)
        return result
