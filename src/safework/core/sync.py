"""Offline-first reconciliation of LMRA sessions.

Field clients queue OfflineMutations while offline. apply_mutation merges
one mutation into a session without I/O; OfflineSyncReconciler drains a
session's queue in sequence order against the stored session, persisting
a cursor after every mutation so an interrupted batch resumes where it
stopped.

Merge rules:
- Replays are no-ops: a mutation id already applied changes nothing.
- set_fields: last writer wins per field, ordered by sequence number.
- append_items: items are merged by identity, never duplicated.
- stage_command: replays the LMRA state machine operation at the
  client's timestamp. A mutation that would break a stage invariant is
  rejected and reported; reconciliation halts there until the caller
  discards it.
"""

import asyncio
from typing import Any, Optional

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from safework.core.domain.enums import LMRAAssessment
from safework.core.domain.events import Transition
from safework.core.domain.lmra import (
    Annotation,
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
from safework.core.domain.sync import (
    ARRAY_FIELDS,
    SCALAR_FIELDS,
    AppendItemsPayload,
    OfflineMutation,
    RejectedMutation,
    SetFieldsPayload,
    StageCommand,
    StageCommandPayload,
    SyncReport,
)
from safework.core.errors import (
    FieldError,
    MutationRejected,
    StateTransitionError,
    ValidationError,
)
from safework.core.lifecycle.lmra import LMRAExecutionStateMachine, append_absent, session_event
from safework.core.persistence.database import SessionFactory, session_scope
from safework.core.persistence.queue import (
    APPLIED,
    DISCARDED,
    DUPLICATE,
    QUEUED,
    REJECTED,
    enqueue_mutation,
    get_mutation_record,
    load_cursor,
    load_queued_mutations,
    load_rejected_mutations,
    mark_mutation,
    save_cursor,
)
from safework.core.persistence.store import DocumentStore

logger = structlog.get_logger()

ARRAY_MODELS: dict[str, type[BaseModel]] = {
    "photos": Photo,
    "environmental_checks": EnvironmentalCheck,
    "personnel_checks": PersonnelCheck,
    "equipment_checks": EquipmentCheck,
    "hazard_reviews": HazardReview,
    "annotations": Annotation,
}

# Array fields that stay writable after the session is completed
APPEND_ONLY_AFTER_COMPLETION = frozenset({"annotations"})


def _pydantic_details(error: PydanticValidationError) -> list[FieldError]:
    return [
        FieldError(".".join(str(part) for part in issue["loc"]) or "__root__", issue["msg"])
        for issue in error.errors()
    ]


def _parse(model: type[BaseModel], data: Any, mutation: OfflineMutation, field: str):
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise MutationRejected(
            mutation.mutation_id, f"malformed {field}", _pydantic_details(e)
        ) from e


def _parse_list(model: type[BaseModel], data: Any, mutation: OfflineMutation, field: str) -> list:
    if data is None:
        return []
    if not isinstance(data, list):
        raise MutationRejected(mutation.mutation_id, f"{field} must be a list")
    return [_parse(model, item, mutation, field) for item in data]


def _apply_set_fields(
    session: LMRASession,
    mutation: OfflineMutation,
    payload: SetFieldsPayload,
) -> Transition[LMRASession]:
    if session.is_completed:
        raise MutationRejected(mutation.mutation_id, "completed sessions only accept annotations")
    unknown = sorted(set(payload.fields) - SCALAR_FIELDS)
    if unknown:
        raise MutationRejected(
            mutation.mutation_id,
            "fields are not client-writable",
            [FieldError(name, "governed by stage operations") for name in unknown],
        )

    sequences = dict(session.sync.field_sequences)
    updates: dict[str, Any] = {}
    for name, value in payload.fields.items():
        if mutation.sequence < sequences.get(name, -1):
            continue  # a later write already won
        updates[name] = value
        sequences[name] = mutation.sequence

    data = {**session.model_dump(), **updates}
    data["sync"] = {**data["sync"], "field_sequences": sequences}
    merged = _parse(LMRASession, data, mutation, "session fields")
    return Transition(entity=merged, changed=bool(updates))


def _apply_append_items(
    session: LMRASession,
    mutation: OfflineMutation,
    payload: AppendItemsPayload,
) -> Transition[LMRASession]:
    if payload.field not in ARRAY_FIELDS:
        raise MutationRejected(
            mutation.mutation_id, f"{payload.field} is not an appendable field",
            [FieldError(payload.field, "unknown array field")],
        )
    if session.is_completed and payload.field not in APPEND_ONLY_AFTER_COMPLETION:
        raise MutationRejected(mutation.mutation_id, "completed sessions only accept annotations")

    items = _parse_list(ARRAY_MODELS[payload.field], payload.items, mutation, payload.field)
    existing = getattr(session, payload.field)
    merged = append_absent(existing, items)
    added = merged[len(existing):]
    updated = session.model_copy(update={payload.field: merged})

    transition = Transition(entity=updated, changed=bool(added))
    if payload.field == "annotations":
        for annotation in added:
            transition.events.append(session_event(
                updated, "lmra_annotated", annotation.author_id,
                kind=annotation.kind, annotation_id=annotation.id,
            ))
    return transition


def _decision_replay(session: LMRASession, mutation: OfflineMutation, assessment: Any) -> Transition:
    """Decision replayed after one was recorded: duplicate or conflict."""
    try:
        requested = LMRAAssessment(assessment)
    except ValueError as e:
        raise MutationRejected(mutation.mutation_id, f"unknown assessment {assessment!r}") from e
    if requested != session.overall_assessment:
        raise MutationRejected(
            mutation.mutation_id,
            f"session already decided {session.overall_assessment.value}, "
            f"cannot replay {requested.value}",
        )
    return Transition(entity=session, changed=False)


def _apply_stage_command(
    session: LMRASession,
    mutation: OfflineMutation,
    payload: StageCommandPayload,
    machine: LMRAExecutionStateMachine,
) -> Transition[LMRASession]:
    command = payload.command
    args = payload.args
    now = mutation.occurred_at

    if command == StageCommand.TRIGGER_STOP_WORK and session.is_stop_work:
        return Transition(entity=session, changed=False)
    if command == StageCommand.COMPLETE_DECISION and session.overall_assessment is not None:
        return _decision_replay(session, mutation, args.get("assessment"))
    if session.is_completed:
        if command == StageCommand.FINALIZE:
            return Transition(entity=session, changed=False)
        raise MutationRejected(mutation.mutation_id, f"session is completed, {command.value} not allowed")

    try:
        if command == StageCommand.COMPLETE_LOCATION:
            accuracy = args.get("accuracy")
            if isinstance(accuracy, bool) or not isinstance(accuracy, (int, float)):
                raise MutationRejected(mutation.mutation_id, "location accuracy must be a number")
            return machine.complete_location_stage(
                session,
                _parse(GeoPoint, args.get("coordinates"), mutation, "coordinates"),
                accuracy,
                args.get("manual_override_reason"),
                now,
            )
        if command == StageCommand.COMPLETE_ENVIRONMENT:
            checks = _parse_list(EnvironmentalCheck, args.get("checks"), mutation, "checks")
            weather = args.get("weather")
            if weather is not None:
                weather = _parse(WeatherConditions, weather, mutation, "weather")
            return machine.complete_environment_stage(session, checks, now, weather)
        if command == StageCommand.COMPLETE_PERSONNEL:
            checks = _parse_list(PersonnelCheck, args.get("checks"), mutation, "checks")
            return machine.complete_personnel_stage(session, checks, now)
        if command == StageCommand.COMPLETE_EQUIPMENT:
            checks = _parse_list(EquipmentCheck, args.get("checks"), mutation, "checks")
            return machine.complete_equipment_stage(session, checks, now)
        if command == StageCommand.COMPLETE_HAZARD_REVIEW:
            reviews = _parse_list(HazardReview, args.get("reviews"), mutation, "reviews")
            return machine.complete_hazard_review_stage(
                session, reviews, args.get("additional_hazards"), now
            )
        if command == StageCommand.COMPLETE_DECISION:
            return machine.complete_decision_stage(
                session,
                args.get("assessment"),
                args.get("stop_work_reason"),
                mutation.actor_id,
                now,
            )
        if command == StageCommand.TRIGGER_STOP_WORK:
            return machine.trigger_stop_work(session, args.get("reason"), mutation.actor_id, now)
        if command == StageCommand.COMPLETE_DOCUMENTATION:
            photos = _parse_list(Photo, args.get("photos"), mutation, "photos")
            return machine.complete_documentation_stage(session, photos, args.get("comments"), now)
        if command == StageCommand.COMPLETE_SIGNATURE:
            signatures = _parse_list(Signature, args.get("signatures"), mutation, "signatures")
            return machine.complete_signature_stage(session, signatures, now)
        return machine.finalize_session(session, now)
    except MutationRejected:
        raise
    except ValidationError as e:
        raise MutationRejected(mutation.mutation_id, str(e), e.errors) from e
    except StateTransitionError as e:
        raise MutationRejected(mutation.mutation_id, str(e), e.details) from e
    except ValueError as e:
        # Unknown enum value passed through args
        raise MutationRejected(mutation.mutation_id, str(e)) from e


def apply_mutation(
    session: LMRASession,
    mutation: OfflineMutation,
    machine: Optional[LMRAExecutionStateMachine] = None,
) -> Transition[LMRASession]:
    """Merge one offline mutation into a session.

    Pure and idempotent by mutation id: applying the same mutation twice
    yields the same session. `changed=False` marks a mutation that had
    nothing left to do (replay or already-recorded outcome).

    Raises:
        MutationRejected: The mutation would violate a stage invariant
    """
    machine = machine or LMRAExecutionStateMachine()
    if mutation.session_id != session.id:
        raise MutationRejected(mutation.mutation_id, f"mutation targets session {mutation.session_id}")
    if mutation.mutation_id in session.sync.applied_mutation_ids:
        return Transition(entity=session, changed=False)

    payload = mutation.payload
    if isinstance(payload, SetFieldsPayload):
        transition = _apply_set_fields(session, mutation, payload)
    elif isinstance(payload, AppendItemsPayload):
        transition = _apply_append_items(session, mutation, payload)
    else:
        transition = _apply_stage_command(session, mutation, payload, machine)

    if not transition.changed:
        return transition

    entity = transition.entity
    sync = entity.sync.model_copy(update={
        "applied_mutation_ids": [*entity.sync.applied_mutation_ids, mutation.mutation_id],
        "last_sequence": max(entity.sync.last_sequence, mutation.sequence),
    })
    transition.entity = entity.model_copy(update={"sync": sync})
    return transition


class OfflineSyncReconciler:
    """Drains queued offline mutations into stored LMRA sessions.

    Processing is serial and in sequence order per session (one
    asyncio.Lock per session id); different sessions reconcile in
    parallel. Each mutation commits its session write, queue status and
    cursor in one transaction, then publishes its effects.

    Example:
        >>> reconciler = OfflineSyncReconciler(factory, lmra_store, machine, dispatcher)
        >>> await reconciler.enqueue(mutation)
        >>> report = await reconciler.reconcile(session_id)
        >>> if report.halted:
        ...     await reconciler.discard(report.rejected[0].mutation_id)
    """

    def __init__(
        self,
        factory: SessionFactory,
        store: DocumentStore[LMRASession],
        machine: Optional[LMRAExecutionStateMachine] = None,
        dispatcher=None,
    ):
        self.factory = factory
        self.store = store
        self.machine = machine or LMRAExecutionStateMachine()
        self.dispatcher = dispatcher
        self._locks: dict[str, asyncio.Lock] = {}
        self.log = logger.bind(component="OfflineSyncReconciler")

    def _lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    async def enqueue(self, mutation: OfflineMutation) -> bool:
        """Queue a client mutation. Returns False for an already-received id."""
        async with session_scope(self.factory) as db:
            queued = await enqueue_mutation(db, mutation)
        self.log.info(
            "mutation_enqueued" if queued else "mutation_already_received",
            mutation_id=mutation.mutation_id,
            session_id=mutation.session_id,
            sequence=mutation.sequence,
        )
        return queued

    async def reconcile(self, session_id: str) -> SyncReport:
        """Drain the session's queue in sequence order.

        Stops at the first rejected mutation; it stays rejected (and keeps
        blocking later mutations) until discard() is called for it.

        Raises:
            NotFoundError: Session does not exist
            Conflict: The session changed concurrently; re-run to resume
        """
        async with self._lock(session_id):
            async with session_scope(self.factory) as db:
                await self.store.get(session_id, db)
                blocking = await load_rejected_mutations(db, session_id)
                cursor = await load_cursor(db, session_id)
                queued = await load_queued_mutations(db, session_id)

            report = SyncReport(session_id=session_id, cursor=cursor)
            if blocking:
                report.rejected = [
                    RejectedMutation(
                        mutation_id=record.mutation_id,
                        sequence=record.sequence,
                        reason=record.reason or "rejected",
                    )
                    for record in blocking
                ]
                report.halted = True
                self.log.warning("reconcile_blocked", session_id=session_id, rejected=len(blocking))
                return report

            for mutation in queued:
                transition = None
                async with session_scope(self.factory) as db:
                    session, version = await self.store.get(session_id, db)
                    try:
                        transition = apply_mutation(session, mutation, self.machine)
                    except MutationRejected as e:
                        await mark_mutation(db, mutation.mutation_id, REJECTED, e.reason)
                        report.rejected.append(RejectedMutation(
                            mutation_id=mutation.mutation_id,
                            sequence=mutation.sequence,
                            reason=e.reason,
                            details=[str(d) for d in e.details],
                        ))
                        report.halted = True
                    else:
                        if transition.changed:
                            await self.store.compare_and_swap(session_id, version, transition.entity, db)
                            await mark_mutation(db, mutation.mutation_id, APPLIED)
                            report.applied.append(mutation.mutation_id)
                        else:
                            await mark_mutation(db, mutation.mutation_id, DUPLICATE)
                            report.duplicates.append(mutation.mutation_id)
                        report.cursor = max(report.cursor, mutation.sequence)
                        await save_cursor(db, session_id, report.cursor, mutation.mutation_id)

                if report.halted:
                    self.log.warning(
                        "mutation_rejected",
                        session_id=session_id,
                        mutation_id=mutation.mutation_id,
                        reason=report.rejected[-1].reason,
                    )
                    break
                if transition.changed and self.dispatcher is not None:
                    await self.dispatcher.dispatch(transition)

            self.log.info(
                "reconcile_finished",
                session_id=session_id,
                applied=len(report.applied),
                duplicates=len(report.duplicates),
                rejected=len(report.rejected),
                cursor=report.cursor,
            )
            return report

    async def discard(self, mutation_id: str) -> bool:
        """Resolve a rejected (or still queued) mutation by dropping it.

        Returns:
            True if the mutation was discarded, False if unknown or already processed
        """
        async with session_scope(self.factory) as db:
            record = await get_mutation_record(db, mutation_id)
            if record is None or record.status not in (REJECTED, QUEUED):
                return False
            await mark_mutation(db, mutation_id, DISCARDED, record.reason)
        self.log.info("mutation_discarded", mutation_id=mutation_id)
        return True
