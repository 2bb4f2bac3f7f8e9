"""TRA service: persistence boundary around TRALifecycleStateMachine.

Provides:
- TRAService: create / update / submit / record_decision / reopen /
  archive / check_expiry / sweep_expired
"""

from datetime import datetime
from typing import Optional, Sequence

from safework.core.config import Config
from safework.core.domain.base import utcnow
from safework.core.domain.enums import ApprovalRole, TRAStatus
from safework.core.domain.requests import ApprovalDecisionRequest, CreateTRARequest, UpdateTRARequest
from safework.core.domain.tra import TRA
from safework.core.domain.workflow import ApprovalStepDefinition
from safework.core.errors import Conflict, NotFoundError
from safework.core.lifecycle.tra import TRALifecycleStateMachine
from safework.core.persistence.store import DocumentStore

from .base import BaseService, Committed
from .effects import EffectDispatcher


class TRAService(BaseService[TRA]):
    """TRA operations with optimistic concurrency.

    Example:
        >>> service = TRAService(DocumentStore(factory, TRA, "tra"), dispatcher, config)
        >>> created = await service.create(request, organization_id="org-1", created_by="u-1")
        >>> submitted = await service.submit(created.entity.id, created.version, step_defs, "u-1")
    """

    def __init__(
        self,
        store: DocumentStore[TRA],
        dispatcher: EffectDispatcher,
        config: Optional[Config] = None,
        machine: Optional[TRALifecycleStateMachine] = None,
    ):
        super().__init__(store, dispatcher, config)
        self.machine = machine or TRALifecycleStateMachine(self.config)

    async def create(self, request: CreateTRARequest, organization_id: str, created_by: str) -> Committed[TRA]:
        transition = self.machine.create(request, organization_id, created_by)
        version = await self.store.create(transition.entity)
        self.log.info("tra_created", tra_id=transition.entity.id, organization_id=organization_id)
        await self.dispatcher.dispatch(transition)
        return Committed(transition.entity, version, transition.warnings)

    async def update(
        self,
        tra_id: str,
        expected_version: int,
        request: UpdateTRARequest,
        actor_id: str,
    ) -> Committed[TRA]:
        result = await self.apply(
            tra_id, expected_version, lambda tra: self.machine.update(tra, request, actor_id)
        )
        self.log.info("tra_updated", tra_id=tra_id, version=result.version)
        return result

    async def submit(
        self,
        tra_id: str,
        expected_version: int,
        step_defs: Sequence[ApprovalStepDefinition],
        actor_id: str,
    ) -> Committed[TRA]:
        result = await self.apply(
            tra_id, expected_version, lambda tra: self.machine.submit(tra, step_defs, actor_id)
        )
        self.log.info("tra_submitted", tra_id=tra_id, version=result.version, warnings=len(result.warnings))
        return result

    async def record_decision(
        self,
        request: ApprovalDecisionRequest,
        expected_version: int,
        actor_id: str,
        actor_role: ApprovalRole,
    ) -> Committed[TRA]:
        result = await self.apply(
            request.tra_id,
            expected_version,
            lambda tra: self.machine.record_decision(
                tra, request.step_number, request.decision, actor_id, actor_role, request.comments
            ),
        )
        self.log.info(
            "tra_decision_recorded",
            tra_id=request.tra_id,
            step_number=request.step_number,
            decision=request.decision.value,
            status=result.entity.status.value,
        )
        return result

    async def reopen(self, tra_id: str, expected_version: int, actor_id: str) -> Committed[TRA]:
        return await self.apply(tra_id, expected_version, lambda tra: self.machine.reopen(tra, actor_id))

    async def archive(self, tra_id: str, expected_version: int, actor_id: str) -> Committed[TRA]:
        result = await self.apply(tra_id, expected_version, lambda tra: self.machine.archive(tra, actor_id))
        self.log.info("tra_archived", tra_id=tra_id, version=result.version)
        return result

    async def check_expiry(
        self,
        tra_id: str,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Committed[TRA]:
        """Expire the TRA if its window has passed. Idempotent."""
        now = now or utcnow()
        return await self.apply(tra_id, expected_version, lambda tra: self.machine.check_expiry(tra, now))

    async def sweep_expired(self, now: Optional[datetime] = None, max_attempts: int = 3) -> list[str]:
        """Expire every active TRA whose validity window has passed.

        A TRA edited concurrently (Conflict) is re-fetched and re-checked,
        up to `max_attempts` times.

        Returns:
            Ids of TRAs expired by this sweep
        """
        now = now or utcnow()
        expired: list[str] = []
        for tra_id in await self.store.list_ids_by_status(TRAStatus.ACTIVE):
            for attempt in range(max_attempts):
                try:
                    result = await self.check_expiry(tra_id, now=now)
                except Conflict:
                    self.log.warning("sweep_conflict", tra_id=tra_id, attempt=attempt + 1)
                    continue
                except NotFoundError:
                    break
                if result.changed:
                    expired.append(tra_id)
                break
            else:
                self.log.error("sweep_gave_up", tra_id=tra_id, attempts=max_attempts)

        self.log.info("sweep_expired_finished", expired=len(expired))
        return expired

    def expiring_soon(self, tra: TRA, now: Optional[datetime] = None) -> bool:
        return self.machine.is_expiring_soon(tra, now)
