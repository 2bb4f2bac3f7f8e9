"""Publishing of transition effects after a successful compare-and-swap.

Provides:
- EffectDispatcher: Writes audit events and requests stop-work
  notifications, at most once per (session_id, stop_work_at)
"""

from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError

from safework.core.domain.events import StopWorkNotice, Transition
from safework.core.persistence.audit import AuditTrailService
from safework.core.persistence.database import SessionFactory, session_scope
from safework.core.persistence.dispatch import claim_stop_work, mark_delivered
from safework.notifications.telegram import NotificationService

logger = structlog.get_logger()


class EffectDispatcher:
    """Publishes the effects carried by a committed Transition.

    Failures are logged and never raised: the state change they
    describe has already been committed.
    """

    def __init__(
        self,
        factory: SessionFactory,
        audit: AuditTrailService,
        notifier: Optional[NotificationService] = None,
    ):
        self.factory = factory
        self.audit = audit
        self.notifier = notifier
        self.log = logger.bind(component="EffectDispatcher")

    async def _claim(self, notice: StopWorkNotice) -> bool:
        try:
            async with session_scope(self.factory) as session:
                return await claim_stop_work(session, notice)
        except IntegrityError:
            # Lost a concurrent claim for the same key
            return False

    async def request_stop_work(self, notice: StopWorkNotice) -> bool:
        """Request delivery of a stop-work notice unless its key was claimed before.

        Returns:
            True if this call requested delivery
        """
        log = self.log.bind(session_id=notice.session_id, stop_work_at=notice.timestamp.isoformat())
        if not await self._claim(notice):
            log.info("stop_work_notify_skipped", reason="already requested")
            return False

        if self.notifier is None:
            log.warning("stop_work_notifier_missing")
            return True

        try:
            delivered = await self.notifier.notify_stop_work(notice.session_id, notice.reason, notice.timestamp)
        except Exception as e:
            log.error("stop_work_notify_failed", error=str(e))
            return True

        if delivered:
            async with session_scope(self.factory) as session:
                await mark_delivered(session, notice)
            log.info("stop_work_notified")
        else:
            log.error("stop_work_notify_failed", error="delivery not confirmed")
        return True

    async def dispatch(self, transition: Transition) -> int:
        """Write every audit event, then request every stop-work notice.

        Returns:
            Number of stop-work notifications requested by this call
        """
        for event in transition.events:
            await self.audit.write_log(event)

        requested = 0
        for notice in transition.notices:
            if await self.request_stop_work(notice):
                requested += 1
        return requested
