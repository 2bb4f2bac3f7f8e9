"""Service layer: optimistic-concurrency boundary around the pure state machines.

Provides:
- BaseService / Committed: load, transition, compare-and-swap, publish
- EffectDispatcher: Audit and stop-work notification publishing
- TRAService, LMRAService: Document operations
- build_services: Wire every collaborator from Config and a session factory
"""

from dataclasses import dataclass
from typing import Optional

from safework.core.config import Config
from safework.core.domain.lmra import LMRASession
from safework.core.domain.tra import TRA
from safework.core.lifecycle.lmra import LMRAExecutionStateMachine
from safework.core.lifecycle.tra import TRALifecycleStateMachine
from safework.core.persistence.audit import AuditTrailService
from safework.core.persistence.database import SessionFactory
from safework.core.persistence.store import DocumentStore
from safework.core.sync import OfflineSyncReconciler
from safework.notifications.telegram import NotificationService, get_notifier

from .base import BaseService, Committed
from .effects import EffectDispatcher
from .lmra import LMRAService
from .tra import TRAService


@dataclass
class Services:
    tra: TRAService
    lmra: LMRAService
    reconciler: OfflineSyncReconciler
    dispatcher: EffectDispatcher
    audit: AuditTrailService


def build_services(
    factory: SessionFactory,
    config: Config,
    notifier: Optional[NotificationService] = None,
) -> Services:
    """Wire stores, state machines and effect publishing.

    Args:
        factory: Session factory from create_session_factory()
        config: Engine configuration
        notifier: Stop-work notifier (default: get_notifier(config))
    """
    audit = AuditTrailService(factory, config.audit_max_retries, config.audit_backoff_seconds)
    dispatcher = EffectDispatcher(factory, audit, notifier if notifier is not None else get_notifier(config))

    tra_store = DocumentStore(factory, TRA, "tra")
    lmra_store = DocumentStore(factory, LMRASession, "lmra")
    tra_machine = TRALifecycleStateMachine(config)
    lmra_machine = LMRAExecutionStateMachine(config, tra_machine)

    return Services(
        tra=TRAService(tra_store, dispatcher, config, tra_machine),
        lmra=LMRAService(lmra_store, tra_store, dispatcher, config, lmra_machine),
        reconciler=OfflineSyncReconciler(factory, lmra_store, lmra_machine, dispatcher),
        dispatcher=dispatcher,
        audit=audit,
    )


__all__ = [
    "BaseService",
    "Committed",
    "EffectDispatcher",
    "LMRAService",
    "Services",
    "TRAService",
    "build_services",
]
