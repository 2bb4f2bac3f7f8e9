"""Base service with the shared load / transition / swap / publish cycle.

Provides:
- Committed: Result of a committed transition (entity, version, warnings)
- BaseService: Optimistic-concurrency boundary around a pure state machine
"""

from dataclasses import dataclass, field
from typing import Callable, Generic, Optional, TypeVar

import structlog

from safework.core.config import Config
from safework.core.domain.events import Transition
from safework.core.errors import Conflict
from safework.core.persistence.store import DocumentStore

from .effects import EffectDispatcher

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class Committed(Generic[T]):
    """Entity as stored after an operation, with its new version."""
    entity: T
    version: int
    warnings: list[str] = field(default_factory=list)
    changed: bool = True


class BaseService(Generic[T]):
    """Runs pure transitions against a versioned store.

    Every mutating call takes the version the caller read. The stored
    document is loaded, compared against that version (Conflict when it
    advanced), passed through the pure transition and written back with
    compare-and-swap. Effects are published only after the swap commits.
    """

    def __init__(self, store: DocumentStore[T], dispatcher: EffectDispatcher, config: Optional[Config] = None):
        self.store = store
        self.dispatcher = dispatcher
        self.config = config or Config()
        self.log = logger.bind(service=self.__class__.__name__)

    async def get(self, entity_id: str) -> tuple[T, int]:
        return await self.store.get(entity_id)

    async def load(self, entity_id: str, expected_version: Optional[int]) -> tuple[T, int]:
        """Load an entity, enforcing the caller's expected version when given.

        Raises:
            NotFoundError: Entity does not exist
            Conflict: Stored version differs from expected_version
        """
        entity, version = await self.store.get(entity_id)
        if expected_version is not None and version != expected_version:
            raise Conflict(entity_id, expected_version, version)
        return entity, version

    async def commit(self, entity_id: str, version: int, transition: Transition[T]) -> Committed[T]:
        if not transition.changed:
            return Committed(transition.entity, version, transition.warnings, changed=False)
        new_version = await self.store.compare_and_swap(entity_id, version, transition.entity)
        self.log.info(
            "transition_committed",
            entity_id=entity_id,
            version=new_version,
            events=[event.event_type for event in transition.events],
        )
        await self.dispatcher.dispatch(transition)
        return Committed(transition.entity, new_version, transition.warnings)

    async def apply(
        self,
        entity_id: str,
        expected_version: Optional[int],
        operation: Callable[[T], Transition[T]],
    ) -> Committed[T]:
        """Load, run `operation` on the entity, compare-and-swap, publish."""
        entity, version = await self.load(entity_id, expected_version)
        return await self.commit(entity_id, version, operation(entity))
