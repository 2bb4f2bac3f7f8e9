"""Versioned document store with compare-and-swap.

Provides:
- DocumentStore: get / create / compare_and_swap / list_ids_by_status for
  one document kind (TRA or LMRA session)
"""

from datetime import datetime, timezone
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from safework.core.errors import Conflict, NotFoundError

from .database import SessionFactory, session_scope
from .models import DocumentRecord

DocT = TypeVar("DocT", bound=BaseModel)


class DocumentStore(Generic[DocT]):
    """Persistence contract for one document kind.

    Every write is an atomic `UPDATE ... WHERE version = expected`; there is
    no in-process locking. A caller whose expected version is stale gets
    Conflict and must re-fetch.

    Methods accept an optional open AsyncSession so a write can share a
    transaction with other rows (e.g. a reconciliation cursor).

    Example:
        >>> store = DocumentStore(factory, TRA, "tra")
        >>> version = await store.create(tra)
        >>> tra, version = await store.get(tra.id)
        >>> version = await store.compare_and_swap(tra.id, version, updated)
    """

    def __init__(self, factory: SessionFactory, model: type[DocT], kind: str):
        self.factory = factory
        self.model = model
        self.kind = kind

    def _serialize(self, entity: DocT) -> str:
        return entity.model_dump_json()

    def _deserialize(self, body: str) -> DocT:
        return self.model.model_validate_json(body)

    @staticmethod
    def _status(entity: DocT) -> str:
        # TRA carries `status`, LMRA sessions carry `stage`
        value = getattr(entity, "status", None) or getattr(entity, "stage")
        return getattr(value, "value", value)

    async def _get(self, session: AsyncSession, entity_id: str) -> tuple[DocT, int]:
        stmt = select(DocumentRecord).where(
            DocumentRecord.id == entity_id,
            DocumentRecord.kind == self.kind,
        )
        result = await session.execute(stmt)
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError(self.kind, entity_id)
        return self._deserialize(record.body), record.version

    async def get(self, entity_id: str, session: Optional[AsyncSession] = None) -> tuple[DocT, int]:
        """Load a document with its version.

        Raises:
            NotFoundError: No document of this kind with that id
        """
        if session is not None:
            return await self._get(session, entity_id)
        async with session_scope(self.factory) as scoped:
            return await self._get(scoped, entity_id)

    async def _create(self, session: AsyncSession, entity: DocT) -> int:
        session.add(DocumentRecord(
            id=entity.id,
            kind=self.kind,
            organization_id=entity.organization_id,
            status=self._status(entity),
            version=1,
            body=self._serialize(entity),
        ))
        await session.flush()
        return 1

    async def create(self, entity: DocT, session: Optional[AsyncSession] = None) -> int:
        """Insert a new document at version 1.

        Raises:
            sqlalchemy.exc.IntegrityError: A document with this id already exists
        """
        if session is not None:
            return await self._create(session, entity)
        async with session_scope(self.factory) as scoped:
            return await self._create(scoped, entity)

    async def _compare_and_swap(
        self,
        session: AsyncSession,
        entity_id: str,
        expected_version: int,
        entity: DocT,
    ) -> int:
        new_version = expected_version + 1
        stmt = (
            update(DocumentRecord)
            .where(
                DocumentRecord.id == entity_id,
                DocumentRecord.kind == self.kind,
                DocumentRecord.version == expected_version,
            )
            .values(
                version=new_version,
                status=self._status(entity),
                body=self._serialize(entity),
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount == 1:
            return new_version

        current = await session.execute(
            select(DocumentRecord.version).where(
                DocumentRecord.id == entity_id,
                DocumentRecord.kind == self.kind,
            )
        )
        actual = current.scalar_one_or_none()
        if actual is None:
            raise NotFoundError(self.kind, entity_id)
        raise Conflict(entity_id, expected_version, actual)

    async def compare_and_swap(
        self,
        entity_id: str,
        expected_version: int,
        entity: DocT,
        session: Optional[AsyncSession] = None,
    ) -> int:
        """Replace a document if its stored version still equals expected_version.

        Returns:
            The new version (expected_version + 1)

        Raises:
            Conflict: Stored version has advanced
            NotFoundError: Document does not exist
        """
        if session is not None:
            return await self._compare_and_swap(session, entity_id, expected_version, entity)
        async with session_scope(self.factory) as scoped:
            return await self._compare_and_swap(scoped, entity_id, expected_version, entity)

    async def list_ids_by_status(self, status: str) -> list[str]:
        """Ids of every document of this kind currently in `status`."""
        status = getattr(status, "value", status)
        async with session_scope(self.factory) as session:
            result = await session.execute(
                select(DocumentRecord.id)
                .where(DocumentRecord.kind == self.kind, DocumentRecord.status == status)
                .order_by(DocumentRecord.created_at, DocumentRecord.id)
            )
            return list(result.scalars().all())
