"""Offline mutation queue and resumable reconciliation cursor.

Provides:
- enqueue_mutation: Queue a client mutation (idempotent by mutation id)
- load_queued_mutations: Queued mutations for a session in sequence order
- get_mutation_record: Look up one queued mutation
- mark_mutation: Record the outcome of processing a mutation
- load_cursor / save_cursor: Last processed sequence per session
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from safework.core.domain.sync import OfflineMutation

from .models import OfflineMutationRecord, SyncCursor

QUEUED = "queued"
APPLIED = "applied"
DUPLICATE = "duplicate"
REJECTED = "rejected"
DISCARDED = "discarded"


async def get_mutation_record(session: AsyncSession, mutation_id: str) -> Optional[OfflineMutationRecord]:
    result = await session.execute(
        select(OfflineMutationRecord).where(OfflineMutationRecord.mutation_id == mutation_id)
    )
    return result.scalar_one_or_none()


async def enqueue_mutation(session: AsyncSession, mutation: OfflineMutation) -> bool:
    """Queue a mutation received from a client.

    Args:
        session: Database session
        mutation: Client-generated mutation

    Returns:
        True if queued, False if this mutation id was already received
    """
    if await get_mutation_record(session, mutation.mutation_id) is not None:
        return False

    session.add(OfflineMutationRecord(
        mutation_id=mutation.mutation_id,
        session_id=mutation.session_id,
        sequence=mutation.sequence,
        payload=mutation.model_dump_json(),
        status=QUEUED,
    ))
    await session.flush()
    return True


async def load_queued_mutations(session: AsyncSession, session_id: str) -> list[OfflineMutation]:
    """Queued mutations for one LMRA session, in sequence then arrival order."""
    result = await session.execute(
        select(OfflineMutationRecord)
        .where(
            OfflineMutationRecord.session_id == session_id,
            OfflineMutationRecord.status == QUEUED,
        )
        .order_by(OfflineMutationRecord.sequence.asc(), OfflineMutationRecord.id.asc())
    )
    return [OfflineMutation.model_validate_json(record.payload) for record in result.scalars().all()]


async def load_rejected_mutations(session: AsyncSession, session_id: str) -> list[OfflineMutationRecord]:
    """Rejected mutations still awaiting a caller decision."""
    result = await session.execute(
        select(OfflineMutationRecord)
        .where(
            OfflineMutationRecord.session_id == session_id,
            OfflineMutationRecord.status == REJECTED,
        )
        .order_by(OfflineMutationRecord.sequence.asc(), OfflineMutationRecord.id.asc())
    )
    return list(result.scalars().all())


async def mark_mutation(
    session: AsyncSession,
    mutation_id: str,
    status: str,
    reason: Optional[str] = None,
) -> None:
    record = await get_mutation_record(session, mutation_id)
    if record is None:
        return
    record.status = status
    record.reason = reason
    record.processed_at = datetime.now(timezone.utc)
    await session.flush()


async def load_cursor(session: AsyncSession, session_id: str) -> int:
    """Last processed sequence number for a session, -1 if none."""
    cursor = await session.get(SyncCursor, session_id)
    return cursor.last_sequence if cursor is not None else -1


async def save_cursor(
    session: AsyncSession,
    session_id: str,
    last_sequence: int,
    last_mutation_id: Optional[str] = None,
) -> None:
    """Persist the cursor. It never moves backwards."""
    cursor = await session.get(SyncCursor, session_id)
    now = datetime.now(timezone.utc)
    if cursor is None:
        session.add(SyncCursor(
            session_id=session_id,
            last_sequence=last_sequence,
            last_mutation_id=last_mutation_id,
            updated_at=now,
        ))
    elif last_sequence >= cursor.last_sequence:
        cursor.last_sequence = last_sequence
        cursor.last_mutation_id = last_mutation_id
        cursor.updated_at = now
    await session.flush()
