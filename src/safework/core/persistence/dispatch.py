"""Stop-work notification ledger.

A stop-work notice may reach the boundary more than once (service call
followed by an offline replay, two processes racing). The ledger row for
`(session_id, stop_work_at)` is inserted before delivery is requested;
whoever inserts it owns the request, everyone else skips.

Provides:
- claim_stop_work: Insert the dedup row, False if the key was already claimed
- mark_delivered: Flag a claimed notice as delivered
"""

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from safework.core.domain.events import StopWorkNotice

from .models import StopWorkDispatch


def dispatch_key(timestamp: datetime) -> str:
    """Canonical ISO-8601 UTC form of a stop-work timestamp."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc).isoformat()


async def claim_stop_work(session: AsyncSession, notice: StopWorkNotice) -> bool:
    """Claim the right to request delivery of a stop-work notice.

    Run it in a transaction of its own: a concurrent claim of the same key
    surfaces as IntegrityError on flush, which the caller treats as
    "already claimed".

    Returns:
        True if this call claimed the key, False if it was claimed before

    Raises:
        IntegrityError: Another writer claimed the key concurrently
    """
    key = dispatch_key(notice.timestamp)
    existing = await session.execute(
        select(StopWorkDispatch.id).where(
            StopWorkDispatch.session_id == notice.session_id,
            StopWorkDispatch.stop_work_at == key,
        )
    )
    if existing.scalar_one_or_none() is not None:
        return False

    session.add(StopWorkDispatch(
        session_id=notice.session_id,
        stop_work_at=key,
        reason=notice.reason,
    ))
    await session.flush()
    return True


async def mark_delivered(session: AsyncSession, notice: StopWorkNotice) -> None:
    result = await session.execute(
        select(StopWorkDispatch).where(
            StopWorkDispatch.session_id == notice.session_id,
            StopWorkDispatch.stop_work_at == dispatch_key(notice.timestamp),
        )
    )
    record = result.scalar_one_or_none()
    if record is not None:
        record.delivered = True
        await session.flush()


async def count_dispatches(session: AsyncSession, session_id: str) -> int:
    result = await session.execute(
        select(StopWorkDispatch.id).where(StopWorkDispatch.session_id == session_id)
    )
    return len(result.scalars().all())
