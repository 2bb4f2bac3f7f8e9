"""Immutable compliance audit log with hash chaining.

Provides:
- append_audit_log: Append an AuditEvent with hash chain integrity
- verify_audit_chain: Verify cryptographic integrity of entire audit chain
- AuditTrailService: write_log(event) sink with retry and backoff
"""

import asyncio
import json
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from safework.core.domain.events import AuditEvent
from safework.core.retry import retry_async

from .database import SessionFactory, session_scope
from .models import AuditLog

logger = structlog.get_logger()


async def append_audit_log(session: AsyncSession, event: AuditEvent) -> AuditLog:
    """Append new entry to audit log with hash chaining.

    Links the entry to the previous one via SHA-256 hash so tampering is
    detectable.

    Args:
        session: Database session
        event: Audit event produced by a state transition

    Returns:
        Created AuditLog entry with computed hash

    Example:
        >>> async with session_scope(factory) as session:
        ...     await append_audit_log(session, AuditEvent(
        ...         event_type="tra_submitted", actor_id="u-1",
        ...         subject_id="tra-1", subject_type="tra", organization_id="org-1",
        ...     ))
    """
    stmt = select(AuditLog).order_by(AuditLog.id.desc()).limit(1)
    result = await session.execute(stmt)
    previous_entry = result.scalar_one_or_none()

    entry = AuditLog(
        timestamp=datetime.now(timezone.utc),
        event_type=event.event_type,
        severity=event.severity.value,
        actor_id=event.actor_id,
        subject_id=event.subject_id,
        subject_type=event.subject_type,
        organization_id=event.organization_id,
        event_metadata=json.dumps(event.metadata, sort_keys=True, default=str),
        compliance_relevant=event.compliance_relevant,
        previous_hash=previous_entry.entry_hash if previous_entry else None,
        entry_hash="",  # Will be computed by before_insert event listener
    )

    session.add(entry)
    await session.flush()  # Trigger before_insert event to compute hash

    return entry


async def verify_audit_chain(session: AsyncSession) -> bool:
    """Verify cryptographic integrity of audit log chain.

    Validates that every entry's hash matches its content and that each
    previous_hash points at the preceding entry.

    Returns:
        True if chain is valid (or empty), False if tampered
    """
    stmt = select(AuditLog).order_by(AuditLog.id.asc())
    result = await session.execute(stmt)
    entries = result.scalars().all()

    previous_hash = None
    for entry in entries:
        if entry.entry_hash != entry.compute_hash():
            return False
        if entry.previous_hash != previous_hash:
            return False
        previous_hash = entry.entry_hash

    return True


async def list_audit_entries(session: AsyncSession, subject_id: str) -> list[AuditLog]:
    """All audit entries for one TRA or LMRA session, oldest first."""
    result = await session.execute(
        select(AuditLog).where(AuditLog.subject_id == subject_id).order_by(AuditLog.id.asc())
    )
    return list(result.scalars().all())


class AuditTrailService:
    """Write-only audit sink used at the service boundary.

    Writes are attempted at least once and retried with backoff. A write
    that still fails is logged and reported as False; it never raises
    into the caller, whose transition has already committed.
    """

    def __init__(self, factory: SessionFactory, max_retries: int = 3, backoff_seconds: float = 1.0):
        self.factory = factory
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        # Serializes appends so the chain never forks within this process
        self._lock = asyncio.Lock()

    async def _write(self, event: AuditEvent) -> None:
        async with self._lock:
            async with session_scope(self.factory) as session:
                await append_audit_log(session, event)

    async def write_log(self, event: AuditEvent) -> bool:
        """Persist one audit event.

        Returns:
            True if written, False if every attempt failed
        """
        try:
            await retry_async(
                lambda: self._write(event),
                name="audit_write_log",
                max_retries=self.max_retries,
                backoff_seconds=self.backoff_seconds,
                retry_on=(SQLAlchemyError,),
            )
        except SQLAlchemyError as e:
            logger.error(
                "audit_write_failed",
                event_type=event.event_type,
                subject_id=event.subject_id,
                error=str(e),
            )
            return False
        return True
