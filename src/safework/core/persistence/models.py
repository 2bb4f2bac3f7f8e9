"""SQLAlchemy ORM models for the async persistence boundary.

Models:
- DocumentRecord: Versioned TRA / LMRA documents stored as JSON
- AuditLog: Immutable compliance audit trail with hash chaining
- OfflineMutationRecord: Queued offline mutations per LMRA session
- SyncCursor: Last processed mutation sequence per session
- StopWorkDispatch: Dedup ledger for stop-work notification requests
"""

import hashlib
import json
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite returns naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class DocumentRecord(Base):
    """Versioned domain document.

    `version` is the optimistic-concurrency token; it starts at 1 and is
    bumped by every successful compare-and-swap.
    """
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    kind: Mapped[str] = mapped_column(String(20), index=True, nullable=False)  # tra/lmra
    organization_id: Mapped[str] = mapped_column(String(100), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    body: Mapped[str] = mapped_column(Text, nullable=False)  # JSON document
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_documents_kind_status", "kind", "status"),
    )


class AuditLog(Base):
    """Immutable audit trail with hash chaining.

    Each entry is linked to the previous entry via SHA-256 hash, which
    makes tampering detectable by verify_audit_chain.

    Attributes:
        id: Auto-incrementing primary key
        timestamp: When the event was written (indexed)
        event_type: Type of event, e.g. tra_submitted, lmra_stop_work (indexed)
        severity: info/warning/error/critical
        actor_id: User or "system"
        subject_id: TRA or LMRA session id (indexed)
        subject_type: tra/lmra_session
        organization_id: Owning organization
        event_metadata: JSON payload with event details
        compliance_relevant: Whether the entry belongs to the compliance record
        previous_hash: Hash of previous entry (for chain integrity)
        entry_hash: SHA-256 hash of this entry (unique)
    """
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False, default=_utcnow)
    event_type: Mapped[str] = mapped_column(String(50), index=True, nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="info")
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    subject_type: Mapped[str] = mapped_column(String(30), nullable=False)
    organization_id: Mapped[str] = mapped_column(String(100), nullable=False)
    event_metadata: Mapped[str] = mapped_column(Text, nullable=False)  # JSON payload
    compliance_relevant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    previous_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    __table_args__ = (
        Index("ix_audit_subject_timestamp", "subject_id", "timestamp"),
        Index("ix_audit_event_timestamp", "event_type", "timestamp"),
    )

    def compute_hash(self) -> str:
        """Compute SHA-256 hash of this audit entry.

        Returns:
            Hexadecimal hash string (64 characters)
        """
        timestamp = as_utc(self.timestamp)

        hash_input = {
            "timestamp": timestamp.isoformat() if timestamp else "",
            "event_type": self.event_type,
            "severity": self.severity,
            "actor_id": self.actor_id,
            "subject_id": self.subject_id,
            "subject_type": self.subject_type,
            "organization_id": self.organization_id,
            "event_metadata": self.event_metadata,
            "compliance_relevant": bool(self.compliance_relevant),
            "previous_hash": self.previous_hash or "",
        }
        canonical = json.dumps(hash_input, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class OfflineMutationRecord(Base):
    """Offline mutation waiting for (or done with) reconciliation."""
    __tablename__ = "offline_mutations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mutation_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    session_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)  # JSON OfflineMutation
    # queued/applied/duplicate/rejected/discarded
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="queued")
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    received_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_mutation_session_status_sequence", "session_id", "status", "sequence"),
    )


class SyncCursor(Base):
    """Reconciliation cursor: last processed sequence number per session."""
    __tablename__ = "sync_cursors"

    session_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    last_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=-1)
    last_mutation_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class StopWorkDispatch(Base):
    """One row per stop-work notification request ever made.

    The unique (session_id, stop_work_at) pair is the dedup key.
    """
    __tablename__ = "stop_work_dispatches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(36), nullable=False)
    stop_work_at: Mapped[str] = mapped_column(String(40), nullable=False)  # ISO-8601 UTC
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    claimed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    delivered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("session_id", "stop_work_at", name="uq_stop_work_dispatch_key"),
    )


# Event listener to auto-compute hash before insert
@event.listens_for(AuditLog, "before_insert")
def compute_audit_hash(mapper, connection, target):
    """Automatically compute entry_hash before inserting audit log entry."""
    if not target.entry_hash:
        target.entry_hash = target.compute_hash()
