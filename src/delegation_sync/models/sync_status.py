# src/delegation_sync/models/sync_status.py
"""Per-job checkpoint, lease and reconciliation plan models."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, Text, VARCHAR
from sqlalchemy.orm import Mapped, mapped_column

from delegation_sync.db.session import Base
from delegation_sync.db.time import utcnow


class SyncStatus(Base):
    """Progress and lock record for one named job.

    The lease columns (``is_running``, ``locked_by``, ``expires_at``) serialize
    concurrent runs; the ``backfill_*`` columns hold the resumable cursor and
    ``phase_checkpoint`` the serialized reconciliation checkpoint.
    """

    __tablename__ = "sync_status"

    job_name: Mapped[str] = mapped_column(Text, primary_key=True)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Lease
    is_running: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    locked_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_result: Mapped[str | None] = mapped_column(VARCHAR(20), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    items_processed: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Resumable cursor
    backfill_cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    backfill_is_running: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    backfill_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    backfill_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    backfill_items_processed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    backfill_items_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    backfill_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # JSON of a versioned ReconciliationCheckpoint
    phase_checkpoint: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=utcnow, onupdate=utcnow
    )


class ReconcilePlanEntry(Base):
    """One row of the frozen plan of an in-flight reconciliation.

    ``seq`` numbers rows per (job_name, kind) from zero so checkpoint chunk
    indices address the same rows after a restart.
    """

    __tablename__ = "reconcile_plan_entry"
    __table_args__ = (Index("ix_reconcile_plan_entry_job_kind_seq", "job_name", "kind", "seq"),)

    job_name: Mapped[str] = mapped_column(Text, primary_key=True)
    # 'create', 'update', 'change'
    kind: Mapped[str] = mapped_column(VARCHAR(10), primary_key=True)
    seq: Mapped[int] = mapped_column(Integer, primary_key=True)
    stake_address: Mapped[str] = mapped_column(Text, nullable=False)
    from_drep_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    drep_id: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    delegated_epoch: Mapped[int | None] = mapped_column(Integer, nullable=True)
