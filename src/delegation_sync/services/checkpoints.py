"""Per-job progress records: backfill cursor, reconciliation checkpoint and lease.

Callers own transaction boundaries for progress writes so that a cursor or
chunk index is committed together with the rows it covers. Lease operations
commit on their own.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Literal

from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy.orm import Session

from delegation_sync.core.errors import CheckpointError, LeaseLostError
from delegation_sync.db.time import utcnow
from delegation_sync.models.sync_status import SyncStatus
from delegation_sync.repositories.sync_status_repo import SyncStatusRepository

logger = logging.getLogger(__name__)

RECONCILIATION_CHECKPOINT_VERSION = 1

LEASE_SUCCESS = "success"
LEASE_FAILED = "failed"
LEASE_EXPIRED = "expired"


class ReconciliationCheckpoint(BaseModel):
    """Position of an in-flight reconciliation within its persisted plan."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["reconciliation"] = "reconciliation"
    version: Literal[1] = RECONCILIATION_CHECKPOINT_VERSION
    epoch: int
    creates_complete: bool = False
    update_chunk_index: int = 0
    changes_chunk_index: int = 0


class CheckpointStore:
    """Reads and advances the ``sync_status`` row of named jobs."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.repo = SyncStatusRepository(session)

    def get(self, job_name: str) -> SyncStatus | None:
        return self.repo.get(job_name)

    def is_completed(self, job_name: str) -> bool:
        """Return True when the job's backfill reached the end at least once."""
        status = self.repo.get(job_name)
        return status is not None and status.backfill_completed_at is not None

    # -- backfill cursor ------------------------------------------------

    def start_backfill(
        self,
        job_name: str,
        *,
        total: int,
        display_name: str | None = None,
    ) -> SyncStatus:
        """Mark a backfill as running and return its row.

        An existing cursor is kept so the caller can resume after it. A job
        with no cursor starts counting from zero. Commits.
        """
        status = self.repo.ensure(job_name, display_name)
        fields = {
            "backfill_is_running": True,
            "backfill_completed_at": None,
            "backfill_error_message": None,
            "backfill_items_total": total,
        }
        if status.backfill_cursor is None:
            fields["backfill_items_processed"] = 0
        if status.backfill_started_at is None:
            fields["backfill_started_at"] = utcnow()
        status = self.repo.update_fields(job_name, **fields)
        self.session.commit()
        return status

    def advance_cursor(self, job_name: str, cursor: str, processed: int) -> None:
        """Stage a cursor advance. The caller commits it with the covered rows."""
        status = self.repo.get(job_name)
        if status is None:
            raise CheckpointError(f"cannot advance cursor of unknown job {job_name!r}")
        if status.backfill_cursor is not None and cursor <= status.backfill_cursor:
            raise CheckpointError(
                f"cursor of {job_name!r} must move forward "
                f"({status.backfill_cursor!r} -> {cursor!r})"
            )
        status.backfill_cursor = cursor
        status.backfill_items_processed = processed
        self.session.flush()

    def complete_backfill(self, job_name: str) -> None:
        """Clear the cursor and stamp completion. Commits."""
        self.repo.update_fields(
            job_name,
            backfill_cursor=None,
            backfill_is_running=False,
            backfill_completed_at=utcnow(),
            backfill_error_message=None,
        )
        self.session.commit()

    def fail_backfill(self, job_name: str, message: str) -> None:
        """Record a backfill failure, keeping the committed cursor. Commits."""
        self.repo.update_fields(
            job_name,
            backfill_is_running=False,
            backfill_error_message=message,
        )
        self.session.commit()

    # -- reconciliation checkpoint ---------------------------------------

    def load_reconciliation(self, job_name: str) -> ReconciliationCheckpoint | None:
        """Return the stored checkpoint, discarding records this version cannot read."""
        status = self.repo.get(job_name)
        if status is None or not status.phase_checkpoint:
            return None
        try:
            return ReconciliationCheckpoint.model_validate_json(status.phase_checkpoint)
        except ValidationError as exc:
            logger.warning(
                "Discarding unreadable reconciliation checkpoint for %s: %s",
                job_name,
                exc.errors()[0].get("msg") if exc.errors() else exc,
            )
            return None

    def save_reconciliation(
        self,
        job_name: str,
        checkpoint: ReconciliationCheckpoint,
        *,
        display_name: str | None = None,
    ) -> None:
        """Stage a checkpoint write. The caller commits it with the covered rows."""
        self.repo.ensure(job_name, display_name)
        self.repo.update_fields(
            job_name,
            phase_checkpoint=checkpoint.model_dump_json(),
            backfill_is_running=True,
            backfill_completed_at=None,
        )

    def complete_reconciliation(self, job_name: str) -> None:
        """Stage clearing the checkpoint and stamping completion."""
        self.repo.update_fields(
            job_name,
            phase_checkpoint=None,
            backfill_cursor=None,
            backfill_is_running=False,
            backfill_completed_at=utcnow(),
        )

    # -- lease ------------------------------------------------------------

    def acquire_lease(
        self,
        job_name: str,
        owner: str,
        ttl_seconds: int,
        *,
        display_name: str | None = None,
    ) -> bool:
        """Try to become the single running instance of a job.

        Expired leases are released first and marked ``expired``. Commits.

        Returns:
            True when this caller now holds the lease.
        """
        now = utcnow()
        try:
            if self.repo.expire_stale_lease(job_name, now):
                logger.warning("Lease on %s expired; releasing it", job_name)
            self.repo.ensure(job_name, display_name)
            claimed = self.repo.claim_lease(
                job_name,
                owner=owner,
                now=now,
                expires_at=now + timedelta(seconds=ttl_seconds),
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return claimed

    def renew_lease(self, job_name: str, owner: str, ttl_seconds: int) -> bool:
        """Stage an expiry extension. The caller commits it with its progress."""
        return self.repo.renew_lease(
            job_name,
            owner=owner,
            expires_at=utcnow() + timedelta(seconds=ttl_seconds),
        )

    def release_lease(
        self,
        job_name: str,
        *,
        owner: str,
        result: str,
        items_processed: int | None = None,
        error_message: str | None = None,
    ) -> bool:
        """Release the lease ``owner`` holds and record how the run ended. Commits.

        A lease that expired and was claimed by another run is left alone.
        """
        self.session.rollback()
        released = self.repo.release_lease(
            job_name,
            owner=owner,
            now=utcnow(),
            result=result,
            items_processed=items_processed,
            error_message=error_message,
        )
        self.session.commit()
        if not released:
            logger.warning("Lease on %s is no longer held by %s; leaving it", job_name, owner)
        return released


class Lease:
    """A held job lease, extended each time a long phase commits progress."""

    def __init__(self, store: CheckpointStore, job_name: str, owner: str, ttl_seconds: int) -> None:
        self.store = store
        self.job_name = job_name
        self.owner = owner
        self.ttl_seconds = ttl_seconds

    def renew(self) -> None:
        """Stage a renewal in the caller's transaction.

        Raises:
            LeaseLostError: The lease expired and another run released or took it.
        """
        if not self.store.renew_lease(self.job_name, self.owner, self.ttl_seconds):
            raise LeaseLostError(f"lease on {self.job_name!r} is no longer held by {self.owner!r}")
