"""Data access helpers for per-job sync status rows."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from delegation_sync.models.sync_status import SyncStatus
from delegation_sync.repositories.bulk import insert_ignore_duplicates

__all__ = ["SyncStatusRepository"]


class SyncStatusRepository:
    """Conditional create, point reads and partial updates of job rows."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, job_name: str) -> SyncStatus | None:
        """Return the status row of a job."""
        return self.session.get(SyncStatus, job_name)

    def list_all(self) -> list[SyncStatus]:
        """Return every job row ordered by name."""
        result = self.session.execute(select(SyncStatus).order_by(SyncStatus.job_name))
        return list(result.scalars())

    def ensure(self, job_name: str, display_name: str | None = None) -> SyncStatus:
        """Return the status row of a job, creating it when missing."""
        insert_ignore_duplicates(
            self.session,
            SyncStatus,
            [{"job_name": job_name, "display_name": display_name or job_name}],
        )
        status = self.session.get(SyncStatus, job_name)
        if status is None:  # pragma: no cover - the insert above guarantees it
            raise RuntimeError(f"sync status row {job_name!r} missing after insert")
        return status

    def update_fields(self, job_name: str, **fields: Any) -> SyncStatus:
        """Apply a partial update to a job row and flush it."""
        status = self.ensure(job_name)
        for name, value in fields.items():
            if not hasattr(SyncStatus, name):
                raise AttributeError(f"SyncStatus has no column {name!r}")
            setattr(status, name, value)
        self.session.flush()
        return status

    def expire_stale_lease(self, job_name: str, now: datetime) -> bool:
        """Release a lease whose expiry passed. Returns True when one was expired."""
        result = self.session.execute(
            update(SyncStatus)
            .where(
                SyncStatus.job_name == job_name,
                SyncStatus.is_running.is_(True),
                SyncStatus.expires_at.is_not(None),
                SyncStatus.expires_at < now,
            )
            .values(
                is_running=False,
                locked_by=None,
                expires_at=None,
                completed_at=now,
                last_result="expired",
                error_message="lease expired before the run released it",
            )
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    def claim_lease(
        self,
        job_name: str,
        *,
        owner: str,
        now: datetime,
        expires_at: datetime,
    ) -> bool:
        """Atomically mark an idle job as running. Returns True when claimed."""
        result = self.session.execute(
            update(SyncStatus)
            .where(SyncStatus.job_name == job_name, SyncStatus.is_running.is_(False))
            .values(
                is_running=True,
                locked_by=owner,
                started_at=now,
                expires_at=expires_at,
                completed_at=None,
                error_message=None,
            )
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    def renew_lease(self, job_name: str, *, owner: str, expires_at: datetime) -> bool:
        """Push back the expiry of a lease ``owner`` still holds."""
        result = self.session.execute(
            update(SyncStatus)
            .where(
                SyncStatus.job_name == job_name,
                SyncStatus.is_running.is_(True),
                SyncStatus.locked_by == owner,
            )
            .values(expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    def release_lease(
        self,
        job_name: str,
        *,
        owner: str,
        now: datetime,
        result: str,
        items_processed: int | None,
        error_message: str | None,
    ) -> bool:
        """Clear a lease ``owner`` still holds and record the outcome."""
        released = self.session.execute(
            update(SyncStatus)
            .where(
                SyncStatus.job_name == job_name,
                SyncStatus.is_running.is_(True),
                SyncStatus.locked_by == owner,
            )
            .values(
                is_running=False,
                locked_by=None,
                expires_at=None,
                completed_at=now,
                last_result=result,
                items_processed=items_processed,
                error_message=error_message,
            )
            .execution_options(synchronize_session=False)
        )
        return (released.rowcount or 0) == 1
