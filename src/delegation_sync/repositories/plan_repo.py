"""Data access helpers for the persisted reconciliation plan."""
from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import delete, func, insert, select
from sqlalchemy.orm import Session

from delegation_sync.models.sync_status import ReconcilePlanEntry
from delegation_sync.repositories.delegation_repo import ChangeRow, StateRow

__all__ = ["PLAN_CHANGE", "PLAN_CREATE", "PLAN_UPDATE", "ReconcilePlanRepository"]

PLAN_CREATE = "create"
PLAN_UPDATE = "update"
PLAN_CHANGE = "change"


class ReconcilePlanRepository:
    """Stores the create, update and change rows of an in-flight reconciliation."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def has_plan(self, job_name: str) -> bool:
        """Return True when rows of an unfinished plan exist for the job."""
        stmt = select(func.count()).select_from(ReconcilePlanEntry).where(
            ReconcilePlanEntry.job_name == job_name
        )
        return self.session.execute(stmt).scalar_one() > 0

    def count(self, job_name: str, kind: str) -> int:
        """Return the number of plan rows of one kind."""
        stmt = select(func.count()).select_from(ReconcilePlanEntry).where(
            ReconcilePlanEntry.job_name == job_name,
            ReconcilePlanEntry.kind == kind,
        )
        return self.session.execute(stmt).scalar_one()

    def write(
        self,
        job_name: str,
        *,
        creates: Sequence[StateRow],
        updates: Sequence[StateRow],
        changes: Sequence[ChangeRow],
    ) -> None:
        """Replace the job's plan with the given rows, numbered from zero per kind."""
        self.clear(job_name)
        values: list[dict[str, object]] = []
        for kind, rows in ((PLAN_CREATE, creates), (PLAN_UPDATE, updates)):
            values.extend(
                {
                    "job_name": job_name,
                    "kind": kind,
                    "seq": seq,
                    "stake_address": row.stake_address,
                    "from_drep_id": None,
                    "drep_id": row.drep_id,
                    "amount": row.amount,
                    "delegated_epoch": row.delegated_epoch,
                }
                for seq, row in enumerate(rows)
            )
        values.extend(
            {
                "job_name": job_name,
                "kind": PLAN_CHANGE,
                "seq": seq,
                "stake_address": row.stake_address,
                "from_drep_id": row.from_drep_id,
                "drep_id": row.to_drep_id,
                "amount": row.amount,
                "delegated_epoch": row.delegated_epoch,
            }
            for seq, row in enumerate(changes)
        )
        if values:
            self.session.execute(insert(ReconcilePlanEntry), values)

    def _entries(self, job_name: str, kind: str, start: int, size: int) -> list:
        result = self.session.execute(
            select(
                ReconcilePlanEntry.stake_address,
                ReconcilePlanEntry.from_drep_id,
                ReconcilePlanEntry.drep_id,
                ReconcilePlanEntry.amount,
                ReconcilePlanEntry.delegated_epoch,
            )
            .where(
                ReconcilePlanEntry.job_name == job_name,
                ReconcilePlanEntry.kind == kind,
                ReconcilePlanEntry.seq >= start,
                ReconcilePlanEntry.seq < start + size,
            )
            .order_by(ReconcilePlanEntry.seq)
        )
        return list(result)

    def state_rows(self, job_name: str, kind: str, start: int, size: int) -> list[StateRow]:
        """Return a window of create or update rows."""
        return [
            StateRow(
                stake_address=entry.stake_address,
                drep_id=entry.drep_id,
                amount=entry.amount,
                delegated_epoch=entry.delegated_epoch,
            )
            for entry in self._entries(job_name, kind, start, size)
        ]

    def change_rows(self, job_name: str, start: int, size: int) -> list[ChangeRow]:
        """Return a window of change rows."""
        return [
            ChangeRow(
                stake_address=entry.stake_address,
                from_drep_id=entry.from_drep_id or "",
                to_drep_id=entry.drep_id,
                delegated_epoch=entry.delegated_epoch,
                amount=entry.amount,
            )
            for entry in self._entries(job_name, PLAN_CHANGE, start, size)
        ]

    def clear(self, job_name: str) -> None:
        """Delete every plan row of the job."""
        self.session.execute(
            delete(ReconcilePlanEntry)
            .where(ReconcilePlanEntry.job_name == job_name)
            .execution_options(synchronize_session=False)
        )
