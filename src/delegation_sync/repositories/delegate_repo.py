"""Data access helpers for the DRep inventory."""
from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from delegation_sync.models.delegate import Delegate
from delegation_sync.repositories.bulk import chunked, insert_ignore_duplicates

__all__ = ["DelegateRepository"]

# Remote /drep_info keys copied onto the model when present.
_INFO_FIELDS = (
    ("registered", "registered"),
    ("active", "active"),
    ("expires_epoch_no", "expires_epoch"),
    ("meta_url", "meta_url"),
    ("meta_hash", "meta_hash"),
)


class DelegateRepository:
    """Thin wrapper around database access for delegates."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_ids_for_collection(
        self,
        *,
        min_voting_power: int,
        excluded: Iterable[str] = (),
    ) -> list[str]:
        """Return delegate ids above the voting power threshold, ordered by id."""
        stmt = select(Delegate.drep_id).where(Delegate.voting_power > min_voting_power)
        excluded = list(excluded)
        if excluded:
            stmt = stmt.where(Delegate.drep_id.not_in(excluded))
        result = self.session.execute(stmt.order_by(Delegate.drep_id))
        return [drep_id for drep_id in result.scalars() if drep_id]

    def count(self) -> int:
        """Return the number of known delegates."""
        return self.session.execute(select(func.count()).select_from(Delegate)).scalar_one()

    def existing_ids(self, drep_ids: Sequence[str], *, chunk_size: int = 5000) -> set[str]:
        """Return the subset of ``drep_ids`` already stored."""
        found: set[str] = set()
        for chunk in chunked(list(drep_ids), chunk_size):
            result = self.session.execute(
                select(Delegate.drep_id).where(Delegate.drep_id.in_(chunk))
            )
            found.update(result.scalars())
        return found

    def insert_ignore(self, drep_ids: Sequence[str]) -> int:
        """Create placeholder rows for unknown delegates and return how many were new."""
        rows = [{"drep_id": drep_id, "voting_power": 0} for drep_id in drep_ids]
        return insert_ignore_duplicates(self.session, Delegate, rows)

    def apply_info(self, drep_id: str, info: Mapping[str, Any]) -> Delegate | None:
        """Copy the remote ``/drep_info`` fields onto the stored delegate.

        Args:
            drep_id: Identifier of the delegate to update.
            info: One row of the remote response.

        Returns:
            The updated delegate, or ``None`` when it is not stored.
        """
        delegate = self.session.get(Delegate, drep_id)
        if delegate is None:
            return None
        amount = info.get("amount")
        if amount not in (None, ""):
            delegate.voting_power = int(amount)
        for key, attr in _INFO_FIELDS:
            value = info.get(key)
            if value is not None:
                setattr(delegate, attr, value)
        self.session.flush()
        return delegate
