"""Data access helpers for the stake account inventory."""
from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from delegation_sync.models.account import StakeAccount
from delegation_sync.repositories.bulk import chunked, insert_ignore_duplicates

__all__ = ["AccountRepository"]


class AccountRepository:
    """Thin wrapper around database access for stake accounts."""

    def __init__(self, session: Session, *, lookup_chunk_size: int = 5000) -> None:
        self.session = session
        self.lookup_chunk_size = lookup_chunk_size

    def existing(self, addresses: Sequence[str]) -> set[str]:
        """Return the subset of ``addresses`` already in the inventory."""
        found: set[str] = set()
        for chunk in chunked(list(addresses), self.lookup_chunk_size):
            result = self.session.execute(
                select(StakeAccount.stake_address).where(StakeAccount.stake_address.in_(chunk))
            )
            found.update(result.scalars())
        return found

    def insert_ignore(self, addresses: Sequence[str]) -> int:
        """Insert accounts that are not yet known and return how many were new."""
        rows = [{"stake_address": address} for address in addresses]
        return insert_ignore_duplicates(self.session, StakeAccount, rows)

    def count(self) -> int:
        """Return the number of known accounts."""
        return self.session.execute(select(func.count()).select_from(StakeAccount)).scalar_one()

    def pending_history(self, addresses: Sequence[str]) -> list[str]:
        """Return known ``addresses`` whose history was never stored, in input order."""
        pending: set[str] = set()
        for chunk in chunked(list(addresses), self.lookup_chunk_size):
            result = self.session.execute(
                select(StakeAccount.stake_address).where(
                    StakeAccount.stake_address.in_(chunk),
                    StakeAccount.history_backfilled_at.is_(None),
                )
            )
            pending.update(result.scalars())
        return [address for address in dict.fromkeys(addresses) if address in pending]

    def mark_history_backfilled(self, stake_address: str, when: datetime) -> None:
        """Stage the backfill marker of one account."""
        self.session.execute(
            update(StakeAccount)
            .where(StakeAccount.stake_address == stake_address)
            .values(history_backfilled_at=when)
            .execution_options(synchronize_session=False)
        )
