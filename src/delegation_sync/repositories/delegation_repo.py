"""Data access helpers for delegation state and the change log."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from delegation_sync.models.delegation import (
    NO_PREVIOUS_DREP,
    SYNC_STATE_ID,
    UNKNOWN_EPOCH,
    DelegationChange,
    DelegationState,
    DelegationSyncState,
)
from delegation_sync.repositories.bulk import chunked, insert_ignore_duplicates

__all__ = ["ChangeRow", "DelegationRepository", "StateRow"]


@dataclass(frozen=True)
class StateRow:
    """Values written to one delegation state row."""

    stake_address: str
    drep_id: str | None
    amount: int | None
    delegated_epoch: int | None


@dataclass(frozen=True)
class ChangeRow:
    """Values of one change log entry before it is stored."""

    stake_address: str
    to_drep_id: str
    from_drep_id: str = NO_PREVIOUS_DREP
    delegated_epoch: int = UNKNOWN_EPOCH
    amount: int | None = None


class DelegationRepository:
    """Access to current delegation state, change log and sync bookkeeping."""

    def __init__(self, session: Session, *, lookup_chunk_size: int = 5000) -> None:
        self.session = session
        self.lookup_chunk_size = lookup_chunk_size

    # -- current state -------------------------------------------------

    def states_for(self, addresses: Sequence[str]) -> dict[str, StateRow]:
        """Return the persisted state of each address that has one."""
        states: dict[str, StateRow] = {}
        for chunk in chunked(list(addresses), self.lookup_chunk_size):
            result = self.session.execute(
                select(DelegationState).where(DelegationState.stake_address.in_(chunk))
            )
            for state in result.scalars():
                states[state.stake_address] = StateRow(
                    stake_address=state.stake_address,
                    drep_id=state.drep_id,
                    amount=state.amount,
                    delegated_epoch=state.delegated_epoch,
                )
        return states

    def get_state(self, stake_address: str) -> DelegationState | None:
        """Return the state row for one account."""
        return self.session.get(DelegationState, stake_address)

    def insert_states(self, rows: Sequence[StateRow]) -> int:
        """Create state rows, leaving existing ones untouched."""
        values = [
            {
                "stake_address": row.stake_address,
                "drep_id": row.drep_id,
                "amount": row.amount,
                "delegated_epoch": row.delegated_epoch,
            }
            for row in rows
        ]
        return insert_ignore_duplicates(self.session, DelegationState, values)

    def update_states(self, rows: Sequence[StateRow]) -> int:
        """Overwrite delegate, amount and epoch of existing state rows."""
        updated = 0
        for row in rows:
            result = self.session.execute(
                update(DelegationState)
                .where(DelegationState.stake_address == row.stake_address)
                .values(
                    drep_id=row.drep_id,
                    amount=row.amount,
                    delegated_epoch=row.delegated_epoch,
                )
                .execution_options(synchronize_session=False)
            )
            updated += result.rowcount or 0
        return updated

    # -- change log ----------------------------------------------------

    def insert_changes(self, rows: Sequence[ChangeRow]) -> int:
        """Append change rows, skipping exact duplicates of stored transitions."""
        values = [
            {
                "stake_address": row.stake_address,
                "from_drep_id": row.from_drep_id,
                "to_drep_id": row.to_drep_id,
                "delegated_epoch": row.delegated_epoch,
                "amount": row.amount,
            }
            for row in rows
        ]
        return insert_ignore_duplicates(self.session, DelegationChange, values)

    def changes_for(self, stake_address: str) -> list[DelegationChange]:
        """Return the change log of one account in insertion order."""
        result = self.session.execute(
            select(DelegationChange)
            .where(DelegationChange.stake_address == stake_address)
            .order_by(DelegationChange.id)
        )
        return list(result.scalars())

    def latest_change_targets(self, addresses: Sequence[str]) -> dict[str, str]:
        """Return the most recent recorded delegate for each address with history.

        Recency is insertion order, since the delegated epoch may be unknown.
        """
        latest: dict[str, str] = {}
        for chunk in chunked(list(addresses), self.lookup_chunk_size):
            result = self.session.execute(
                select(DelegationChange.stake_address, DelegationChange.to_drep_id)
                .where(DelegationChange.stake_address.in_(chunk))
                .order_by(DelegationChange.id)
            )
            for stake_address, to_drep_id in result:
                latest[stake_address] = to_drep_id
        return latest

    # -- sync bookkeeping ----------------------------------------------

    def ensure_sync_state(self) -> DelegationSyncState:
        """Return the singleton sync state row, creating it when missing."""
        insert_ignore_duplicates(self.session, DelegationSyncState, [{"id": SYNC_STATE_ID}])
        state = self.session.get(DelegationSyncState, SYNC_STATE_ID)
        if state is None:  # pragma: no cover - the insert above guarantees it
            raise RuntimeError("sync state row missing after insert")
        return state

    def set_last_processed_epoch(self, epoch: int) -> None:
        """Record the last epoch whose delegations were fully reconciled."""
        state = self.ensure_sync_state()
        state.last_processed_epoch = epoch
        self.session.flush()
