"""Reconciliation of the collected delegator view against persisted state.

The reconciler diffs the collector's view with ``stake_delegation_state``
and writes the result in three phases: state creates, state updates in
chunks and change log inserts in chunks. The diff is first frozen into
``reconcile_plan_entry`` together with a fresh checkpoint, so chunk indices
keep pointing at the same rows if the process dies and a later run resumes.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from delegation_sync.models.delegation import NO_PREVIOUS_DREP
from delegation_sync.repositories.delegation_repo import (
    ChangeRow,
    DelegationRepository,
    StateRow,
)
from delegation_sync.repositories.plan_repo import (
    PLAN_CHANGE,
    PLAN_CREATE,
    PLAN_UPDATE,
    ReconcilePlanRepository,
)
from delegation_sync.services.checkpoints import CheckpointStore, Lease, ReconciliationCheckpoint
from delegation_sync.services.collector import CurrentDelegation

logger = logging.getLogger(__name__)

RECONCILE_JOB = "drep-delegation-reconcile"


@dataclass
class ReconcilePlan:
    """Rows a reconciliation will write."""

    creates: list[StateRow] = field(default_factory=list)
    updates: list[StateRow] = field(default_factory=list)
    changes: list[ChangeRow] = field(default_factory=list)
    max_delegation_epoch: int | None = None


@dataclass
class ReconcileResult:
    states_created: int = 0
    states_updated: int = 0
    changes_inserted: int = 0
    max_delegation_epoch: int | None = None
    resumed: bool = False


def plan_reconciliation(
    delegations: Mapping[str, CurrentDelegation],
    existing: Mapping[str, StateRow],
    history_latest: Mapping[str, str],
    current_epoch: int,
) -> ReconcilePlan:
    """Compute creates, updates and change rows for the collected delegations.

    A change row is emitted when the account's delegate differs from the
    persisted one, unless backfilled history already ends at that delegate.
    """
    plan = ReconcilePlan()
    fallback_epoch = max(0, current_epoch - 1)

    for stake_address, current in delegations.items():
        delegated_epoch = current.epoch if current.epoch is not None else fallback_epoch
        if plan.max_delegation_epoch is None or delegated_epoch > plan.max_delegation_epoch:
            plan.max_delegation_epoch = delegated_epoch

        state = existing.get(stake_address)
        state_changed = state is None or state.drep_id != current.drep_id
        needs_update = (
            state_changed
            or state.amount != current.amount
            or state.delegated_epoch != delegated_epoch
        )

        if state_changed and history_latest.get(stake_address) != current.drep_id:
            previous = state.drep_id if state is not None else None
            plan.changes.append(
                ChangeRow(
                    stake_address=stake_address,
                    from_drep_id=previous or NO_PREVIOUS_DREP,
                    to_drep_id=current.drep_id,
                    delegated_epoch=delegated_epoch,
                    amount=current.amount,
                )
            )

        if needs_update:
            row = StateRow(
                stake_address=stake_address,
                drep_id=current.drep_id,
                amount=current.amount,
                delegated_epoch=delegated_epoch,
            )
            if state is None:
                plan.creates.append(row)
            else:
                plan.updates.append(row)

    return plan


class StateReconciler:
    """Applies a reconciliation plan in checkpointed chunks."""

    def __init__(
        self,
        session: Session,
        *,
        job_name: str = RECONCILE_JOB,
        update_chunk_size: int = 500,
        change_chunk_size: int = 1000,
        lookup_chunk_size: int = 5000,
        lease: Lease | None = None,
    ) -> None:
        self.session = session
        self.job_name = job_name
        self.lease = lease
        self.update_chunk_size = update_chunk_size
        self.change_chunk_size = change_chunk_size
        self.store = CheckpointStore(session)
        self.plans = ReconcilePlanRepository(session)
        self.delegations = DelegationRepository(session, lookup_chunk_size=lookup_chunk_size)

    def reconcile(
        self,
        delegations: Mapping[str, CurrentDelegation],
        history_latest: Mapping[str, str],
        current_epoch: int,
    ) -> ReconcileResult:
        """Bring persisted state in line with ``delegations``.

        A plan left behind by an interrupted run is finished first. The fresh
        plan is then computed against the state that run produced.

        Accounts whose delegate changed and that ``history_latest`` does not
        cover are looked up in the stored change log, so history written by an
        earlier run is not recorded a second time.
        """
        result = ReconcileResult()

        pending = self.store.load_reconciliation(self.job_name)
        if pending is not None:
            logger.info(
                "Resuming reconciliation from epoch %d: creates=%s update_chunk=%d changes_chunk=%d",
                pending.epoch,
                pending.creates_complete,
                pending.update_chunk_index,
                pending.changes_chunk_index,
            )
            self._apply(pending, result)
            result.resumed = True
        elif self.plans.has_plan(self.job_name):
            logger.warning(
                "Discarding reconciliation plan without a readable checkpoint for %s",
                self.job_name,
            )
            self.plans.clear(self.job_name)
            self.store.complete_reconciliation(self.job_name)
            self.session.commit()

        existing = self.delegations.states_for(list(delegations))
        history_latest = self._with_logged_history(delegations, existing, history_latest)
        plan = plan_reconciliation(delegations, existing, history_latest, current_epoch)
        result.max_delegation_epoch = plan.max_delegation_epoch

        checkpoint = ReconciliationCheckpoint(epoch=current_epoch)
        try:
            self.plans.write(
                self.job_name,
                creates=plan.creates,
                updates=plan.updates,
                changes=plan.changes,
            )
            self.store.save_reconciliation(
                self.job_name, checkpoint, display_name="DRep Delegation Reconciliation"
            )
            self._renew_lease()
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self._apply(checkpoint, result)
        logger.info(
            "Reconciliation complete: created=%d updated=%d changes=%d",
            result.states_created,
            result.states_updated,
            result.changes_inserted,
        )
        return result

    def _with_logged_history(
        self,
        delegations: Mapping[str, CurrentDelegation],
        existing: Mapping[str, StateRow],
        history_latest: Mapping[str, str],
    ) -> dict[str, str]:
        missing = [
            stake_address
            for stake_address, current in delegations.items()
            if stake_address not in history_latest
            and (
                stake_address not in existing
                or existing[stake_address].drep_id != current.drep_id
            )
        ]
        merged = dict(history_latest)
        if missing:
            merged.update(self.delegations.latest_change_targets(missing))
        return merged

    def _renew_lease(self) -> None:
        if self.lease is not None:
            self.lease.renew()

    def _commit_with(self, checkpoint: ReconciliationCheckpoint) -> None:
        try:
            self.store.save_reconciliation(self.job_name, checkpoint)
            self._renew_lease()
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def _apply(self, checkpoint: ReconciliationCheckpoint, result: ReconcileResult) -> None:
        if not checkpoint.creates_complete:
            creates = self.plans.state_rows(
                self.job_name, PLAN_CREATE, 0, self.plans.count(self.job_name, PLAN_CREATE)
            )
            result.states_created += self.delegations.insert_states(creates)
            checkpoint = checkpoint.model_copy(update={"creates_complete": True})
            self._commit_with(checkpoint)

        total_updates = self.plans.count(self.job_name, PLAN_UPDATE)
        while checkpoint.update_chunk_index * self.update_chunk_size < total_updates:
            start = checkpoint.update_chunk_index * self.update_chunk_size
            rows = self.plans.state_rows(self.job_name, PLAN_UPDATE, start, self.update_chunk_size)
            result.states_updated += self.delegations.update_states(rows)
            checkpoint = checkpoint.model_copy(
                update={"update_chunk_index": checkpoint.update_chunk_index + 1}
            )
            self._commit_with(checkpoint)

        total_changes = self.plans.count(self.job_name, PLAN_CHANGE)
        while checkpoint.changes_chunk_index * self.change_chunk_size < total_changes:
            start = checkpoint.changes_chunk_index * self.change_chunk_size
            rows = self.plans.change_rows(self.job_name, start, self.change_chunk_size)
            result.changes_inserted += self.delegations.insert_changes(rows)
            checkpoint = checkpoint.model_copy(
                update={"changes_chunk_index": checkpoint.changes_chunk_index + 1}
            )
            self._commit_with(checkpoint)

        try:
            self.plans.clear(self.job_name)
            self.store.complete_reconciliation(self.job_name)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
