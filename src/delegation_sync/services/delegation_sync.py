"""Incremental DRep delegation synchronization.

A run moves through four phases, each starting once its predecessor's
result is available:

1. Collect the current delegators of every tracked DRep.
2. Record accounts seen for the first time in the inventory.
3. Backfill certificate history, for every account on the first run or
   after a forced replay, otherwise only for accounts whose history was
   never stored.
4. Reconcile the collected view against persisted state.

Every phase commits its progress, so a killed process picks up where it
stopped on the next run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy.orm import Session

from delegation_sync.core.errors import InventoryMissingError, SourceError, SyncAlreadyRunningError
from delegation_sync.core.settings import settings
from delegation_sync.repositories.account_repo import AccountRepository
from delegation_sync.repositories.delegate_repo import DelegateRepository
from delegation_sync.repositories.delegation_repo import DelegationRepository
from delegation_sync.services.backfill import BackfillResult, HistoryBackfiller
from delegation_sync.services.checkpoints import (
    LEASE_FAILED,
    LEASE_SUCCESS,
    CheckpointStore,
    Lease,
)
from delegation_sync.services.collector import DelegatorCollector
from delegation_sync.services.inventory import DREP_INVENTORY_JOB, AccountInventory, DrepInventory
from delegation_sync.services.parallel import ItemFailure
from delegation_sync.services.reconciler import RECONCILE_JOB, StateReconciler
from delegation_sync.services.source import DelegationSource

logger = logging.getLogger(__name__)

SYNC_JOB = "drep-delegator-sync"
BACKFILL_JOB = "drep-delegation-backfill"
FORCE_BACKFILL_JOB = "drep-delegation-backfill-force"

# Lease result of a run that finished but could not collect every DRep.
LEASE_PARTIAL = "partial"


class BackfillMode(str, Enum):
    """How much history a run replays."""

    FORCE = "force"
    INITIAL = "initial"
    RESUME = "resume"
    INCREMENTAL = "incremental"
    SKIP = "skip"


@dataclass(frozen=True)
class SyncConfig:
    """Immutable tuning of one sync run."""

    min_voting_power: int
    excluded_drep_ids: tuple[str, ...]
    force_backfill: bool
    concurrency: int
    delegators_page_size: int
    drep_list_page_size: int
    drep_info_batch_size: int
    history_batch_size: int
    history_page_size: int
    tx_batch_size: int
    tx_concurrency: int
    lookup_chunk_size: int
    update_chunk_size: int
    change_chunk_size: int
    lock_expiry_seconds: int
    instance_id: str


def load_sync_config() -> SyncConfig:
    """Build configuration object from global settings."""

    return SyncConfig(
        min_voting_power=settings.drep_delegator_min_voting_power,
        excluded_drep_ids=tuple(settings.excluded_drep_ids),
        force_backfill=settings.force_drep_delegation_backfill,
        concurrency=settings.drep_delegation_sync_concurrency,
        delegators_page_size=settings.koios_drep_delegators_page_size,
        drep_list_page_size=settings.koios_drep_list_page_size,
        drep_info_batch_size=settings.koios_drep_info_batch_size,
        history_batch_size=settings.koios_account_history_batch_size,
        history_page_size=settings.koios_account_history_page_size,
        tx_batch_size=settings.koios_tx_info_batch_size,
        tx_concurrency=settings.koios_tx_info_concurrency,
        lookup_chunk_size=settings.inventory_lookup_chunk_size,
        update_chunk_size=settings.reconcile_update_chunk_size,
        change_chunk_size=settings.reconcile_change_chunk_size,
        lock_expiry_seconds=settings.sync_lock_expiry_seconds,
        instance_id=settings.sync_instance_id,
    )


@dataclass
class SyncRunResult:
    """Summary of one delegation sync run."""

    current_epoch: int
    last_processed_epoch: int
    max_delegation_epoch: int
    backfill_mode: BackfillMode = BackfillMode.SKIP
    delegates_processed: int = 0
    delegators_processed: int = 0
    accounts_new: int = 0
    backfill_changes_inserted: int = 0
    states_created: int = 0
    states_updated: int = 0
    changes_inserted: int = 0
    unresolved_certificates: int = 0
    failed: list[ItemFailure] = field(default_factory=list)

    @property
    def items_processed(self) -> int:
        return self.states_created + self.states_updated + self.changes_inserted


def decide_backfill_mode(
    store: CheckpointStore,
    *,
    force_enabled: bool,
    existing_count: int,
    has_pending_accounts: bool,
) -> BackfillMode:
    """Choose how much history this run must replay.

    A forced replay runs once under its own job. The main backfill covers
    every collected account until it completes; afterwards only accounts
    without stored history are backfilled.
    """
    if force_enabled and not store.is_completed(FORCE_BACKFILL_JOB):
        return BackfillMode.FORCE

    status = store.get(BACKFILL_JOB)
    if status is None or status.backfill_completed_at is None:
        if existing_count == 0 or status is None or status.backfill_started_at is None:
            return BackfillMode.INITIAL
        return BackfillMode.RESUME

    if has_pending_accounts:
        return BackfillMode.INCREMENTAL
    return BackfillMode.SKIP


class DelegationSyncService:
    """Runs the collect, inventory, backfill and reconcile phases in order."""

    def __init__(
        self,
        session: Session,
        source: DelegationSource,
        config: SyncConfig | None = None,
        lease: Lease | None = None,
    ) -> None:
        self.session = session
        self.source = source
        self.config = config or load_sync_config()
        self.lease = lease
        self.store = CheckpointStore(session)
        self.accounts = AccountRepository(
            session, lookup_chunk_size=self.config.lookup_chunk_size
        )
        self.delegates = DelegateRepository(session)
        self.delegations = DelegationRepository(
            session, lookup_chunk_size=self.config.lookup_chunk_size
        )

    async def get_current_epoch(self) -> int:
        tip = await self.source.get_tip()
        epoch_no = tip.get("epoch_no")
        if not isinstance(epoch_no, int):
            raise SourceError(f"chain tip has no epoch number: {tip!r}")
        return epoch_no

    async def sync_drep_inventory(self) -> None:
        await DrepInventory(
            self.session,
            self.source,
            list_page_size=self.config.drep_list_page_size,
            info_batch_size=self.config.drep_info_batch_size,
        ).sync()

    async def _ensure_delegate_inventory(self) -> list[str]:
        synced = False
        if not self.store.is_completed(BACKFILL_JOB) and not self.store.is_completed(
            DREP_INVENTORY_JOB
        ):
            logger.info("Initial backfill pending; syncing DRep inventory first")
            await self.sync_drep_inventory()
            synced = True

        if self.delegates.count() == 0:
            if not synced:
                logger.info("DRep inventory is empty; syncing it")
                await self.sync_drep_inventory()
            if self.delegates.count() == 0:
                raise InventoryMissingError("DRep inventory is empty after syncing it")

        return self.delegates.list_ids_for_collection(
            min_voting_power=self.config.min_voting_power,
            excluded=self.config.excluded_drep_ids,
        )

    def _backfiller(self) -> HistoryBackfiller:
        return HistoryBackfiller(
            self.session,
            self.source,
            history_batch_size=self.config.history_batch_size,
            history_page_size=self.config.history_page_size,
            tx_batch_size=self.config.tx_batch_size,
            tx_concurrency=self.config.tx_concurrency,
            lookup_chunk_size=self.config.lookup_chunk_size,
            lease=self.lease,
        )

    def _heartbeat(self) -> None:
        if self.lease is not None:
            self.lease.renew()
            self.session.commit()

    async def _backfill(
        self,
        mode: BackfillMode,
        all_accounts: list[str],
        pending_accounts: list[str],
    ) -> BackfillResult:
        backfiller = self._backfiller()

        if mode in (BackfillMode.FORCE, BackfillMode.INITIAL, BackfillMode.RESUME):
            if mode is BackfillMode.FORCE:
                job_name, display_name = FORCE_BACKFILL_JOB, "DRep Delegation Backfill (Force)"
            else:
                job_name, display_name = BACKFILL_JOB, "DRep Delegation Backfill"
            status = self.store.get(job_name)
            cursor = status.backfill_cursor if status is not None else None
            logger.info(
                "%s backfill of %d accounts (cursor=%s)",
                mode.value.capitalize(),
                len(all_accounts),
                cursor,
            )
            result = await backfiller.backfill(
                all_accounts,
                job_name=job_name,
                display_name=display_name,
            )
            if cursor is not None:
                skipped = self.accounts.pending_history(pending_accounts)
                if skipped:
                    logger.info(
                        "Backfilling %d accounts behind the resume cursor",
                        len(skipped),
                    )
                    result.merge(await backfiller.backfill(skipped))
            return result

        if mode is BackfillMode.INCREMENTAL:
            logger.info("Incremental backfill of %d accounts", len(pending_accounts))
            return await backfiller.backfill(pending_accounts)

        logger.info("Every account has stored history; skipping backfill")
        return BackfillResult()

    async def sync_delegation_changes(self) -> SyncRunResult:
        """Run one full synchronization and return its summary."""
        current_epoch = await self.get_current_epoch()
        sync_state = self.delegations.ensure_sync_state()
        last_processed_epoch = sync_state.last_processed_epoch or 0
        self.session.commit()

        drep_ids = await self._ensure_delegate_inventory()
        logger.info(
            "Delegation sync: current_epoch=%d last_processed_epoch=%d drep_count=%d",
            current_epoch,
            last_processed_epoch,
            len(drep_ids),
        )

        collected = await DelegatorCollector(
            self.source,
            page_size=self.config.delegators_page_size,
            concurrency=self.config.concurrency,
        ).collect(drep_ids)
        all_accounts = list(collected.delegations)
        self._heartbeat()

        inventory = AccountInventory(
            self.session, lookup_chunk_size=self.config.lookup_chunk_size
        ).classify(all_accounts)
        pending = self.accounts.pending_history(all_accounts)

        mode = decide_backfill_mode(
            self.store,
            force_enabled=self.config.force_backfill,
            existing_count=inventory.existing_count,
            has_pending_accounts=bool(pending),
        )
        backfill = await self._backfill(mode, all_accounts, pending)

        reconciled = StateReconciler(
            self.session,
            job_name=RECONCILE_JOB,
            update_chunk_size=self.config.update_chunk_size,
            change_chunk_size=self.config.change_chunk_size,
            lookup_chunk_size=self.config.lookup_chunk_size,
            lease=self.lease,
        ).reconcile(collected.delegations, backfill.latest_delegates, current_epoch)

        max_delegation_epoch = max(last_processed_epoch, reconciled.max_delegation_epoch or 0)
        if not collected.failed and max_delegation_epoch >= last_processed_epoch:
            self.delegations.set_last_processed_epoch(max_delegation_epoch)
            self.session.commit()
        elif collected.failed:
            logger.warning(
                "Keeping last processed epoch at %d: %d DReps failed",
                last_processed_epoch,
                len(collected.failed),
            )

        return SyncRunResult(
            current_epoch=current_epoch,
            last_processed_epoch=last_processed_epoch,
            max_delegation_epoch=max_delegation_epoch,
            backfill_mode=mode,
            delegates_processed=collected.delegates_processed,
            delegators_processed=len(collected.delegations),
            accounts_new=len(inventory.new_accounts),
            backfill_changes_inserted=backfill.changes_inserted,
            states_created=reconciled.states_created,
            states_updated=reconciled.states_updated,
            changes_inserted=reconciled.changes_inserted,
            unresolved_certificates=backfill.unresolved_certificates,
            failed=collected.failed,
        )


async def run_delegation_sync(
    session: Session,
    source: DelegationSource,
    *,
    config: SyncConfig | None = None,
    owner: str | None = None,
) -> SyncRunResult:
    """Run a delegation sync while holding the job lease.

    The lease is renewed whenever a phase commits progress.

    Raises:
        SyncAlreadyRunningError: Another run holds an unexpired lease.
        LeaseLostError: The lease expired mid-run and another run took it.
    """
    config = config or load_sync_config()
    owner = owner or config.instance_id
    store = CheckpointStore(session)
    if not store.acquire_lease(
        SYNC_JOB,
        owner,
        config.lock_expiry_seconds,
        display_name="DRep Delegator Sync",
    ):
        raise SyncAlreadyRunningError(f"{SYNC_JOB} is already running")

    lease = Lease(store, SYNC_JOB, owner, config.lock_expiry_seconds)
    try:
        result = await DelegationSyncService(
            session, source, config, lease=lease
        ).sync_delegation_changes()
    except Exception as exc:
        logger.error("Delegation sync failed: %s", exc, exc_info=True)
        store.release_lease(
            SYNC_JOB, owner=owner, result=LEASE_FAILED, error_message=str(exc)
        )
        raise

    store.release_lease(
        SYNC_JOB,
        owner=owner,
        result=LEASE_PARTIAL if result.failed else LEASE_SUCCESS,
        items_processed=result.items_processed,
        error_message=(
            f"{len(result.failed)} DReps failed: "
            + ", ".join(failure.item_id for failure in result.failed[:10])
            if result.failed
            else None
        ),
    )
    logger.info(
        "Delegation sync finished: delegators=%d created=%d updated=%d changes=%d failed=%d",
        result.delegators_processed,
        result.states_created,
        result.states_updated,
        result.changes_inserted,
        len(result.failed),
    )
    return result
