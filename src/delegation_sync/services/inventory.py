"""Stake account and DRep inventories."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from delegation_sync.core.errors import SourceError
from delegation_sync.repositories.account_repo import AccountRepository
from delegation_sync.repositories.bulk import chunked
from delegation_sync.repositories.delegate_repo import DelegateRepository
from delegation_sync.services.checkpoints import CheckpointStore
from delegation_sync.services.collector import DEFAULT_EXCLUDED_DREP_IDS
from delegation_sync.services.source import DelegationSource

logger = logging.getLogger(__name__)

ACCOUNT_INVENTORY_JOB = "account-inventory"
DREP_INVENTORY_JOB = "drep-inventory"


@dataclass
class InventoryResult:
    """Accounts seen for the first time and how many were already known."""

    new_accounts: list[str] = field(default_factory=list)
    existing_count: int = 0


@dataclass
class AccountImportResult:
    total_fetched: int = 0
    created: int = 0


@dataclass
class DrepInventoryResult:
    remote_total: int = 0
    existing: int = 0
    created: int = 0
    updated_from_info: int = 0
    failed_info_batches: int = 0


class AccountInventory:
    """Classifies observed accounts as new or known, recording the new ones."""

    def __init__(self, session: Session, *, lookup_chunk_size: int = 5000) -> None:
        self.session = session
        self.accounts = AccountRepository(session, lookup_chunk_size=lookup_chunk_size)

    def classify(self, addresses: Sequence[str]) -> InventoryResult:
        """Insert unknown ``addresses`` and report them in input order. Commits."""
        existing = self.accounts.existing(addresses)
        new_accounts = [address for address in dict.fromkeys(addresses) if address not in existing]
        if new_accounts:
            self.accounts.insert_ignore(new_accounts)
        self.session.commit()
        logger.info(
            "Account inventory: %d new, %d existing", len(new_accounts), len(existing)
        )
        return InventoryResult(new_accounts=new_accounts, existing_count=len(existing))

    async def import_remote_accounts(
        self,
        source: DelegationSource,
        *,
        page_size: int = 1000,
    ) -> AccountImportResult:
        """Copy the remote ``/account_list`` into the inventory, page by page."""
        result = AccountImportResult()
        store = CheckpointStore(self.session)
        store.start_backfill(ACCOUNT_INVENTORY_JOB, total=0, display_name="Stake Account Inventory")
        offset = 0
        try:
            while True:
                page = await source.list_accounts(limit=page_size, offset=offset)
                if not page:
                    break
                result.total_fetched += len(page)
                addresses = [row["stake_address"] for row in page if row.get("stake_address")]
                result.created += self.accounts.insert_ignore(addresses)
                self.session.commit()
                offset += len(page)
                if len(page) < page_size:
                    break
        except Exception as exc:
            self.session.rollback()
            store.fail_backfill(ACCOUNT_INVENTORY_JOB, str(exc))
            raise
        store.complete_backfill(ACCOUNT_INVENTORY_JOB)
        logger.info(
            "Account inventory import: fetched=%d created=%d",
            result.total_fetched,
            result.created,
        )
        return result


class DrepInventory:
    """Keeps the ``drep`` table aligned with the remote DRep list."""

    def __init__(
        self,
        session: Session,
        source: DelegationSource,
        *,
        list_page_size: int = 1000,
        info_batch_size: int = 50,
    ) -> None:
        self.session = session
        self.source = source
        self.delegates = DelegateRepository(session)
        self.list_page_size = list_page_size
        self.info_batch_size = info_batch_size

    async def fetch_remote_ids(self) -> list[str]:
        ids: list[str] = []
        offset = 0
        while True:
            page = await self.source.list_dreps(limit=self.list_page_size, offset=offset)
            if not page:
                break
            ids.extend(row["drep_id"] for row in page if row.get("drep_id"))
            offset += len(page)
            if len(page) < self.list_page_size:
                break
        return ids

    async def sync(self) -> DrepInventoryResult:
        """Create rows for unknown DReps and fill them from ``/drep_info``.

        A failing info batch is counted and skipped; the created rows keep a
        voting power of zero until a later sync fills them.
        """
        store = CheckpointStore(self.session)
        store.start_backfill(DREP_INVENTORY_JOB, total=0, display_name="DRep Inventory")
        try:
            remote_ids = list(dict.fromkeys(await self.fetch_remote_ids()))
            existing = self.delegates.existing_ids(remote_ids)
            missing = [drep_id for drep_id in remote_ids if drep_id not in existing]
            result = DrepInventoryResult(remote_total=len(remote_ids), existing=len(existing))
            result.created = self.delegates.insert_ignore(missing)
            self.session.commit()

            for batch in chunked(missing, self.info_batch_size):
                try:
                    infos = await self.source.get_drep_info(batch)
                except SourceError as exc:
                    logger.warning("DRep info batch of %d failed: %s", len(batch), exc)
                    result.failed_info_batches += 1
                    continue
                for info in infos:
                    drep_id = info.get("drep_id")
                    if drep_id and self.delegates.apply_info(drep_id, info) is not None:
                        result.updated_from_info += 1
                self.session.commit()
        except Exception as exc:
            self.session.rollback()
            store.fail_backfill(DREP_INVENTORY_JOB, str(exc))
            raise

        store.complete_backfill(DREP_INVENTORY_JOB)
        logger.info(
            "DRep inventory sync: remote=%d created=%d updated=%d failed_batches=%d",
            result.remote_total,
            result.created,
            result.updated_from_info,
            result.failed_info_batches,
        )
        return result


def ensure_delegates_exist(
    session: Session,
    drep_ids: Iterable[str],
    *,
    excluded: Iterable[str] = DEFAULT_EXCLUDED_DREP_IDS,
) -> int:
    """Create zero-power rows for referenced DReps missing from the inventory.

    Retired DReps no longer appear in the remote list but still show up in
    delegation history. Does not commit.

    Returns:
        Number of rows created.
    """
    skip = set(excluded)
    wanted = [
        drep_id
        for drep_id in dict.fromkeys(drep_ids)
        if drep_id and drep_id.strip() and drep_id not in skip
    ]
    if not wanted:
        return 0
    repo = DelegateRepository(session)
    existing = repo.existing_ids(wanted)
    missing = [drep_id for drep_id in wanted if drep_id not in existing]
    return repo.insert_ignore(missing)
