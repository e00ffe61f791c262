"""Reconstruction of per-account DRep delegation history.

Certificate history from ``/account_update_history`` is ordered, reduced to
delegation transitions and written to the change log. Certificates that do
not name their DRep are resolved through ``/tx_info``.

Named jobs are checkpointed by account: the change rows of one account and
the cursor advance past it commit in the same transaction, so an interrupted
run resumes after the last committed account without duplicating or losing
history. Each account is also stamped as backfilled in that transaction, so
accounts left unstamped by a failed pass are picked up by the next run.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from delegation_sync.core.errors import LeaseLostError
from delegation_sync.db.time import utcnow
from delegation_sync.models.delegation import NO_PREVIOUS_DREP, UNKNOWN_EPOCH
from delegation_sync.repositories.account_repo import AccountRepository
from delegation_sync.repositories.bulk import chunked
from delegation_sync.repositories.delegation_repo import ChangeRow, DelegationRepository
from delegation_sync.services.checkpoints import CheckpointStore, Lease
from delegation_sync.services.inventory import ensure_delegates_exist
from delegation_sync.services.parallel import process_in_parallel
from delegation_sync.services.source import DelegationSource, JsonRow

logger = logging.getLogger(__name__)

DELEGATION_ACTION_MARKER = "delegation_drep"
VOTE_DELEGATION_CERT_MARKER = "vote_delegation"

_SORT_FIELDS = ("epoch_no", "epoch_slot", "absolute_slot", "block_time")
_DREP_KEYS = ("delegated_drep", "drep_id", "drep")
_CERT_DREP_KEYS = ("drep_id", "delegated_drep", "drep")


def _int_or_missing(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        return -1
    if isinstance(value, int):
        return value
    try:
        return int(value)
    except (TypeError, ValueError):
        return -1


def certificate_sort_key(entry: Mapping[str, Any]) -> tuple[int, int, int, int]:
    """Chronological key of a history row. Missing fields sort first as ``-1``."""
    return tuple(_int_or_missing(entry.get(name)) for name in _SORT_FIELDS)  # type: ignore[return-value]


def sort_account_updates(entries: Sequence[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
    """Return history rows in chronological order, keeping input order on full ties."""
    return sorted(entries, key=certificate_sort_key)


def is_delegation_action(entry: Mapping[str, Any]) -> bool:
    action_type = entry.get("action_type")
    return isinstance(action_type, str) and DELEGATION_ACTION_MARKER in action_type


def _first_present(mapping: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value is not None:
            return value
    return None


def extract_delegated_drep_id(entry: Mapping[str, Any]) -> str | None:
    """Return the DRep named directly by a history row, if any.

    Top-level keys are consulted before the same keys under ``info``.
    """
    value = _first_present(entry, _DREP_KEYS)
    if value is None:
        info = entry.get("info")
        if isinstance(info, Mapping):
            value = _first_present(info, _DREP_KEYS)
    return value if isinstance(value, str) and value else None


def extract_vote_delegation_drep_id(tx: Mapping[str, Any], stake_address: str) -> str | None:
    """Return the DRep that ``stake_address`` delegated to in transaction ``tx``.

    Only vote delegation certificates are considered. A certificate naming a
    different stake address is ignored; one naming none is accepted.
    """
    certificates = tx.get("certificates") or []
    if not isinstance(certificates, list):
        return None

    for cert in certificates:
        if not isinstance(cert, Mapping):
            continue
        cert_type = cert.get("type")
        if not isinstance(cert_type, str) or VOTE_DELEGATION_CERT_MARKER not in cert_type.lower():
            continue
        info = cert.get("info")
        if not isinstance(info, Mapping):
            continue

        cert_stake = _first_present(info, ("stake_address", "stake_addr"))
        if isinstance(cert_stake, str) and cert_stake and cert_stake != stake_address:
            continue

        direct = _first_present(info, _CERT_DREP_KEYS)
        if isinstance(direct, str) and direct:
            return direct

        for value in info.values():
            if isinstance(value, str) and value.startswith("drep"):
                return value

    return None


def unresolved_tx_hashes(entries: Sequence[Mapping[str, Any]]) -> list[str]:
    """Return hashes of delegation rows that do not name their DRep, deduplicated."""
    hashes: dict[str, None] = {}
    for entry in entries:
        if not is_delegation_action(entry) or extract_delegated_drep_id(entry) is not None:
            continue
        tx_hash = entry.get("tx_hash")
        if isinstance(tx_hash, str) and tx_hash:
            hashes[tx_hash] = None
    return list(hashes)


@dataclass
class AccountHistory:
    """Change rows derived from one account's certificates."""

    changes: list[ChangeRow] = field(default_factory=list)
    latest_drep_id: str | None = None
    unresolved: int = 0


def build_change_log(
    stake_address: str,
    entries: Sequence[Mapping[str, Any]],
    resolved: Mapping[str, str | None] | None = None,
) -> AccountHistory:
    """Reduce an account's certificate history to its DRep transitions.

    Args:
        stake_address: Account the history belongs to.
        entries: Raw history rows in any order.
        resolved: DRep ids looked up by transaction hash for rows that do
            not carry one. ``None`` values mark hashes that could not be resolved.

    Returns:
        The ordered transitions, with ``""`` as the first previous DRep and
        ``-1`` for unknown epochs, and the last DRep delegated to.
    """
    resolved = resolved or {}
    history = AccountHistory()
    previous: str | None = None

    for entry in sort_account_updates(entries):
        if not is_delegation_action(entry):
            continue
        drep_id = extract_delegated_drep_id(entry)
        if drep_id is None:
            tx_hash = entry.get("tx_hash")
            drep_id = resolved.get(tx_hash) if isinstance(tx_hash, str) else None
            if drep_id is None:
                history.unresolved += 1
                continue
        if drep_id == previous:
            continue

        epoch_no = entry.get("epoch_no")
        history.changes.append(
            ChangeRow(
                stake_address=stake_address,
                from_drep_id=previous if previous is not None else NO_PREVIOUS_DREP,
                to_drep_id=drep_id,
                delegated_epoch=epoch_no if isinstance(epoch_no, int) else UNKNOWN_EPOCH,
                amount=None,
            )
        )
        previous = drep_id

    history.latest_drep_id = previous
    return history


@dataclass
class BackfillResult:
    """Outcome of one backfill pass."""

    latest_delegates: dict[str, str] = field(default_factory=dict)
    changes_inserted: int = 0
    accounts_processed: int = 0
    accounts_skipped: int = 0
    unresolved_certificates: int = 0

    def merge(self, other: BackfillResult) -> BackfillResult:
        self.latest_delegates.update(other.latest_delegates)
        self.changes_inserted += other.changes_inserted
        self.accounts_processed += other.accounts_processed
        self.accounts_skipped += other.accounts_skipped
        self.unresolved_certificates += other.unresolved_certificates
        return self


class HistoryBackfiller:
    """Fetches and persists delegation history for batches of accounts.

    Transaction lookups are cached per ``(account, tx_hash)`` for the lifetime
    of the instance, which is one sync run.
    """

    def __init__(
        self,
        session: Session,
        source: DelegationSource,
        *,
        history_batch_size: int = 10,
        history_page_size: int = 1000,
        tx_batch_size: int = 10,
        tx_concurrency: int = 2,
        lookup_chunk_size: int = 5000,
        lease: Lease | None = None,
    ) -> None:
        self.session = session
        self.source = source
        self.lease = lease
        self.history_batch_size = history_batch_size
        self.history_page_size = history_page_size
        self.tx_batch_size = tx_batch_size
        self.tx_concurrency = tx_concurrency
        self.store = CheckpointStore(session)
        self.accounts = AccountRepository(session, lookup_chunk_size=lookup_chunk_size)
        self.delegations = DelegationRepository(session, lookup_chunk_size=lookup_chunk_size)
        self._tx_cache: dict[tuple[str, str], str | None] = {}

    async def fetch_history(self, stake_addresses: Sequence[str]) -> dict[str, list[JsonRow]]:
        """Return history rows of a batch of accounts grouped by stake address."""
        grouped: dict[str, list[JsonRow]] = {}
        offset = 0
        while True:
            page = await self.source.get_account_update_history(
                stake_addresses, limit=self.history_page_size, offset=offset
            )
            if not page:
                break
            for row in page:
                stake_address = row.get("stake_address")
                if isinstance(stake_address, str) and stake_address:
                    grouped.setdefault(stake_address, []).append(row)
            offset += len(page)
            if len(page) < self.history_page_size:
                break
        return grouped

    async def fetch_transactions(self, tx_hashes: Sequence[str]) -> dict[str, JsonRow]:
        """Return ``/tx_info`` rows keyed by hash. Any failed group raises."""
        groups = [list(group) for group in chunked(list(dict.fromkeys(tx_hashes)), self.tx_batch_size)]
        fetched = await process_in_parallel(
            groups,
            lambda group: ",".join(group),
            self.source.get_tx_info,
            self.tx_concurrency,
        )
        if fetched.failed:
            raise fetched.failed[0].error
        return {
            tx["tx_hash"]: tx
            for rows in fetched.successful
            for tx in rows
            if isinstance(tx, Mapping) and tx.get("tx_hash")
        }

    async def _resolve_batch(self, history: Mapping[str, Sequence[JsonRow]]) -> None:
        needed: dict[str, list[str]] = {}
        for stake_address, entries in history.items():
            for tx_hash in unresolved_tx_hashes(entries):
                if (stake_address, tx_hash) not in self._tx_cache:
                    needed.setdefault(tx_hash, []).append(stake_address)
        if not needed:
            return

        transactions = await self.fetch_transactions(list(needed))
        for tx_hash, stake_addresses in needed.items():
            tx = transactions.get(tx_hash)
            for stake_address in stake_addresses:
                self._tx_cache[(stake_address, tx_hash)] = (
                    extract_vote_delegation_drep_id(tx, stake_address) if tx else None
                )

    def _resolved_for(self, stake_address: str, entries: Sequence[JsonRow]) -> dict[str, str | None]:
        return {
            tx_hash: self._tx_cache.get((stake_address, tx_hash))
            for tx_hash in unresolved_tx_hashes(entries)
        }

    async def backfill(
        self,
        stake_addresses: Sequence[str],
        *,
        job_name: str | None = None,
        display_name: str | None = None,
    ) -> BackfillResult:
        """Backfill history for ``stake_addresses`` in lexicographic order.

        With ``job_name`` the pass is checkpointed: accounts at or below the
        job's cursor are skipped and their latest delegate is read back from
        the change log.
        """
        result = BackfillResult()
        accounts = sorted(set(stake_addresses))
        if not accounts:
            return result

        processed = 0
        if job_name:
            status = self.store.start_backfill(
                job_name, total=len(accounts), display_name=display_name
            )
            cursor = status.backfill_cursor
            processed = status.backfill_items_processed or 0
            if cursor is not None:
                done = [address for address in accounts if address <= cursor]
                accounts = [address for address in accounts if address > cursor]
                result.accounts_skipped = len(done)
                result.latest_delegates.update(self.delegations.latest_change_targets(done))
                logger.info(
                    "Resuming backfill %s after cursor %s: %d done, %d remaining",
                    job_name,
                    cursor,
                    len(done),
                    len(accounts),
                )

        try:
            for batch in chunked(accounts, self.history_batch_size):
                history = await self.fetch_history(batch)
                await self._resolve_batch(history)
                for stake_address in batch:
                    entries = history.get(stake_address, [])
                    account = build_change_log(
                        stake_address, entries, self._resolved_for(stake_address, entries)
                    )
                    processed += 1
                    self._persist_account(account, stake_address, job_name, processed, result)
        except Exception as exc:
            self.session.rollback()
            # the run that took over the lease owns the job row now
            if job_name and not isinstance(exc, LeaseLostError):
                self.store.fail_backfill(job_name, str(exc))
            logger.error("Backfill %s failed: %s", job_name or "(incremental)", exc, exc_info=True)
            raise

        if job_name:
            self.store.complete_backfill(job_name)
        logger.info(
            "Backfill %s complete: accounts=%d changes=%d unresolved=%d",
            job_name or "(incremental)",
            result.accounts_processed,
            result.changes_inserted,
            result.unresolved_certificates,
        )
        return result

    def _persist_account(
        self,
        account: AccountHistory,
        stake_address: str,
        job_name: str | None,
        processed: int,
        result: BackfillResult,
    ) -> None:
        if account.unresolved:
            logger.warning(
                "Skipped %d unresolvable delegation certificates for %s",
                account.unresolved,
                stake_address,
            )
        if account.changes:
            ensure_delegates_exist(
                self.session,
                [row.from_drep_id for row in account.changes]
                + [row.to_drep_id for row in account.changes],
            )
            result.changes_inserted += self.delegations.insert_changes(account.changes)
        self.accounts.mark_history_backfilled(stake_address, utcnow())
        if job_name:
            self.store.advance_cursor(job_name, stake_address, processed)
        if self.lease is not None:
            self.lease.renew()
        self.session.commit()

        if account.latest_drep_id is not None:
            result.latest_delegates[stake_address] = account.latest_drep_id
        result.accounts_processed += 1
        result.unresolved_certificates += account.unresolved
