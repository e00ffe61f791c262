"""Collection of the current delegator set of every tracked DRep."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from delegation_sync.services.parallel import ItemFailure, process_in_parallel
from delegation_sync.services.source import DelegationSource, JsonRow

logger = logging.getLogger(__name__)

# Default-stance pseudo-DReps with delegator sets too large to track per account.
DEFAULT_EXCLUDED_DREP_IDS = ("drep_always_abstain", "drep_always_no_confidence")


@dataclass(frozen=True)
class CurrentDelegation:
    """What the source reports as an account's delegation right now."""

    drep_id: str
    amount: int
    epoch: int | None


@dataclass
class CollectorResult:
    """Merged view of all delegator pages, keyed by stake address."""

    delegations: dict[str, CurrentDelegation] = field(default_factory=dict)
    delegates_processed: int = 0
    failed: list[ItemFailure] = field(default_factory=list)


def _parse_amount(value: object) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return None


def _parse_epoch(value: object) -> int | None:
    return value if isinstance(value, int) and not isinstance(value, bool) else None


class DelegatorCollector:
    """Pages ``/drep_delegators`` for each delegate with bounded concurrency."""

    def __init__(
        self,
        source: DelegationSource,
        *,
        page_size: int = 1000,
        concurrency: int = 2,
    ) -> None:
        self.source = source
        self.page_size = page_size
        self.concurrency = concurrency

    async def fetch_delegators(self, drep_id: str) -> list[JsonRow]:
        """Return every delegator row of one delegate, following pages to the end."""
        rows: list[JsonRow] = []
        offset = 0
        while True:
            page = await self.source.list_drep_delegators(
                drep_id, limit=self.page_size, offset=offset
            )
            if not page:
                break
            rows.extend(page)
            offset += len(page)
            if len(page) < self.page_size:
                break
        return rows

    async def collect(self, drep_ids: Sequence[str]) -> CollectorResult:
        """Collect current delegations for ``drep_ids``.

        Rows without a stake address or amount are dropped. When an account is
        listed under several delegates the one latest in ``drep_ids`` order wins.
        """

        async def _fetch(drep_id: str) -> list[tuple[str, CurrentDelegation]]:
            rows = await self.fetch_delegators(drep_id)
            parsed: list[tuple[str, CurrentDelegation]] = []
            for row in rows:
                stake_address = row.get("stake_address")
                amount = _parse_amount(row.get("amount"))
                if not stake_address or amount is None:
                    continue
                delegation = CurrentDelegation(
                    drep_id=drep_id,
                    amount=amount,
                    epoch=_parse_epoch(row.get("epoch_no")),
                )
                parsed.append((stake_address, delegation))
            return parsed

        fetched = await process_in_parallel(
            list(drep_ids), lambda drep_id: drep_id, _fetch, self.concurrency
        )
        if fetched.failed:
            logger.warning("Delegator collection failed for %d DReps", len(fetched.failed))

        result = CollectorResult(delegates_processed=len(fetched.successful), failed=fetched.failed)
        for parsed in fetched.successful:
            for stake_address, delegation in parsed:
                result.delegations[stake_address] = delegation

        logger.info(
            "Collected %d delegators from %d DReps",
            len(result.delegations),
            result.delegates_processed,
        )
        return result
