"""Interface of the remote ledger source the pipeline reads from."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

JsonRow = dict[str, Any]


class DelegationSource(Protocol):
    """Paginated read access to DRep and stake account data.

    Every method returns the decoded JSON rows of one remote page. Callers
    page by advancing ``offset`` until a page shorter than ``limit`` arrives.
    """

    async def get_tip(self) -> JsonRow:
        """Return the chain tip, including ``epoch_no``."""
        ...

    async def list_dreps(self, *, limit: int, offset: int) -> list[JsonRow]:
        ...

    async def get_drep_info(self, drep_ids: Sequence[str]) -> list[JsonRow]:
        ...

    async def list_drep_delegators(
        self, drep_id: str, *, limit: int, offset: int
    ) -> list[JsonRow]:
        ...

    async def list_accounts(self, *, limit: int, offset: int) -> list[JsonRow]:
        ...

    async def get_account_update_history(
        self, stake_addresses: Sequence[str], *, limit: int, offset: int
    ) -> list[JsonRow]:
        ...

    async def get_tx_info(self, tx_hashes: Sequence[str]) -> list[JsonRow]:
        """Return transaction details with certificates for the given hashes."""
        ...
