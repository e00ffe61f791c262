# src/delegation_sync/scripts/run_sync.py
"""Run one sync job from the command line.

Usage::

    python -m delegation_sync.scripts.run_sync delegations
    python -m delegation_sync.scripts.run_sync accounts
    python -m delegation_sync.scripts.run_sync dreps
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import asdict, fields
from typing import Any

from delegation_sync.core.errors import SyncAlreadyRunningError, SyncError
from delegation_sync.core.settings import settings
from delegation_sync.db.session import SessionLocal, create_tables
from delegation_sync.services.delegation_sync import run_delegation_sync
from delegation_sync.services.inventory import AccountInventory, DrepInventory
from delegation_sync.services.koios import KoiosClient

logger = logging.getLogger("delegation_sync.scripts.run_sync")

EXIT_FAILED = 1
EXIT_ALREADY_RUNNING = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a delegation sync job once.")
    parser.add_argument(
        "job",
        choices=("delegations", "accounts", "dreps"),
        help="delegations: DRep delegator sync; accounts: stake account import; "
        "dreps: DRep inventory sync",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="create missing tables first, for a local database without migrations",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="enable debug logging")
    return parser


async def _run(job: str) -> dict[str, Any]:
    client = KoiosClient()
    try:
        with SessionLocal() as db:
            if job == "delegations":
                result = await run_delegation_sync(db, client)
                summary = {
                    field.name: getattr(result, field.name)
                    for field in fields(result)
                    if field.name != "failed"
                }
                summary["backfill_mode"] = result.backfill_mode.value
                summary["failed"] = [failure.item_id for failure in result.failed]
                return summary
            if job == "accounts":
                imported = await AccountInventory(
                    db, lookup_chunk_size=settings.inventory_lookup_chunk_size
                ).import_remote_accounts(client, page_size=settings.koios_account_list_page_size)
                return asdict(imported)
            synced = await DrepInventory(
                db,
                client,
                list_page_size=settings.koios_drep_list_page_size,
                info_batch_size=settings.koios_drep_info_batch_size,
            ).sync()
            return asdict(synced)
    finally:
        await client.close()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    if args.create_tables:
        create_tables()

    try:
        summary = asyncio.run(_run(args.job))
    except SyncAlreadyRunningError as exc:
        logger.warning("%s", exc)
        return EXIT_ALREADY_RUNNING
    except SyncError as exc:
        logger.error("Sync job %s failed: %s", args.job, exc)
        return EXIT_FAILED

    for key, value in summary.items():
        print(f"{key}: {value}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
