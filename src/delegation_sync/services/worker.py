"""Scheduled background delegation sync.

This module provides the DelegationSyncWorker class that runs the delegation
sync on a fixed interval inside the API process. Runs never overlap within
the process, and the database lease keeps other processes from running the
same job at the same time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from sqlalchemy.orm import Session

from delegation_sync.core.errors import SourceError, SyncAlreadyRunningError
from delegation_sync.core.settings import settings
from delegation_sync.db.session import SessionLocal
from delegation_sync.services.delegation_sync import SyncRunResult, run_delegation_sync
from delegation_sync.services.koios import get_koios_client
from delegation_sync.services.source import DelegationSource

# Configure logger for this module
logger = logging.getLogger(__name__)

# Upper bound of the wait after a failed run.
MAX_ERROR_BACKOFF_SECONDS = 300.0


class DelegationSyncWorker:
    """Periodically runs the delegation sync in the background."""

    def __init__(
        self,
        source: DelegationSource | None = None,
        session_factory: Callable[[], Session] | None = None,
        *,
        interval_seconds: float | None = None,
    ) -> None:
        """Initialize the delegation sync worker.

        Args:
            source: Optional ledger source. If None, uses the global Koios client.
            session_factory: Optional session factory. If None, uses ``SessionLocal``.
            interval_seconds: Delay between runs. Defaults to the configured interval.
        """
        self.source = source or get_koios_client()
        self.session_factory = session_factory or SessionLocal
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else settings.delegation_sync_interval_seconds
        )
        self.last_result: SyncRunResult | None = None
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._run_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background synchronization loop."""

        if not self.running:
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background synchronization loop."""

        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def run_once(self) -> SyncRunResult | None:
        """Run a single sync unless one is already in progress.

        Returns:
            The run summary, or None when the run was skipped.
        """
        if self._run_lock.locked():
            logger.info("Delegation sync already running in this process; skipping")
            return None

        async with self._run_lock:
            with self.session_factory() as db:
                try:
                    self.last_result = await run_delegation_sync(db, self.source)
                except SyncAlreadyRunningError:
                    logger.info("Delegation sync lease held elsewhere; skipping")
                    return None
        return self.last_result

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _run(self) -> None:
        interval = max(0.1, float(self.interval_seconds))
        failures = 0

        while not self._stopping.is_set():
            try:
                await self.run_once()
            except SourceError as e:
                failures += 1
                logger.warning("DelegationSyncWorker encountered SourceError: %s", e)
                await self._sleep(min(interval * 2 ** failures, MAX_ERROR_BACKOFF_SECONDS))
                continue
            except (OSError, ConnectionError, TimeoutError) as e:
                failures += 1
                logger.warning("DelegationSyncWorker encountered network error: %s", e)
                await self._sleep(min(interval * 2 ** failures, MAX_ERROR_BACKOFF_SECONDS))
                continue
            except Exception as e:
                failures += 1
                logger.error("DelegationSyncWorker run failed: %s", e, exc_info=True)
                await self._sleep(min(interval * 2 ** failures, MAX_ERROR_BACKOFF_SECONDS))
                continue

            failures = 0
            await self._sleep(interval)


_worker: DelegationSyncWorker | None = None


def get_delegation_sync_worker() -> DelegationSyncWorker:
    """Return the process-wide worker instance."""
    global _worker
    if _worker is None:
        _worker = DelegationSyncWorker()
    return _worker
