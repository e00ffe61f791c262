"""Data sync trigger and status endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from delegation_sync.core.errors import SyncAlreadyRunningError, SyncError
from delegation_sync.core.settings import settings
from delegation_sync.db.session import get_db
from delegation_sync.schemas.sync import (
    AccountInventoryResponse,
    DelegatorSyncResponse,
    DelegatorSyncSummary,
    DrepInventoryResponse,
    SyncStatusResponse,
)
from delegation_sync.services.checkpoints import CheckpointStore
from delegation_sync.services.delegation_sync import run_delegation_sync
from delegation_sync.services.inventory import AccountInventory, DrepInventory
from delegation_sync.services.koios import get_koios_client
from delegation_sync.services.source import DelegationSource

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/data", tags=["data"])


def get_source() -> DelegationSource:
    """Get the ledger source dependency for dependency injection."""
    return get_koios_client()


SessionDep = Annotated[Session, Depends(get_db)]
SourceDep = Annotated[DelegationSource, Depends(get_source)]


@router.post("/trigger-drep-delegator-sync", response_model=DelegatorSyncResponse)
async def trigger_drep_delegator_sync(db: SessionDep, source: SourceDep) -> DelegatorSyncResponse:
    """Run the DRep delegation sync now.

    Returns 409 while another run holds the job lease and 500 with the error
    message when the run fails.
    """
    try:
        result = await run_delegation_sync(db, source)
    except SyncAlreadyRunningError as exc:
        logger.info("Delegator sync trigger skipped: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="DRep delegator sync is already running. Please try again later.",
        ) from exc
    except (SyncError, SQLAlchemyError) as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to sync DRep delegators: {exc}",
        ) from exc

    return DelegatorSyncResponse(
        message="DRep delegator sync completed",
        results=DelegatorSyncSummary(
            current_epoch=result.current_epoch,
            last_processed_epoch=result.last_processed_epoch,
            max_delegation_epoch=result.max_delegation_epoch,
            backfill_mode=result.backfill_mode.value,
            delegates_processed=result.delegates_processed,
            delegators_processed=result.delegators_processed,
            accounts_new=result.accounts_new,
            backfill_changes_inserted=result.backfill_changes_inserted,
            states_created=result.states_created,
            states_updated=result.states_updated,
            changes_inserted=result.changes_inserted,
            unresolved_certificates=result.unresolved_certificates,
            failed=len(result.failed),
            failed_drep_ids=[failure.item_id for failure in result.failed],
        ),
    )


@router.post("/trigger-account-inventory-sync", response_model=AccountInventoryResponse)
async def trigger_account_inventory_sync(
    db: SessionDep, source: SourceDep
) -> AccountInventoryResponse:
    """Import every stake account listed by the source."""
    try:
        result = await AccountInventory(
            db, lookup_chunk_size=settings.inventory_lookup_chunk_size
        ).import_remote_accounts(source, page_size=settings.koios_account_list_page_size)
    except SyncError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to sync stake account inventory: {exc}",
        ) from exc
    return AccountInventoryResponse(total_fetched=result.total_fetched, created=result.created)


@router.post("/trigger-drep-inventory-sync", response_model=DrepInventoryResponse)
async def trigger_drep_inventory_sync(db: SessionDep, source: SourceDep) -> DrepInventoryResponse:
    """Create missing DReps and fill their details."""
    try:
        result = await DrepInventory(
            db,
            source,
            list_page_size=settings.koios_drep_list_page_size,
            info_batch_size=settings.koios_drep_info_batch_size,
        ).sync()
    except SyncError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to sync DRep inventory: {exc}",
        ) from exc
    return DrepInventoryResponse(
        remote_total=result.remote_total,
        existing=result.existing,
        created=result.created,
        updated_from_info=result.updated_from_info,
        failed_info_batches=result.failed_info_batches,
    )


@router.get("/sync-status/{job_name}", response_model=SyncStatusResponse)
async def get_sync_status(job_name: str, db: SessionDep) -> SyncStatusResponse:
    """Return the lease and checkpoint record of a job."""
    job = CheckpointStore(db).get(job_name)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown job")
    return SyncStatusResponse.model_validate(job)
