"""Pydantic schemas for sync triggers and job status."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class DelegatorSyncSummary(BaseModel):
    """Counts reported by one delegation sync run."""

    current_epoch: int
    last_processed_epoch: int
    max_delegation_epoch: int
    backfill_mode: str
    delegates_processed: int
    delegators_processed: int
    accounts_new: int
    backfill_changes_inserted: int
    states_created: int
    states_updated: int
    changes_inserted: int
    unresolved_certificates: int
    failed: int = Field(..., description="Number of DReps whose delegators could not be fetched.")
    failed_drep_ids: list[str] = Field(default_factory=list)


class DelegatorSyncResponse(BaseModel):
    success: bool = True
    message: str
    results: DelegatorSyncSummary


class AccountInventoryResponse(BaseModel):
    success: bool = True
    total_fetched: int
    created: int


class DrepInventoryResponse(BaseModel):
    success: bool = True
    remote_total: int
    existing: int
    created: int
    updated_from_info: int
    failed_info_batches: int


class SyncStatusResponse(BaseModel):
    """Lease and checkpoint view of one job."""

    model_config = ConfigDict(from_attributes=True)

    job_name: str
    display_name: str | None = None
    is_running: bool
    locked_by: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    expires_at: datetime | None = None
    last_result: str | None = None
    error_message: str | None = None
    items_processed: int | None = None
    backfill_cursor: str | None = None
    backfill_is_running: bool
    backfill_started_at: datetime | None = None
    backfill_completed_at: datetime | None = None
    backfill_items_processed: int | None = None
    backfill_items_total: int | None = None
    backfill_error_message: str | None = None
    phase_checkpoint: str | None = None
