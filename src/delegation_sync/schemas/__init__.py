"""Pydantic schemas for the HTTP surface."""

from .sync import (
    AccountInventoryResponse,
    DelegatorSyncResponse,
    DelegatorSyncSummary,
    DrepInventoryResponse,
    SyncStatusResponse,
)

__all__ = [
    "AccountInventoryResponse",
    "DelegatorSyncResponse",
    "DelegatorSyncSummary",
    "DrepInventoryResponse",
    "SyncStatusResponse",
]
