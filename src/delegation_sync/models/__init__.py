# src/delegation_sync/models/__init__.py
"""SQLAlchemy models for delegation sync."""

from .account import StakeAccount
from .delegate import Delegate
from .delegation import DelegationChange, DelegationState, DelegationSyncState
from .sync_status import ReconcilePlanEntry, SyncStatus

__all__ = [
    "StakeAccount",
    "Delegate",
    "DelegationChange", "DelegationState", "DelegationSyncState",
    "ReconcilePlanEntry", "SyncStatus",
]
