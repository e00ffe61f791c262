"""Typed data access helpers, one repository per entity."""

from .account_repo import AccountRepository
from .delegate_repo import DelegateRepository
from .delegation_repo import DelegationRepository
from .plan_repo import ReconcilePlanRepository
from .sync_status_repo import SyncStatusRepository

__all__ = [
    "AccountRepository",
    "DelegateRepository",
    "DelegationRepository",
    "ReconcilePlanRepository",
    "SyncStatusRepository",
]
