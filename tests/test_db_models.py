"""Unit tests for the ORM models defined in delegation_sync.models.

These tests verify basic mapping correctness: table names, primary keys and
the uniqueness key that makes change log inserts idempotent.
"""

from delegation_sync import models


def test_table_names():
    """Model classes expose expected __tablename__ values."""
    assert models.StakeAccount.__tablename__ == "stake_account"
    assert models.Delegate.__tablename__ == "drep"
    assert models.DelegationState.__tablename__ == "stake_delegation_state"
    assert models.DelegationChange.__tablename__ == "stake_delegation_change"
    assert models.DelegationSyncState.__tablename__ == "stake_delegation_sync_state"
    assert models.SyncStatus.__tablename__ == "sync_status"
    assert models.ReconcilePlanEntry.__tablename__ == "reconcile_plan_entry"


def test_plan_entry_composite_primary_key():
    table = models.ReconcilePlanEntry.__table__
    assert [c.name for c in table.primary_key] == ["job_name", "kind", "seq"]


def test_change_log_unique_key_excludes_amount():
    """History rows carry no amount, so amount must not split duplicates."""
    table = models.DelegationChange.__table__
    unique = [
        constraint
        for constraint in table.constraints
        if constraint.name == "uq_stake_delegation_change_transition"
    ]
    assert len(unique) == 1
    assert [c.name for c in unique[0].columns] == [
        "stake_address",
        "from_drep_id",
        "to_drep_id",
        "delegated_epoch",
    ]


def test_change_log_sentinel_columns_are_not_nullable():
    table = models.DelegationChange.__table__
    assert table.c.from_drep_id.nullable is False
    assert table.c.delegated_epoch.nullable is False
    assert table.c.amount.nullable is True
