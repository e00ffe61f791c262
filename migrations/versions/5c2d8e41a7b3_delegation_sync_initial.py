"""delegation sync initial schema

Revision ID: 5c2d8e41a7b3
Revises:
Create Date: 2026-10-18 09:12:44.518230

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c2d8e41a7b3"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create inventory, delegation and job bookkeeping tables."""
    op.create_table(
        "stake_account",
        sa.Column("stake_address", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("stake_address"),
    )
    op.create_table(
        "drep",
        sa.Column("drep_id", sa.Text(), nullable=False),
        sa.Column("voting_power", sa.BigInteger(), nullable=False),
        sa.Column("registered", sa.Boolean(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=True),
        sa.Column("expires_epoch", sa.Integer(), nullable=True),
        sa.Column("meta_url", sa.Text(), nullable=True),
        sa.Column("meta_hash", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("drep_id"),
    )
    op.create_table(
        "stake_delegation_state",
        sa.Column("stake_address", sa.Text(), nullable=False),
        sa.Column("drep_id", sa.Text(), nullable=True),
        sa.Column("amount", sa.BigInteger(), nullable=True),
        sa.Column("delegated_epoch", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["stake_address"], ["stake_account.stake_address"]),
        sa.PrimaryKeyConstraint("stake_address"),
    )
    op.create_index(
        "ix_stake_delegation_state_drep_id", "stake_delegation_state", ["drep_id"]
    )
    op.create_table(
        "stake_delegation_change",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("stake_address", sa.Text(), nullable=False),
        sa.Column("from_drep_id", sa.Text(), nullable=False),
        sa.Column("to_drep_id", sa.Text(), nullable=False),
        sa.Column("delegated_epoch", sa.Integer(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=True),
        sa.Column("observed_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["stake_address"], ["stake_account.stake_address"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "stake_address",
            "from_drep_id",
            "to_drep_id",
            "delegated_epoch",
            name="uq_stake_delegation_change_transition",
        ),
    )
    op.create_index(
        "ix_stake_delegation_change_stake_address", "stake_delegation_change", ["stake_address"]
    )
    op.create_index(
        "ix_stake_delegation_change_to_drep_id", "stake_delegation_change", ["to_drep_id"]
    )
    op.create_table(
        "stake_delegation_sync_state",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("last_processed_epoch", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "sync_status",
        sa.Column("job_name", sa.Text(), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("is_running", sa.Boolean(), nullable=False),
        sa.Column("locked_by", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_result", sa.VARCHAR(length=20), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("items_processed", sa.Integer(), nullable=True),
        sa.Column("backfill_cursor", sa.Text(), nullable=True),
        sa.Column("backfill_is_running", sa.Boolean(), nullable=False),
        sa.Column("backfill_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("backfill_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("backfill_items_processed", sa.Integer(), nullable=True),
        sa.Column("backfill_items_total", sa.Integer(), nullable=True),
        sa.Column("backfill_error_message", sa.Text(), nullable=True),
        sa.Column("phase_checkpoint", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("job_name"),
    )
    op.create_table(
        "reconcile_plan_entry",
        sa.Column("job_name", sa.Text(), nullable=False),
        sa.Column("kind", sa.VARCHAR(length=10), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("stake_address", sa.Text(), nullable=False),
        sa.Column("from_drep_id", sa.Text(), nullable=True),
        sa.Column("drep_id", sa.Text(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=True),
        sa.Column("delegated_epoch", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("job_name", "kind", "seq"),
    )
    op.create_index(
        "ix_reconcile_plan_entry_job_kind_seq",
        "reconcile_plan_entry",
        ["job_name", "kind", "seq"],
    )


def downgrade() -> None:
    """Drop every table created by this revision."""
    op.drop_index("ix_reconcile_plan_entry_job_kind_seq", table_name="reconcile_plan_entry")
    op.drop_table("reconcile_plan_entry")
    op.drop_table("sync_status")
    op.drop_table("stake_delegation_sync_state")
    op.drop_index("ix_stake_delegation_change_to_drep_id", table_name="stake_delegation_change")
    op.drop_index(
        "ix_stake_delegation_change_stake_address", table_name="stake_delegation_change"
    )
    op.drop_table("stake_delegation_change")
    op.drop_index("ix_stake_delegation_state_drep_id", table_name="stake_delegation_state")
    op.drop_table("stake_delegation_state")
    op.drop_table("drep")
    op.drop_table("stake_account")
