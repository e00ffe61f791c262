"""stake account history backfill marker

Revision ID: 9e47b1c03d62
Revises: 5c2d8e41a7b3
Create Date: 2026-10-18 14:03:17.402915

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "9e47b1c03d62"
down_revision: Union[str, Sequence[str], None] = "5c2d8e41a7b3"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Track which accounts already had their history stored."""
    op.add_column(
        "stake_account",
        sa.Column("history_backfilled_at", sa.DateTime(timezone=True), nullable=True),
    )
    # Accounts with a change log row were backfilled by an earlier release.
    op.execute(
        sa.text(
            "UPDATE stake_account SET history_backfilled_at = created_at "
            "WHERE stake_address IN (SELECT stake_address FROM stake_delegation_change)"
        )
    )


def downgrade() -> None:
    """Drop the history backfill marker."""
    with op.batch_alter_table("stake_account") as batch_op:
        batch_op.drop_column("history_backfilled_at")
