# src/delegation_sync/models/delegation.py
"""Current delegation state and the append-only change log."""

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from delegation_sync.db.session import Base
from delegation_sync.db.time import utcnow

# Sentinels stored instead of NULL so the uniqueness constraint treats them as equal.
NO_PREVIOUS_DREP = ""
UNKNOWN_EPOCH = -1

SYNC_STATE_ID = "current"


class DelegationState(Base):
    """Latest known delegation of one stake account."""

    __tablename__ = "stake_delegation_state"
    __table_args__ = (Index("ix_stake_delegation_state_drep_id", "drep_id"),)

    stake_address: Mapped[str] = mapped_column(
        Text,
        ForeignKey("stake_account.stake_address"),
        primary_key=True,
    )
    drep_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    delegated_epoch: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=utcnow
    )


class DelegationChange(Base):
    """One detected transition from one DRep to another.

    Rows are inserted with skip-duplicate semantics and never mutated.
    History-derived rows carry no amount, so amount is not part of the key.
    """

    __tablename__ = "stake_delegation_change"
    __table_args__ = (
        UniqueConstraint(
            "stake_address",
            "from_drep_id",
            "to_drep_id",
            "delegated_epoch",
            name="uq_stake_delegation_change_transition",
        ),
        Index("ix_stake_delegation_change_stake_address", "stake_address"),
        Index("ix_stake_delegation_change_to_drep_id", "to_drep_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stake_address: Mapped[str] = mapped_column(
        Text,
        ForeignKey("stake_account.stake_address"),
        nullable=False,
    )
    from_drep_id: Mapped[str] = mapped_column(
        Text, nullable=False, default=NO_PREVIOUS_DREP
    )
    to_drep_id: Mapped[str] = mapped_column(Text, nullable=False)
    delegated_epoch: Mapped[int] = mapped_column(
        Integer, nullable=False, default=UNKNOWN_EPOCH
    )
    amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    observed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class DelegationSyncState(Base):
    """Single-row bookkeeping of the last epoch fully reconciled."""

    __tablename__ = "stake_delegation_sync_state"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=SYNC_STATE_ID)
    last_processed_epoch: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=utcnow, onupdate=utcnow
    )
