# src/delegation_sync/models/account.py
"""Inventory of stake accounts observed delegating."""

from datetime import datetime

from sqlalchemy import DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from delegation_sync.db.session import Base
from delegation_sync.db.time import utcnow


class StakeAccount(Base):
    """A stake address seen at least once.

    ``history_backfilled_at`` is stamped in the transaction that stores the
    account's certificate history; accounts without it still need a backfill.
    """

    __tablename__ = "stake_account"

    stake_address: Mapped[str] = mapped_column(Text, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    history_backfilled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
