# src/delegation_sync/models/delegate.py
"""DRep inventory model."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from delegation_sync.db.session import Base
from delegation_sync.db.time import utcnow


class Delegate(Base):
    """Delegated representative known to the ledger.

    Voting power drives which delegates the collector polls.
    """

    __tablename__ = "drep"

    drep_id: Mapped[str] = mapped_column(Text, primary_key=True)
    # Lovelace; rows inserted from /drep_list start at 0 until /drep_info fills them.
    voting_power: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    registered: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    active: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    expires_epoch: Mapped[int | None] = mapped_column(Integer, nullable=True)
    meta_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=utcnow
    )
