"""Database session configuration."""

from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from delegation_sync.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


# Import the account, delegate, delegation and job status models so that
# metadata is complete before create_all or Alembic autogenerate reads it.
import delegation_sync.models  # noqa: E402,F401

engine = create_engine(
    settings.effective_database_url,
    pool_pre_ping=True,
    echo=settings.sql_debug,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a database session for dependency injection."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables() -> None:
    """Create missing delegation and job tables without running migrations."""
    Base.metadata.create_all(bind=engine)
