# src/delegation_sync/db/time.py
"""Timestamps written to inventory, change log and job status rows."""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime.

    Lease expiry is compared against this value in SQL, so every writer must
    use it rather than a naive local time.
    """
    return datetime.now(UTC)
