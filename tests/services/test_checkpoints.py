from datetime import timedelta

import pytest

from delegation_sync.core.errors import CheckpointError, LeaseLostError
from delegation_sync.db.time import utcnow
from delegation_sync.services.checkpoints import (
    LEASE_EXPIRED,
    LEASE_SUCCESS,
    CheckpointStore,
    Lease,
    ReconciliationCheckpoint,
)

JOB = "test-job"


@pytest.fixture()
def store(db_session):
    return CheckpointStore(db_session)


def test_start_backfill_creates_row_and_counts_from_zero(store):
    status = store.start_backfill(JOB, total=10, display_name="Test Job")

    assert status.display_name == "Test Job"
    assert status.backfill_is_running is True
    assert status.backfill_items_total == 10
    assert status.backfill_items_processed == 0
    assert status.backfill_started_at is not None
    assert not store.is_completed(JOB)


def test_start_backfill_keeps_existing_cursor_and_progress(store, db_session):
    store.start_backfill(JOB, total=4)
    store.advance_cursor(JOB, "stake_b", 2)
    db_session.commit()

    status = store.start_backfill(JOB, total=5)

    assert status.backfill_cursor == "stake_b"
    assert status.backfill_items_processed == 2
    assert status.backfill_items_total == 5


def test_cursor_must_move_forward(store, db_session):
    store.start_backfill(JOB, total=2)
    store.advance_cursor(JOB, "stake_b", 1)
    db_session.commit()

    with pytest.raises(CheckpointError):
        store.advance_cursor(JOB, "stake_a", 2)
    with pytest.raises(CheckpointError):
        store.advance_cursor(JOB, "stake_b", 2)


def test_advance_cursor_of_unknown_job_fails(store):
    with pytest.raises(CheckpointError):
        store.advance_cursor("missing", "stake_a", 1)


def test_uncommitted_cursor_is_lost_on_rollback(store, db_session):
    store.start_backfill(JOB, total=2)
    store.advance_cursor(JOB, "stake_a", 1)
    db_session.rollback()

    assert store.get(JOB).backfill_cursor is None


def test_complete_and_fail_backfill(store):
    store.start_backfill(JOB, total=1)
    store.fail_backfill(JOB, "boom")

    status = store.get(JOB)
    assert status.backfill_is_running is False
    assert status.backfill_error_message == "boom"

    store.complete_backfill(JOB)
    status = store.get(JOB)
    assert store.is_completed(JOB)
    assert status.backfill_error_message is None
    assert status.backfill_cursor is None


def test_reconciliation_checkpoint_roundtrip(store, db_session):
    checkpoint = ReconciliationCheckpoint(epoch=7, creates_complete=True, update_chunk_index=3)
    store.save_reconciliation(JOB, checkpoint)
    db_session.commit()

    assert store.load_reconciliation(JOB) == checkpoint

    store.complete_reconciliation(JOB)
    db_session.commit()
    assert store.load_reconciliation(JOB) is None
    assert store.is_completed(JOB)


@pytest.mark.parametrize(
    "payload",
    [
        '{"kind": "reconciliation", "version": 2, "epoch": 1}',
        '{"kind": "backfill", "version": 1, "epoch": 1}',
        '{"phase": "phase3", "epoch": 1}',
        "not json",
    ],
)
def test_unreadable_checkpoint_is_discarded(store, db_session, payload):
    store.repo.update_fields(JOB, phase_checkpoint=payload)
    db_session.commit()

    assert store.load_reconciliation(JOB) is None


def test_lease_is_exclusive_until_released(store):
    assert store.acquire_lease(JOB, "worker-a", 60, display_name="Test Job")
    assert not store.acquire_lease(JOB, "worker-b", 60)

    status = store.get(JOB)
    assert status.is_running is True
    assert status.locked_by == "worker-a"
    assert status.expires_at is not None

    assert store.release_lease(JOB, owner="worker-a", result=LEASE_SUCCESS, items_processed=12)

    status = store.get(JOB)
    assert status.is_running is False
    assert status.locked_by is None
    assert status.last_result == LEASE_SUCCESS
    assert status.items_processed == 12
    assert store.acquire_lease(JOB, "worker-b", 60)
    assert store.get(JOB).locked_by == "worker-b"


def test_expired_lease_is_released_and_reclaimed(store, db_session):
    assert store.acquire_lease(JOB, "worker-a", 60)
    store.repo.update_fields(JOB, expires_at=utcnow() - timedelta(minutes=5))
    db_session.commit()

    assert store.acquire_lease(JOB, "worker-b", 60)

    status = store.get(JOB)
    assert status.locked_by == "worker-b"
    assert status.is_running is True


def test_expired_lease_is_marked_expired(store, db_session):
    store.acquire_lease(JOB, "worker-a", 60)
    store.repo.update_fields(JOB, expires_at=utcnow() - timedelta(seconds=1))
    db_session.commit()

    assert store.repo.expire_stale_lease(JOB, utcnow())
    db_session.commit()

    status = store.get(JOB)
    assert status.is_running is False
    assert status.last_result == LEASE_EXPIRED


def test_stale_owner_cannot_release_or_renew_a_reclaimed_lease(store, db_session):
    assert store.acquire_lease(JOB, "worker-a", 60)
    store.repo.update_fields(JOB, expires_at=utcnow() - timedelta(minutes=1))
    db_session.commit()
    assert store.acquire_lease(JOB, "worker-b", 60)

    assert not store.release_lease(JOB, owner="worker-a", result=LEASE_SUCCESS)
    with pytest.raises(LeaseLostError):
        Lease(store, JOB, "worker-a", 60).renew()
    db_session.rollback()

    status = store.get(JOB)
    assert status.is_running is True
    assert status.locked_by == "worker-b"
    assert status.expires_at is not None


def test_lease_renewal_pushes_expiry_back(store, db_session):
    assert store.acquire_lease(JOB, "worker-a", 60)
    soon = utcnow() + timedelta(seconds=5)
    store.repo.update_fields(JOB, expires_at=soon)
    db_session.commit()

    Lease(store, JOB, "worker-a", 600).renew()
    db_session.commit()

    assert store.get(JOB).expires_at.replace(tzinfo=None) > soon.replace(tzinfo=None)
    assert store.release_lease(JOB, owner="worker-a", result=LEASE_SUCCESS)
    with pytest.raises(LeaseLostError):
        Lease(store, JOB, "worker-a", 600).renew()
