from delegation_sync.services.checkpoints import CheckpointStore
from delegation_sync.services.delegation_sync import SYNC_JOB
from delegation_sync.services.inventory import DREP_INVENTORY_JOB


def _seed(source):
    source.add_drep("drep_x", amount="4000", active=True)
    source.delegate("drep_x", "stake_a", amount=10, epoch_no=300)
    source.delegate("drep_x", "stake_b", amount=20, epoch_no=301)
    source.add_history(
        "stake_a",
        {"action_type": "delegation_drep", "epoch_no": 300, "delegated_drep": "drep_x"},
    )


def test_trigger_delegator_sync_returns_summary(client, fake_source):
    _seed(fake_source)

    response = client.post("/api/v1/data/trigger-drep-delegator-sync")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "DRep delegator sync completed"
    results = body["results"]
    assert results["backfill_mode"] == "initial"
    assert results["delegators_processed"] == 2
    assert results["states_created"] == 2
    assert results["backfill_changes_inserted"] == 1
    assert results["changes_inserted"] == 1
    assert results["failed"] == 0
    assert results["failed_drep_ids"] == []


def test_trigger_delegator_sync_conflicts_with_running_job(client, fake_source, session_factory):
    _seed(fake_source)
    with session_factory() as session:
        assert CheckpointStore(session).acquire_lease(SYNC_JOB, "other-host", 600)

    response = client.post("/api/v1/data/trigger-drep-delegator-sync")

    assert response.status_code == 409
    assert response.json()["detail"] == (
        "DRep delegator sync is already running. Please try again later."
    )


def test_trigger_delegator_sync_reports_failure(client):
    response = client.post("/api/v1/data/trigger-drep-delegator-sync")

    assert response.status_code == 500
    assert "DRep inventory is empty" in response.json()["detail"]


def test_sync_status_of_finished_run(client, fake_source):
    _seed(fake_source)
    client.post("/api/v1/data/trigger-drep-delegator-sync")

    response = client.get(f"/api/v1/data/sync-status/{SYNC_JOB}")

    assert response.status_code == 200
    body = response.json()
    assert body["job_name"] == SYNC_JOB
    assert body["display_name"] == "DRep Delegator Sync"
    assert body["is_running"] is False
    assert body["last_result"] == "success"
    assert body["items_processed"] == 3


def test_sync_status_of_unknown_job(client):
    response = client.get("/api/v1/data/sync-status/no-such-job")

    assert response.status_code == 404
    assert response.json()["detail"] == "Unknown job"


def test_trigger_account_inventory_sync(client, fake_source):
    fake_source.accounts = ["stake_a", "stake_b", "stake_c"]

    response = client.post("/api/v1/data/trigger-account-inventory-sync")

    assert response.status_code == 200
    assert response.json() == {"success": True, "total_fetched": 3, "created": 3}


def test_trigger_drep_inventory_sync(client, fake_source):
    _seed(fake_source)
    fake_source.add_drep("drep_y")

    response = client.post("/api/v1/data/trigger-drep-inventory-sync")

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "remote_total": 2,
        "existing": 0,
        "created": 2,
        "updated_from_info": 2,
        "failed_info_batches": 0,
    }
    status = client.get(f"/api/v1/data/sync-status/{DREP_INVENTORY_JOB}").json()
    assert status["backfill_completed_at"] is not None
