import pytest

from delegation_sync.core.errors import SourceError
from delegation_sync.models import Delegate
from delegation_sync.repositories.account_repo import AccountRepository
from delegation_sync.services.checkpoints import CheckpointStore
from delegation_sync.services.inventory import (
    ACCOUNT_INVENTORY_JOB,
    DREP_INVENTORY_JOB,
    AccountInventory,
    DrepInventory,
    ensure_delegates_exist,
)


def test_classify_reports_new_accounts_in_input_order(db_session, add_accounts):
    add_accounts("stake_known")

    result = AccountInventory(db_session, lookup_chunk_size=2).classify(
        ["stake_z", "stake_known", "stake_a", "stake_z"]
    )

    assert result.new_accounts == ["stake_z", "stake_a"]
    assert result.existing_count == 1
    assert AccountRepository(db_session).count() == 3


def test_classify_twice_finds_nothing_new(db_session):
    inventory = AccountInventory(db_session)
    inventory.classify(["stake_a", "stake_b"])

    result = inventory.classify(["stake_a", "stake_b"])

    assert result.new_accounts == []
    assert result.existing_count == 2


@pytest.mark.asyncio
async def test_import_remote_accounts_pages_and_skips_known(db_session, fake_source, add_accounts):
    add_accounts("stake_2")
    fake_source.accounts = [f"stake_{index}" for index in range(5)]

    result = await AccountInventory(db_session).import_remote_accounts(fake_source, page_size=2)

    assert result.total_fetched == 5
    assert result.created == 4
    assert AccountRepository(db_session).count() == 5
    assert CheckpointStore(db_session).is_completed(ACCOUNT_INVENTORY_JOB)


@pytest.mark.asyncio
async def test_import_remote_accounts_records_failure(db_session, fake_source, mocker):
    mocker.patch.object(fake_source, "list_accounts", side_effect=SourceError("account_list down"))

    with pytest.raises(SourceError):
        await AccountInventory(db_session).import_remote_accounts(fake_source)

    status = CheckpointStore(db_session).get(ACCOUNT_INVENTORY_JOB)
    assert status.backfill_error_message == "account_list down"
    assert status.backfill_completed_at is None


@pytest.mark.asyncio
async def test_drep_inventory_creates_and_fills_delegates(db_session, fake_source):
    fake_source.add_drep(
        "drep_a", amount="5000", registered=True, active=True, expires_epoch_no=600, meta_url=None
    )
    fake_source.add_drep("drep_b", amount="0", registered=False, active=None)
    fake_source.add_drep("drep_c")
    db_session.add(Delegate(drep_id="drep_c", voting_power=7))
    db_session.commit()

    result = await DrepInventory(
        db_session, fake_source, list_page_size=2, info_batch_size=1
    ).sync()

    assert (result.remote_total, result.existing, result.created) == (3, 1, 2)
    assert result.updated_from_info == 2
    assert result.failed_info_batches == 0

    drep_a = db_session.get(Delegate, "drep_a")
    assert drep_a.voting_power == 5000
    assert drep_a.registered is True
    assert drep_a.expires_epoch == 600
    assert drep_a.meta_url is None
    drep_b = db_session.get(Delegate, "drep_b")
    assert drep_b.registered is False
    assert drep_b.active is None
    # existing delegates are left alone
    assert db_session.get(Delegate, "drep_c").voting_power == 7
    assert CheckpointStore(db_session).is_completed(DREP_INVENTORY_JOB)


@pytest.mark.asyncio
async def test_drep_inventory_counts_failed_info_batches(db_session, fake_source):
    fake_source.add_drep("drep_a")
    fake_source.add_drep("drep_b")
    fake_source.fail_drep_info = True

    result = await DrepInventory(db_session, fake_source, info_batch_size=1).sync()

    assert result.created == 2
    assert result.failed_info_batches == 2
    assert db_session.get(Delegate, "drep_a").voting_power == 0


def test_ensure_delegates_exist_skips_blank_and_excluded(db_session):
    db_session.add(Delegate(drep_id="drep_known", voting_power=3))
    db_session.commit()

    created = ensure_delegates_exist(
        db_session,
        ["", "  ", "drep_known", "drep_new", "drep_new", "drep_always_abstain"],
    )
    db_session.commit()

    assert created == 1
    assert db_session.get(Delegate, "drep_new").voting_power == 0
    assert db_session.get(Delegate, "drep_always_abstain") is None
