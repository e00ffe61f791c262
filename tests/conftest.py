# tests/conftest.py
from __future__ import annotations

import os
from collections import defaultdict
from collections.abc import Callable, Iterator, Sequence
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")

from delegation_sync.api.v1.endpoints.data import get_source
from delegation_sync.core.errors import SourceError
from delegation_sync.db.session import Base
from delegation_sync.db.session import get_db as app_get_session
from delegation_sync.main import app as fastapi_app
from delegation_sync.models import StakeAccount
from delegation_sync.services.delegation_sync import SyncConfig

TEST_DB_URL = "sqlite://"


class FakeSource:
    """In-memory ledger source with per-endpoint failure switches."""

    def __init__(self) -> None:
        self.epoch_no: Any = 500
        self.dreps: dict[str, dict[str, Any]] = {}
        self.delegators: dict[str, list[dict[str, Any]]] = {}
        self.accounts: list[str] = []
        self.history: dict[str, list[dict[str, Any]]] = {}
        self.transactions: dict[str, dict[str, Any]] = {}
        self.failing_dreps: set[str] = set()
        self.failing_history: set[str] = set()
        self.fail_drep_info = False
        self.calls: dict[str, int] = defaultdict(int)
        self.history_requests: list[list[str]] = []
        self.tx_requests: list[list[str]] = []

    # -- fixture helpers ---------------------------------------------------

    def add_drep(self, drep_id: str, *, amount: str = "1000", **info: Any) -> None:
        self.dreps[drep_id] = {"drep_id": drep_id, "amount": amount, **info}

    def delegate(
        self,
        drep_id: str,
        stake_address: str,
        amount: int = 100,
        epoch_no: int | None = None,
    ) -> None:
        row: dict[str, Any] = {"stake_address": stake_address, "amount": str(amount)}
        if epoch_no is not None:
            row["epoch_no"] = epoch_no
        self.delegators.setdefault(drep_id, []).append(row)

    def add_history(self, stake_address: str, *entries: dict[str, Any]) -> None:
        self.history.setdefault(stake_address, []).extend(
            {"stake_address": stake_address, **entry} for entry in entries
        )

    # -- DelegationSource --------------------------------------------------

    async def get_tip(self) -> dict[str, Any]:
        self.calls["tip"] += 1
        return {"epoch_no": self.epoch_no, "abs_slot": 123456}

    async def list_dreps(self, *, limit: int, offset: int) -> list[dict[str, Any]]:
        self.calls["drep_list"] += 1
        rows = [{"drep_id": drep_id} for drep_id in self.dreps]
        return rows[offset:offset + limit]

    async def get_drep_info(self, drep_ids: Sequence[str]) -> list[dict[str, Any]]:
        self.calls["drep_info"] += 1
        if self.fail_drep_info:
            raise SourceError("drep_info unavailable", status_code=503)
        return [dict(self.dreps[drep_id]) for drep_id in drep_ids if drep_id in self.dreps]

    async def list_drep_delegators(
        self, drep_id: str, *, limit: int, offset: int
    ) -> list[dict[str, Any]]:
        self.calls["drep_delegators"] += 1
        if drep_id in self.failing_dreps:
            raise SourceError(f"delegators of {drep_id} unavailable", status_code=502)
        rows = self.delegators.get(drep_id, [])
        return [dict(row) for row in rows[offset:offset + limit]]

    async def list_accounts(self, *, limit: int, offset: int) -> list[dict[str, Any]]:
        self.calls["account_list"] += 1
        rows = [{"stake_address": address} for address in self.accounts]
        return rows[offset:offset + limit]

    async def get_account_update_history(
        self, stake_addresses: Sequence[str], *, limit: int, offset: int
    ) -> list[dict[str, Any]]:
        self.history_requests.append(list(stake_addresses))
        if self.failing_history.intersection(stake_addresses):
            raise SourceError("account history unavailable", status_code=502)
        rows = [
            dict(row)
            for stake_address in stake_addresses
            for row in self.history.get(stake_address, [])
        ]
        return rows[offset:offset + limit]

    async def get_tx_info(self, tx_hashes: Sequence[str]) -> list[dict[str, Any]]:
        self.tx_requests.append(list(tx_hashes))
        return [self.transactions[tx_hash] for tx_hash in tx_hashes if tx_hash in self.transactions]


@pytest.fixture()
def engine() -> Iterator[Engine]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    with session_factory() as session:
        yield session


@pytest.fixture()
def fake_source() -> FakeSource:
    return FakeSource()


@pytest.fixture()
def make_source() -> Callable[[], FakeSource]:
    return FakeSource


@pytest.fixture()
def sync_config() -> SyncConfig:
    """Small pages and chunks so that paging paths run in every test."""
    return SyncConfig(
        min_voting_power=0,
        excluded_drep_ids=("drep_always_abstain", "drep_always_no_confidence"),
        force_backfill=False,
        concurrency=2,
        delegators_page_size=2,
        drep_list_page_size=2,
        drep_info_batch_size=2,
        history_batch_size=2,
        history_page_size=3,
        tx_batch_size=2,
        tx_concurrency=2,
        lookup_chunk_size=2,
        update_chunk_size=2,
        change_chunk_size=2,
        lock_expiry_seconds=60,
        instance_id="test-instance",
    )


@pytest.fixture()
def add_accounts(db_session: Session) -> Callable[..., None]:
    def _add(*addresses: str) -> None:
        db_session.add_all(StakeAccount(stake_address=address) for address in addresses)
        db_session.commit()

    return _add


@pytest.fixture()
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(
    app: FastAPI,
    session_factory: sessionmaker[Session],
    fake_source: FakeSource,
) -> Iterator[TestClient]:
    def _get_session_override() -> Iterator[Session]:
        with session_factory() as session:
            yield session

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_source] = lambda: fake_source
    try:
        with TestClient(app, base_url="http://test") as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.dependency_overrides.pop(get_source, None)
