from sqlalchemy import create_engine, inspect

from delegation_sync.core.settings import settings
from delegation_sync.db.session import Base
from delegation_sync.scripts import migrate


def test_upgrade_head_matches_models(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    monkeypatch.setattr(settings, "database_url", url)
    monkeypatch.delenv("ALEMBIC_URL", raising=False)

    migrate.run_upgrade_head()

    engine = create_engine(url)
    try:
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        change_columns = {column["name"] for column in inspector.get_columns("stake_delegation_change")}
        account_columns = {column["name"] for column in inspector.get_columns("stake_account")}
    finally:
        engine.dispose()

    assert tables == set(Base.metadata.tables) | {"alembic_version"}
    assert change_columns == set(Base.metadata.tables["stake_delegation_change"].c.keys())
    assert account_columns == set(Base.metadata.tables["stake_account"].c.keys())
