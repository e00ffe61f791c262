"""Application settings and configuration.

This module defines all configuration options for the delegation sync service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    Batch and page sizes mirror the limits of the public Koios tier.
    """

    # Application metadata
    app_name: str = Field(default="DRep Delegation Sync", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")

    # Database configuration
    database_url: str = Field(default="sqlite:///./delegation_sync.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Koios (remote ledger source) client
    koios_api_url: str = Field(
        default="https://api.koios.rest/api/v1",
        alias="KOIOS_API_URL",
    )
    koios_api_key: str | None = Field(default=None, alias="KOIOS_API_KEY")
    koios_timeout_seconds: float = Field(default=20.0, alias="KOIOS_TIMEOUT_SECONDS")
    koios_max_retries: int = Field(default=3, alias="KOIOS_MAX_RETRIES")
    koios_retry_base_delay_seconds: float = Field(
        default=2.0,
        alias="KOIOS_RETRY_BASE_DELAY_SECONDS",
    )
    koios_retry_max_delay_seconds: float = Field(
        default=8.0,
        alias="KOIOS_RETRY_MAX_DELAY_SECONDS",
    )

    # Remote paging and batching limits (PostgREST caps responses at 1000 rows)
    koios_drep_list_page_size: int = Field(default=1000, alias="KOIOS_DREP_LIST_PAGE_SIZE")
    koios_drep_info_batch_size: int = Field(default=50, alias="KOIOS_DREP_INFO_BATCH_SIZE")
    koios_drep_delegators_page_size: int = Field(
        default=1000,
        alias="KOIOS_DREP_DELEGATORS_PAGE_SIZE",
    )
    koios_account_list_page_size: int = Field(
        default=1000,
        alias="KOIOS_ACCOUNT_LIST_PAGE_SIZE",
    )
    koios_account_history_batch_size: int = Field(
        default=10,
        alias="KOIOS_ACCOUNT_UPDATE_HISTORY_BATCH_SIZE",
    )
    koios_account_history_page_size: int = Field(
        default=1000,
        alias="KOIOS_ACCOUNT_UPDATE_HISTORY_PAGE_SIZE",
    )
    koios_tx_info_batch_size: int = Field(default=10, alias="KOIOS_TX_INFO_BATCH_SIZE")
    koios_tx_info_concurrency: int = Field(default=2, alias="KOIOS_TX_INFO_CONCURRENCY")

    # Delegation sync behaviour
    drep_delegation_sync_concurrency: int = Field(
        default=2,
        alias="DREP_DELEGATION_SYNC_CONCURRENCY",
    )
    drep_delegator_min_voting_power: int = Field(
        default=0,
        alias="DREP_DELEGATOR_MIN_VOTING_POWER",
    )
    excluded_drep_ids: list[str] = Field(
        default=["drep_always_abstain", "drep_always_no_confidence"],
        alias="EXCLUDED_DREP_IDS",
    )
    force_drep_delegation_backfill: bool = Field(
        default=False,
        alias="FORCE_DREP_DELEGATION_BACKFILL",
    )
    inventory_lookup_chunk_size: int = Field(default=5000, alias="INVENTORY_LOOKUP_CHUNK_SIZE")
    reconcile_update_chunk_size: int = Field(default=500, alias="RECONCILE_UPDATE_CHUNK_SIZE")
    reconcile_change_chunk_size: int = Field(default=1000, alias="RECONCILE_CHANGE_CHUNK_SIZE")

    # Scheduling and job locking
    delegation_sync_enabled: bool = Field(default=False, alias="DELEGATION_SYNC_ENABLED")
    delegation_sync_interval_seconds: float = Field(
        default=3600.0,
        alias="DELEGATION_SYNC_INTERVAL_SECONDS",
    )
    sync_lock_expiry_seconds: int = Field(
        default=15 * 60,
        alias="SYNC_LOCK_EXPIRY_SECONDS",
    )
    sync_instance_id: str = Field(default="api-instance", alias="HOSTNAME")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()
