"""Pydantic-settings configuration for the Price Importer.

Loads connection, schema and batch parameters from the environment or a
.env file with defaults suited to local development. The computed
``sync_database_url`` produces the SQLAlchemy URL used by the engine
factory in ``price_importer.core.database``.
"""

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .enums import BackendDialect


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Project
    project_name: str = "Price Importer"
    debug: bool = False

    # Database -- database_url wins over the individual postgres_* fields
    database_url: str = ""
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "price_importer"
    postgres_user: str = "price_user"
    postgres_password: str = ""

    # SQLAlchemy pool settings
    db_pool_size: int = 5
    db_max_overflow: int = 5
    db_pool_pre_ping: bool = True
    db_sslmode: str = "prefer"  # Set to "require" in production

    # Schema namespaces
    table_prefix: str = "dev"
    metadata_table_prefix: str = "batch_"
    backend_dialect: BackendDialect = BackendDialect.STANDARD
    # Counter-table dialect only; SQLite needs a database file of its own
    sequence_database_url: str = ""

    # Batch driver
    chunk_size: int = Field(default=100, gt=0)
    skip_on_invalid_input: bool = True
    chunk_retry_limit: int = Field(default=3, ge=1)
    chunk_retry_backoff_seconds: float = Field(default=0.5, ge=0.0)
    overwrite_existing_facts: bool = True

    # AEMO price and demand feed
    feed_base_url: str = "https://aemo.com.au"
    feed_timeout_seconds: float = 60.0
    market_timezone: str = "Australia/Brisbane"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @computed_field
    @property
    def sync_database_url(self) -> str:
        """Sync connection string (psycopg2 unless database_url overrides it)."""
        if self.database_url:
            return self.database_url
        base = (
            f"postgresql+psycopg2://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )
        if self.db_sslmode and self.db_sslmode != "disable":
            return f"{base}?sslmode={self.db_sslmode}"
        return base

    @computed_field
    @property
    def sync_sequence_database_url(self) -> str:
        """Database of the counter table; the warehouse database by default."""
        return self.sequence_database_url or self.sync_database_url


# Singleton instance
settings = Settings()
