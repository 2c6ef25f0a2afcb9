"""
Configuration management using Pydantic Settings
"""
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class RedisSettings(BaseSettings):
    """Redis queue configuration"""

    redis_host: str = Field(default="localhost", description="Redis host")
    redis_port: int = Field(default=6379, description="Redis port")
    redis_db: int = Field(default=0, description="Redis database")
    redis_password: Optional[str] = Field(default=None, description="Redis password")

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    @property
    def redis_url(self) -> str:
        """Construct Redis connection URL"""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"


class DatabaseSettings(BaseSettings):
    """Database configuration for the SQL ledger store"""

    postgres_host: str = Field(default="localhost", description="PostgreSQL host")
    postgres_port: int = Field(default=5432, description="PostgreSQL port")
    postgres_db: str = Field(default="ledger", description="Database name")
    postgres_user: str = Field(default="ledger", description="Database user")
    postgres_password: str = Field(default="ledger", description="Database password")
    url: Optional[str] = Field(
        default=None,
        description="Full async SQLAlchemy URL, overrides the postgres_* fields"
    )
    pool_size: int = Field(default=5, description="Connection pool size")
    echo: bool = Field(default=False, description="Log every SQL statement")

    model_config = SettingsConfigDict(env_prefix="DB_")

    @property
    def async_postgres_url(self) -> str:
        """Construct async PostgreSQL connection URL"""
        return f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    @property
    def async_url(self) -> str:
        """URL the SQL store connects to"""
        return self.url or self.async_postgres_url


class IngestionSettings(BaseSettings):
    """Engine event ingestion configuration"""

    error_backoff_seconds: float = Field(
        default=1.0,
        description="Pause after a message is dead-lettered"
    )
    transient_retry_base_seconds: float = Field(
        default=0.5,
        description="First backoff step when retrying a transient store error"
    )
    max_retries: int = Field(
        default=5,
        description="Transient-error retries before a message is dead-lettered"
    )
    visibility_timeout_seconds: float = Field(
        default=60.0,
        description="Lease on a reserved message before it is reclaimed"
    )
    reclaim_interval_seconds: float = Field(
        default=15.0,
        description="How often expired leases are swept back to incoming"
    )
    reserve_timeout_seconds: float = Field(
        default=0.0,
        description="Blocking wait for the next message (0 = wait forever)"
    )

    model_config = SettingsConfigDict(env_prefix="INGEST_")


class LedgerSettings(BaseSettings):
    """Settlement ledger behaviour"""

    cancellation_mode: Literal["optimistic", "confirmed"] = Field(
        default="optimistic",
        description="Unlock funds at request time or on engine confirmation"
    )
    fee_account_id: str = Field(
        default="exchange",
        description="User id credited with taker fees"
    )
    resubmit_interval_seconds: float = Field(
        default=30.0,
        description="How often open orders never sent to the engine are re-emitted"
    )
    store_backend: Literal["memory", "sql"] = Field(default="memory", description="Ledger store backend")
    queue_backend: Literal["memory", "redis"] = Field(default="memory", description="Queue backend")
    bus_backend: Literal["memory", "redis"] = Field(default="memory", description="Event bus backend")

    model_config = SettingsConfigDict(env_prefix="LEDGER_")


class Settings(BaseSettings):
    """Main application settings"""

    app_name: str = Field(default="Settlement Ledger", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: str = Field(default="development", description="Environment")
    debug: bool = Field(default=True, description="Debug mode")

    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[str] = Field(default="logs/ledger.log", description="Log file path")

    # Sub-configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__"
    )


# Global settings instance
settings = Settings()
