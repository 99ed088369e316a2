from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    app_name: str = Field("Tableforge API", validation_alias="APP_NAME")
    database_url: str = Field(
        "sqlite:///./tableforge.db",
        validation_alias="DATABASE_URL",
        description="SQLAlchemy connection string for the metadata store (projects, profiles, table definitions).",
    )
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Python logging verbosity for application modules (e.g. INFO, DEBUG).",
    )
    pool_size: int = Field(
        default=5,
        validation_alias="POOL_SIZE",
        description="Connections kept open per tenant engine.",
        ge=1,
    )
    pool_max_overflow: int = Field(
        default=5,
        validation_alias="POOL_MAX_OVERFLOW",
        description="Extra connections a tenant engine may open beyond pool_size under load.",
        ge=0,
    )
    pool_timeout_seconds: int = Field(
        default=30,
        validation_alias="POOL_TIMEOUT_SECONDS",
        description="Seconds to wait for a pooled connection before the request fails.",
        ge=1,
    )
    pool_recycle_seconds: int = Field(
        default=600,
        validation_alias="POOL_RECYCLE_SECONDS",
        description="Maximum lifetime of a pooled connection before it is replaced.",
        ge=1,
    )
    pool_pre_ping: bool = Field(
        True,
        validation_alias="POOL_PRE_PING",
        description="When true every checkout is validated with a lightweight ping.",
    )
    connection_test_timeout_seconds: int = Field(
        default=5,
        validation_alias="CONNECTION_TEST_TIMEOUT_SECONDS",
        description="Connect timeout applied when probing a tenant database.",
        ge=1,
    )
    physical_name_attempts: int = Field(
        default=5,
        validation_alias="PHYSICAL_NAME_ATTEMPTS",
        description="How many random physical table names are tried before giving up on a collision.",
        ge=1,
        le=50,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
