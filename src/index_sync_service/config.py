"""Application configuration management."""

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from shared.constants import (
    DEFAULT_CHUNK_SIZE,
    FULL_SCAN_BATCH_SIZE,
    RUN_LOG_NAME,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------
    app_name: str = "reemio-index-sync"
    app_env: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # API Settings
    # -------------------------------------------------------------------------
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_workers: int = 4
    cors_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["http://localhost:3000"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    # -------------------------------------------------------------------------
    # PostgreSQL Database
    # -------------------------------------------------------------------------
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "reemio"
    postgres_password: str = ""
    postgres_db: str = "reemio"
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_recycle: int = 1800

    @property
    def database_url(self) -> str:
        """Construct PostgreSQL connection URL."""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def database_url_sync(self) -> str:
        """Construct synchronous PostgreSQL connection URL (for Alembic)."""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # -------------------------------------------------------------------------
    # Redis
    # -------------------------------------------------------------------------
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0

    @property
    def redis_url(self) -> str:
        """Construct Redis connection URL."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # -------------------------------------------------------------------------
    # Celery
    # -------------------------------------------------------------------------
    celery_broker_url: str = ""
    celery_result_backend: str = ""

    @property
    def celery_broker(self) -> str:
        """Get Celery broker URL, defaulting to Redis URL."""
        return self.celery_broker_url or self.redis_url

    @property
    def celery_backend(self) -> str:
        """Get Celery result backend URL, defaulting to Redis URL."""
        return self.celery_result_backend or self.redis_url

    # -------------------------------------------------------------------------
    # Search Indexing API
    # -------------------------------------------------------------------------
    indexing_enabled: bool = False
    indexing_base_url: str = "https://search.reemioltd.com/1/indexes/"
    ingestion_base_url: str = "https://data.reemioltd.com/2/"
    indexing_api_timeout: int = 30
    index_prefix: str = "reemio"

    # JSON document: {"locales": {"en_US": {"products": {"tasks": {"replace": "<id>"}}}}}
    indexing_config: str = ""

    site_locales: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["default"])

    @field_validator("site_locales", mode="before")
    @classmethod
    def parse_site_locales(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, str):
            return [locale.strip() for locale in v.split(",") if locale.strip()]
        return v

    # -------------------------------------------------------------------------
    # Sync Job Settings
    # -------------------------------------------------------------------------
    sync_chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, ge=1)
    full_scan_batch_size: int = Field(default=FULL_SCAN_BATCH_SIZE, ge=1)
    catalog_page_size: int = Field(default=500, ge=1)
    dispatch_concurrency: int = Field(default=1, ge=1)
    fail_run_on_dispatch_errors: bool = False
    run_log_backend: Literal["database", "redis"] = "database"
    run_log_name: str = RUN_LOG_NAME
    sync_products_interval_minutes: int = Field(default=60, ge=1)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
