"""
Configuration settings for chronostore.

Uses Pydantic Settings to load environment variables for database connections,
connection pooling, logging, and the default system/tenant entries that the
bootstrap creates on first run.
"""
from __future__ import annotations

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("chronostore", alias="DB_NAME")
    db_encoding: str = Field("UTF8", alias="DB_ENCODING")

    # Privileged connection used to create the database and application role
    db_admin_user: str = Field("postgres", alias="DB_ADMIN_USER")
    db_admin_password: str = Field("postgres", alias="DB_ADMIN_PASSWORD")
    db_admin_database: str = Field("postgres", alias="DB_ADMIN_DATABASE")
    db_bootstrap_database: bool = Field(False, alias="DB_BOOTSTRAP_DATABASE")

    # Pooling and timeouts
    db_pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(10, alias="DB_POOL_MAX_SIZE")
    db_acquire_timeout_s: float = Field(30.0, alias="DB_ACQUIRE_TIMEOUT_S")
    db_statement_timeout_ms: int = Field(30_000, alias="DB_STATEMENT_TIMEOUT_MS")

    # Versioning
    atomic_writes: bool = Field(True, alias="ATOMIC_WRITES")
    default_tenant_id: int = Field(1, alias="DEFAULT_TENANT_ID")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Default entries
    default_system_name: str = Field("default", alias="DEFAULT_SYSTEM_NAME")
    default_system_description: str = Field(
        "Default system for chronostore", alias="DEFAULT_SYSTEM_DESCRIPTION"
    )
    default_system_password: str = Field("changeme", alias="DEFAULT_SYSTEM_PASSWORD")
    test_system_name: str = Field("test", alias="TEST_SYSTEM_NAME")
    test_system_description: str = Field(
        "Test system for chronostore", alias="TEST_SYSTEM_DESCRIPTION"
    )
    test_system_password: str = Field("changeme", alias="TEST_SYSTEM_PASSWORD")
    default_tenant_name: str = Field("default", alias="DEFAULT_TENANT_NAME")
    default_tenant_description: str = Field(
        "Default tenant for chronostore", alias="DEFAULT_TENANT_DESCRIPTION"
    )
    default_tenant_web_url: str = Field("", alias="DEFAULT_TENANT_WEB_URL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def admin_dsn(self) -> str:
        """Connection string for the maintenance database, used for bootstrap DDL."""
        return (
            f"postgresql://{self.db_admin_user}:{self.db_admin_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_admin_database}"
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
