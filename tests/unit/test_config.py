from __future__ import annotations

from chronostore import config
from chronostore.config import Settings
from chronostore.infrastructure.db_factory import build_dsn


def test_settings_read_upper_case_environment(monkeypatch) -> None:
    monkeypatch.setenv("DB_NAME", "ledger")
    monkeypatch.setenv("DB_POOL_MAX_SIZE", "4")
    monkeypatch.setenv("ATOMIC_WRITES", "false")

    settings = Settings()

    assert settings.db_name == "ledger"
    assert settings.db_pool_max_size == 4
    assert settings.atomic_writes is False


def test_defaults_for_versioning_and_bootstrap() -> None:
    settings = Settings(_env_file=None)

    assert settings.db_encoding == "UTF8"
    assert settings.db_admin_database == "postgres"
    assert settings.default_tenant_id >= 1
    assert settings.db_acquire_timeout_s > 0
    assert settings.db_statement_timeout_ms > 0


def test_dsn_composition() -> None:
    settings = Settings(
        db_host="db",
        db_port=6543,
        db_user="app",
        db_password="pw",
        db_name="store",
        db_admin_user="root",
        db_admin_password="rootpw",
        db_admin_database="postgres",
    )

    assert build_dsn(settings) == "postgresql://app:pw@db:6543/store"
    assert build_dsn(settings, database="other") == "postgresql://app:pw@db:6543/other"
    assert settings.admin_dsn == "postgresql://root:rootpw@db:6543/postgres"


def test_get_settings_is_cached() -> None:
    config.get_settings.cache_clear()

    assert config.get_settings() is config.get_settings()
