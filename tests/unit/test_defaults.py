from __future__ import annotations

import hashlib

import pytest

from chronostore.domain.models import System, Tenant
from chronostore.services.defaults import (
    SystemService,
    TenantService,
    check_default_entries,
    hash_password,
)
from chronostore.services.versioning import TemporalService


@pytest.fixture()
def versioning(memory_store, unit_settings, clock) -> TemporalService:
    return TemporalService(memory_store, unit_settings, clock=clock)


@pytest.fixture()
def systems(versioning) -> SystemService:
    return SystemService(versioning)


@pytest.fixture()
def tenants(versioning) -> TenantService:
    return TenantService(versioning)


def test_hash_password_is_sha256_hex() -> None:
    assert hash_password("secret") == hashlib.sha256(b"secret").hexdigest()
    assert SystemService.hash_password("secret") == hash_password("secret")


def test_check_default_entries_creates_missing_entries(systems, tenants, unit_settings) -> None:
    created = check_default_entries(systems, tenants, unit_settings)

    assert created == ["default system", "test system", "default tenant"]
    default_system = systems.get_default_system()
    assert default_system.name == unit_settings.default_system_name
    assert default_system.sha256_encoded_password == hash_password(unit_settings.default_system_password)
    assert systems.get_test_system().esid == default_system.id

    tenant = tenants.get_default_tenant()
    assert tenant.is_primary is True
    assert tenant.esid == default_system.id


def test_check_default_entries_is_idempotent(systems, tenants, unit_settings, memory_store) -> None:
    check_default_entries(systems, tenants, unit_settings)

    assert check_default_entries(systems, tenants, unit_settings) == []
    assert len(memory_store.tables["system"]) == 2
    assert len(memory_store.tables["tenant"]) == 1


def test_lookup_by_name(systems, tenants) -> None:
    systems.save_system(System(name="billing", description="Billing"))
    tenants.save_tenant(Tenant(name="acme", web_url="https://acme.example"))

    assert systems.get_system_by_name("billing").description == "Billing"
    assert systems.get_system_by_name("O'Reilly") is None
    assert tenants.get_tenant_by_name("acme").web_url == "https://acme.example"
    assert tenants.get_tenant_by_name("missing") is None


def test_renamed_system_is_found_by_new_name_only(systems, clock) -> None:
    entity = systems.save_system(System(name="old"))
    clock.advance(minutes=1)
    renamed = entity.current
    renamed.name = "new"
    systems.save_system(renamed)

    assert systems.get_system_by_name("new") is not None
    assert systems.get_system_by_name("old") is None
