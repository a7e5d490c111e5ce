"""
Default systems and tenants.

Every state records the system (`esid`) and tenant (`tid`) it belongs to, so
a fresh store needs a default system, a test system and a default tenant
before application data is written. `check_default_entries` creates whichever
of the three is missing; names, descriptions and passwords come from settings.
"""

from __future__ import annotations

import hashlib
from typing import List, Optional

from chronostore.config import Settings, get_settings
from chronostore.domain.models import Entity, System, Tenant
from chronostore.persistence.predicates import Predicate, ValueType
from chronostore.services.versioning import TemporalService
from chronostore.utils.logging import get_logger

log = get_logger(__name__)


def hash_password(password: str) -> str:
    """SHA-256 hex digest, as stored in `System.sha256_encoded_password`."""
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def _name_is(name: str) -> Predicate:
    return Predicate("name", name, value_type=ValueType.STRING)


class SystemService:
    """Lookups and saves for `System` records."""

    def __init__(self, versioning: TemporalService, settings: Optional[Settings] = None) -> None:
        self.versioning = versioning
        self.settings = settings or versioning.settings

    hash_password = staticmethod(hash_password)

    def get_system_by_name(self, name: str) -> Optional[System]:
        entities = self.versioning.get_all_where(System, [_name_is(name)])
        for entity in entities:
            if entity.current is not None:
                return entity.current
        return None

    def get_default_system(self) -> Optional[System]:
        return self.get_system_by_name(self.settings.default_system_name)

    def get_test_system(self) -> Optional[System]:
        return self.get_system_by_name(self.settings.test_system_name)

    def save_system(
        self, system: System, user_id: int = -1, system_id: int = -1
    ) -> Optional[Entity[System]]:
        return self.versioning.save(System, system, user_id, system_id)


class TenantService:
    """Lookups and saves for `Tenant` records."""

    def __init__(self, versioning: TemporalService, settings: Optional[Settings] = None) -> None:
        self.versioning = versioning
        self.settings = settings or versioning.settings

    def get_tenant_by_name(self, name: str) -> Optional[Tenant]:
        entities = self.versioning.get_all_where(Tenant, [_name_is(name)])
        for entity in entities:
            if entity.current is not None:
                return entity.current
        return None

    def get_default_tenant(self) -> Optional[Tenant]:
        return self.get_tenant_by_name(self.settings.default_tenant_name)

    def save_tenant(
        self, tenant: Tenant, user_id: int = -1, system_id: int = -1
    ) -> Optional[Entity[Tenant]]:
        return self.versioning.save(Tenant, tenant, user_id, system_id)


def check_default_entries(
    systems: SystemService,
    tenants: TenantService,
    settings: Optional[Settings] = None,
) -> List[str]:
    """
    Create the default system, the test system and the default tenant when missing.

    Returns
    -------
    list of str
        Which entries were created ("default system", "test system", "default tenant").
    """
    settings = settings or get_settings()
    created: List[str] = []

    default_system = systems.get_default_system()
    if default_system is None:
        log.info("Default system not found, creating %s", settings.default_system_name)
        entity = systems.save_system(
            System(
                name=settings.default_system_name,
                description=settings.default_system_description,
                sha256_encoded_password=hash_password(settings.default_system_password),
            )
        )
        if entity is not None:
            default_system = entity.current
            created.append("default system")
    default_system_id = default_system.id if default_system is not None else -1

    if systems.get_test_system() is None:
        log.info("Test system not found, creating %s", settings.test_system_name)
        entity = systems.save_system(
            System(
                name=settings.test_system_name,
                description=settings.test_system_description,
                sha256_encoded_password=hash_password(settings.test_system_password),
            ),
            system_id=default_system_id,
        )
        if entity is not None:
            created.append("test system")

    if tenants.get_default_tenant() is None:
        log.info("Default tenant not found, creating %s", settings.default_tenant_name)
        entity = tenants.save_tenant(
            Tenant(
                name=settings.default_tenant_name,
                description=settings.default_tenant_description,
                is_primary=True,
                web_url=settings.default_tenant_web_url,
            ),
            system_id=default_system_id,
        )
        if entity is not None:
            created.append("default tenant")

    return created


__all__ = [
    "SystemService",
    "TenantService",
    "check_default_entries",
    "hash_password",
]
