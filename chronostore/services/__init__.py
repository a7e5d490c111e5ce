"""
Service layer: the temporal versioning engine and the default-entry services
built on it. Storage is reached only through the `StateStore` protocol.
"""

from chronostore.services.abstract import StateStore
from chronostore.services.defaults import (
    SystemService,
    TenantService,
    check_default_entries,
    hash_password,
)
from chronostore.services.versioning import TemporalService, utcnow

__all__ = [
    "StateStore",
    "SystemService",
    "TemporalService",
    "TenantService",
    "check_default_entries",
    "hash_password",
    "utcnow",
]
