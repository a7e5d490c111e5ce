"""
chronostore: a bitemporal persistence engine for PostgreSQL.

Plain pydantic record types become tables; every save keeps the previous value
as history, so entities can be read as they are now or as they were at any
instant.
"""

from chronostore.config import Settings, get_settings
from chronostore.domain.models import CommonState, Entity, System, Tenant
from chronostore.infrastructure.db_factory import ConnectionSource
from chronostore.persistence.statements import StatementEngine
from chronostore.persistence.type_mapper import TypeCatalog
from chronostore.services.versioning import TemporalService

__version__ = "0.1.0"

__all__ = [
    "CommonState",
    "ConnectionSource",
    "Entity",
    "Settings",
    "StatementEngine",
    "System",
    "TemporalService",
    "Tenant",
    "TypeCatalog",
    "__version__",
    "get_settings",
]
