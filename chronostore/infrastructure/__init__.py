"""
Infrastructure package for chronostore.

Centralizes database connectivity concerns (pooling, transaction scopes, the
privileged bootstrap connection). Keep this layer focused on I/O and resource
management, decoupled from mapping and versioning logic.
"""

from chronostore.infrastructure.db_factory import ConnectionSource, build_dsn, get_admin_connection

__all__ = [
    "ConnectionSource",
    "build_dsn",
    "get_admin_connection",
]
