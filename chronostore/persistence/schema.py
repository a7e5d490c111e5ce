"""
Schema synchronizer: keeps the physical schema in step with the type catalog.

Creation is additive only. For every persisted record type the table is
created when missing, then every mapped column missing from the table is
added. Nothing is ever dropped or altered. Each table and each column is
checked with its own connection, so a failure is logged and the sweep moves
on to the next one.

`check_database` runs first when bootstrapping a fresh server. It uses the
privileged connection to create the database and the application role.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import psycopg
from psycopg import Connection, sql

from chronostore.config import Settings, get_settings
from chronostore.infrastructure.db_factory import ConnectionSource, get_admin_connection
from chronostore.persistence.errors import SchemaError
from chronostore.persistence.statements import quote_identifier
from chronostore.persistence.type_mapper import TableDescriptor, TypeCatalog, describe
from chronostore.utils.logging import get_logger

log = get_logger(__name__)

TABLE_EXISTS_SQL = (
    "SELECT 1 FROM information_schema.tables "
    "WHERE table_catalog = current_database() AND table_schema = current_schema() "
    "AND table_name = %s"
)
COLUMN_EXISTS_SQL = (
    "SELECT 1 FROM information_schema.columns "
    "WHERE table_catalog = current_database() AND table_schema = current_schema() "
    "AND table_name = %s AND column_name = %s"
)


def build_create_table_sql(table: TableDescriptor) -> str:
    columns = ", ".join(column.ddl for column in table.columns)
    return f"CREATE TABLE {quote_identifier(table.table_name)} ({columns})"


def build_add_column_sql(table: TableDescriptor, column_name: str) -> str:
    column = next(c for c in table.columns if c.column_name == column_name)
    return f"ALTER TABLE {quote_identifier(table.table_name)} ADD COLUMN {column.ddl}"


class SchemaSynchronizer:
    """
    Creates missing databases, tables and columns for a type catalog.

    Parameters
    ----------
    source : ConnectionSource
        Connections to the application database.
    catalog : TypeCatalog
        Registered record types.
    settings : Settings, optional
        Database name, role and encoding for `check_database`.
    admin_connect : callable, optional
        Factory for the privileged connection; defaults to `get_admin_connection`.
    """

    def __init__(
        self,
        source: ConnectionSource,
        catalog: TypeCatalog,
        settings: Optional[Settings] = None,
        admin_connect: Callable[[Settings], Connection] = get_admin_connection,
    ) -> None:
        self.source = source
        self.catalog = catalog
        self.settings = settings or get_settings()
        self._admin_connect = admin_connect

    def check_database(self) -> bool:
        """
        Create the database, the application role and its grant when missing.
        Returns True if the database was created. Raises `SchemaError` when the
        privileged connection cannot be opened.
        """
        name = self.settings.db_name.lower()
        user = self.settings.db_user.lower()
        created = False
        try:
            conn = self._admin_connect(self.settings)
        except psycopg.Error as exc:
            raise SchemaError(
                f"Could not open the privileged connection to '{self.settings.db_admin_database}'"
            ) from exc

        try:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 FROM pg_database WHERE datname = %s", (name,))
                if cur.fetchone() is None:
                    log.info("Database %s did not exist, creating", name)
                    cur.execute(
                        sql.SQL("CREATE DATABASE {} ENCODING {}").format(
                            sql.Identifier(name), sql.Literal(self.settings.db_encoding)
                        )
                    )
                    created = True

                cur.execute("SELECT 1 FROM pg_roles WHERE rolname = %s", (user,))
                if cur.fetchone() is None:
                    log.info("Role %s did not exist, creating", user)
                    cur.execute(
                        sql.SQL("CREATE USER {} WITH PASSWORD {}").format(
                            sql.Identifier(user), sql.Literal(self.settings.db_password)
                        )
                    )

                if created:
                    cur.execute(
                        sql.SQL("GRANT ALL PRIVILEGES ON DATABASE {} TO {}").format(
                            sql.Identifier(name), sql.Identifier(user)
                        )
                    )
                    log.info("Database %s created", name)
        except psycopg.Error as exc:
            log.warning(
                "Error occurred checking or creating database: %s",
                exc,
                extra={"sqlstate": getattr(exc, "sqlstate", None)},
            )
        finally:
            conn.close()
        return created

    def _exists(self, query: str, params: tuple) -> bool:
        with self.source.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchone() is not None

    def _execute(self, statement: str) -> None:
        with self.source.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(statement)

    def check_tables(self) -> List[str]:
        """Create the table of every persisted type that has none. Returns created tables."""
        created: List[str] = []
        for model in self.catalog.persisted_models():
            table = describe(model)
            if not table.columns:
                log.info("No table created for %s, it has no persisted attributes", table.table_name)
                continue
            try:
                if self._exists(TABLE_EXISTS_SQL, (table.table_name,)):
                    continue
                statement = build_create_table_sql(table)
                log.info("Creating table: %s", table.table_name)
                log.debug("Table sql %s : %s", table.table_name, statement)
                self._execute(statement)
                created.append(table.table_name)
            except psycopg.Error as exc:
                log.warning(
                    "Error occurred checking or creating table %s: %s",
                    table.table_name,
                    exc,
                    extra={"sqlstate": getattr(exc, "sqlstate", None)},
                )
        return created

    def check_fields(self) -> List[str]:
        """Add every mapped column missing from its table. Returns `table.column` names added."""
        added: List[str] = []
        for model in self.catalog.persisted_models():
            table = describe(model)
            for column in table.columns:
                try:
                    if self._exists(COLUMN_EXISTS_SQL, (table.table_name, column.column_name)):
                        continue
                    statement = build_add_column_sql(table, column.column_name)
                    log.info("Add field sql %s : %s", table.table_name, statement)
                    self._execute(statement)
                    added.append(f"{table.table_name}.{column.column_name}")
                except psycopg.Error as exc:
                    log.warning(
                        "Error occurred checking or creating field %s.%s: %s",
                        table.table_name,
                        column.column_name,
                        exc,
                        extra={"sqlstate": getattr(exc, "sqlstate", None)},
                    )
        return added

    def bootstrap(self) -> Dict[str, Any]:
        """Database (when enabled), then tables, then columns. Returns what was created."""
        database_created = False
        if self.settings.db_bootstrap_database:
            database_created = self.check_database()
        tables = self.check_tables()
        columns = self.check_fields()
        log.info(
            "Schema bootstrap finished",
            extra={"tables_created": len(tables), "columns_added": len(columns)},
        )
        return {"database_created": database_created, "tables": tables, "columns": columns}


__all__ = [
    "SchemaSynchronizer",
    "build_add_column_sql",
    "build_create_table_sql",
]
