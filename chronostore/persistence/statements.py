"""
Dynamic statement engine: INSERT, UPDATE and SELECT for any record type.

Statements are generated from the type's `TableDescriptor`; values travel as
psycopg parameters, filters are rendered by the predicate builder. Each
statement acquires its own connection from the `ConnectionSource` (or joins the
pinned one inside a transaction scope) and releases it on every exit path.

Storage failures never escape a statement on their own: they are logged with
their SQLSTATE and the caller receives the empty value (-1, False, []). Inside
a transaction scope the failure is re-raised as `StatementError` instead, so
the scope rolls back and the versioning service reports it at its boundary.
"""

from __future__ import annotations

from typing import Any, ContextManager, Dict, List, Optional, Sequence

import psycopg
from psycopg.rows import dict_row

from chronostore.infrastructure.db_factory import ConnectionSource
from chronostore.persistence.codecs import bind_value, unbind_value
from chronostore.persistence.errors import CodecError, StatementError
from chronostore.persistence.predicates import Predicate, render_where
from chronostore.persistence.type_mapper import ColumnDescriptor, TableDescriptor, describe
from chronostore.utils.logging import get_logger

log = get_logger(__name__)

MAX_ENTITY_ID_PROJECTION = "max(id) as id"


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def build_insert_sql(table: TableDescriptor) -> str:
    columns = table.writable_columns
    names = ", ".join(column.column_name for column in columns)
    placeholders = ", ".join("%s" for _ in columns)
    return (
        f"INSERT INTO {quote_identifier(table.table_name)} ({names}) "
        f"VALUES ({placeholders}) RETURNING {table.primary_key.column_name}"
    )


def build_update_sql(table: TableDescriptor) -> str:
    assignments = ", ".join(f"{column.column_name} = %s" for column in table.writable_columns)
    return (
        f"UPDATE {quote_identifier(table.table_name)} SET {assignments} "
        f"WHERE {table.primary_key.column_name} = %s"
    )


def build_select_sql(
    table: TableDescriptor,
    columns: Optional[Sequence[str]] = None,
    where: Optional[Sequence[Predicate]] = None,
) -> str:
    projection = ", ".join(columns) if columns else "*"
    sql = f"SELECT {projection} FROM {quote_identifier(table.table_name)}"
    clause = render_where(where)
    return f"{sql} {clause}" if clause else sql


class StatementEngine:
    """
    Runs generated statements against a connection source.

    Parameters
    ----------
    source : ConnectionSource
        Where connections come from; also tells whether a transaction scope is open.
    """

    def __init__(self, source: ConnectionSource) -> None:
        self.source = source

    # -- helpers ---------------------------------------------------------------

    def _bind(self, table: TableDescriptor, columns: Sequence[ColumnDescriptor], state: Any) -> List[Any]:
        params: List[Any] = []
        for column in columns:
            try:
                params.append(bind_value(column, getattr(state, column.field_name, None)))
            except CodecError as exc:
                log.warning(
                    "Could not encode %s.%s, binding NULL: %s",
                    table.table_name,
                    column.column_name,
                    exc,
                )
                params.append(None)
        return params

    def _failed(self, action: str, table: TableDescriptor, exc: psycopg.Error) -> None:
        sqlstate = getattr(exc, "sqlstate", None)
        log.warning(
            "SQL error in %s on %s: %s",
            action,
            table.table_name,
            exc,
            extra={"sqlstate": sqlstate, "table": table.table_name},
        )
        if self.source.in_transaction:
            raise StatementError(f"{action} on '{table.table_name}' failed", sqlstate) from exc

    def _materialize(self, table: TableDescriptor, row: Dict[str, Any]) -> Any:
        values = {str(key).lower(): value for key, value in row.items()}
        attributes: Dict[str, Any] = {}
        for column in table.columns:
            if column.column_name not in values:
                # Legitimate when the caller selected a restricted projection.
                log.debug(
                    "Column %s not in result for %s, skipping", column.column_name, table.table_name
                )
                continue
            raw = values[column.column_name]
            if raw is None:
                continue
            try:
                attributes[column.field_name] = unbind_value(column, raw)
            except CodecError as exc:
                log.warning(
                    "Could not decode %s.%s, leaving default: %s",
                    table.table_name,
                    column.column_name,
                    exc,
                )
        return table.model.model_construct(**attributes)

    # -- statements ------------------------------------------------------------

    def insert(self, model: type, state: Any) -> int:
        """
        Insert `state` as a new row and return the storage-assigned rid (-1 on failure).
        """
        table = describe(model)
        if not table.persisted:
            return -1

        sql = build_insert_sql(table)
        params = self._bind(table, table.writable_columns, state)
        try:
            with self.source.connection() as conn:
                with conn.cursor() as cur:
                    log.debug("insert sql: %s", sql)
                    cur.execute(sql, params)
                    row = cur.fetchone()
        except psycopg.Error as exc:
            self._failed("insert", table, exc)
            return -1
        return int(row[0]) if row else -1

    def update(self, model: type, state: Any) -> bool:
        """Overwrite the row whose rid matches `state.rid`."""
        table = describe(model)
        if not table.persisted:
            return False

        sql = build_update_sql(table)
        params = self._bind(table, table.writable_columns, state)
        params.append(getattr(state, table.primary_key.field_name))
        try:
            with self.source.connection() as conn:
                with conn.cursor() as cur:
                    log.debug("update sql: %s", sql)
                    cur.execute(sql, params)
        except psycopg.Error as exc:
            self._failed("update", table, exc)
            return False
        return True

    def select(
        self,
        model: type,
        columns: Optional[Sequence[str]] = None,
        where: Optional[Sequence[Predicate]] = None,
    ) -> List[Any]:
        """
        General select for any record type. With `columns` None every column is
        returned; otherwise only the named attributes are populated and the rest
        keep their defaults.

        Example: `select(Person, where=[Predicate("name", "Larry", value_type=ValueType.STRING)])`
        runs `SELECT * FROM "person" where name = 'Larry'`.
        """
        table = describe(model)
        if not table.persisted:
            return []

        sql = build_select_sql(table, columns, where)
        try:
            with self.source.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    log.debug("select sql: %s", sql)
                    cur.execute(sql)
                    rows = cur.fetchall()
        except psycopg.Error as exc:
            self._failed("select", table, exc)
            return []
        return [self._materialize(table, row) for row in rows]

    def max_entity_id(self, model: type) -> Optional[int]:
        """Largest entity id in storage, 0 for an empty table, None on failure."""
        rows = self.select(model, columns=[MAX_ENTITY_ID_PROJECTION])
        if len(rows) != 1:
            return None
        return max(rows[0].id, 0)

    def transaction(self) -> ContextManager[Any]:
        """Transaction scope of the underlying connection source."""
        return self.source.transaction()

    def lock_entity(self, model: type, key: Any) -> None:
        """
        Serialize writers of one entity for the rest of the open transaction.
        Outside a transaction scope there is nothing to hold the lock, so this is a no-op.
        """
        if not self.source.in_transaction:
            return
        table = describe(model)
        try:
            with self.source.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "SELECT pg_advisory_xact_lock(hashtextextended(%s, 0))",
                        (f"{table.table_name}:{key}",),
                    )
        except psycopg.Error as exc:
            self._failed("lock", table, exc)


__all__ = [
    "StatementEngine",
    "build_insert_sql",
    "build_select_sql",
    "build_update_sql",
    "quote_identifier",
]
