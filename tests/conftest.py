"""
Pytest configuration for chronostore.

Provides fixtures for:
- Settings override for unit and integration tests
- An in-memory StateStore that evaluates predicate lists like the database does
- A controllable clock for the versioning service
- Database connection management for integration tests
"""

from __future__ import annotations

import copy
import operator
import os
import re
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Generator, List, Optional, Sequence

import psycopg
import pytest

from chronostore.config import Settings
from chronostore.infrastructure.db_factory import ConnectionSource, build_dsn
from chronostore.persistence.codecs import to_naive_utc
from chronostore.persistence.errors import StatementError
from chronostore.persistence.predicates import (
    Conjunction,
    Grouping,
    Operator,
    Predicate,
    ValueType,
    render_where,
)
from chronostore.persistence.statements import StatementEngine
from chronostore.persistence.type_mapper import describe, table_name

_COMPARATORS = {
    Operator.EQUAL: operator.eq,
    Operator.NOT_EQUAL: operator.ne,
    Operator.LESS_THAN: operator.lt,
    Operator.GREATER_THAN: operator.gt,
    Operator.LESS_THAN_OR_EQUAL: operator.le,
    Operator.GREATER_THAN_OR_EQUAL: operator.ge,
    Operator.IS: operator.eq,
    Operator.IS_NOT: operator.ne,
}


def _expected(predicate: Predicate) -> Any:
    value = predicate.value
    if predicate.value_type is ValueType.BOOLEAN and not isinstance(value, bool):
        return str(value).strip().lower() == "true"
    if predicate.value_type in (ValueType.INTEGER, ValueType.LONG):
        return int(value)
    if predicate.value_type in (ValueType.DOUBLE, ValueType.FLOAT, ValueType.DECIMAL):
        return Decimal(str(value))
    if isinstance(value, datetime):
        return to_naive_utc(value)
    return value


def _matches(predicate: Predicate, row: Dict[str, Any]) -> bool:
    actual = row.get(predicate.name)
    if predicate.is_null:
        negated = predicate.operator in (Operator.NOT_EQUAL, Operator.IS_NOT)
        return (actual is not None) if negated else (actual is None)
    if actual is None:
        # SQL three-valued logic: a comparison with NULL never holds
        return False
    expected = _expected(predicate)
    if predicate.operator is Operator.LIKE:
        pattern = re.escape(str(expected)).replace("%", ".*").replace("_", ".")
        return re.fullmatch(pattern, str(actual)) is not None
    if isinstance(expected, Decimal):
        actual = Decimal(str(actual))
    return _COMPARATORS[predicate.operator](actual, expected)


def evaluate_predicates(predicates: Optional[Sequence[Predicate]], row: Dict[str, Any]) -> bool:
    """Evaluate a predicate list with SQL precedence (AND binds tighter than OR)."""
    if not predicates:
        return True
    tokens: List[str] = []
    for index, predicate in enumerate(predicates):
        if index > 0:
            tokens.append("and" if predicate.conjunction is Conjunction.AND else "or")
        tokens.extend("(" for g in predicate.groupings if g is Grouping.OPEN_PARENTHESIS)
        tokens.append(str(_matches(predicate, row)))
        tokens.extend(")" for g in predicate.groupings if g is Grouping.CLOSE_PARENTHESIS)
    return bool(eval(" ".join(tokens), {"__builtins__": {}}, {}))  # noqa: S307


class InMemoryStateStore:
    """
    StateStore over plain dicts. Mirrors StatementEngine: rids are assigned on
    insert, failures return the empty value outside a transaction and raise
    StatementError inside one; a failed transaction restores the snapshot.
    """

    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.locks: List[str] = []
        self.transactions = 0
        self.fail_on: set = set()
        self._depth = 0

    def _rows(self, model: type) -> List[Dict[str, Any]]:
        return self.tables.setdefault(table_name(model), [])

    def _fail(self, action: str) -> bool:
        if action not in self.fail_on:
            return False
        if self._depth:
            raise StatementError(f"{action} failed", "XX000")
        return True

    def insert(self, model: type, state: Any) -> int:
        if self._fail("insert"):
            return -1
        rows = self._rows(model)
        row = {c.field_name: copy.deepcopy(getattr(state, c.field_name)) for c in describe(model).columns}
        row["rid"] = max((r["rid"] for r in rows), default=0) + 1
        rows.append(row)
        return row["rid"]

    def update(self, model: type, state: Any) -> bool:
        if self._fail("update"):
            return False
        for row in self._rows(model):
            if row["rid"] == state.rid:
                for column in describe(model).writable_columns:
                    row[column.field_name] = copy.deepcopy(getattr(state, column.field_name))
                return True
        return True

    def select(self, model: type, columns=None, where=None) -> List[Any]:
        render_where(where)
        if self._fail("select"):
            return []
        return [
            model.model_construct(**copy.deepcopy(row))
            for row in self._rows(model)
            if evaluate_predicates(where, row)
        ]

    def max_entity_id(self, model: type) -> Optional[int]:
        if self._fail("max"):
            return None
        return max((row["id"] for row in self._rows(model)), default=0)

    def lock_entity(self, model: type, key: Any) -> None:
        if self._depth:
            self.locks.append(f"{table_name(model)}:{key}")

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return
        snapshot = copy.deepcopy(self.tables)
        self.transactions += 1
        self._depth = 1
        try:
            yield
        except Exception:
            self.tables = snapshot
            raise
        finally:
            self._depth = 0


class FakeClock:
    """Deterministic clock; every call returns the current instant."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture()
def memory_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 1, 12, 0, 0))


@pytest.fixture()
def unit_settings() -> Settings:
    """Settings for unit tests; nothing here contacts a database."""
    return Settings(
        db_host="localhost",
        db_name="chronostore_unit",
        atomic_writes=True,
        default_tenant_id=1,
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "chronostore_test"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return build_dsn(test_settings)


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except Exception:
        return False


@pytest.fixture(scope="session")
def connection_source(
    test_settings: Settings, db_connection_available: bool
) -> Generator[ConnectionSource, None, None]:
    """
    Session-scoped connection source for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    source = ConnectionSource(test_settings)
    try:
        yield source
    finally:
        source.close()


@pytest.fixture()
def engine(connection_source: ConnectionSource) -> StatementEngine:
    return StatementEngine(connection_source)


@pytest.fixture()
def drop_tables(connection_source: ConnectionSource):
    """
    Collect table names to drop after the test, for isolation between runs.
    """
    tables: List[str] = []
    yield tables
    with connection_source.connection() as conn:
        with conn.cursor() as cur:
            for name in tables:
                cur.execute(f'DROP TABLE IF EXISTS "{name}"')
