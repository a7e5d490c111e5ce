"""Structured error types for chronostore."""

from __future__ import annotations

from typing import Optional


class ChronostoreError(Exception):
    """Base error for all chronostore errors."""


class PredicateError(ChronostoreError, ValueError):
    """Raised when a predicate cannot be rendered into a filter expression."""


class MappingError(ChronostoreError):
    """Raised when a record type cannot be described as a table."""


class CodecError(ChronostoreError):
    """Raised when a value cannot be encoded to or decoded from its column."""


class SchemaError(ChronostoreError):
    """Raised when the schema synchronizer cannot reach or provision the store."""


class StatementError(ChronostoreError):
    """Raised by a statement that failed inside a transaction scope."""

    def __init__(self, message: str, sqlstate: Optional[str] = None) -> None:
        self.sqlstate = sqlstate
        super().__init__(f"{message} (sqlstate={sqlstate})" if sqlstate else message)


__all__ = [
    "ChronostoreError",
    "CodecError",
    "MappingError",
    "PredicateError",
    "SchemaError",
    "StatementError",
]
