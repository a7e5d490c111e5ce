"""
Column vocabulary for record types.

Record attributes are plain annotations on pydantic models. Where a Python type
alone cannot say which storage type is wanted (32-bit vs 64-bit integers, single
vs double precision, single characters) an `Annotated` hint picks it:

    class Person(CommonState):
        name: str = ""
        age: Int32 = 0
        cache: Annotated[dict, NotPersisted] = {}
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Annotated


class SemanticType(Enum):
    """Semantic attribute types understood by the type mapper."""

    TEXT = "text"
    INT32 = "int32"
    INT64 = "int64"
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    UUID = "uuid"
    CHAR = "char"
    ENUM = "enum"
    TYPE_REF = "type_ref"
    SEQUENCE = "sequence"
    BINARY = "binary"


@dataclass(frozen=True)
class ColumnHint:
    """Forces the semantic type of an annotated attribute."""

    semantic_type: SemanticType


class _NotPersisted:
    """Marker excluding an attribute from the table."""

    def __repr__(self) -> str:
        return "NotPersisted"


NotPersisted = _NotPersisted()

Int32 = Annotated[int, ColumnHint(SemanticType.INT32)]
Float32 = Annotated[float, ColumnHint(SemanticType.FLOAT32)]
Char = Annotated[str, ColumnHint(SemanticType.CHAR)]


__all__ = [
    "Char",
    "ColumnHint",
    "Float32",
    "Int32",
    "NotPersisted",
    "SemanticType",
]
