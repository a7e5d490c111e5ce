"""
Type mapper: record types to table descriptors.

`describe(model)` inspects a pydantic record type once and returns a cached
`TableDescriptor`: the lower-cased table name plus one `ColumnDescriptor` per
persisted attribute (semantic type, column name, column DDL type, primary-key
flag). The statement engine, the codecs, and the schema synchronizer all work
from this descriptor rather than from the model class itself.

Python type -> column type:

    str                      TEXT
    Int32                    INT
    int                      BIGINT   (rid: BIGSERIAL PRIMARY KEY)
    float / Float32          DOUBLE PRECISION / REAL
    Decimal                  NUMERIC(10,4)
    bool                     BOOLEAN
    datetime                 TIMESTAMP (arsd defaults to CURRENT_TIMESTAMP)
    UUID                     VARCHAR(132)
    Char                     CHAR
    Enum subclass, type[X]   VARCHAR(200)
    list/tuple/set of scalar TEXT (JSON literal)
    anything else            BYTEA (portable tagged encoding)
"""

from __future__ import annotations

import inspect
import types
import typing
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from typing import Any, Iterable, Iterator, List, Optional, Tuple, Union, get_args, get_origin
from uuid import UUID

from pydantic import BaseModel

from chronostore.domain.models import System, Tenant
from chronostore.domain.types import ColumnHint, NotPersisted, SemanticType
from chronostore.persistence.errors import MappingError
from chronostore.utils.logging import get_logger

log = get_logger(__name__)

PRIMARY_KEY_FIELD = "rid"
ACTIVE_RANGE_START_FIELD = "arsd"

SEQUENCE_CONTAINERS = (list, tuple, set, frozenset)
SEQUENCE_ELEMENTS = (bool, int, float, str, Decimal)

_SIMPLE_TYPES = {
    bool: SemanticType.BOOLEAN,
    int: SemanticType.INT64,
    float: SemanticType.FLOAT64,
    Decimal: SemanticType.DECIMAL,
    str: SemanticType.TEXT,
    datetime: SemanticType.TIMESTAMP,
    UUID: SemanticType.UUID,
}

_COLUMN_TYPES = {
    SemanticType.TEXT: "TEXT",
    SemanticType.INT32: "INT",
    SemanticType.INT64: "BIGINT",
    SemanticType.FLOAT32: "REAL",
    SemanticType.FLOAT64: "DOUBLE PRECISION",
    SemanticType.DECIMAL: "NUMERIC(10,4)",
    SemanticType.BOOLEAN: "BOOLEAN",
    SemanticType.TIMESTAMP: "TIMESTAMP NULL",
    SemanticType.UUID: "VARCHAR(132)",
    SemanticType.CHAR: "CHAR",
    SemanticType.ENUM: "VARCHAR(200)",
    SemanticType.TYPE_REF: "VARCHAR(200)",
    SemanticType.SEQUENCE: "TEXT",
    SemanticType.BINARY: "BYTEA",
}


@dataclass(frozen=True)
class ColumnDescriptor:
    """Derived mapping of one attribute onto one column."""

    field_name: str
    semantic_type: SemanticType
    column_name: str
    column_type: str
    primary_key: bool = False
    python_type: Any = None
    element_type: Any = None
    container: Any = None

    @property
    def ddl(self) -> str:
        return f"{self.column_name} {self.column_type}"


@dataclass(frozen=True)
class TableDescriptor:
    """Derived mapping of one record type onto one table."""

    model: type
    table_name: str
    columns: Tuple[ColumnDescriptor, ...]
    persisted: bool = True

    @property
    def primary_key(self) -> ColumnDescriptor:
        for column in self.columns:
            if column.primary_key:
                return column
        raise MappingError(f"Table '{self.table_name}' has no primary key column")

    @property
    def writable_columns(self) -> Tuple[ColumnDescriptor, ...]:
        """Every column except the storage-assigned primary key, in declaration order."""
        return tuple(column for column in self.columns if not column.primary_key)

    def column(self, field_name: str) -> Optional[ColumnDescriptor]:
        for column in self.columns:
            if column.field_name == field_name:
                return column
        return None


def table_name(model: type) -> str:
    return model.__name__.lower()


def is_persisted(model: type) -> bool:
    """Whether the record type takes part in persistence at all."""
    return bool(getattr(model, "persisted", True))


def _unwrap(annotation: Any) -> Tuple[Any, List[Any]]:
    """Strip Optional[...] and Annotated[...] layers, collecting Annotated metadata."""
    metadata: List[Any] = []
    while True:
        origin = get_origin(annotation)
        if origin is typing.Annotated:
            metadata.extend(annotation.__metadata__)
            annotation = get_args(annotation)[0]
            continue
        if origin is Union or origin is types.UnionType:
            members = [arg for arg in get_args(annotation) if arg is not type(None)]
            if len(members) == 1:
                annotation = members[0]
                continue
        return annotation, metadata


def _sequence_element(annotation: Any) -> Optional[Any]:
    """Element type of a homogeneous sequence of scalars, or None."""
    origin = get_origin(annotation)
    if origin not in SEQUENCE_CONTAINERS:
        return None
    args = [arg for arg in get_args(annotation) if arg is not Ellipsis]
    if len(args) != 1:
        return None
    element, _ = _unwrap(args[0])
    return element if element in SEQUENCE_ELEMENTS else None


def semantic_type_for(annotation: Any, metadata: Iterable[Any] = ()) -> Optional[SemanticType]:
    """
    Resolve the semantic type of an annotation; None means "not persisted".
    """
    base, inner_metadata = _unwrap(annotation)
    hints = list(metadata) + inner_metadata

    if any(isinstance(hint, type(NotPersisted)) for hint in hints):
        return None
    for hint in hints:
        if isinstance(hint, ColumnHint):
            return hint.semantic_type

    if base in _SIMPLE_TYPES:
        return _SIMPLE_TYPES[base]
    if inspect.isclass(base) and issubclass(base, Enum):
        return SemanticType.ENUM
    if base is type or get_origin(base) is type:
        return SemanticType.TYPE_REF
    if _sequence_element(base) is not None:
        return SemanticType.SEQUENCE
    return SemanticType.BINARY


def column_type_for(semantic_type: SemanticType, field_name: str) -> str:
    if field_name == PRIMARY_KEY_FIELD and semantic_type is SemanticType.INT64:
        return "BIGSERIAL PRIMARY KEY"
    if field_name == ACTIVE_RANGE_START_FIELD and semantic_type is SemanticType.TIMESTAMP:
        return "TIMESTAMP DEFAULT CURRENT_TIMESTAMP"
    return _COLUMN_TYPES[semantic_type]


@lru_cache(maxsize=None)
def describe(model: type) -> TableDescriptor:
    """
    Build (once) the table descriptor of a record type.

    Raises
    ------
    MappingError
        If `model` is not a pydantic model or lacks the `rid` primary key.
    """
    if not (inspect.isclass(model) and issubclass(model, BaseModel)):
        raise MappingError(f"{model!r} is not a pydantic record type")
    if PRIMARY_KEY_FIELD not in model.model_fields:
        raise MappingError(f"{model.__name__} has no '{PRIMARY_KEY_FIELD}' attribute")

    columns: List[ColumnDescriptor] = []
    for name, info in model.model_fields.items():
        semantic_type = semantic_type_for(info.annotation, info.metadata)
        if semantic_type is None:
            log.debug("Skipping non-persisted field %s.%s", model.__name__, name)
            continue

        base, _ = _unwrap(info.annotation)
        element = _sequence_element(base) if semantic_type is SemanticType.SEQUENCE else None
        container = get_origin(base) if element is not None else None
        if semantic_type is SemanticType.BINARY:
            log.debug("Field %s.%s of type %r maps to binary fallback", model.__name__, name, base)

        columns.append(
            ColumnDescriptor(
                field_name=name,
                semantic_type=semantic_type,
                column_name=name.lower(),
                column_type=column_type_for(semantic_type, name),
                primary_key=name == PRIMARY_KEY_FIELD,
                python_type=base,
                element_type=element,
                container=container,
            )
        )

    return TableDescriptor(
        model=model,
        table_name=table_name(model),
        columns=tuple(columns),
        persisted=is_persisted(model),
    )


class TypeCatalog:
    """
    Enumerable set of registered record types. `System` and `Tenant` are always
    registered since the default entries live in them.
    """

    def __init__(self, models: Iterable[type] = ()) -> None:
        self._models: List[type] = []
        self.register(System, Tenant, *models)

    def register(self, *models: type) -> None:
        for model in models:
            describe(model)
            if model not in self._models:
                self._models.append(model)

    def persisted_models(self) -> List[type]:
        return [model for model in self._models if is_persisted(model)]

    def get(self, name: str) -> Optional[type]:
        """Look up a registered type by class name or table name."""
        for model in self._models:
            if model.__name__ == name or table_name(model) == name.lower():
                return model
        return None

    def __iter__(self) -> Iterator[type]:
        return iter(list(self._models))

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, model: object) -> bool:
        return model in self._models


__all__ = [
    "ColumnDescriptor",
    "TableDescriptor",
    "TypeCatalog",
    "column_type_for",
    "describe",
    "is_persisted",
    "semantic_type_for",
    "table_name",
]
