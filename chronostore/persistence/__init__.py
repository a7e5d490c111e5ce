"""
Persistence layer: predicate rendering, type mapping, value codecs, the
dynamic statement engine and the additive schema synchronizer.
"""

from chronostore.persistence.errors import (
    ChronostoreError,
    CodecError,
    MappingError,
    PredicateError,
    SchemaError,
    StatementError,
)
from chronostore.persistence.predicates import (
    NULL,
    Conjunction,
    Grouping,
    Operator,
    Predicate,
    ValueType,
    render_filter,
    render_where,
)
from chronostore.persistence.schema import SchemaSynchronizer
from chronostore.persistence.statements import StatementEngine
from chronostore.persistence.type_mapper import (
    ColumnDescriptor,
    TableDescriptor,
    TypeCatalog,
    describe,
)

__all__ = [
    "NULL",
    "ChronostoreError",
    "CodecError",
    "ColumnDescriptor",
    "Conjunction",
    "Grouping",
    "MappingError",
    "Operator",
    "Predicate",
    "PredicateError",
    "SchemaError",
    "SchemaSynchronizer",
    "StatementEngine",
    "StatementError",
    "TableDescriptor",
    "TypeCatalog",
    "ValueType",
    "describe",
    "render_filter",
    "render_where",
]
