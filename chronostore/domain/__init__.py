"""
Domain package for chronostore.

Exports the base state, the entity aggregate, the built-in record types, and
the column vocabulary used to annotate attributes.
Keep this package focused on data definitions.
"""

from chronostore.domain.models import CommonState, Entity, System, Tenant
from chronostore.domain.types import (
    Char,
    ColumnHint,
    Float32,
    Int32,
    NotPersisted,
    SemanticType,
)

__all__ = [
    "Char",
    "ColumnHint",
    "CommonState",
    "Entity",
    "Float32",
    "Int32",
    "NotPersisted",
    "SemanticType",
    "System",
    "Tenant",
]
