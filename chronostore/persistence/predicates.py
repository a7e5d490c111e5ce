"""
Predicate builder: typed filter conditions rendered into a WHERE expression.

A filter is an ordered list of `Predicate` objects. Each predicate names a
column, an operator, a literal, and the literal's `ValueType` (which decides
quoting). Predicates after the first are joined by their `conjunction`, and
`Grouping` markers wrap runs of predicates in parentheses:

    render_where([
        Predicate("df", "1", Operator.NOT_EQUAL, ValueType.INTEGER),
        Predicate("tid", "1", value_type=ValueType.LONG),
    ])
    # -> "where df != 1 AND tid = 1"
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, List, Optional, Sequence
from uuid import UUID

from chronostore.persistence.codecs import to_naive_utc
from chronostore.persistence.errors import PredicateError

NULL = "NULL"

DATE_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class Operator(Enum):
    EQUAL = "="
    NOT_EQUAL = "!="
    LESS_THAN = "<"
    GREATER_THAN = ">"
    LESS_THAN_OR_EQUAL = "<="
    GREATER_THAN_OR_EQUAL = ">="
    IS = "IS"
    IS_NOT = "IS NOT"
    LIKE = "LIKE"


class Conjunction(Enum):
    AND = "AND"
    OR = "OR"


class Grouping(Enum):
    OPEN_PARENTHESIS = "("
    CLOSE_PARENTHESIS = ")"


class ValueType(Enum):
    """Semantic type of a predicate literal; decides how it is rendered."""

    STRING = "string"
    INTEGER = "integer"
    LONG = "long"
    DOUBLE = "double"
    FLOAT = "float"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    UUID = "uuid"
    ENUM = "enum"
    DEFAULT = "default"


_NUMERIC_TYPES = frozenset(
    {ValueType.INTEGER, ValueType.LONG, ValueType.DOUBLE, ValueType.FLOAT, ValueType.DECIMAL}
)
_NEGATED_OPERATORS = frozenset({Operator.NOT_EQUAL, Operator.IS_NOT})


@dataclass
class Predicate:
    """One filter condition."""

    name: str
    value: Any = NULL
    operator: Operator = Operator.EQUAL
    value_type: ValueType = ValueType.DEFAULT
    conjunction: Conjunction = Conjunction.AND
    groupings: List[Grouping] = field(default_factory=list)

    @property
    def is_null(self) -> bool:
        return self.value is None or (isinstance(self.value, str) and self.value == NULL)


def _quote(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def _render_literal(predicate: Predicate) -> str:
    value = predicate.value
    value_type = predicate.value_type

    if value_type in _NUMERIC_TYPES:
        if isinstance(value, bool):
            raise PredicateError(f"Boolean literal given for numeric predicate '{predicate.name}'")
        text = str(value).strip()
        try:
            finite = Decimal(text).is_finite()
        except InvalidOperation as exc:
            raise PredicateError(
                f"Non-numeric literal {value!r} for numeric predicate '{predicate.name}'"
            ) from exc
        if not finite:
            raise PredicateError(f"Non-finite literal {value!r} for numeric predicate '{predicate.name}'")
        return text

    if value_type is ValueType.BOOLEAN:
        if isinstance(value, bool):
            return "true" if value else "false"
        text = str(value).strip().lower()
        if text in ("true", "false"):
            return text
        raise PredicateError(f"Invalid boolean literal {value!r} for predicate '{predicate.name}'")

    if isinstance(value, datetime):
        return _quote(to_naive_utc(value).strftime(DATE_FORMAT))
    if isinstance(value, date):
        return _quote(value.isoformat())
    if isinstance(value, Enum):
        return _quote(value.name)
    if isinstance(value, UUID):
        return _quote(str(value))
    # STRING, DATE (pre-formatted), UUID, ENUM and DEFAULT are all quoted text
    return _quote(str(value))


def render_predicate(predicate: Predicate) -> str:
    """Render one predicate without its conjunction."""
    if not _IDENTIFIER_RE.match(predicate.name or ""):
        raise PredicateError(f"Invalid predicate field name {predicate.name!r}")

    if predicate.is_null:
        operator = "IS NOT" if predicate.operator in _NEGATED_OPERATORS else "IS"
        body = f"{predicate.name} {operator} {NULL}"
    else:
        body = f"{predicate.name} {predicate.operator.value} {_render_literal(predicate)}"

    opens = sum(1 for g in predicate.groupings if g is Grouping.OPEN_PARENTHESIS)
    closes = sum(1 for g in predicate.groupings if g is Grouping.CLOSE_PARENTHESIS)
    return "(" * opens + body + ")" * closes


def render_filter(predicates: Optional[Sequence[Predicate]]) -> str:
    """
    Render predicates into a boolean expression. The first predicate's
    conjunction is ignored; an empty or None list renders "".
    """
    if not predicates:
        return ""
    parts: List[str] = []
    for index, predicate in enumerate(predicates):
        if index > 0:
            parts.append(predicate.conjunction.value)
        parts.append(render_predicate(predicate))
    return " ".join(parts)


def render_where(predicates: Optional[Sequence[Predicate]]) -> str:
    """Render predicates as a `where ...` clause, or "" when there are none."""
    expression = render_filter(predicates)
    return f"where {expression}" if expression else ""


__all__ = [
    "Conjunction",
    "DATE_FORMAT",
    "Grouping",
    "NULL",
    "Operator",
    "Predicate",
    "ValueType",
    "render_filter",
    "render_predicate",
    "render_where",
]
