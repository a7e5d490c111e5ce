"""
Value codecs between record attributes and column values.

`bind_value` turns an attribute value into the parameter psycopg sends for its
column; `unbind_value` turns what psycopg returns back into the attribute
value. Two encodings need more than a type conversion:

- SEQUENCE columns hold a JSON array literal (`[1, 2, 3]`, `["a", "b"]`).
- BINARY columns hold a portable tagged encoding: the magic `CSB1` followed by
  one tagged value. Tags are single ASCII bytes; lengths and counts are
  little-endian uint32. Any reimplementation can read it back.
  Enum members carry their type's qualified name and the member name.

Both directions raise `CodecError`; the statement engine logs it and leaves the
column NULL (bind) or the attribute at its default (unbind).
"""

from __future__ import annotations

import importlib
import json
import struct
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict
from uuid import UUID

from pydantic import BaseModel

from chronostore.domain.types import SemanticType
from chronostore.persistence.errors import CodecError
from chronostore.persistence.type_mapper import ColumnDescriptor

BINARY_MAGIC = b"CSB1"

_U32 = struct.Struct("<I")
_F64 = struct.Struct("<d")


def qualified_name(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


def resolve_qualified_name(name: str) -> Any:
    """Import `module.Qual.Name`, trying the longest importable module prefix."""
    parts = name.split(".")
    for split in range(len(parts) - 1, 0, -1):
        module_name = ".".join(parts[:split])
        try:
            target: Any = importlib.import_module(module_name)
        except ImportError:
            continue
        try:
            for attribute in parts[split:]:
                target = getattr(target, attribute)
        except AttributeError as exc:
            raise CodecError(f"Cannot resolve '{name}'") from exc
        return target
    raise CodecError(f"Cannot resolve '{name}'")


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# --- sequence literal -------------------------------------------------------


def encode_sequence(values: Any) -> str:
    items = sorted(values, key=repr) if isinstance(values, (set, frozenset)) else list(values)
    return json.dumps([str(item) if isinstance(item, Decimal) else item for item in items])


def decode_sequence(text: str, column: ColumnDescriptor) -> Any:
    try:
        items = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CodecError(f"Column '{column.column_name}' holds an invalid sequence literal") from exc
    if not isinstance(items, list):
        raise CodecError(f"Column '{column.column_name}' does not hold a sequence literal")
    element = column.element_type or (lambda item: item)
    container = column.container or list
    try:
        return container(element(item) for item in items)
    except (TypeError, ValueError, ArithmeticError) as exc:
        raise CodecError(f"Column '{column.column_name}' holds a malformed element") from exc


# --- portable binary fallback ----------------------------------------------


def _pack_text(tag: bytes, text: str) -> bytes:
    raw = text.encode("utf-8")
    return tag + _U32.pack(len(raw)) + raw


def _encode(value: Any) -> bytes:
    if value is None:
        return b"N"
    if value is True:
        return b"T"
    if value is False:
        return b"F"
    if isinstance(value, Enum):
        return b"E" + _encode(qualified_name(type(value))) + _encode(value.name)
    if isinstance(value, int):
        length = max(1, (value.bit_length() + 8) // 8)
        return b"i" + _U32.pack(length) + value.to_bytes(length, "little", signed=True)
    if isinstance(value, float):
        return b"f" + _F64.pack(value)
    if isinstance(value, str):
        return _pack_text(b"s", value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        return b"b" + _U32.pack(len(raw)) + raw
    if isinstance(value, Decimal):
        return _pack_text(b"D", str(value))
    if isinstance(value, datetime):
        return _pack_text(b"t", value.isoformat())
    if isinstance(value, date):
        return _pack_text(b"d", value.isoformat())
    if isinstance(value, UUID):
        return b"u" + value.bytes
    if isinstance(value, BaseModel):
        return b"M" + _encode(qualified_name(type(value))) + _encode(value.model_dump())
    if isinstance(value, dict):
        body = b"".join(_encode(k) + _encode(v) for k, v in value.items())
        return b"m" + _U32.pack(len(value)) + body
    for container_type, tag in ((list, b"l"), (tuple, b"p"), (set, b"S"), (frozenset, b"Z")):
        if isinstance(value, container_type):
            return tag + _U32.pack(len(value)) + b"".join(_encode(item) for item in value)
    raise CodecError(f"No portable encoding for values of type {type(value).__name__}")


def encode_binary(value: Any) -> bytes:
    """Encode a value with the portable tagged encoding."""
    return BINARY_MAGIC + _encode(value)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def take(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise CodecError("Truncated binary value")
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def u32(self) -> int:
        return _U32.unpack(self.take(4))[0]

    def text(self) -> str:
        return self.take(self.u32()).decode("utf-8")


def _decode_model(reader: _Reader) -> Any:
    name = _decode(reader)
    fields = _decode(reader)
    try:
        model = resolve_qualified_name(name)
    except CodecError:
        return fields
    if isinstance(model, type) and issubclass(model, BaseModel):
        return model.model_validate(fields)
    return fields


def _decode_enum(reader: _Reader) -> Any:
    name = _decode(reader)
    member = _decode(reader)
    if not isinstance(name, str) or not isinstance(member, str):
        raise CodecError("Malformed enum value")
    enum_type = resolve_qualified_name(name)
    if not (isinstance(enum_type, type) and issubclass(enum_type, Enum)):
        raise CodecError(f"'{name}' is not an enum type")
    try:
        return enum_type[member]
    except KeyError as exc:
        raise CodecError(f"'{member}' is not a member of {name}") from exc


_SCALAR_DECODERS: Dict[bytes, Callable[[_Reader], Any]] = {
    b"N": lambda r: None,
    b"T": lambda r: True,
    b"F": lambda r: False,
    b"i": lambda r: int.from_bytes(r.take(r.u32()), "little", signed=True),
    b"f": lambda r: _F64.unpack(r.take(8))[0],
    b"s": lambda r: r.text(),
    b"b": lambda r: r.take(r.u32()),
    b"D": lambda r: Decimal(r.text()),
    b"t": lambda r: datetime.fromisoformat(r.text()),
    b"d": lambda r: date.fromisoformat(r.text()),
    b"u": lambda r: UUID(bytes=r.take(16)),
    b"M": _decode_model,
    b"E": _decode_enum,
}

_CONTAINERS: Dict[bytes, Callable[[Any], Any]] = {
    b"l": list,
    b"p": tuple,
    b"S": set,
    b"Z": frozenset,
}


def _decode(reader: _Reader) -> Any:
    tag = reader.take(1)
    if tag in _SCALAR_DECODERS:
        return _SCALAR_DECODERS[tag](reader)
    if tag in _CONTAINERS:
        count = reader.u32()
        return _CONTAINERS[tag](_decode(reader) for _ in range(count))
    if tag == b"m":
        count = reader.u32()
        pairs = [(_decode(reader), _decode(reader)) for _ in range(count)]
        return dict(pairs)
    raise CodecError(f"Unknown binary tag {tag!r}")


def decode_binary(data: bytes) -> Any:
    """Decode a value written by `encode_binary`."""
    data = bytes(data)
    if not data.startswith(BINARY_MAGIC):
        raise CodecError("Binary value lacks the portable encoding header")
    reader = _Reader(data[len(BINARY_MAGIC):])
    try:
        value = _decode(reader)
    except (ValueError, UnicodeDecodeError, struct.error) as exc:
        raise CodecError("Corrupt binary value") from exc
    if reader.offset != len(reader.data):
        raise CodecError("Trailing bytes after binary value")
    return value


# --- column binding ----------------------------------------------------------


def _bind_char(value: Any) -> Any:
    text = str(value)
    return text[:1] if text and text[0] != "\x00" else None


def _bind_enum(value: Any) -> str:
    return value.name if isinstance(value, Enum) else str(value)


def _bind_type_ref(value: Any) -> str:
    return qualified_name(value) if isinstance(value, type) else str(value)


def _bind_timestamp(value: Any) -> datetime:
    if not isinstance(value, datetime):
        raise CodecError(f"Expected datetime, got {type(value).__name__}")
    return to_naive_utc(value)


def _bind_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


_BINDERS: Dict[SemanticType, Callable[[Any], Any]] = {
    SemanticType.TEXT: str,
    SemanticType.INT32: int,
    SemanticType.INT64: int,
    SemanticType.FLOAT32: float,
    SemanticType.FLOAT64: float,
    SemanticType.DECIMAL: _bind_decimal,
    SemanticType.BOOLEAN: bool,
    SemanticType.TIMESTAMP: _bind_timestamp,
    SemanticType.UUID: str,
    SemanticType.CHAR: _bind_char,
    SemanticType.ENUM: _bind_enum,
    SemanticType.TYPE_REF: _bind_type_ref,
    SemanticType.SEQUENCE: encode_sequence,
    SemanticType.BINARY: encode_binary,
}


def bind_value(column: ColumnDescriptor, value: Any) -> Any:
    """Convert an attribute value to the parameter bound for its column."""
    if value is None:
        return None
    try:
        return _BINDERS[column.semantic_type](value)
    except CodecError:
        raise
    except (TypeError, ValueError, ArithmeticError) as exc:
        raise CodecError(
            f"Cannot bind {type(value).__name__} to column '{column.column_name}'"
        ) from exc


def _unbind_enum(column: ColumnDescriptor, raw: Any) -> Any:
    enum_type = column.python_type
    try:
        return enum_type[raw]
    except KeyError:
        try:
            return enum_type(raw)
        except ValueError as exc:
            raise CodecError(f"'{raw}' is not a member of {enum_type.__name__}") from exc


def _unbind_timestamp(column: ColumnDescriptor, raw: Any) -> datetime:
    return to_naive_utc(raw) if isinstance(raw, datetime) else datetime.fromisoformat(str(raw))


_UNBINDERS: Dict[SemanticType, Callable[[ColumnDescriptor, Any], Any]] = {
    SemanticType.TEXT: lambda c, raw: str(raw),
    SemanticType.INT32: lambda c, raw: int(raw),
    SemanticType.INT64: lambda c, raw: int(raw),
    SemanticType.FLOAT32: lambda c, raw: float(raw),
    SemanticType.FLOAT64: lambda c, raw: float(raw),
    SemanticType.DECIMAL: lambda c, raw: raw if isinstance(raw, Decimal) else Decimal(str(raw)),
    SemanticType.BOOLEAN: lambda c, raw: bool(raw),
    SemanticType.TIMESTAMP: _unbind_timestamp,
    SemanticType.UUID: lambda c, raw: raw if isinstance(raw, UUID) else UUID(str(raw)),
    SemanticType.CHAR: lambda c, raw: str(raw),
    SemanticType.ENUM: _unbind_enum,
    SemanticType.TYPE_REF: lambda c, raw: resolve_qualified_name(str(raw)),
    SemanticType.SEQUENCE: lambda c, raw: decode_sequence(str(raw), c),
    SemanticType.BINARY: lambda c, raw: decode_binary(raw),
}


def unbind_value(column: ColumnDescriptor, raw: Any) -> Any:
    """Convert a column value read from storage back to the attribute value."""
    if raw is None:
        return None
    try:
        return _UNBINDERS[column.semantic_type](column, raw)
    except CodecError:
        raise
    except (TypeError, ValueError, ArithmeticError) as exc:
        raise CodecError(f"Cannot read column '{column.column_name}'") from exc


__all__ = [
    "BINARY_MAGIC",
    "bind_value",
    "decode_binary",
    "decode_sequence",
    "encode_binary",
    "encode_sequence",
    "qualified_name",
    "resolve_qualified_name",
    "to_naive_utc",
    "unbind_value",
]
