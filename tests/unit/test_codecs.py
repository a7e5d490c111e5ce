from __future__ import annotations

import struct
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple
from uuid import UUID

import pytest
from pydantic import BaseModel

from chronostore.domain.models import CommonState
from chronostore.domain.types import Char
from chronostore.persistence.codecs import (
    BINARY_MAGIC,
    bind_value,
    decode_binary,
    decode_sequence,
    encode_binary,
    encode_sequence,
    qualified_name,
    resolve_qualified_name,
    unbind_value,
)
from chronostore.persistence.errors import CodecError
from chronostore.persistence.type_mapper import describe


class Priority(Enum):
    LOW = "low"
    HIGH = "high"


class Dimensions(BaseModel):
    width: int = 0
    height: int = 0


class Parcel(CommonState):
    priority: Priority = Priority.LOW
    sender: Optional[type] = None
    tags: List[str] = []
    weights: Tuple[Decimal, ...] = ()
    zones: Set[int] = set()
    initial: Char = ""
    shipped_at: Optional[datetime] = None
    token: Optional[UUID] = None
    dimensions: Optional[Dimensions] = None
    extra: Dict[str, int] = {}
    priorities: List[Priority] = []
    routes: Dict[str, Priority] = {}


def column(name: str):
    return describe(Parcel).column(name)


def test_binary_layout_of_a_string() -> None:
    encoded = encode_binary("hé")

    assert encoded[:4] == BINARY_MAGIC
    assert encoded[4:5] == b"s"
    assert struct.unpack("<I", encoded[5:9])[0] == len("hé".encode("utf-8"))
    assert encoded[9:] == "hé".encode("utf-8")


def test_binary_integer_is_signed_little_endian() -> None:
    encoded = encode_binary(-2)

    assert encoded == BINARY_MAGIC + b"i" + struct.pack("<I", 1) + (-2).to_bytes(1, "little", signed=True)


def test_binary_encoding_of_nested_values() -> None:
    value = {
        "name": "box",
        "sizes": [1, 2.5, None, True],
        "pair": (Decimal("1.25"), date(2024, 2, 29)),
        "ids": {UUID(int=7)},
        "when": datetime(2024, 1, 1, 8, 30),
        "raw": b"\x00\x01",
        "big": 2**80,
    }

    assert decode_binary(encode_binary(value)) == value


def test_binary_encoding_rebuilds_pydantic_models() -> None:
    decoded = decode_binary(encode_binary(Dimensions(width=3, height=4)))

    assert isinstance(decoded, Dimensions)
    assert decoded.height == 4


def test_binary_model_with_unknown_class_keeps_field_dict() -> None:
    payload = (
        BINARY_MAGIC
        + b"M"
        + encode_binary("nowhere.Missing")[4:]
        + encode_binary({"a": 1})[4:]
    )

    assert decode_binary(payload) == {"a": 1}


def test_binary_rejects_unsupported_values() -> None:
    with pytest.raises(CodecError):
        encode_binary(object())


@pytest.mark.parametrize(
    "payload",
    [
        b"pickle",
        BINARY_MAGIC + b"?",
        BINARY_MAGIC + b"s" + struct.pack("<I", 10) + b"abc",
        BINARY_MAGIC + b"T" + b"extra",
    ],
)
def test_binary_rejects_corrupt_payloads(payload: bytes) -> None:
    with pytest.raises(CodecError):
        decode_binary(payload)


def test_sequence_literal_is_json_array() -> None:
    assert encode_sequence([1, 2, 3]) == "[1, 2, 3]"
    assert encode_sequence(("a", "b")) == '["a", "b"]'
    assert encode_sequence([Decimal("1.50")]) == '["1.50"]'


def test_sequence_literal_restores_container_and_element_type() -> None:
    assert decode_sequence('["1.50", "2"]', column("weights")) == (Decimal("1.50"), Decimal("2"))
    assert decode_sequence("[3, 1]", column("zones")) == {1, 3}
    assert decode_sequence('["x"]', column("tags")) == ["x"]


def test_sequence_literal_errors() -> None:
    with pytest.raises(CodecError):
        decode_sequence("not json", column("tags"))
    with pytest.raises(CodecError):
        decode_sequence('{"a": 1}', column("tags"))
    with pytest.raises(CodecError):
        decode_sequence('["x"]', column("zones"))


def test_enum_binds_member_name_and_reads_name_or_value() -> None:
    assert bind_value(column("priority"), Priority.HIGH) == "HIGH"
    assert unbind_value(column("priority"), "HIGH") is Priority.HIGH
    assert unbind_value(column("priority"), "low") is Priority.LOW
    with pytest.raises(CodecError):
        unbind_value(column("priority"), "MEDIUM")


def test_type_reference_binds_qualified_name() -> None:
    bound = bind_value(column("sender"), Dimensions)

    assert bound == qualified_name(Dimensions)
    assert unbind_value(column("sender"), bound) is Dimensions
    assert resolve_qualified_name("decimal.Decimal") is Decimal
    with pytest.raises(CodecError):
        resolve_qualified_name("decimal.NoSuchThing")


def test_char_binds_first_character_and_nul_as_null() -> None:
    assert bind_value(column("initial"), "xyz") == "x"
    assert bind_value(column("initial"), "\x00") is None
    assert bind_value(column("initial"), "") is None


def test_aware_timestamps_bind_as_naive_utc() -> None:
    aware = datetime(2024, 1, 1, 10, 0, tzinfo=timezone(timedelta(hours=2)))

    assert bind_value(column("shipped_at"), aware) == datetime(2024, 1, 1, 8, 0)
    with pytest.raises(CodecError):
        bind_value(column("shipped_at"), "yesterday")


def test_uuid_binds_as_text() -> None:
    token = UUID(int=42)

    assert bind_value(column("token"), token) == str(token)
    assert unbind_value(column("token"), str(token)) == token


def test_none_binds_and_reads_as_none() -> None:
    assert bind_value(column("dimensions"), None) is None
    assert unbind_value(column("dimensions"), None) is None


def test_binary_column_round_trips_through_bytes() -> None:
    raw = bind_value(column("extra"), {"a": 1})

    assert isinstance(raw, bytes)
    assert unbind_value(column("extra"), memoryview(raw)) == {"a": 1}


def test_enum_sequence_falls_back_to_binary_and_keeps_members() -> None:
    raw = bind_value(column("priorities"), [Priority.HIGH, Priority.LOW])

    assert isinstance(raw, bytes)
    assert unbind_value(column("priorities"), raw) == [Priority.HIGH, Priority.LOW]
    assert all(isinstance(item, Priority) for item in unbind_value(column("priorities"), raw))


def test_dict_of_enums_keeps_members() -> None:
    routes = {"north": Priority.HIGH, "south": Priority.LOW}

    decoded = unbind_value(column("routes"), bind_value(column("routes"), routes))

    assert decoded == routes
    assert decoded["north"] is Priority.HIGH


def test_binary_enum_carries_type_and_member_name() -> None:
    encoded = encode_binary(Priority.HIGH)

    assert encoded == (
        BINARY_MAGIC
        + b"E"
        + encode_binary(qualified_name(Priority))[4:]
        + encode_binary("HIGH")[4:]
    )


def test_binary_enum_with_unknown_member_is_rejected() -> None:
    payload = BINARY_MAGIC + b"E" + encode_binary(qualified_name(Priority))[4:] + encode_binary("MEDIUM")[4:]

    with pytest.raises(CodecError):
        decode_binary(payload)
