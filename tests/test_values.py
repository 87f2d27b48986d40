"""Tests for the value model and backend conversions."""

from __future__ import annotations

import ipaddress
import math
import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

import pytest

from db_export.database.converters import MySQLConverter, PostgresConverter
from db_export.errors import ConversionError
from db_export.values import (
    NULL,
    Bool,
    Bytes,
    DecimalPolicy,
    Float,
    FormatOptions,
    Integer,
    Text,
    Timestamp,
    ValueConverter,
    ValueKind,
    parse_display_text,
    to_display_text,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, NULL),
        (True, Bool(True)),
        (42, Integer(42)),
        (2.5, Float(2.5)),
        ("héllo", Text("héllo")),
        (b"\x00\x01", Bytes(b"\x00\x01")),
        (bytearray(b"ab"), Bytes(b"ab")),
        (memoryview(b"cd"), Bytes(b"cd")),
        (datetime(2024, 5, 1, 12, 30), Timestamp(datetime(2024, 5, 1, 12, 30))),
        (date(2024, 5, 1), Timestamp(datetime(2024, 5, 1))),
        (time(8, 15, 30), Text("08:15:30")),
        (timedelta(hours=1, minutes=2), Text("1:02:00")),
        (uuid.UUID(int=1), Text("00000000-0000-0000-0000-000000000001")),
        (ipaddress.ip_address("10.0.0.1"), Text("10.0.0.1")),
        ({"a": [1, "b"]}, Text('{"a":[1,"b"]}')),
    ],
)
def test_driver_values_map_to_one_variant(raw: object, expected: object) -> None:
    assert ValueConverter().from_backend_value(raw) == expected


def test_bool_is_not_read_as_integer() -> None:
    assert ValueConverter().from_backend_value(False).kind is ValueKind.BOOL


def test_integer_outside_i64_is_rejected() -> None:
    converter = ValueConverter()
    assert converter.from_backend_value(2**63 - 1) == Integer(2**63 - 1)
    with pytest.raises(ConversionError):
        converter.from_backend_value(2**63)


def test_unsupported_type_raises_with_hint() -> None:
    with pytest.raises(ConversionError) as excinfo:
        ValueConverter().from_backend_value(object(), "geometry")
    assert excinfo.value.context["type_hint"] == "geometry"


def test_strict_decimal_policy() -> None:
    converter = ValueConverter()
    assert converter.from_backend_value(Decimal("10")) == Integer(10)
    assert converter.from_backend_value(Decimal("1E+2")) == Integer(100)
    assert converter.from_backend_value(Decimal("1.50")) == Float(1.5)
    with pytest.raises(ConversionError):
        converter.from_backend_value(Decimal("1.00000000000000000001"))


def test_lossy_decimal_policies() -> None:
    exact = Decimal("1.00000000000000000001")
    assert ValueConverter(DecimalPolicy.FLOAT).from_backend_value(exact) == Float(1.0)
    assert ValueConverter(DecimalPolicy.TEXT).from_backend_value(exact) == Text(
        "1.00000000000000000001"
    )
    assert ValueConverter("text").from_backend_value(Decimal("5")) == Text("5")


def test_converters_are_picked_by_dialect() -> None:
    assert isinstance(ValueConverter.for_dialect("postgresql"), PostgresConverter)
    assert isinstance(ValueConverter.for_dialect("mysql"), MySQLConverter)
    assert type(ValueConverter.for_dialect("sqlite")) is ValueConverter


def test_backend_specific_values() -> None:
    assert PostgresConverter().from_backend_value(("a", 1)) == Text('["a",1]')
    mysql = MySQLConverter()
    assert mysql.from_backend_value(b"\x01\x02", "16") == Integer(258)
    assert mysql.from_backend_value(b"\x01\x02", "252") == Bytes(b"\x01\x02")
    assert mysql.from_backend_value({"b", "a"}) == Text("a,b")


def test_display_text() -> None:
    options = FormatOptions(null_text="NULL", bytes_format="base64")
    assert to_display_text(NULL) == ""
    assert to_display_text(NULL, options) == "NULL"
    assert to_display_text(Bool(False)) == "false"
    assert to_display_text(Integer(-7)) == "-7"
    assert to_display_text(Float(0.1)) == "0.1"
    assert to_display_text(Float(1e300)) == "1e+300"
    assert to_display_text(Float(math.nan)) == "NaN"
    assert to_display_text(Float(-math.inf)) == "-Infinity"
    assert to_display_text(Bytes(b"\xff\x00")) == "ff00"
    assert to_display_text(Bytes(b"\xff\x00"), options) == "/wA="
    moment = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone(timedelta(hours=-3)))
    assert to_display_text(Timestamp(moment)) == "2024-01-02T03:04:05-03:00"


def test_bytes_are_never_decoded() -> None:
    assert to_display_text(Bytes("abc".encode())) == "616263"


def test_display_text_parses_back() -> None:
    values = [
        Bool(True),
        Integer(-(2**63)),
        Float(123.456),
        Float(math.inf),
        Bytes(b"\x00\x10"),
        Timestamp(datetime(1999, 12, 31, 23, 59, 59, 999999)),
    ]
    for value in values:
        assert parse_display_text(to_display_text(value), value.kind) == value


def test_empty_text_is_not_null() -> None:
    assert parse_display_text("", ValueKind.TEXT) == Text("")
    assert parse_display_text(None, ValueKind.TEXT) == NULL
    assert parse_display_text(None, ValueKind.INTEGER) == NULL
    assert parse_display_text("", ValueKind.BYTES) == Bytes(b"")
    assert parse_display_text("NULL", ValueKind.INTEGER, FormatOptions(null_text="NULL")) == NULL


def test_format_options_validate_bytes_format() -> None:
    with pytest.raises(ValueError):
        FormatOptions(bytes_format="octal")
