"""
Normalised cell values, rows and schemas shared by row sources and sinks.

Every backend-native value is mapped onto exactly one of the closed set of
variants below by a ``ValueConverter`` registered for the backend dialect.
"""

import base64
import binascii
import ipaddress
import json
import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Iterator, Optional, Union

from .errors import ConversionError

I64_MIN: int = -(2**63)
I64_MAX: int = 2**63 - 1


class ValueKind(Enum):
    NULL = "null"
    BOOL = "bool"
    INTEGER = "integer"
    FLOAT = "float"
    TEXT = "text"
    BYTES = "bytes"
    TIMESTAMP = "timestamp"


@dataclass(frozen=True, slots=True)
class Null:
    kind: ClassVar[ValueKind] = ValueKind.NULL


@dataclass(frozen=True, slots=True)
class Bool:
    value: bool
    kind: ClassVar[ValueKind] = ValueKind.BOOL


@dataclass(frozen=True, slots=True)
class Integer:
    value: int
    kind: ClassVar[ValueKind] = ValueKind.INTEGER

    def __post_init__(self: "Integer"):
        if not I64_MIN <= self.value <= I64_MAX:
            raise ConversionError(
                f"integer {self.value} does not fit in a signed 64-bit value"
            )


@dataclass(frozen=True, slots=True)
class Float:
    value: float
    kind: ClassVar[ValueKind] = ValueKind.FLOAT


@dataclass(frozen=True, slots=True)
class Text:
    value: str
    kind: ClassVar[ValueKind] = ValueKind.TEXT


@dataclass(frozen=True, slots=True)
class Bytes:
    value: bytes
    kind: ClassVar[ValueKind] = ValueKind.BYTES


@dataclass(frozen=True, slots=True)
class Timestamp:
    value: datetime
    kind: ClassVar[ValueKind] = ValueKind.TIMESTAMP


Value = Union[Null, Bool, Integer, Float, Text, Bytes, Timestamp]

NULL = Null()


@dataclass(frozen=True, slots=True)
class FormatOptions:
    """
    Rendering switches used by text-oriented sinks.

    Attributes:
        null_text: Text written for ``Null`` cells.
        bytes_format: ``hex`` or ``base64``; bytes are never decoded as text.
    """

    null_text: str = ""
    bytes_format: str = "hex"
    true_text: str = "true"
    false_text: str = "false"

    def __post_init__(self: "FormatOptions"):
        if self.bytes_format not in ("hex", "base64"):
            raise ValueError(f"Unknown bytes format '{self.bytes_format}'!")


DEFAULT_FORMAT = FormatOptions()


def format_float(number: float) -> str:
    """Shortest text that parses back to the same double, independent of locale."""
    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "Infinity" if number > 0 else "-Infinity"
    return repr(number)


def format_bytes(data: bytes, options: FormatOptions = DEFAULT_FORMAT) -> str:
    if options.bytes_format == "base64":
        return base64.b64encode(data).decode("ascii")
    return data.hex()


def to_display_text(value: Value, options: FormatOptions = DEFAULT_FORMAT) -> str:
    """
    Renders a value with the single canonical textual form used by every text sink.

    Args:
        value: The value to render.
        options: Rendering switches.

    Returns:
        The text form: integers in decimal, floats as shortest round-trip text,
        timestamps as ISO-8601 (with offset when present), bytes as hex/base64.
    """
    if isinstance(value, Null):
        return options.null_text
    if isinstance(value, Bool):
        return options.true_text if value.value else options.false_text
    if isinstance(value, Integer):
        return str(value.value)
    if isinstance(value, Float):
        return format_float(value.value)
    if isinstance(value, Text):
        return value.value
    if isinstance(value, Bytes):
        return format_bytes(value.value, options)
    if isinstance(value, Timestamp):
        return value.value.isoformat()
    raise TypeError(f"Not a value: {value!r}")


def parse_display_text(
    text: Optional[str], kind: ValueKind, options: FormatOptions = DEFAULT_FORMAT
) -> Value:
    """
    Inverse of ``to_display_text`` for a known kind.

    ``None`` (an unquoted empty CSV field) is ``Null``. Text columns never read
    back as ``Null`` otherwise, and an empty cell of another kind is only ``Null``
    when ``null_text`` is set to something other than the empty string.
    """
    if text is None or kind is ValueKind.NULL:
        return NULL
    if kind is ValueKind.TEXT:
        return Text(text)
    if options.null_text and text == options.null_text:
        return NULL
    if kind is ValueKind.BOOL:
        if text not in (options.true_text, options.false_text):
            raise ConversionError(f"'{text}' is not a boolean")
        return Bool(text == options.true_text)
    if kind is ValueKind.INTEGER:
        return Integer(int(text))
    if kind is ValueKind.FLOAT:
        special = {"NaN": math.nan, "Infinity": math.inf, "-Infinity": -math.inf}
        return Float(special[text] if text in special else float(text))
    if kind is ValueKind.BYTES:
        try:
            if options.bytes_format == "base64":
                return Bytes(base64.b64decode(text, validate=True))
            return Bytes(bytes.fromhex(text))
        except (ValueError, binascii.Error) as exc:
            raise ConversionError(f"'{text}' is not {options.bytes_format} data") from exc
    if kind is ValueKind.TIMESTAMP:
        return Timestamp(datetime.fromisoformat(text))
    raise ValueError(f"Unknown value kind {kind}")


@dataclass(frozen=True, slots=True)
class Column:
    name: str
    type_hint: Optional[str] = None


Schema = tuple[Column, ...]


@dataclass(frozen=True, slots=True)
class Row:
    """
    One result row: values in schema order plus the row's position in the stream.

    Column names are shared with every other row of the stream and may repeat.
    """

    index: int
    names: tuple[str, ...]
    values: tuple[Value, ...]

    def __iter__(self: "Row") -> Iterator[tuple[str, Value]]:
        return iter(zip(self.names, self.values))

    def __len__(self: "Row") -> int:
        return len(self.values)


class DecimalPolicy(Enum):
    """
    How ``decimal.Decimal`` values are narrowed.

    STRICT keeps decimals that a double reproduces exactly and raises
    ``ConversionError`` otherwise; FLOAT rounds to the nearest double; TEXT
    keeps the exact decimal string.
    """

    STRICT = "strict"
    FLOAT = "float"
    TEXT = "text"


_CONVERTER_REGISTRY: dict[str, type["ValueConverter"]] = {}

_TEXT_LIKE = (
    uuid.UUID,
    ipaddress.IPv4Address,
    ipaddress.IPv6Address,
    ipaddress.IPv4Network,
    ipaddress.IPv6Network,
    ipaddress.IPv4Interface,
    ipaddress.IPv6Interface,
)


class ValueConverter:
    """
    Maps the Python objects a DB-API driver returns onto the value model.

    Backends with their own quirks subclass this and register under their
    SQLAlchemy dialect name:

        class PostgresConverter(ValueConverter, dialect="postgresql"):
            ...
    """

    decimal_policy: DecimalPolicy

    def __init_subclass__(cls, dialect: Optional[str] = None, **kwargs):
        super().__init_subclass__(**kwargs)
        if dialect is not None:
            _CONVERTER_REGISTRY[dialect] = cls

    def __init__(
        self: "ValueConverter", decimal_policy: DecimalPolicy = DecimalPolicy.STRICT
    ):
        self.decimal_policy = DecimalPolicy(decimal_policy)

    @classmethod
    def for_dialect(cls, dialect: str, **kwargs) -> "ValueConverter":
        """
        Builds the converter registered for a dialect, or the generic one.
        """
        converter_cls = _CONVERTER_REGISTRY.get(dialect, ValueConverter)
        return converter_cls(**kwargs)

    def from_backend_value(
        self: "ValueConverter", raw: Any, type_hint: Optional[str] = None
    ) -> Value:
        """
        Converts one driver value.

        Args:
            raw: The object returned by the driver.
            type_hint: The driver's declared column type, when it provides one.

        Returns:
            The matching value variant.

        Raises:
            ConversionError: If the value has no lossless (or documented lossy)
                representation.
        """
        if raw is None:
            return NULL
        if isinstance(raw, bool):
            return Bool(raw)
        if isinstance(raw, int):
            return Integer(raw)
        if isinstance(raw, float):
            return Float(raw)
        if isinstance(raw, Decimal):
            return self._from_decimal(raw)
        if isinstance(raw, str):
            return Text(raw)
        if isinstance(raw, (bytes, bytearray, memoryview)):
            return Bytes(bytes(raw))
        if isinstance(raw, datetime):
            return Timestamp(raw)
        if isinstance(raw, date):
            return Timestamp(datetime.combine(raw, time()))
        if isinstance(raw, time):
            return Text(raw.isoformat())
        if isinstance(raw, timedelta):
            return Text(str(raw))
        if isinstance(raw, _TEXT_LIKE):
            return Text(str(raw))
        if isinstance(raw, (dict, list)):
            return Text(self._to_json(raw))
        return self._from_other(raw, type_hint)

    def _from_other(self: "ValueConverter", raw: Any, type_hint: Optional[str]) -> Value:
        raise ConversionError(
            f"unsupported value of type {type(raw).__name__}", type_hint=type_hint
        )

    @staticmethod
    def _to_json(document: Any) -> str:
        return json.dumps(
            document, ensure_ascii=False, separators=(",", ":"), default=str
        )

    def _from_decimal(self: "ValueConverter", raw: Decimal) -> Value:
        if self.decimal_policy is DecimalPolicy.TEXT:
            return Text(str(raw))

        # Decimals declared without a fractional part are integers.
        if raw.is_finite() and raw.as_tuple().exponent >= 0:
            if I64_MIN <= raw <= I64_MAX:
                return Integer(int(raw))

        narrowed = float(raw)
        if not raw.is_finite():
            return Float(narrowed)
        if math.isinf(narrowed):
            raise ConversionError(f"decimal {raw} overflows a 64-bit float")
        if self.decimal_policy is DecimalPolicy.STRICT and Decimal(repr(narrowed)) != raw:
            raise ConversionError(
                f"decimal {raw} cannot be represented as a 64-bit float without loss; "
                "set decimal_policy to 'float' or 'text'"
            )
        return Float(narrowed)
