"""
JSON output: a single array document, or one document per line.
"""

import json
import math
import textwrap
from typing import Any

from ..values import (
    DEFAULT_FORMAT,
    Bool,
    Bytes,
    Float,
    FormatOptions,
    Integer,
    Null,
    Row,
    Text,
    Timestamp,
    Value,
    format_bytes,
    format_float,
)
from .base import TextSinkWriter, unique_names

INDENT = " " * 4


def to_json_value(value: Value, options: FormatOptions = DEFAULT_FORMAT) -> Any:
    """
    Maps a value onto a JSON-native object.

    Non-finite floats have no JSON literal and are written as the strings
    ``"NaN"``, ``"Infinity"`` and ``"-Infinity"``.
    """
    if isinstance(value, Null):
        return None
    if isinstance(value, (Bool, Integer, Text)):
        return value.value
    if isinstance(value, Float):
        if math.isfinite(value.value):
            return value.value
        return format_float(value.value)
    if isinstance(value, Bytes):
        return format_bytes(value.value, options)
    if isinstance(value, Timestamp):
        return value.value.isoformat()
    raise TypeError(f"Not a value: {value!r}")


class JsonSink(TextSinkWriter, format_name="json"):
    """
    A JSON array of row objects, streamed one element at a time.

    Repeated column names are suffixed (``id``, ``id_1``) so no key is lost;
    ``arrays`` writes each row as an array of values instead.
    """

    def __init__(
        self: "JsonSink",
        format_options: FormatOptions = DEFAULT_FORMAT,
        compact: bool = False,
        arrays: bool = False,
    ):
        super().__init__(format_options)
        self.compact = compact
        self.arrays = arrays

    def _write_header(self: "JsonSink"):
        self.keys = unique_names(self.names)
        if list(self.names) != self.keys and not self.arrays:
            self.logger.warning(
                f"Repeated column names renamed to {self.keys} in {self.target.label}"
            )
        self.stream.write("[")

    def _document(self: "JsonSink", row: Row) -> Any:
        values = [to_json_value(value, self.format_options) for value in row.values]
        if self.arrays:
            return values
        return dict(zip(self.keys, values))

    def _dumps(self: "JsonSink", document: Any, **kwargs) -> str:
        return json.dumps(document, ensure_ascii=False, allow_nan=False, **kwargs)

    def _write_row(self: "JsonSink", row: Row):
        document = self._document(row)
        separator = "," if self.rows_written else ""
        if self.compact:
            self.stream.write(separator + self._dumps(document, separators=(",", ":")))
        else:
            text = textwrap.indent(self._dumps(document, indent=4), INDENT)
            self.stream.write(f"{separator}\n{text}")

    def _write_footer(self: "JsonSink"):
        if self.rows_written and not self.compact:
            self.stream.write("\n")
        self.stream.write("]\n")


class NdjsonSink(JsonSink, format_name="ndjson", extensions=("ndjson", "jsonl")):
    """
    Newline-delimited JSON: one compact document per row, nothing for zero rows.
    """

    def _write_header(self: "NdjsonSink"):
        self.keys = unique_names(self.names)

    def _write_row(self: "NdjsonSink", row: Row):
        document = self._dumps(self._document(row), separators=(",", ":"))
        self.stream.write(document + "\n")

    def _write_footer(self: "NdjsonSink"):
        pass
