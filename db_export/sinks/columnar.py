"""
Parquet output through pyarrow, written in row groups as rows arrive.
"""

from datetime import timezone
from typing import Any, Optional

import pyarrow as pa
import pyarrow.parquet as pq

from ..errors import SinkError
from ..values import (
    DEFAULT_FORMAT,
    FormatOptions,
    Row,
    Schema,
    Value,
    ValueKind,
    to_display_text,
)
from .base import Buffering, SinkCapabilities, SinkWriter, Truncation, unique_names
from .target import OutputTarget

ARROW_TYPES: dict[ValueKind, pa.DataType] = {
    ValueKind.BOOL: pa.bool_(),
    ValueKind.INTEGER: pa.int64(),
    ValueKind.FLOAT: pa.float64(),
    ValueKind.TEXT: pa.string(),
    ValueKind.BYTES: pa.binary(),
}


def infer_arrow_type(values: list[Value]) -> tuple[pa.DataType, Optional[ValueKind]]:
    """
    Picks the column type from the first batch of values.

    Returns:
        The arrow type and the value kind the column accepts; columns that are
        all null or mix kinds become strings holding the display text
        (kind ``None``).
    """
    kinds = {value.kind for value in values if value.kind is not ValueKind.NULL}
    if len(kinds) != 1:
        return pa.string(), None

    kind = kinds.pop()
    if kind is ValueKind.TIMESTAMP:
        aware = any(
            value.value.tzinfo is not None
            for value in values
            if value.kind is ValueKind.TIMESTAMP
        )
        return pa.timestamp("us", tz="UTC" if aware else None), kind
    return ARROW_TYPES[kind], kind


class ParquetSink(SinkWriter, format_name="parquet", extensions=("parquet", "pq")):
    """
    Writes a row group every ``batch_size`` rows; the schema is fixed by the
    first batch and later values of another kind fail the export.
    """

    capabilities = SinkCapabilities(Buffering.STREAMING, Truncation.DISCARD)

    def __init__(
        self: "ParquetSink",
        format_options: FormatOptions = DEFAULT_FORMAT,
        batch_size: int = 500,
    ):
        super().__init__(format_options)
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.batch_size = batch_size
        self.batch: list[Row] = []
        self.arrow_schema: Optional[pa.Schema] = None
        self.kinds: list[Optional[ValueKind]] = []
        self.writer: Optional[pq.ParquetWriter] = None

    def begin(self: "ParquetSink", schema: Schema, target: OutputTarget):
        self.schema = schema
        self.target = target
        self.field_names = unique_names(self.names)
        if self.field_names != list(self.names):
            self.logger.warning(
                f"Repeated column names renamed to {self.field_names} in {target.label}"
            )

    def write_row(self: "ParquetSink", row: Row):
        self.batch.append(row)
        self.rows_written += 1
        if len(self.batch) >= self.batch_size:
            self._flush_batch()

    def end(self: "ParquetSink"):
        if self.batch or self.writer is None:
            self._flush_batch()
        self.writer.close()
        self.writer = None

    def abort(self: "ParquetSink"):
        self.batch = []
        if self.writer is not None:
            self.writer.close()
            self.writer = None

    def _open_writer(self: "ParquetSink"):
        columns = list(zip(*(row.values for row in self.batch))) or [
            () for _ in self.field_names
        ]
        fields = []
        for name, values in zip(self.field_names, columns):
            arrow_type, kind = infer_arrow_type(list(values))
            fields.append(pa.field(name, arrow_type))
            self.kinds.append(kind)
        self.arrow_schema = pa.schema(fields)

        sink = pa.PythonFile(self.target.open(), mode="w")
        self.writer = pq.ParquetWriter(sink, self.arrow_schema)

    def _cell(self: "ParquetSink", value: Value, column: int, row: Row) -> Any:
        if value.kind is ValueKind.NULL:
            return None

        kind = self.kinds[column]
        if kind is None:
            return to_display_text(value, self.format_options)
        if value.kind is not kind:
            raise SinkError(
                f"Column '{self.field_names[column]}' holds {kind.value} values, "
                f"got {value.kind.value}",
                target=self.target.label,
                row=row.index,
            )
        if kind is ValueKind.TIMESTAMP:
            aware = self.arrow_schema.field(column).type.tz is not None
            if aware != (value.value.tzinfo is not None):
                raise SinkError(
                    f"Column '{self.field_names[column]}' mixes timestamps with and without timezone",
                    target=self.target.label,
                    row=row.index,
                )
            return value.value.astimezone(timezone.utc) if aware else value.value
        return value.value

    def _flush_batch(self: "ParquetSink"):
        if self.writer is None:
            self._open_writer()

        arrays = []
        for column, field in enumerate(self.arrow_schema):
            cells = [self._cell(row.values[column], column, row) for row in self.batch]
            arrays.append(pa.array(cells, type=field.type))

        if self.batch:
            batch = pa.RecordBatch.from_arrays(arrays, schema=self.arrow_schema)
            self.writer.write_batch(batch)
        self.batch = []
