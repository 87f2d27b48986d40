"""
SQLite output: rows are inserted into a single table of a new database file.
"""

from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Integer,
    LargeBinary,
    MetaData,
    Table,
    Text,
    create_engine,
    insert,
)
from sqlalchemy.engine import URL, Connection, Engine, Transaction
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

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

DEFAULT_TABLE = "data"

# Timestamps are stored as ISO 8601 text, which SQLite's date functions read.
SQL_TYPES: dict[ValueKind, Any] = {
    ValueKind.BOOL: Boolean,
    ValueKind.INTEGER: Integer,
    ValueKind.FLOAT: Float,
    ValueKind.BYTES: LargeBinary,
}


def infer_kind(values: list[Value]) -> Optional[ValueKind]:
    """
    The single non-null kind of a column, or ``None`` when it is empty or mixed.
    """
    kinds = {value.kind for value in values if value.kind is not ValueKind.NULL}
    return kinds.pop() if len(kinds) == 1 else None


class SqliteSink(SinkWriter, format_name="sqlite", extensions=("sqlite", "sqlite3", "db")):
    """
    Creates ``table`` in a fresh SQLite file and inserts ``batch_size`` rows at a time.

    Column types are fixed by the first batch, as for parquet; columns that
    are all null or mix kinds hold the display text. The inserts run in one
    transaction, committed by ``end``.
    """

    capabilities = SinkCapabilities(Buffering.STREAMING, Truncation.DISCARD)

    engine: Optional[Engine]
    connection: Optional[Connection]
    transaction: Optional[Transaction]

    def __init__(
        self: "SqliteSink",
        format_options: FormatOptions = DEFAULT_FORMAT,
        batch_size: int = 500,
        table: str = DEFAULT_TABLE,
    ):
        super().__init__(format_options)
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        if not table:
            raise ValueError("table must not be empty")
        self.batch_size = batch_size
        self.table_name = table
        self.batch: list[Row] = []
        self.kinds: list[Optional[ValueKind]] = []
        self.table: Optional[Table] = None
        self.engine = None
        self.connection = None
        self.transaction = None

    def begin(self: "SqliteSink", schema: Schema, target: OutputTarget):
        self.schema = schema
        self.target = target
        self.column_names = unique_names(self.names)
        if self.column_names != list(self.names):
            self.logger.warning(
                f"Repeated column names renamed to {self.column_names} in {target.label}"
            )

        url = URL.create("sqlite", database=str(target.open_path()))
        try:
            self.engine = create_engine(url, poolclass=NullPool)
            self.connection = self.engine.connect()
            self.transaction = self.connection.begin()
        except SQLAlchemyError as exc:
            raise SinkError(f"Cannot open SQLite file: {exc}", target=target.label) from exc

    def write_row(self: "SqliteSink", row: Row):
        self.batch.append(row)
        self.rows_written += 1
        if len(self.batch) >= self.batch_size:
            self._flush_batch()

    def end(self: "SqliteSink"):
        if self.batch or self.table is None:
            self._flush_batch()
        try:
            self.transaction.commit()
        except SQLAlchemyError as exc:
            raise SinkError(f"Cannot commit SQLite file: {exc}", target=self.target.label) from exc
        self.logger.info(
            f"Inserted {self.rows_written} rows into {self.table_name} in {self.target.label}"
        )
        self._release()

    def abort(self: "SqliteSink"):
        self.batch = []
        if self.transaction is not None and self.transaction.is_active:
            self.transaction.rollback()
        self._release()

    def _release(self: "SqliteSink"):
        if self.connection is not None:
            self.connection.close()
        if self.engine is not None:
            self.engine.dispose()
        self.transaction = None
        self.connection = None
        self.engine = None

    def _create_table(self: "SqliteSink"):
        columns = list(zip(*(row.values for row in self.batch))) or [
            () for _ in self.column_names
        ]
        sql_columns = []
        for name, values in zip(self.column_names, columns):
            kind = infer_kind(list(values))
            if kind not in SQL_TYPES:
                kind = None
            self.kinds.append(kind)
            sql_columns.append(Column(name, SQL_TYPES[kind] if kind else Text, nullable=True))

        self.table = Table(self.table_name, MetaData(), *sql_columns)
        self.table.create(self.connection)

    def _cell(self: "SqliteSink", value: Value, column: int, row: Row) -> Any:
        if value.kind is ValueKind.NULL:
            return None

        kind = self.kinds[column]
        if kind is None:
            return to_display_text(value, self.format_options)
        if value.kind is not kind:
            raise SinkError(
                f"Column '{self.column_names[column]}' holds {kind.value} values, "
                f"got {value.kind.value}",
                target=self.target.label,
                row=row.index,
            )
        return value.value

    def _flush_batch(self: "SqliteSink"):
        try:
            if self.table is None:
                self._create_table()
            if self.batch:
                records = [
                    {
                        name: self._cell(value, column, row)
                        for column, (name, value) in enumerate(zip(self.column_names, row.values))
                    }
                    for row in self.batch
                ]
                self.connection.execute(insert(self.table), records)
        except SQLAlchemyError as exc:
            raise SinkError(
                f"Cannot write to SQLite table {self.table_name}: {exc}",
                target=self.target.label,
                row=self.batch[0].index if self.batch else None,
            ) from exc
        self.batch = []
