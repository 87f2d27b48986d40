"""
Row sources: lazily pull result rows from a backend and normalise their values.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterable, Iterator, Mapping, Optional, Sequence, Union

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, CursorResult, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.pool import NullPool

from ..errors import ConversionError, QueryError, SourceConnectionError
from ..logger import get_logger
from ..values import Column, DecimalPolicy, Row, Schema, ValueConverter
from . import converters  # noqa: F401  registers the backend converters
from .manager import build_connection_url, connect_args


class RowSource(ABC):
    """
    A stream of rows with a schema known before the first row.

    Sources are single use: ``open`` once, pull rows with ``next_row`` (or by
    iterating) until it returns ``None``, then ``close``.
    """

    converter: ValueConverter

    def __init__(self: "RowSource"):
        self._schema: Optional[Schema] = None
        self._names: tuple[str, ...] = ()
        self._index = 0
        self._closed = False

    @abstractmethod
    def open(self: "RowSource", connection_params: Mapping[str, Any]) -> "RowSource":
        """
        Connects and starts the query.

        Raises:
            SourceConnectionError: If the backend cannot be reached.
            QueryError: If the query is rejected.
        """

    @abstractmethod
    def next_row(self: "RowSource") -> Optional[Row]:
        """
        Returns the next row, or ``None`` at the end of the stream.

        Raises:
            QueryError: On a backend fault while streaming.
            ConversionError: If a value has no representation.
        """

    def schema(self: "RowSource") -> Schema:
        if self._schema is None:
            raise QueryError("Row source is not open")
        return self._schema

    def row_count_hint(self: "RowSource") -> Optional[int]:
        return None

    def close(self: "RowSource"):
        """Releases the backend resources; safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._release()

    def _release(self: "RowSource"):
        pass

    def _set_schema(self: "RowSource", columns: Iterable[Column]):
        self._schema = tuple(columns)
        self._names = tuple(column.name for column in self._schema)

    def _make_row(self: "RowSource", raw: Sequence[Any]) -> Row:
        """
        Converts one backend row, tagging conversion failures with their location.
        """
        schema = self.schema()
        if len(raw) != len(schema):
            raise QueryError(
                f"Row has {len(raw)} values but the schema has {len(schema)} columns",
                row=self._index,
            )

        values = []
        for column, item in zip(schema, raw):
            try:
                values.append(self.converter.from_backend_value(item, column.type_hint))
            except ConversionError as exc:
                raise exc.with_context(column=column.name, row=self._index)

        row = Row(self._index, self._names, tuple(values))
        self._index += 1
        return row

    def __iter__(self: "RowSource") -> Iterator[Row]:
        while (row := self.next_row()) is not None:
            yield row

    def __enter__(self: "RowSource") -> "RowSource":
        return self

    def __exit__(self: "RowSource", *exc_info):
        self.close()


class IterableRowSource(RowSource):
    """
    Serves rows from any iterable of raw tuples, converted like driver values.

    Errors raised by the iterable propagate unchanged, so tests can simulate
    faults at a given row.
    """

    def __init__(
        self: "IterableRowSource",
        columns: Sequence[Union[str, Column]],
        rows: Iterable[Sequence[Any]],
        converter: Optional[ValueConverter] = None,
    ):
        super().__init__()
        self._columns = [
            column if isinstance(column, Column) else Column(column) for column in columns
        ]
        self._rows = rows
        self._iterator: Optional[Iterator[Sequence[Any]]] = None
        self.converter = converter or ValueConverter()

    def open(
        self: "IterableRowSource", connection_params: Mapping[str, Any] = None
    ) -> "IterableRowSource":
        self._set_schema(self._columns)
        self._iterator = iter(self._rows)
        return self

    def next_row(self: "IterableRowSource") -> Optional[Row]:
        if self._iterator is None:
            raise QueryError("Row source is not open")
        raw = next(self._iterator, None)
        if raw is None:
            return None
        return self._make_row(raw)

    def row_count_hint(self: "IterableRowSource") -> Optional[int]:
        if isinstance(self._rows, Sequence):
            return len(self._rows)
        return None

    def _release(self: "IterableRowSource"):
        self._iterator = None


class SqlAlchemyRowSource(RowSource):
    """
    Streams a query result through SQLAlchemy Core with a server-side cursor.
    """

    engine: Optional[Engine]
    connection: Optional[Connection]
    result: Optional[CursorResult]

    def __init__(
        self: "SqlAlchemyRowSource",
        query: str,
        batch_size: int = 500,
        count: bool = False,
        decimal_policy: DecimalPolicy = DecimalPolicy.STRICT,
    ):
        """
        Initializes a new SqlAlchemyRowSource object.

        Args:
            query: The read-only statement to run.
            batch_size: Rows fetched from the cursor per round trip.
            count: Whether to count the rows first, for progress totals.
            decimal_policy: How DECIMAL/NUMERIC values are narrowed.
        """
        super().__init__()
        self.logger = get_logger(__name__)
        self.query = query
        self.batch_size = batch_size
        self.count = count
        self.decimal_policy = DecimalPolicy(decimal_policy)
        self.engine = None
        self.connection = None
        self.result = None
        self._row_count: Optional[int] = None

    def open(
        self: "SqlAlchemyRowSource", connection_params: Mapping[str, Any]
    ) -> "SqlAlchemyRowSource":
        url = build_connection_url(connection_params)

        try:
            self.engine = create_engine(
                url, poolclass=NullPool, connect_args=connect_args(connection_params)
            )
            self.connection = self.engine.connect()
        except (SQLAlchemyError, ImportError) as exc:
            raise SourceConnectionError(
                f"Could not connect to {url.render_as_string(hide_password=True)}: {exc}"
            ) from exc

        self.converter = ValueConverter.for_dialect(
            self.engine.dialect.name, decimal_policy=self.decimal_policy
        )
        self.logger.info(f"Connected to {url.render_as_string(hide_password=True)}")

        for statement in connection_params.get("init", []):
            self._execute(statement)

        if self.count:
            counting_query = f"SELECT count(*) FROM ({self.query.strip().rstrip(';')}) q"
            self._row_count = self._execute(counting_query).scalar_one()
            self.logger.info(f"Query returns {self._row_count} rows")

        self.result = self._execute(
            self.query,
            execution_options={"stream_results": True, "yield_per": self.batch_size},
        )
        if not self.result.returns_rows:
            raise QueryError("Query does not return rows", query=self.query)

        description = self.result.cursor.description if self.result.cursor else None
        type_codes = [entry[1] for entry in description] if description else []
        self._set_schema(
            Column(
                name,
                str(type_codes[i]) if i < len(type_codes) and type_codes[i] is not None else None,
            )
            for i, name in enumerate(self.result.keys())
        )

        return self

    def _execute(
        self: "SqlAlchemyRowSource",
        statement: str,
        execution_options: Optional[dict[str, Any]] = None,
    ) -> CursorResult:
        try:
            return self.connection.execute(
                text(statement), execution_options=execution_options or {}
            )
        except DBAPIError as exc:
            if exc.connection_invalidated:
                raise SourceConnectionError(
                    f"Connection lost: {exc.orig}", query=statement
                ) from exc
            raise QueryError(f"Query failed: {exc.orig}", query=statement) from exc
        except SQLAlchemyError as exc:
            raise QueryError(f"Query failed: {exc}", query=statement) from exc

    def next_row(self: "SqlAlchemyRowSource") -> Optional[Row]:
        if self.result is None:
            raise QueryError("Row source is not open", query=self.query)

        try:
            raw = self.result.fetchone()
        except SQLAlchemyError as exc:
            raise QueryError(
                f"Query failed while streaming: {exc}", query=self.query, row=self._index
            ) from exc

        if raw is None:
            return None
        return self._make_row(tuple(raw))

    def row_count_hint(self: "SqlAlchemyRowSource") -> Optional[int]:
        return self._row_count

    def _release(self: "SqlAlchemyRowSource"):
        for resource in (self.result, self.connection):
            if resource is None:
                continue
            try:
                resource.close()
            except SQLAlchemyError as exc:
                self.logger.warning(f"Error while closing {type(resource).__name__}: {exc}")
        if self.engine is not None:
            self.engine.dispose()
        self.result = None
        self.connection = None
        self.engine = None
