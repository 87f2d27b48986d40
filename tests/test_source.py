"""Tests for the SQLAlchemy row source against a SQLite file."""

from __future__ import annotations

from pathlib import Path

import pytest

from db_export.database.source import IterableRowSource, SqlAlchemyRowSource
from db_export.errors import QueryError, SourceConnectionError
from db_export.values import NULL, Bytes, Float, Integer, Text


def _params(path: Path, **extra) -> dict:
    return {"type": "sqlite", "database": path.as_posix(), **extra}


def test_streams_rows_in_order(sqlite_db: Path) -> None:
    query = "SELECT id, name, price, payload FROM items ORDER BY id"
    with SqlAlchemyRowSource(query, batch_size=2).open(_params(sqlite_db)) as source:
        assert [column.name for column in source.schema()] == ["id", "name", "price", "payload"]
        rows = list(source)

    assert [row.index for row in rows] == [0, 1, 2]
    assert rows[0].values == (Integer(1), Text("apple"), Float(1.5), Bytes(b"\x00\xff"))
    assert rows[1].values[3] == NULL
    assert rows[2].values == (Integer(3), Text("plum"), NULL, Bytes(b""))
    assert source.connection is None


def test_repeated_column_names_are_kept(sqlite_db: Path) -> None:
    query = "SELECT id, id FROM items ORDER BY id"
    with SqlAlchemyRowSource(query).open(_params(sqlite_db)) as source:
        row = source.next_row()
    assert row.names == ("id", "id")
    assert list(row) == [("id", Integer(1)), ("id", Integer(1))]


def test_count_hint(sqlite_db: Path) -> None:
    source = SqlAlchemyRowSource("SELECT * FROM items;", count=True)
    with source.open(_params(sqlite_db)):
        assert source.row_count_hint() == 3
    assert SqlAlchemyRowSource("SELECT 1").row_count_hint() is None


def test_init_statements_run_first(sqlite_db: Path) -> None:
    params = _params(sqlite_db, init=["CREATE TEMP TABLE greeting AS SELECT 'hi' AS word"])
    with SqlAlchemyRowSource("SELECT word FROM greeting").open(params) as source:
        assert source.next_row().values == (Text("hi"),)


def test_failing_init_statement_is_a_query_error(sqlite_db: Path) -> None:
    source = SqlAlchemyRowSource("SELECT 1")
    with pytest.raises(QueryError) as excinfo:
        source.open(_params(sqlite_db, init=["SELECT * FROM nowhere"]))
    assert excinfo.value.context["query"] == "SELECT * FROM nowhere"
    source.close()


def test_bad_query_is_a_query_error(sqlite_db: Path) -> None:
    source = SqlAlchemyRowSource("SELECT missing FROM items")
    with pytest.raises(QueryError):
        source.open(_params(sqlite_db))
    source.close()
    source.close()


def test_unreachable_database_is_a_connection_error(tmp_path: Path) -> None:
    source = SqlAlchemyRowSource("SELECT 1")
    with pytest.raises(SourceConnectionError):
        source.open(_params(tmp_path / "missing" / "nowhere.db"))
    source.close()


def test_schema_requires_open() -> None:
    with pytest.raises(QueryError):
        SqlAlchemyRowSource("SELECT 1").schema()


def test_iterable_source() -> None:
    source = IterableRowSource(["a"], [(1,), (None,)]).open()
    assert [row.values for row in source] == [(Integer(1),), (NULL,)]
    assert source.next_row() is None
