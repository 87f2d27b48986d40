"""Tests for listing database objects as a tree."""

from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import create_engine, text

from db_export.database.schema import (
    SchemaItem,
    filter_items,
    inspect_schema,
    name_matcher,
    render_tree,
)
from db_export.errors import QueryError, SourceConnectionError
from main import main

ITEMS_TREE = [
    "main",
    "    cheap (view)",
    "        id INTEGER",
    "    items",
    "        id INTEGER",
    "        name TEXT",
    "        price REAL",
    "        payload BLOB",
]


@pytest.fixture
def with_view(sqlite_db: Path) -> Path:
    engine = create_engine(f"sqlite:///{sqlite_db.as_posix()}")
    with engine.begin() as conn:
        conn.execute(text("CREATE VIEW cheap AS SELECT id FROM items WHERE price < 2"))
    engine.dispose()
    return sqlite_db


def _tree() -> list[SchemaItem]:
    return [
        SchemaItem(
            "public",
            children=[
                SchemaItem(
                    "orders",
                    children=[SchemaItem("id", "INTEGER"), SchemaItem("Total", "NUMERIC")],
                ),
                SchemaItem("customers", children=[SchemaItem("id", "INTEGER")]),
            ],
        )
    ]


def test_inspect_lists_tables_views_and_columns(with_view: Path) -> None:
    items = inspect_schema({"type": "sqlite", "database": str(with_view)})
    assert list(render_tree(items)) == ITEMS_TREE


def test_unreachable_database(tmp_path: Path) -> None:
    with pytest.raises(SourceConnectionError):
        inspect_schema({"type": "sqlite", "database": str(tmp_path / "missing" / "x.db")})


def test_filter_keeps_ancestors_of_matches() -> None:
    kept = filter_items(_tree(), name_matcher("TOT"))
    assert list(render_tree(kept)) == ["public", "    orders", "        Total NUMERIC"]


def test_filter_drops_unmatched_children_of_a_match() -> None:
    kept = filter_items(_tree(), name_matcher("customers"))
    assert list(render_tree(kept)) == ["public", "    customers"]


def test_regex_filter() -> None:
    kept = filter_items(_tree(), name_matcher("^(id|orders)$", regex=True))
    assert list(render_tree(kept)) == [
        "public",
        "    orders",
        "        id INTEGER",
        "    customers",
        "        id INTEGER",
    ]
    assert filter_items(_tree(), name_matcher("^nothing$", regex=True)) == []


def test_invalid_regex() -> None:
    with pytest.raises(QueryError, match="Invalid regular expression"):
        name_matcher("(", regex=True)


def test_schema_command(
    config_path: Path, with_view: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["--config", str(config_path), "schema", "-c", "child"]) == 0
    assert capsys.readouterr().out.splitlines() == ITEMS_TREE

    assert main(["--config", str(config_path), "schema", "-c", "base", "PRI"]) == 0
    assert capsys.readouterr().out.splitlines() == ["main", "    items", "        price REAL"]

    assert main(["--config", str(config_path), "schema", "-c", "base", "-r", "^pay"]) == 0
    assert capsys.readouterr().out.splitlines() == ["main", "    items", "        payload BLOB"]

    assert main(["--config", str(config_path), "schema", "-c", "base", "--environment", "broken"]) == 2
    assert main(["--config", str(config_path), "schema", "-c", "nope"]) == 5
