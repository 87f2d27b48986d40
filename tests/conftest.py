"""Shared fixtures: a small SQLite database and a throwaway configuration tree."""

from __future__ import annotations

import io
from pathlib import Path
from typing import Iterable, Sequence

import pytest
from sqlalchemy import create_engine, text

from db_export.sinks import OutputTarget, SinkWriter
from db_export.values import Column, Row, Value


@pytest.fixture
def sqlite_db(tmp_path: Path) -> Path:
    path = tmp_path / "items.db"
    engine = create_engine(f"sqlite:///{path.as_posix()}")
    with engine.begin() as conn:
        conn.execute(
            text("CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT, price REAL, payload BLOB)")
        )
        conn.execute(
            text(
                "INSERT INTO items (id, name, price, payload) VALUES "
                "(1, 'apple', 1.5, X'00ff'), (2, 'pear', 2.25, NULL), (3, 'plum', NULL, X'')"
            )
        )
    engine.dispose()
    return path


@pytest.fixture
def config_path(tmp_path: Path, sqlite_db: Path) -> Path:
    root = tmp_path / "config"
    connections = root / "database" / "connections"
    connections.mkdir(parents=True)
    (root / "config.toml").write_text(
        '[paths]\nkey = ".key"\n\n[export]\nmax_workers = 2\nprogress_every = 2\n',
        encoding="utf-8",
    )
    missing = (tmp_path / "missing" / "nowhere.db").as_posix()
    (connections / "local.toml").write_text(
        f"""
[profiles.base]
type = "sqlite"
database = "{sqlite_db.as_posix()}"

[profiles.base.environments.broken]
database = "{missing}"

[profiles.child]
parent = "base"
""",
        encoding="utf-8",
    )
    return root / "config.toml"


def make_rows(names: Sequence[str], values: Iterable[Sequence[Value]]) -> list[Row]:
    return [Row(i, tuple(names), tuple(row)) for i, row in enumerate(values)]


def write_rows(
    sink: SinkWriter, names: Sequence[str], values: Iterable[Sequence[Value]] = ()
) -> bytes:
    """Drives a sink through its whole lifecycle into memory."""
    buffer = io.BytesIO()
    target = OutputTarget(stream=buffer)
    sink.begin(tuple(Column(name) for name in names), target)
    for row in make_rows(names, values):
        sink.write_row(row)
    sink.end()
    target.commit()
    return buffer.getvalue()
