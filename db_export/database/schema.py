"""
Lists the objects of a connected database (schemas, tables and views, columns) as a tree.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Inspector
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

from ..errors import QueryError, SourceConnectionError
from ..logger import get_logger
from .manager import build_connection_url, connect_args

SYSTEM_SCHEMAS = frozenset(
    {"information_schema", "pg_catalog", "pg_toast", "mysql", "performance_schema", "sys"}
)
INDENT = "    "

NameMatcher = Callable[[str], bool]


@dataclass
class SchemaItem:
    name: str
    detail: Optional[str] = None
    children: list["SchemaItem"] = field(default_factory=list)

    @property
    def label(self: "SchemaItem") -> str:
        return f"{self.name} {self.detail}" if self.detail else self.name


def name_matcher(pattern: str, regex: bool = False) -> NameMatcher:
    """
    Builds a case-insensitive name test: substring search, or a regular expression search.

    Raises:
        QueryError: If the regular expression does not compile.
    """
    if regex:
        try:
            compiled = re.compile(pattern, re.IGNORECASE)
        except re.error as exc:
            raise QueryError(f"Invalid regular expression '{pattern}': {exc}") from exc
        return lambda name: compiled.search(name) is not None

    needle = pattern.lower()
    return lambda name: needle in name.lower()


def filter_items(items: Iterable[SchemaItem], matches: NameMatcher) -> list[SchemaItem]:
    """
    Keeps the items whose name matches, along with the ancestors leading to them.

    Children of a matching item are kept only when they match themselves.
    """
    kept = []
    for item in items:
        children = filter_items(item.children, matches)
        if children or matches(item.name):
            kept.append(SchemaItem(item.name, item.detail, children))
    return kept


def render_tree(items: Iterable[SchemaItem], depth: int = 0) -> Iterator[str]:
    for item in items:
        yield f"{INDENT * depth}{item.label}"
        yield from render_tree(item.children, depth + 1)


def _columns(inspector: Inspector, relation: str, schema: str) -> list[SchemaItem]:
    return [
        SchemaItem(column["name"], str(column["type"]))
        for column in inspector.get_columns(relation, schema=schema)
    ]


def collect_items(inspector: Inspector) -> list[SchemaItem]:
    """
    Reads every non-system schema with its tables, views and their columns.
    """
    items = []
    for schema in inspector.get_schema_names():
        if schema in SYSTEM_SCHEMAS:
            continue
        relations = [
            SchemaItem(name, None, _columns(inspector, name, schema))
            for name in inspector.get_table_names(schema=schema)
        ]
        relations.extend(
            SchemaItem(name, "(view)", _columns(inspector, name, schema))
            for name in inspector.get_view_names(schema=schema)
        )
        relations.sort(key=lambda item: item.name)
        items.append(SchemaItem(schema, None, relations))
    return items


def inspect_schema(connection_params: Mapping[str, Any]) -> list[SchemaItem]:
    """
    Connects with resolved profile fields and reads the database objects.

    Raises:
        SourceConnectionError: If the backend cannot be reached.
        QueryError: If the catalog cannot be read.
    """
    logger = get_logger(__name__)
    url = build_connection_url(connection_params)

    try:
        engine = create_engine(
            url, poolclass=NullPool, connect_args=connect_args(connection_params)
        )
        connection = engine.connect()
    except (SQLAlchemyError, ImportError) as exc:
        raise SourceConnectionError(
            f"Could not connect to {url.render_as_string(hide_password=True)}: {exc}"
        ) from exc

    try:
        items = collect_items(inspect(connection))
    except SQLAlchemyError as exc:
        raise QueryError(f"Cannot read the database schema: {exc}") from exc
    finally:
        connection.close()
        engine.dispose()

    logger.info(f"Read {len(items)} schemas from {url.render_as_string(hide_password=True)}")
    return items
