"""
Backend-specific value conversions.

Each converter registers under the SQLAlchemy dialect name; dialects without
quirks (SQLite among them) use the generic ``ValueConverter``.
"""

from typing import Any, Optional

from ..values import Integer, Text, Value, ValueConverter

# pymysql.constants.FIELD_TYPE
MYSQL_BIT: str = "16"


class PostgresConverter(ValueConverter, dialect="postgresql"):
    """
    psycopg returns arrays as lists and range types as ``Range`` objects.
    """

    def _from_other(
        self: "PostgresConverter", raw: Any, type_hint: Optional[str]
    ) -> Value:
        if isinstance(raw, tuple):
            return Text(self._to_json(list(raw)))
        if hasattr(raw, "lower") and hasattr(raw, "upper") and hasattr(raw, "isempty"):
            return Text(str(raw))
        return super()._from_other(raw, type_hint)


class MySQLConverter(ValueConverter, dialect="mysql"):
    """
    PyMySQL returns BIT columns as big-endian bytes and SET columns as Python sets.
    """

    def from_backend_value(
        self: "MySQLConverter", raw: Any, type_hint: Optional[str] = None
    ) -> Value:
        if type_hint == MYSQL_BIT and isinstance(raw, (bytes, bytearray)):
            return Integer(int.from_bytes(raw, "big"))
        return super().from_backend_value(raw, type_hint)

    def _from_other(self: "MySQLConverter", raw: Any, type_hint: Optional[str]) -> Value:
        if isinstance(raw, (set, frozenset)):
            return Text(",".join(sorted(str(item) for item in raw)))
        return super()._from_other(raw, type_hint)
