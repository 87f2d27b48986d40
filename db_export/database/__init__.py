from .manager import ProfileManager, build_connection_url
from .source import IterableRowSource, RowSource, SqlAlchemyRowSource

__all__ = [
    "IterableRowSource",
    "ProfileManager",
    "RowSource",
    "SqlAlchemyRowSource",
    "build_connection_url",
]
