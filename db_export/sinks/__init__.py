"""
Output formats. Importing the package registers every sink under its format name.
"""

from .base import Buffering, SinkCapabilities, SinkWriter, TextSinkWriter, Truncation
from .columnar import ParquetSink
from .delimited import CsvSink, TsvSink, read_delimited
from .markup import HtmlSink
from .relational import SqliteSink
from .spreadsheet import XlsxSink
from .structured import JsonSink, NdjsonSink
from .target import OutputTarget
from .text import TextTableSink, TextVerticalSink

__all__ = [
    "Buffering",
    "CsvSink",
    "HtmlSink",
    "JsonSink",
    "NdjsonSink",
    "OutputTarget",
    "ParquetSink",
    "SinkCapabilities",
    "SinkWriter",
    "SqliteSink",
    "TextSinkWriter",
    "TextTableSink",
    "TextVerticalSink",
    "Truncation",
    "TsvSink",
    "XlsxSink",
    "read_delimited",
]
