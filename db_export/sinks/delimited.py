import csv
from typing import ClassVar, Iterable, Optional, Sequence

from ..values import (
    DEFAULT_FORMAT,
    FormatOptions,
    Null,
    Row,
    Value,
    ValueKind,
    parse_display_text,
    to_display_text,
)
from .base import TextSinkWriter


class CsvSink(TextSinkWriter, format_name="csv"):
    """
    RFC 4180 delimited text: a header row, CRLF line endings and quoted fields.

    Every field is quoted except ``Null`` cells, which are left empty and
    unquoted, so ``Null`` and empty text stay apart. A custom ``null_text`` is
    written as a quoted field like any other text.
    """

    delimiter: ClassVar[str] = ","

    def _write_header(self: "CsvSink"):
        self.writer = csv.writer(
            self.stream,
            delimiter=self.delimiter,
            lineterminator="\r\n",
            quoting=csv.QUOTE_NOTNULL,
        )
        self.writer.writerow(self.names)

    def _field(self: "CsvSink", value: Value) -> Optional[str]:
        if isinstance(value, Null) and not self.format_options.null_text:
            return None
        return to_display_text(value, self.format_options)

    def _write_row(self: "CsvSink", row: Row):
        self.writer.writerow([self._field(value) for value in row.values])


class TsvSink(CsvSink, format_name="tsv", extensions=("tsv", "tab")):
    delimiter = "\t"


def read_delimited(
    lines: Iterable[str],
    kinds: Sequence[ValueKind],
    delimiter: str = CsvSink.delimiter,
    format_options: FormatOptions = DEFAULT_FORMAT,
) -> tuple[list[str], list[tuple[Value, ...]]]:
    """
    Reads delimited output back into values, one declared kind per column.

    Args:
        lines: The text, opened with ``newline=""``.
        kinds: Kind of each column, in order.
        delimiter: Field separator.
        format_options: The options the output was written with.

    Returns:
        The header and the rows.
    """
    reader = csv.reader(lines, delimiter=delimiter, quoting=csv.QUOTE_NOTNULL)
    header = next(reader, [])
    rows = [
        tuple(
            parse_display_text(field, kind, format_options)
            for field, kind in zip(record, kinds)
        )
        for record in reader
    ]
    return list(header), rows
