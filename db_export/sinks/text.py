"""
Console renderings: a bordered table and a vertical one-block-per-row listing.
"""

import io
import unicodedata
from typing import Optional

from rich import box
from rich.cells import cell_len
from rich.console import Console
from rich.table import Table
from rich.text import Text as RichText

from ..values import DEFAULT_FORMAT, Float, FormatOptions, Integer, Row, to_display_text
from .base import TextSinkWriter

MAX_COLUMN_WIDTH = 60

_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}


def escape_control(text: str) -> str:
    """Makes control characters visible so a cell stays on one line."""
    if text.isprintable():
        return text
    return "".join(
        _ESCAPES.get(char, f"\\x{ord(char):02x}")
        if unicodedata.category(char) == "Cc"
        else char
        for char in text
    )


def _cell(text: str, right: bool = False) -> RichText:
    return RichText(
        text, justify="right" if right else "left", no_wrap=True, overflow="ellipsis"
    )


class TextTableSink(TextSinkWriter, format_name="text", extensions=("txt",)):
    """
    A bordered table sized to its contents.

    Up to ``max_buffered_rows`` rows are held to size the columns; past that the
    widths freeze, the buffer is flushed and later rows stream with wider cells
    cut to fit.
    """

    def __init__(
        self: "TextTableSink",
        format_options: FormatOptions = DEFAULT_FORMAT,
        max_buffered_rows: int = 1000,
    ):
        super().__init__(format_options)
        if max_buffered_rows < 0:
            raise ValueError("max_buffered_rows must not be negative")
        self.max_buffered_rows = max_buffered_rows
        self.buffer: list[tuple[list[str], list[bool]]] = []
        self.widths: Optional[list[int]] = None
        self.bottom_border: Optional[str] = None

    def _write_header(self: "TextTableSink"):
        self.headers = [escape_control(name) for name in self.names]

    def _prepare(self: "TextTableSink", row: Row) -> tuple[list[str], list[bool]]:
        cells = [
            escape_control(to_display_text(value, self.format_options))
            for value in row.values
        ]
        numeric = [isinstance(value, (Integer, Float)) for value in row.values]
        return cells, numeric

    def _measure(self: "TextTableSink") -> list[int]:
        widths = [cell_len(header) for header in self.headers]
        for cells, _ in self.buffer:
            for i, cell in enumerate(cells):
                widths[i] = max(widths[i], cell_len(cell))
        return [min(max(width, 1), MAX_COLUMN_WIDTH) for width in widths]

    def _render(
        self: "TextTableSink",
        rows: list[tuple[list[str], list[bool]]],
        show_header: bool = True,
    ) -> list[str]:
        """
        Renders rows with the current widths; returns the lines, borders included.
        """
        table = Table(box=box.ASCII2, show_header=show_header, highlight=False)
        for header, width in zip(self.headers, self.widths):
            table.add_column(_cell(header), width=width, no_wrap=True, overflow="ellipsis")
        for cells, numeric in rows:
            table.add_row(*(_cell(cell, right) for cell, right in zip(cells, numeric)))

        output = io.StringIO()
        console = Console(
            file=output,
            width=sum(self.widths) + 3 * len(self.widths) + 2,
            color_system=None,
            force_terminal=False,
            highlight=False,
            markup=False,
            emoji=False,
        )
        console.print(table)
        return output.getvalue().splitlines()

    def _freeze_widths(self: "TextTableSink"):
        self.widths = self._measure()
        lines = self._render(self.buffer)
        self.bottom_border = lines.pop() if lines else ""
        self.stream.write("".join(f"{line}\n" for line in lines))
        self.buffer = []

    def _write_row(self: "TextTableSink", row: Row):
        prepared = self._prepare(row)
        if self.widths is not None:
            lines = self._render([prepared], show_header=False)[1:-1]
            self.stream.write("".join(f"{line}\n" for line in lines))
            return

        self.buffer.append(prepared)
        if len(self.buffer) > self.max_buffered_rows:
            self.logger.info(
                f"More than {self.max_buffered_rows} rows, freezing text column widths"
            )
            self._freeze_widths()

    def _write_footer(self: "TextTableSink"):
        if self.widths is None:
            self._freeze_widths()
        self.stream.write(f"{self.bottom_border}\n")


class TextVerticalSink(TextSinkWriter, format_name="text-vertical"):
    """
    One block per row with a ``name: value`` line per column.
    """

    def __init__(
        self: "TextVerticalSink",
        format_options: FormatOptions = DEFAULT_FORMAT,
        truncate: Optional[int] = None,
    ):
        super().__init__(format_options)
        if truncate is not None and truncate < 1:
            raise ValueError("truncate must be positive")
        self.truncate = truncate

    def _write_header(self: "TextVerticalSink"):
        self.labels = [escape_control(name) for name in self.names]
        self.label_width = max((cell_len(label) for label in self.labels), default=0)

    def _write_row(self: "TextVerticalSink", row: Row):
        lines = [f"{'*' * 27} {row.index + 1}. row {'*' * 27}"]
        for label, value in zip(self.labels, row.values):
            cell = RichText(escape_control(to_display_text(value, self.format_options)))
            if self.truncate is not None:
                cell.truncate(self.truncate, overflow="ellipsis")
            padding = " " * (self.label_width - cell_len(label))
            lines.append(f"{padding}{label}: {cell.plain}")
        self.stream.write("\n".join(lines) + "\n")
