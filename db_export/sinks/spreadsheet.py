import io
import re
from datetime import datetime, timezone
from typing import Any

import pandas as pd
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.utils.cell import get_column_letter
from openpyxl.workbook.workbook import Workbook
from openpyxl.worksheet.table import Table, TableStyleInfo

from ..errors import SinkError
from ..values import (
    DEFAULT_FORMAT,
    Bytes,
    FormatOptions,
    Null,
    Row,
    Schema,
    Text,
    Timestamp,
    Value,
    ValueKind,
    format_bytes,
)
from .base import Buffering, SinkCapabilities, SinkWriter, Truncation
from .target import OutputTarget

XL_MAX_ROWS: int = 1_048_575
XL_MAX_COLS: int = 16_384
MAX_COLUMN_WIDTH: int = 50
DATETIME_FORMAT: str = "yyyy-mm-dd hh:mm:ss"


def _escape_illegal(text: str) -> str:
    return ILLEGAL_CHARACTERS_RE.sub(lambda match: f"\\x{ord(match.group()):02x}", text)


def to_cell_value(value: Value, options: FormatOptions = DEFAULT_FORMAT) -> Any:
    """
    Maps a value onto what openpyxl can store in a cell.

    Excel has no timezones: aware timestamps are converted to UTC first.
    """
    if isinstance(value, Null):
        return None
    if isinstance(value, Text):
        return _escape_illegal(value.value)
    if isinstance(value, Bytes):
        return format_bytes(value.value, options)
    if isinstance(value, Timestamp):
        moment = value.value
        if moment.tzinfo is not None:
            moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
        return moment
    return value.value


def format_excel(wb: Workbook, datetime_columns: list[int], add_table: bool = True):
    for sheet in wb.sheetnames:
        ws = wb[sheet]

        if ws.max_row <= 1:
            continue

        if add_table:
            last_column = get_column_letter(ws.max_column)
            last_cell = f"{last_column}{ws.max_row}"

            table_name = re.sub(r"[^\w]", "_", sheet)
            if not table_name[:1].isalpha():
                table_name = f"T_{table_name}"
            table = Table(displayName=table_name, ref=f"A1:{last_cell}")
            table.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium2", showRowStripes=True
            )
            ws.add_table(table)

        for column in ws.columns:
            max_length = max(
                (len(str(cell.value)) for cell in column if cell.value is not None),
                default=0,
            )
            adjusted_width = min(max_length + 2, MAX_COLUMN_WIDTH)
            ws.column_dimensions[column[0].column_letter].width = adjusted_width

        for idx in datetime_columns:
            column_letter = get_column_letter(idx + 1)
            for cell in ws[column_letter]:
                if isinstance(cell.value, datetime):
                    cell.number_format = DATETIME_FORMAT


class XlsxSink(SinkWriter, format_name="xlsx"):
    """
    An Excel workbook with a single styled table.

    openpyxl needs the whole workbook in memory, so the sink buffers every row
    and renders on ``end``; a partial workbook is never written.
    """

    capabilities = SinkCapabilities(Buffering.BUFFERED, Truncation.DISCARD)

    def __init__(
        self: "XlsxSink",
        format_options: FormatOptions = DEFAULT_FORMAT,
        sheet_name: str = "Data",
    ):
        super().__init__(format_options)
        self.sheet_name = sheet_name
        self.rows: list[list[Any]] = []
        self.datetime_columns: set[int] = set()

    def begin(self: "XlsxSink", schema: Schema, target: OutputTarget):
        if len(schema) > XL_MAX_COLS:
            raise SinkError(
                f"{len(schema)} columns exceed the Excel limit of {XL_MAX_COLS}",
                target=target.label,
            )
        self.schema = schema
        self.target = target

    def write_row(self: "XlsxSink", row: Row):
        if len(self.rows) >= XL_MAX_ROWS:
            raise SinkError(
                f"Result exceeds the Excel limit of {XL_MAX_ROWS} rows",
                target=self.target.label,
                row=row.index,
            )
        for i, value in enumerate(row.values):
            if value.kind is ValueKind.TIMESTAMP:
                self.datetime_columns.add(i)
        self.rows.append([to_cell_value(value, self.format_options) for value in row.values])
        self.rows_written += 1

    def _can_add_table(self: "XlsxSink") -> bool:
        names = self.names
        if len(set(names)) != len(names) or not all(name.strip() for name in names):
            self.logger.warning(
                "Column names are empty or repeated, writing the sheet without a table"
            )
            return False
        return True

    def end(self: "XlsxSink"):
        df = pd.DataFrame(self.rows, columns=list(self.names), dtype=object)
        self.rows = []

        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name=self.sheet_name, index=False)
            format_excel(
                writer.book, sorted(self.datetime_columns), add_table=self._can_add_table()
            )

        self.target.open().write(buffer.getvalue())

    def abort(self: "XlsxSink"):
        self.rows = []
