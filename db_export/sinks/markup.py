from html import escape
from typing import Optional

from ..values import DEFAULT_FORMAT, FormatOptions, Null, Row, to_display_text
from .base import TextSinkWriter


class HtmlSink(TextSinkWriter, format_name="html", extensions=("html", "htm")):
    """
    A standalone HTML page holding one table; every cell is entity-escaped.
    """

    def __init__(
        self: "HtmlSink",
        format_options: FormatOptions = DEFAULT_FORMAT,
        title: Optional[str] = None,
    ):
        super().__init__(format_options)
        self.title = title

    def _write_header(self: "HtmlSink"):
        lines = ["<!DOCTYPE html>", "<html>", "<head>", '<meta charset="utf-8">']
        if self.title:
            lines.append(f"<title>{escape(self.title)}</title>")
        lines += ["</head>", "<body>"]
        if self.title:
            lines.append(f"<h1>{escape(self.title)}</h1>")
        lines += ["<table>", "<thead>"]
        lines.append(
            "<tr>" + "".join(f"<th>{escape(name)}</th>" for name in self.names) + "</tr>"
        )
        lines += ["</thead>", "<tbody>"]
        self.stream.write("\n".join(lines) + "\n")

    def _write_row(self: "HtmlSink", row: Row):
        cells = []
        for value in row.values:
            content = escape(to_display_text(value, self.format_options))
            if isinstance(value, Null):
                cells.append(f'<td class="null">{content}</td>')
            else:
                cells.append(f"<td>{content}</td>")
        self.stream.write("<tr>" + "".join(cells) + "</tr>\n")

    def _write_footer(self: "HtmlSink"):
        self.stream.write("</tbody>\n</table>\n</body>\n</html>\n")
