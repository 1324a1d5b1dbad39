"""
Plain-text table renderer for CLI output.

Columns are sized to their widest cell; each column can be left-, right-
or center-aligned.
"""

from __future__ import annotations


class TableRenderer:
    """Render rows as a bordered text table.

    Example output:
        +-------+------+-------------+
        | Name  | Rate | Apps        |
        +-------+------+-------------+
        | login |   10 | app1,app2   |
        +-------+------+-------------+
    """

    def __init__(self, alignments: list[str] | None = None) -> None:
        """Initialize the table renderer.

        Args:
            alignments: Per-column alignment ('l', 'r', or 'c'); columns
                without an entry are left-aligned.
        """
        self._alignments = alignments or []

    def _align(self, cell: str, width: int, column: int) -> str:
        align = self._alignments[column] if column < len(self._alignments) else "l"
        if align == "r":
            return cell.rjust(width)
        if align == "c":
            return cell.center(width)
        return cell.ljust(width)

    def render(self, headers: list[str], rows: list[list[str]]) -> str:
        """Render headers and rows as a table.

        Returns:
            The table, or an empty string when there are no headers
        """
        if not headers:
            return ""

        widths = [len(h) for h in headers]
        for row in rows:
            for i, cell in enumerate(row[: len(widths)]):
                widths[i] = max(widths[i], len(cell))

        separator = "+-" + "-+-".join("-" * w for w in widths) + "-+"
        lines = [
            separator,
            "| " + " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers)) + " |",
            separator,
        ]
        for row in rows:
            padded = list(row[: len(widths)]) + [""] * (len(widths) - len(row))
            cells = [self._align(cell, widths[i], i) for i, cell in enumerate(padded)]
            lines.append("| " + " | ".join(cells) + " |")
        lines.append(separator)

        return "\n".join(lines)
