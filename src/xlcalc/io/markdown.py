"""Parse pipe-delimited markdown tables into row-major cell values."""

from __future__ import annotations

import re
from typing import Any

_SEPARATOR_CELL = re.compile(r"^:?-{3,}:?$")
_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")


def _split_row(line: str) -> list[str]:
    line = line.strip()
    if line.startswith("|"):
        line = line[1:]
    if line.endswith("|") and not line.endswith("\\|"):
        line = line[:-1]
    cells: list[str] = []
    current: list[str] = []
    i = 0
    while i < len(line):
        ch = line[i]
        if ch == "\\" and i + 1 < len(line) and line[i + 1] == "|":
            current.append("|")
            i += 2
            continue
        if ch == "|":
            cells.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
        i += 1
    cells.append("".join(current).strip())
    return cells


def _is_separator(cells: list[str]) -> bool:
    return bool(cells) and all(_SEPARATOR_CELL.match(c.replace(" ", "")) for c in cells)


def parse_cell(text: str) -> Any:
    """Numbers become int/float, empty text becomes None, anything else stays text."""
    if text == "":
        return None
    if _INT_RE.match(text):
        return int(text)
    if _FLOAT_RE.match(text):
        return float(text)
    return text


def parse_markdown_table(markdown: str) -> list[list[Any]]:
    """Return the header row followed by data rows.

    Rows shorter than the header are padded with ``None``; longer rows are
    truncated. Raises ValueError when the text is not a markdown table.
    """
    lines = [line for line in markdown.strip().splitlines() if line.strip()]
    if len(lines) < 2:
        raise ValueError("Markdown table needs a header row and a separator row")
    header = _split_row(lines[0])
    if not _is_separator(_split_row(lines[1])):
        raise ValueError("Markdown table is missing its '---' separator row")

    width = len(header)
    rows: list[list[Any]] = [[parse_cell(h) for h in header]]
    for line in lines[2:]:
        cells = [parse_cell(c) for c in _split_row(line)][:width]
        cells.extend([None] * (width - len(cells)))
        rows.append(cells)
    return rows
