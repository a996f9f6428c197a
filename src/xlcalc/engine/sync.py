"""Sync layer: keeps a session's document and calculation engine in lockstep.

Writes go to the openpyxl document first, then to the engine at the
zero-based coordinate ``(row - 1, col - 1)``. Reads of calculated values come
from the engine; when a sheet is missing from the engine the document value is
used instead and the desync is reported as a warning plus an
``engine.desync`` event.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable

from openpyxl.cell.cell import Cell
from openpyxl.utils.datetime import to_excel
from openpyxl.worksheet.formula import ArrayFormula
from openpyxl.worksheet.worksheet import Worksheet

from xlcalc.contracts.common import WarningDetail
from xlcalc.engine.address import RangeBounds, rename_sheet_in_formula

if TYPE_CHECKING:
    from xlcalc.engine.context import WorkbookSession


def _same(value: Any) -> Any:
    return value


# Every value crossing into the engine goes through this table, in order.
# bool precedes int because bool is an int subclass. Anything unmatched
# falls back to its display string.
_COERCIONS: list[tuple[type | tuple[type, ...], Callable[[Any], Any]]] = [
    (bool, _same),
    ((int, float), _same),
    (str, _same),
    ((datetime, date, time, timedelta), to_excel),  # Excel 1900 serial number
    (Decimal, float),
    (ArrayFormula, lambda v: v.text),
]


def to_engine_content(value: Any) -> Any:
    """Convert a document cell value to content the engine accepts."""
    if value is None:
        return None
    for types, convert in _COERCIONS:
        if isinstance(value, types):
            return convert(value)
    return str(value)


def flag_desync(session: "WorkbookSession", sheet: str, reason: str) -> None:
    session.warnings.append(WarningDetail(
        code="WARN_ENGINE_DESYNC",
        message=f"Sheet '{sheet}' is out of sync with the calculation engine ({reason})",
        path=sheet,
    ))
    session.emitter.emit("engine.desync", {
        "workbook_id": session.handle,
        "sheet": sheet,
        "reason": reason,
    })


def engine_sheet_id(session: "WorkbookSession", ws: Worksheet) -> int | None:
    sheet_id = session.engine.get_sheet_id(ws.title)
    if sheet_id is None:
        flag_desync(session, ws.title, "sheet not registered in engine")
    return sheet_id


def stored_cells(ws: Worksheet) -> list[Cell]:
    """Cells the document holds, row-major. Never materializes empty cells."""
    return [ws._cells[key] for key in sorted(ws._cells)]


def document_value(ws: Worksheet, row: int, col: int) -> Any:
    """Read a raw document value without materializing an empty cell."""
    cell = ws._cells.get((row, col))
    return cell.value if cell is not None else None


def write_cell(session: "WorkbookSession", ws: Worksheet, row: int, col: int, value: Any) -> Any:
    """Write one cell to both stores. Returns the previous document value."""
    cell = ws.cell(row=row, column=col)
    before = cell.value
    cell.value = value
    sheet_id = engine_sheet_id(session, ws)
    if sheet_id is not None:
        session.engine.set_cell_content(sheet_id, row - 1, col - 1, to_engine_content(value))
    return before


def write_block(
    session: "WorkbookSession",
    ws: Worksheet,
    row: int,
    col: int,
    values: list[list[Any]],
) -> int:
    """Write a (possibly ragged) block with its top-left at (row, col). Returns cells written."""
    written = 0
    try:
        for r_off, row_values in enumerate(values):
            for c_off, value in enumerate(row_values):
                ws.cell(row=row + r_off, column=col + c_off).value = value
                written += 1
        sheet_id = engine_sheet_id(session, ws)
        if sheet_id is not None:
            grid = [[to_engine_content(v) for v in row_values] for row_values in values]
            session.engine.set_cell_contents(sheet_id, row - 1, col - 1, grid)
    except Exception:
        flag_desync(session, ws.title, "partial_failure")
        raise
    return written


def sheet_grid(ws: Worksheet) -> list[list[Any]]:
    """The sheet's declared extent as a rectangular grid of engine content."""
    if not stored_cells(ws):
        return []
    return [
        [to_engine_content(document_value(ws, r, c)) for c in range(1, ws.max_column + 1)]
        for r in range(1, ws.max_row + 1)
    ]


def sync_sheet_to_engine(session: "WorkbookSession", ws: Worksheet) -> int:
    """Replace the engine's copy of ``ws`` with the document's content.

    Returns the number of grid cells pushed (empty ones included).
    """
    sheet_id = engine_sheet_id(session, ws)
    if sheet_id is None:
        return 0
    try:
        grid = sheet_grid(ws)
        session.engine.set_sheet_content(sheet_id, grid)
    except Exception:
        flag_desync(session, ws.title, "partial_failure")
        raise
    return sum(len(r) for r in grid)


def read_calculated(session: "WorkbookSession", ws: Worksheet, row: int, col: int) -> Any:
    sheet_id = engine_sheet_id(session, ws)
    if sheet_id is None:
        return document_value(ws, row, col)
    return session.engine.get_cell_value(sheet_id, row - 1, col - 1)


def read_block(session: "WorkbookSession", ws: Worksheet, bounds: RangeBounds) -> list[list[Any]]:
    """Calculated values for a range; the document is consulted only without an engine sheet."""
    sheet_id = engine_sheet_id(session, ws)
    if sheet_id is None:
        return [[document_value(ws, r, c) for c in bounds.cols()] for r in bounds.rows()]
    engine = session.engine
    return [[engine.get_cell_value(sheet_id, r - 1, c - 1) for c in bounds.cols()] for r in bounds.rows()]


def sync_to_document(session: "WorkbookSession") -> int:
    """Refresh the cached result of every formula cell from the engine.

    Results land in ``session.cached_results`` (sheet -> coordinate -> value),
    which the writer embeds into the saved file. Returns the number of
    formula cells refreshed.
    """
    session.cached_results = {}
    refreshed = 0
    for ws in session.wb.worksheets:
        sheet_id = engine_sheet_id(session, ws)
        if sheet_id is None:
            continue
        results: dict[str, Any] = {}
        for cell in stored_cells(ws):
            if cell.data_type == "f":
                results[cell.coordinate] = session.engine.get_cell_value(sheet_id, cell.row - 1, cell.column - 1)
        if results:
            session.cached_results[ws.title] = results
            refreshed += len(results)
    return refreshed


def retarget_formulas(session: "WorkbookSession", old: str, new: str) -> int:
    """Rewrite ``old!`` references in every formula cell to name sheet ``new``.

    Both stores receive the rewritten text. Returns the number of formula
    cells changed.
    """
    rewritten = 0
    for ws in session.wb.worksheets:
        sheet_id = session.engine.get_sheet_id(ws.title)
        for cell in stored_cells(ws):
            value = cell.value
            if isinstance(value, ArrayFormula):
                text = rename_sheet_in_formula(value.text, old, new)
                if text == value.text:
                    continue
                value.text = text
            elif cell.data_type == "f" and isinstance(value, str):
                text = rename_sheet_in_formula(value, old, new)
                if text == value:
                    continue
                cell.value = text
            else:
                continue
            if sheet_id is not None:
                session.engine.set_cell_content(sheet_id, cell.row - 1, cell.column - 1, text)
            rewritten += 1
    return rewritten
