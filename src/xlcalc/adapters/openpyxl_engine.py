"""Cell, range, formula and chart operations on a session's openpyxl document.

Every write goes through the sync layer so the calculation engine sees it;
every read reports the engine's calculated value.
"""

from __future__ import annotations

from typing import Any

from openpyxl.chart import BarChart, LineChart, PieChart, Reference, ScatterChart, Series
from openpyxl.worksheet.formula import ArrayFormula

from xlcalc.contracts.common import ChangeRecord, ChartExistsError, ChartNotFoundError
from xlcalc.contracts.responses import CellValue, ChartMeta, ColumnMeta, RecalcResult
from xlcalc.engine.address import (
    RangeBounds,
    format_column,
    format_range,
    format_reference,
    parse_range,
    parse_reference,
)
from xlcalc.engine.context import ChartEntry, WorkbookSession
from xlcalc.engine.sync import (
    document_value,
    flag_desync,
    read_block,
    read_calculated,
    stored_cells,
    sync_sheet_to_engine,
    write_block,
    write_cell,
)


def _is_formula(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("=") and len(value) > 1


# ---------------------------------------------------------------------------
# cells and ranges
# ---------------------------------------------------------------------------
def cell_read(session: WorkbookSession, sheet: str | int, ref: str) -> CellValue:
    """Raw value, calculated value and formula text for one cell."""
    ws = session.resolve_sheet(sheet)
    addr = parse_reference(ref)
    value = document_value(ws, addr.row, addr.col)
    if isinstance(value, ArrayFormula):
        value = value.text
    return CellValue(
        value=value,
        calculated_value=read_calculated(session, ws, addr.row, addr.col),
        formula=value if _is_formula(value) else None,
    )


def cell_write(session: WorkbookSession, sheet: str | int, ref: str, value: Any) -> ChangeRecord:
    ws = session.resolve_sheet(sheet)
    addr = parse_reference(ref)
    before = write_cell(session, ws, addr.row, addr.col, value)
    return ChangeRecord(
        type="cell.write",
        target=f"{ws.title}!{format_reference(addr.row, addr.col)}",
        before=before,
        after=value,
        impact={"cells": 1},
    )


def range_read(session: WorkbookSession, sheet: str | int, ref: str) -> list[list[Any]]:
    ws = session.resolve_sheet(sheet)
    return read_block(session, ws, parse_range(ref))


def range_write(
    session: WorkbookSession,
    sheet: str | int,
    start_ref: str,
    values: list[list[Any]],
) -> ChangeRecord:
    """Write a row-major block of values with its top-left at ``start_ref``."""
    ws = session.resolve_sheet(sheet)
    start = parse_reference(start_ref)
    cells = write_block(session, ws, start.row, start.col, values)
    width = max((len(row) for row in values), default=0)
    target = format_reference(start.row, start.col)
    if values and width:
        target = format_range(RangeBounds(start.row, start.col, start.row + len(values) - 1, start.col + width - 1))
    return ChangeRecord(
        type="range.write",
        target=f"{ws.title}!{target}",
        after={"rows": len(values), "columns": width},
        impact={"cells": cells},
    )


def list_columns(session: WorkbookSession, sheet: str | int) -> list[ColumnMeta]:
    """Non-empty header cells in row 1."""
    ws = session.resolve_sheet(sheet)
    columns: list[ColumnMeta] = []
    if not stored_cells(ws):
        return columns
    for col in range(1, ws.max_column + 1):
        value = document_value(ws, 1, col)
        if value is None or value == "":
            continue
        columns.append(ColumnMeta(column=format_column(col), header=str(value), index=col))
    return columns


def get_formula(session: WorkbookSession, sheet: str | int, ref: str) -> str | None:
    ws = session.resolve_sheet(sheet)
    addr = parse_reference(ref)
    value = document_value(ws, addr.row, addr.col)
    if isinstance(value, ArrayFormula):
        value = value.text
    return value if _is_formula(value) else None


def recalculate(session: WorkbookSession) -> RecalcResult:
    """Resync every sheet into the engine, repairing missing engine sheets."""
    sheets = 0
    cells = 0
    engine = session.engine
    for ws in session.wb.worksheets:
        if engine.get_sheet_id(ws.title) is None:
            flag_desync(session, ws.title, "sheet re-registered during recalculate")
            engine.add_sheet(ws.title)
        sync_sheet_to_engine(session, ws)
        dims = engine.get_sheet_dimensions(engine.get_sheet_id(ws.title))
        sheets += 1
        cells += dims.width * dims.height
    engine.recalculate()
    return RecalcResult(sheets_recalculated=sheets, cells_recalculated=cells)


# ---------------------------------------------------------------------------
# charts
# ---------------------------------------------------------------------------
_CHART_CLASSES = {
    "bar": BarChart,
    "line": LineChart,
    "pie": PieChart,
    "scatter": ScatterChart,
}


def _build_chart(chart_type: str, ws: Any, bounds: RangeBounds, title: str | None) -> Any:
    chart = _CHART_CLASSES[chart_type]()
    if title:
        chart.title = title
    if chart_type == "scatter":
        # first column holds x values, the others one series each
        xvalues = Reference(ws, min_col=bounds.start_col, min_row=bounds.start_row + 1, max_row=bounds.end_row)
        for col in range(bounds.start_col + 1, bounds.end_col + 1):
            yvalues = Reference(ws, min_col=col, min_row=bounds.start_row, max_row=bounds.end_row)
            chart.series.append(Series(yvalues, xvalues, title_from_data=True))
        return chart
    data = Reference(
        ws,
        min_col=bounds.start_col,
        min_row=bounds.start_row,
        max_col=bounds.end_col,
        max_row=bounds.end_row,
    )
    chart.add_data(data, titles_from_data=True)
    return chart


def chart_create(
    session: WorkbookSession,
    sheet: str | int,
    chart_type: str,
    data_range: str,
    *,
    title: str | None = None,
    position: tuple[int, int] | None = None,
) -> tuple[ChartMeta, ChangeRecord]:
    """Add a native chart for ``data_range``. ``position`` is (col, row), 1-based."""
    if chart_type not in _CHART_CLASSES:
        raise ValueError(f"Unsupported chart type: {chart_type}")
    ws = session.resolve_sheet(sheet)
    bounds = parse_range(data_range)
    existing = session.charts.setdefault(ws.title, {})
    name = title or f"Chart{session.charts_created + 1}"
    if name in existing:
        raise ChartExistsError(f"Chart already exists on sheet '{ws.title}': {name}")

    if position is None:
        anchor = format_reference(bounds.start_row, bounds.end_col + 2)
    else:
        col, row = position
        anchor = format_reference(row, col)

    chart = _build_chart(chart_type, ws, bounds, title)
    ws.add_chart(chart, anchor)
    session.charts_created += 1
    meta = ChartMeta(name=name, sheet=ws.title, type=chart_type, data_range=format_range(bounds), anchor=anchor)
    existing[name] = ChartEntry(meta=meta, chart=chart)
    change = ChangeRecord(
        type="chart.create",
        target=f"{ws.title}!{anchor}",
        after=meta.model_dump(),
    )
    return meta, change


def chart_delete(session: WorkbookSession, sheet: str | int, chart_name: str) -> ChangeRecord:
    ws = session.resolve_sheet(sheet)
    entry = session.charts.get(ws.title, {}).pop(chart_name, None)
    if entry is None:
        raise ChartNotFoundError(f"Chart not found on sheet '{ws.title}': {chart_name}")
    ws._charts = [c for c in ws._charts if c is not entry.chart]
    return ChangeRecord(
        type="chart.delete",
        target=f"{ws.title}!{entry.meta.anchor}",
        before=entry.meta.model_dump(),
    )


def chart_list(session: WorkbookSession, sheet: str | int | None = None) -> list[ChartMeta]:
    if sheet is not None:
        ws = session.resolve_sheet(sheet)
        return [e.meta for e in session.charts.get(ws.title, {}).values()]
    return [
        entry.meta
        for ws in session.wb.worksheets
        for entry in session.charts.get(ws.title, {}).values()
    ]
