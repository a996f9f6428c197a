"""Pivot aggregation over calculated values.

Rows of the source range are grouped by a composite key built from the
row fields; groups keep the order in which their first row appeared.
Aggregations run over the numeric values of a field within a group, except
``count`` which counts rows.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from xlcalc.contracts.common import WarningDetail
from xlcalc.contracts.responses import PivotResult
from xlcalc.contracts.tools import DataField
from xlcalc.engine.address import RangeBounds, format_range, parse_range, parse_reference
from xlcalc.engine.context import WorkbookSession
from xlcalc.engine.sync import flag_desync, read_block, sync_sheet_to_engine

KEY_SEPARATOR = "|"


@dataclass
class _Group:
    segments: list[str]
    rows: list[dict[str, Any]] = field(default_factory=list)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def key_segment(value: Any) -> str:
    """String form of a grouping value; missing and empty values give ``""``."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def aggregate(kind: str, values: list[Any], row_count: int) -> int | float:
    if kind == "count":
        return row_count
    numbers = [v for v in values if is_number(v)]
    if kind == "sum":
        return sum(numbers)
    if not numbers:
        return 0
    if kind == "average":
        return sum(numbers) / len(numbers)
    if kind == "min":
        return min(numbers)
    if kind == "max":
        return max(numbers)
    raise ValueError(f"Unknown aggregation: {kind}")


def read_records(session: WorkbookSession, source_sheet: str | int, bounds: RangeBounds) -> tuple[list[str], list[dict[str, Any]]]:
    """Headers and per-row field mappings for a source range, via calculated values."""
    ws = session.resolve_sheet(source_sheet)
    grid = read_block(session, ws, bounds)
    headers = [
        key_segment(value) or f"Column{offset}"
        for offset, value in enumerate(grid[0], start=1)
    ]
    records = [dict(zip(headers, row)) for row in grid[1:]]
    return headers, records


def group_rows(records: list[dict[str, Any]], row_fields: list[str]) -> list[_Group]:
    groups: dict[str, _Group] = {}
    for record in records:
        segments = [key_segment(record.get(name)) for name in row_fields]
        key = KEY_SEPARATOR.join(segments)
        group = groups.get(key)
        if group is None:
            group = groups[key] = _Group(segments=segments)
        group.rows.append(record)
    return list(groups.values())


def _destination_name(session: WorkbookSession) -> str:
    base = f"PivotTable_{int(time.time() * 1000)}"
    taken = {name.casefold() for name in session.sheet_names()}
    name, n = base, 1
    while name.casefold() in taken:
        n += 1
        name = f"{base}_{n}"
    return name


def create_pivot_table(
    session: WorkbookSession,
    source_sheet: str | int,
    source_range: str,
    row_fields: list[str],
    data_fields: list[DataField],
    destination_sheet: str | None = None,
    destination_cell: str | None = None,
) -> PivotResult:
    bounds = parse_range(source_range)
    dest_cell = destination_cell or "A1"
    start = parse_reference(dest_cell)

    headers, records = read_records(session, source_sheet, bounds)
    for name in [*row_fields, *(df.field for df in data_fields)]:
        if name not in headers:
            session.warnings.append(WarningDetail(
                code="WARN_UNKNOWN_FIELD",
                message=f"Field '{name}' is not a header of {source_range}; its values are treated as empty",
                path=name,
            ))

    groups = group_rows(records, row_fields)
    output: list[list[Any]] = [
        [*row_fields, *(f"{df.aggregation.upper()}({df.field})" for df in data_fields)]
    ]
    for group in groups:
        results = [
            aggregate(df.aggregation, [r.get(df.field) for r in group.rows], len(group.rows))
            for df in data_fields
        ]
        output.append([*group.segments, *results])

    if destination_sheet:
        ws = session.find_sheet(destination_sheet)
        if ws is None:
            ws = session.create_sheet(destination_sheet)
    else:
        ws = session.create_sheet(_destination_name(session))

    try:
        for r_off, row_values in enumerate(output):
            for c_off, value in enumerate(row_values):
                ws.cell(row=start.row + r_off, column=start.col + c_off).value = value
    except Exception:
        flag_desync(session, ws.title, "partial_failure")
        raise
    sync_sheet_to_engine(session, ws)

    width = max(len(output[0]), 1)
    written = RangeBounds(start.row, start.col, start.row + len(output) - 1, start.col + width - 1)
    session.emitter.emit("pivot.created", {
        "workbook_id": session.handle,
        "sheet": ws.title,
        "cell": dest_cell,
        "groups": len(groups),
    })
    return PivotResult(sheet=ws.title, cell=dest_cell, range=format_range(written), group_count=len(groups))
