"""The tool table and the single entry point that runs a tool call.

Each tool pairs a pydantic argument model with a handler taking
``(registry, args)``. :func:`call_tool` validates arguments, applies policy,
runs the handler and always returns a :class:`ResponseEnvelope`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from pydantic import BaseModel

from xlcalc.adapters import openpyxl_engine as ops
from xlcalc.contracts.common import ChangeRecord, PolicyViolationError, ResponseEnvelope, Target
from xlcalc.contracts.responses import ImportResult, SheetMeta
from xlcalc.contracts.tools import (
    CellArgs,
    CreateChartArgs,
    CreateSheetArgs,
    DeleteChartArgs,
    ImportMarkdownArgs,
    ListChartsArgs,
    NoArgs,
    OpenWorkbookArgs,
    PivotTableArgs,
    RangeArgs,
    RenameSheetArgs,
    SaveWorkbookArgs,
    SheetArgs,
    WorkbookArgs,
    WriteCellArgs,
    WriteRangeArgs,
)
from xlcalc.engine.dispatcher import (
    error_code_for,
    error_details_for,
    error_envelope,
    success_envelope,
)
from xlcalc.engine.pivot import create_pivot_table
from xlcalc.engine.registry import WorkbookRegistry
from xlcalc.io.markdown import parse_markdown_table
from xlcalc.observe.events import Timer
from xlcalc.validation.policy import Policy, check_tool_policy
from xlcalc.validation.validators import check_consistency


@dataclass
class ToolOutput:
    result: Any = None
    changes: list[ChangeRecord] = field(default_factory=list)
    target: Target | None = None


@dataclass(frozen=True)
class ToolSpec:
    name: str
    args_model: type[BaseModel]
    handler: Callable[[WorkbookRegistry, Any], ToolOutput]
    description: str
    mutating: bool = False


# ---------------------------------------------------------------------------
# workbooks
# ---------------------------------------------------------------------------
def _create_workbook(registry: WorkbookRegistry, args: NoArgs) -> ToolOutput:
    handle = registry.create()
    return ToolOutput({"workbook_id": handle}, target=Target(workbook_id=handle))


def _open_workbook(registry: WorkbookRegistry, args: OpenWorkbookArgs) -> ToolOutput:
    handle = registry.open(args.file_path)
    session = registry.get(handle)
    result = {
        "workbook_id": handle,
        "path": str(session.path),
        "sheets": [s.model_dump() for s in session.list_sheets()],
    }
    return ToolOutput(result, target=session.target())


def _save_workbook(registry: WorkbookRegistry, args: SaveWorkbookArgs) -> ToolOutput:
    session = registry.get(args.workbook_id)
    saved = session.save(args.file_path, backup=args.backup)
    change = ChangeRecord(type="workbook.save", target=saved.path, after={"fingerprint": saved.fingerprint})
    return ToolOutput(saved.model_dump(), [change], session.target())


def _close_workbook(registry: WorkbookRegistry, args: WorkbookArgs) -> ToolOutput:
    registry.close(args.workbook_id)
    return ToolOutput({"workbook_id": args.workbook_id, "closed": True}, target=Target(workbook_id=args.workbook_id))


def _list_workbooks(registry: WorkbookRegistry, args: NoArgs) -> ToolOutput:
    return ToolOutput([w.model_dump() for w in registry.list()])


# ---------------------------------------------------------------------------
# sheets
# ---------------------------------------------------------------------------
def _list_sheets(registry: WorkbookRegistry, args: WorkbookArgs) -> ToolOutput:
    session = registry.get(args.workbook_id)
    return ToolOutput([s.model_dump() for s in session.list_sheets()], target=session.target())


def _create_sheet(registry: WorkbookRegistry, args: CreateSheetArgs) -> ToolOutput:
    session = registry.get(args.workbook_id)
    ws = session.create_sheet(args.name)
    meta = SheetMeta(name=ws.title, index=session.sheet_index(ws))
    change = ChangeRecord(type="sheet.create", target=ws.title, after=meta.model_dump())
    return ToolOutput(meta.model_dump(), [change], session.target(sheet=ws.title))


def _delete_sheet(registry: WorkbookRegistry, args: SheetArgs) -> ToolOutput:
    session = registry.get(args.workbook_id)
    ws = session.resolve_sheet(args.sheet)
    name = ws.title
    session.delete_sheet(ws)
    change = ChangeRecord(type="sheet.delete", target=name, before={"name": name})
    return ToolOutput({"deleted": name}, [change], session.target(sheet=name))


def _rename_sheet(registry: WorkbookRegistry, args: RenameSheetArgs) -> ToolOutput:
    session = registry.get(args.workbook_id)
    ws = session.resolve_sheet(args.sheet)
    old = ws.title
    session.rename_sheet(ws, args.new_name)
    meta = SheetMeta(name=ws.title, index=session.sheet_index(ws))
    change = ChangeRecord(type="sheet.rename", target=old, before=old, after=ws.title)
    return ToolOutput(meta.model_dump(), [change], session.target(sheet=ws.title))


def _get_sheet_info(registry: WorkbookRegistry, args: SheetArgs) -> ToolOutput:
    session = registry.get(args.workbook_id)
    ws = session.resolve_sheet(args.sheet)
    return ToolOutput(session.sheet_info(ws).model_dump(), target=session.target(sheet=ws.title))


# ---------------------------------------------------------------------------
# cells, ranges, formulas
# ---------------------------------------------------------------------------
def _read_cell(registry: WorkbookRegistry, args: CellArgs) -> ToolOutput:
    session = registry.get(args.workbook_id)
    cell = ops.cell_read(session, args.sheet, args.cell)
    return ToolOutput(cell.model_dump(), target=session.target(ref=args.cell))


def _write_cell(registry: WorkbookRegistry, args: WriteCellArgs) -> ToolOutput:
    session = registry.get(args.workbook_id)
    change = ops.cell_write(session, args.sheet, args.cell, args.value)
    return ToolOutput(change.model_dump(), [change], session.target(ref=args.cell))


def _read_range(registry: WorkbookRegistry, args: RangeArgs) -> ToolOutput:
    session = registry.get(args.workbook_id)
    values = ops.range_read(session, args.sheet, args.range)
    return ToolOutput({"range": args.range, "values": values}, target=session.target(ref=args.range))


def _write_range(registry: WorkbookRegistry, args: WriteRangeArgs) -> ToolOutput:
    session = registry.get(args.workbook_id)
    change = ops.range_write(session, args.sheet, args.start_cell, args.values)
    return ToolOutput(change.model_dump(), [change], session.target(ref=change.target))


def _list_columns(registry: WorkbookRegistry, args: SheetArgs) -> ToolOutput:
    session = registry.get(args.workbook_id)
    columns = ops.list_columns(session, args.sheet)
    return ToolOutput([c.model_dump() for c in columns], target=session.target())


def _get_formula(registry: WorkbookRegistry, args: CellArgs) -> ToolOutput:
    session = registry.get(args.workbook_id)
    formula = ops.get_formula(session, args.sheet, args.cell)
    return ToolOutput({"cell": args.cell, "formula": formula}, target=session.target(ref=args.cell))


def _recalculate(registry: WorkbookRegistry, args: WorkbookArgs) -> ToolOutput:
    session = registry.get(args.workbook_id)
    return ToolOutput(ops.recalculate(session).model_dump(), target=session.target())


# ---------------------------------------------------------------------------
# pivot tables, charts, import, validation
# ---------------------------------------------------------------------------
def _create_pivot_table(registry: WorkbookRegistry, args: PivotTableArgs) -> ToolOutput:
    session = registry.get(args.workbook_id)
    pivot = create_pivot_table(
        session,
        args.source_sheet,
        args.source_range,
        args.row_fields,
        args.data_fields,
        destination_sheet=args.destination_sheet,
        destination_cell=args.destination_cell,
    )
    change = ChangeRecord(
        type="pivot.create",
        target=f"{pivot.sheet}!{pivot.range}",
        after={"groups": pivot.group_count},
    )
    return ToolOutput(pivot.model_dump(), [change], session.target(sheet=pivot.sheet, ref=pivot.cell))


def _create_chart(registry: WorkbookRegistry, args: CreateChartArgs) -> ToolOutput:
    session = registry.get(args.workbook_id)
    position = (args.position.col, args.position.row) if args.position else None
    meta, change = ops.chart_create(
        session, args.sheet, args.type, args.data_range, title=args.title, position=position
    )
    return ToolOutput(meta.model_dump(), [change], session.target(sheet=meta.sheet, ref=meta.data_range))


def _delete_chart(registry: WorkbookRegistry, args: DeleteChartArgs) -> ToolOutput:
    session = registry.get(args.workbook_id)
    change = ops.chart_delete(session, args.sheet, args.chart_name)
    return ToolOutput({"deleted": args.chart_name}, [change], session.target())


def _list_charts(registry: WorkbookRegistry, args: ListChartsArgs) -> ToolOutput:
    session = registry.get(args.workbook_id)
    return ToolOutput([c.model_dump() for c in ops.chart_list(session, args.sheet)], target=session.target())


def _import_markdown_table(registry: WorkbookRegistry, args: ImportMarkdownArgs) -> ToolOutput:
    rows = parse_markdown_table(args.markdown)
    if args.workbook_id is None:
        handle = registry.create()
        session = registry.get(handle)
        ws = session.wb.worksheets[0]
        if args.sheet_name and args.sheet_name != ws.title:
            session.rename_sheet(ws, args.sheet_name)
    else:
        handle = args.workbook_id
        session = registry.get(handle)
        name = args.sheet_name or "Sheet1"
        ws = session.find_sheet(name)
        if ws is None:
            ws = session.create_sheet(name)
    change = ops.range_write(session, ws.title, "A1", rows)
    result = ImportResult(workbook_id=handle, sheet=ws.title, rows=len(rows), columns=len(rows[0]))
    return ToolOutput(result.model_dump(), [change], session.target(sheet=ws.title))


def _validate_workbook(registry: WorkbookRegistry, args: WorkbookArgs) -> ToolOutput:
    session = registry.get(args.workbook_id)
    return ToolOutput(check_consistency(session).model_dump(), target=session.target())


def _spec(name: str, model: type[BaseModel], handler: Callable, description: str, mutating: bool = False) -> ToolSpec:
    return ToolSpec(name, model, handler, description, mutating)


TOOLS: dict[str, ToolSpec] = {spec.name: spec for spec in [
    _spec("create_workbook", NoArgs, _create_workbook, "Create a new empty workbook with one sheet"),
    _spec("open_workbook", OpenWorkbookArgs, _open_workbook, "Open an .xlsx file and load it into the calculation engine"),
    _spec("save_workbook", SaveWorkbookArgs, _save_workbook, "Save a workbook, with engine results cached in formula cells", True),
    _spec("close_workbook", WorkbookArgs, _close_workbook, "Close a workbook and release its engine"),
    _spec("list_workbooks", NoArgs, _list_workbooks, "List open workbooks"),
    _spec("list_sheets", WorkbookArgs, _list_sheets, "List sheets with their 1-based index"),
    _spec("create_sheet", CreateSheetArgs, _create_sheet, "Add a sheet", True),
    _spec("delete_sheet", SheetArgs, _delete_sheet, "Delete a sheet by name or index", True),
    _spec("rename_sheet", RenameSheetArgs, _rename_sheet, "Rename a sheet", True),
    _spec("get_sheet_info", SheetArgs, _get_sheet_info, "Row and column counts of a sheet"),
    _spec("read_cell", CellArgs, _read_cell, "Read a cell's value, calculated value and formula"),
    _spec("write_cell", WriteCellArgs, _write_cell, "Write a value or formula to a cell", True),
    _spec("read_range", RangeArgs, _read_range, "Read calculated values of a range"),
    _spec("write_range", WriteRangeArgs, _write_range, "Write a 2D array of values starting at a cell", True),
    _spec("list_columns", SheetArgs, _list_columns, "List header cells in row 1"),
    _spec("get_formula", CellArgs, _get_formula, "Get the formula text of a cell"),
    _spec("recalculate", WorkbookArgs, _recalculate, "Resync every sheet into the engine and recalculate", True),
    _spec("create_pivot_table", PivotTableArgs, _create_pivot_table, "Group and aggregate a range into a new grid", True),
    _spec("create_chart", CreateChartArgs, _create_chart, "Create a bar, line, pie or scatter chart", True),
    _spec("delete_chart", DeleteChartArgs, _delete_chart, "Delete a chart created in this session", True),
    _spec("list_charts", ListChartsArgs, _list_charts, "List charts created in this session"),
    _spec("import_markdown_table", ImportMarkdownArgs, _import_markdown_table, "Import a markdown table at A1", True),
    _spec("validate_workbook", WorkbookArgs, _validate_workbook, "Check that the document and engine agree"),
]}


def list_tools() -> list[dict[str, Any]]:
    return [
        {
            "name": spec.name,
            "description": spec.description,
            "mutating": spec.mutating,
            "input_schema": spec.args_model.model_json_schema(),
        }
        for spec in TOOLS.values()
    ]


def call_tool(
    registry: WorkbookRegistry,
    name: str,
    args: dict[str, Any] | None = None,
    *,
    policy: Policy | None = None,
) -> ResponseEnvelope:
    """Run one tool call. Never raises; failures come back as error envelopes."""
    emitter = registry.emitter
    args = args if args is not None else {}
    if not isinstance(args, dict):
        return error_envelope(name, "ERR_INVALID_ARGUMENT", "Tool arguments must be an object")
    handle = args.get("workbook_id") or args.get("workbookId")
    raw_target = Target(workbook_id=str(handle) if handle is not None else None)
    spec = TOOLS.get(name)
    if spec is None:
        return error_envelope(name, "ERR_UNKNOWN_TOOL", f"Unknown tool: {name}", target=raw_target)

    emitter.emit("tool.called", {"tool": name, "workbook_id": raw_target.workbook_id})
    output: ToolOutput | None = None
    failure: Exception | None = None
    with Timer() as timer:
        try:
            parsed = spec.args_model.model_validate(args)
            if policy is not None:
                violations = check_tool_policy(policy, name, parsed, registry)
                if violations:
                    raise PolicyViolationError(violations[0]["message"], violations)
            output = spec.handler(registry, parsed)
        except Exception as e:
            failure = e

    warnings = registry.drain_warnings()
    if failure is not None:
        code = error_code_for(failure)
        emitter.emit("tool.failed", {"tool": name, "code": code, "message": str(failure)})
        return error_envelope(
            name,
            code,
            str(failure),
            target=raw_target,
            details=error_details_for(failure),
            warnings=warnings,
            duration_ms=timer.elapsed_ms,
        )
    return success_envelope(
        name,
        output.result,
        target=output.target or raw_target,
        changes=output.changes,
        warnings=warnings,
        duration_ms=timer.elapsed_ms,
    )
