"""WorkbookSession: one openpyxl document paired with one calculation engine."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Union

from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from xlcalc.adapters.formulas_engine import CalcEngine
from xlcalc.contracts.common import (
    MissingFilePathError,
    SheetExistsError,
    SheetNotFoundError,
    Target,
    WarningDetail,
)
from xlcalc.contracts.responses import ChartMeta, SaveResult, SheetInfo, SheetMeta
from xlcalc.engine.sync import flag_desync, retarget_formulas, stored_cells, sync_to_document
from xlcalc.io.xlsx import save_workbook
from xlcalc.observe.events import EventEmitter


@dataclass(frozen=True)
class SheetByName:
    name: str


@dataclass(frozen=True)
class SheetByIndex:
    index: int  # 1-based position in the current sheet order


SheetRef = Union[SheetByName, SheetByIndex]


def parse_sheet_ref(value: str | int | SheetRef) -> SheetRef:
    """Integers select by position; strings always select by name."""
    if isinstance(value, (SheetByName, SheetByIndex)):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid sheet reference: {value!r}")
    if isinstance(value, int):
        return SheetByIndex(value)
    if isinstance(value, str):
        return SheetByName(value)
    raise ValueError(f"Invalid sheet reference: {value!r}")


@dataclass
class ChartEntry:
    meta: ChartMeta
    chart: Any


class WorkbookSession:
    """Owns a document, its engine instance, and the last known file path.

    Structural changes (add/remove/rename sheet) touch the document first and
    the engine second; if the engine step fails the document change is undone
    before the error propagates, so both stores always hold the same sheets.
    """

    def __init__(
        self,
        wb: Workbook,
        engine: CalcEngine,
        *,
        handle: str = "",
        path: str | Path | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        self.wb = wb
        self.engine = engine
        self.handle = handle
        self.path = Path(path).resolve() if path else None
        self.emitter = emitter or EventEmitter()
        self.warnings: list[WarningDetail] = []
        self.cached_results: dict[str, dict[str, Any]] = {}
        self.charts: dict[str, dict[str, ChartEntry]] = {}
        self.charts_created = 0

    def target(self, **overrides: str | None) -> Target:
        t = Target(workbook_id=self.handle, file=str(self.path) if self.path else None)
        for k, v in overrides.items():
            if v is not None:
                setattr(t, k, v)
        return t

    def drain_warnings(self) -> list[WarningDetail]:
        warnings, self.warnings = self.warnings, []
        return warnings

    # -- sheets -------------------------------------------------------------

    def sheet_names(self) -> list[str]:
        return [ws.title for ws in self.wb.worksheets]

    def resolve_sheet(self, ref: str | int | SheetRef) -> Worksheet:
        ref = parse_sheet_ref(ref)
        sheets = self.wb.worksheets
        if isinstance(ref, SheetByIndex):
            if 1 <= ref.index <= len(sheets):
                return sheets[ref.index - 1]
            raise SheetNotFoundError(
                f"Sheet index out of range: {ref.index} (workbook has {len(sheets)} sheets)"
            )
        for ws in sheets:
            if ws.title == ref.name:
                return ws
        raise SheetNotFoundError(f"Sheet not found: {ref.name}")

    def sheet_index(self, ws: Worksheet) -> int:
        return self.wb.worksheets.index(ws) + 1

    def list_sheets(self) -> list[SheetMeta]:
        return [SheetMeta(name=ws.title, index=i) for i, ws in enumerate(self.wb.worksheets, start=1)]

    def sheet_info(self, ws: Worksheet) -> SheetInfo:
        rows: set[int] = set()
        cols: set[int] = set()
        cells = stored_cells(ws)
        for cell in cells:
            if cell.value is not None and cell.value != "":
                rows.add(cell.row)
                cols.add(cell.column)
        empty = not cells
        return SheetInfo(
            name=ws.title,
            index=self.sheet_index(ws),
            row_count=0 if empty else ws.max_row,
            column_count=0 if empty else ws.max_column,
            actual_row_count=len(rows),
            actual_column_count=len(cols),
        )

    def _name_taken(self, name: str, *, ignore: Worksheet | None = None) -> bool:
        # openpyxl treats titles case-insensitively when de-duplicating
        folded = name.casefold()
        return any(ws.title.casefold() == folded for ws in self.wb.worksheets if ws is not ignore)

    def find_sheet(self, name: str) -> Worksheet | None:
        """The sheet titled ``name``, matching case-insensitively when no exact title exists."""
        folded = name.casefold()
        loose = None
        for ws in self.wb.worksheets:
            if ws.title == name:
                return ws
            if loose is None and ws.title.casefold() == folded:
                loose = ws
        return loose

    def create_sheet(self, name: str | None = None) -> Worksheet:
        if name is None:
            n = len(self.wb.worksheets) + 1
            name = f"Sheet{n}"
            while self._name_taken(name):
                n += 1
                name = f"Sheet{n}"
        elif self._name_taken(name):
            raise SheetExistsError(f"Sheet already exists: {name}")

        ws = self.wb.create_sheet(title=name)
        try:
            self.engine.add_sheet(name)
        except Exception:
            self.wb.remove(ws)
            raise
        self.emitter.emit("sheet.created", {"workbook_id": self.handle, "sheet": name})
        return ws

    def delete_sheet(self, ws: Worksheet) -> None:
        if len(self.wb.worksheets) <= 1:
            raise ValueError("Cannot delete the only sheet in a workbook")
        title = ws.title
        position = self.wb.index(ws)
        self.wb.remove(ws)
        sheet_id = self.engine.get_sheet_id(title)
        if sheet_id is None:
            flag_desync(self, title, "sheet not registered in engine")
        else:
            try:
                self.engine.remove_sheet(sheet_id)
            except Exception:
                self.wb._add_sheet(ws, position)
                raise
        self.cached_results.pop(title, None)
        self.charts.pop(title, None)
        self.emitter.emit("sheet.deleted", {"workbook_id": self.handle, "sheet": title})

    def rename_sheet(self, ws: Worksheet, new_name: str) -> None:
        old = ws.title
        if new_name == old:
            return
        if self._name_taken(new_name, ignore=ws):
            raise SheetExistsError(f"Sheet already exists: {new_name}")

        _set_title(ws, new_name)
        sheet_id = self.engine.get_sheet_id(old)
        if sheet_id is None:
            flag_desync(self, old, "sheet not registered in engine")
        else:
            try:
                self.engine.rename_sheet(sheet_id, new_name)
            except Exception:
                _set_title(ws, old)
                raise
        rewritten = retarget_formulas(self, old, new_name)

        if old in self.cached_results:
            self.cached_results[new_name] = self.cached_results.pop(old)
        if old in self.charts:
            entries = self.charts.pop(old)
            for entry in entries.values():
                entry.meta.sheet = new_name
            self.charts[new_name] = entries
        self.emitter.emit("sheet.renamed", {
            "workbook_id": self.handle,
            "from": old,
            "to": new_name,
            "formulas_rewritten": rewritten,
        })

    # -- persistence --------------------------------------------------------

    def save(self, path: str | Path | None = None, *, backup: bool = False) -> SaveResult:
        destination = path or self.path
        if not destination:
            raise MissingFilePathError(
                "No file path given and the workbook has no remembered path"
            )
        sync_to_document(self)
        saved, fp, backup_path = save_workbook(
            self.wb, destination, self.cached_results, make_backup=backup
        )
        self.path = Path(saved)
        self.emitter.emit("workbook.saved", {"workbook_id": self.handle, "path": saved})
        return SaveResult(path=saved, fingerprint=fp, backup_path=backup_path)

    def close(self) -> None:
        self.engine.destroy()
        self.wb.close()


def _set_title(ws: Worksheet, title: str) -> None:
    ws.title = title
    if ws.title != title:
        # openpyxl bumps a case-only rename ("Data" -> "DATA1"); step through a unique name
        ws.title = f"__rename_{id(ws)}__"
        ws.title = title
