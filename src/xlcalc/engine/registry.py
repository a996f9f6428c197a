"""WorkbookRegistry: the table of open sessions, keyed by handle."""

from __future__ import annotations

from pathlib import Path

from openpyxl.workbook import Workbook

from xlcalc.adapters.formulas_engine import CalcEngine, EngineConfig
from xlcalc.contracts.common import WarningDetail, WorkbookNotFoundError
from xlcalc.contracts.responses import WorkbookSummary
from xlcalc.engine.context import WorkbookSession
from xlcalc.engine.sync import sync_sheet_to_engine
from xlcalc.io.xlsx import load_workbook
from xlcalc.observe.events import EventEmitter

DEFAULT_SHEET = "Sheet1"


class WorkbookRegistry:
    """Creates, looks up and disposes sessions.

    Handles are ``wb_1``, ``wb_2``, ... and are never reissued, even after the
    session they named has been closed. Sessions live until closed.
    """

    def __init__(self, config: EngineConfig | None = None, emitter: EventEmitter | None = None) -> None:
        self.config = config or EngineConfig()
        self.emitter = emitter or EventEmitter()
        self._sessions: dict[str, WorkbookSession] = {}
        self._issued = 0

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, handle: object) -> bool:
        return handle in self._sessions

    def _mint(self) -> str:
        self._issued += 1
        return f"wb_{self._issued}"

    def create(self) -> str:
        """New empty workbook with a single ``Sheet1`` in both stores."""
        wb = Workbook()
        wb.active.title = DEFAULT_SHEET
        engine = CalcEngine.build_empty(self.config)
        engine.add_sheet(DEFAULT_SHEET)
        handle = self._mint()
        self._sessions[handle] = WorkbookSession(wb, engine, handle=handle, emitter=self.emitter)
        self.emitter.emit("workbook.created", {"workbook_id": handle})
        return handle

    def open(self, path: str | Path) -> str:
        """Load a workbook and rebuild its engine state sheet by sheet."""
        wb = load_workbook(path)
        engine = CalcEngine.build_empty(self.config)
        session = WorkbookSession(wb, engine, path=path, emitter=self.emitter)
        try:
            for ws in wb.worksheets:
                engine.add_sheet(ws.title)
                sync_sheet_to_engine(session, ws)
        except Exception:
            session.close()
            raise
        handle = self._mint()
        session.handle = handle
        self._sessions[handle] = session
        self.emitter.emit("workbook.opened", {
            "workbook_id": handle,
            "path": str(session.path),
            "sheets": len(wb.worksheets),
        })
        return handle

    def get(self, handle: str) -> WorkbookSession:
        try:
            return self._sessions[handle]
        except KeyError:
            raise WorkbookNotFoundError(f"Workbook not found: {handle}") from None

    def close(self, handle: str) -> None:
        session = self.get(handle)
        del self._sessions[handle]
        session.close()
        self.emitter.emit("workbook.closed", {"workbook_id": handle})

    def list(self) -> list[WorkbookSummary]:
        return [
            WorkbookSummary(
                id=handle,
                path=str(session.path) if session.path else None,
                sheet_count=len(session.wb.worksheets),
            )
            for handle, session in self._sessions.items()
        ]

    def drain_warnings(self) -> list[WarningDetail]:
        """Collect and clear pending warnings from every open session."""
        warnings: list[WarningDetail] = []
        for session in self._sessions.values():
            warnings.extend(session.drain_warnings())
        return warnings

    def close_all(self) -> None:
        for handle in list(self._sessions):
            self.close(handle)
