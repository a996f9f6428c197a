"""Consistency checks between a session's document and its calculation engine."""

from __future__ import annotations

from typing import Any

from xlcalc.contracts.responses import ValidationResult
from xlcalc.engine.address import format_reference
from xlcalc.engine.context import WorkbookSession
from xlcalc.engine.sync import stored_cells, to_engine_content

MAX_REPORTED_MISMATCHES = 10


def _document_contents(ws: Any) -> dict[tuple[int, int], Any]:
    contents: dict[tuple[int, int], Any] = {}
    for cell in stored_cells(ws):
        content = to_engine_content(cell.value)
        if content is not None:
            contents[(cell.row - 1, cell.column - 1)] = content
    return contents


def check_consistency(session: WorkbookSession) -> ValidationResult:
    """Compare sheet sets, sheet order and per-sheet content of both stores."""
    checks: list[dict[str, Any]] = []
    engine = session.engine
    doc_sheets = session.sheet_names()
    engine_sheets = engine.sheet_names()

    missing = [s for s in doc_sheets if s not in engine_sheets]
    extra = [s for s in engine_sheets if s not in doc_sheets]
    checks.append({
        "type": "sheet_sets_match",
        "passed": not missing and not extra,
        "missing_in_engine": missing,
        "extra_in_engine": extra,
    })
    checks.append({
        "type": "sheet_order",
        "severity": "info",
        "passed": True,
        "document": doc_sheets,
        "engine": engine_sheets,
    })

    for ws in session.wb.worksheets:
        sheet_id = engine.get_sheet_id(ws.title)
        if sheet_id is None:
            continue
        doc = _document_contents(ws)
        calc = {(r, c): content for r, c, content in engine.iter_contents(sheet_id)}
        mismatches: list[dict[str, Any]] = []
        for key in sorted(doc.keys() | calc.keys()):
            if doc.get(key) != calc.get(key) or type(doc.get(key)) is not type(calc.get(key)):
                mismatches.append({
                    "cell": format_reference(key[0] + 1, key[1] + 1),
                    "document": doc.get(key),
                    "engine": calc.get(key),
                })
        checks.append({
            "type": "content_match",
            "sheet": ws.title,
            "passed": not mismatches,
            "mismatch_count": len(mismatches),
            "mismatches": mismatches[:MAX_REPORTED_MISMATCHES],
        })

    valid = all(c["passed"] for c in checks)
    return ValidationResult(valid=valid, checks=checks)
