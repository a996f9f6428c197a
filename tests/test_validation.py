"""Tests for document/engine consistency checks."""

from __future__ import annotations

from pathlib import Path

from xlcalc.engine.context import WorkbookSession
from xlcalc.engine.registry import WorkbookRegistry
from xlcalc.validation.validators import MAX_REPORTED_MISMATCHES, check_consistency


def _check(result, check_type, sheet=None):
    return next(c for c in result.checks if c["type"] == check_type and c.get("sheet") == sheet)


def test_opened_workbook_is_consistent(registry: WorkbookRegistry, sales_workbook: Path):
    result = check_consistency(registry.get(registry.open(sales_workbook)))
    assert result.valid is True
    assert _check(result, "sheet_order")["engine"] == ["Sales", "Summary"]


def test_missing_engine_sheet(session: WorkbookSession):
    session.create_sheet("Data")
    session.engine.remove_sheet(session.engine.get_sheet_id("Data"))
    result = check_consistency(session)
    assert result.valid is False
    assert _check(result, "sheet_sets_match")["missing_in_engine"] == ["Data"]


def test_content_mismatch(session: WorkbookSession):
    ws = session.resolve_sheet(1)
    ws["B2"] = 5  # document only
    result = check_consistency(session)
    check = _check(result, "content_match", "Sheet1")
    assert check["passed"] is False
    assert check["mismatches"] == [{"cell": "B2", "document": 5, "engine": None}]


def test_type_mismatch_is_reported(session: WorkbookSession):
    ws = session.resolve_sheet(1)
    ws["A1"] = 1
    session.engine.set_cell_content(session.engine.get_sheet_id("Sheet1"), 0, 0, True)
    check = _check(check_consistency(session), "content_match", "Sheet1")
    assert check["mismatch_count"] == 1


def test_mismatch_report_is_capped(session: WorkbookSession):
    ws = session.resolve_sheet(1)
    for row in range(1, 16):
        ws.cell(row=row, column=1).value = row
    check = _check(check_consistency(session), "content_match", "Sheet1")
    assert check["mismatch_count"] == 15
    assert len(check["mismatches"]) == MAX_REPORTED_MISMATCHES
