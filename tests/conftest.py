"""Shared test fixtures."""

from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest
from openpyxl import Workbook

from xlcalc.engine.context import WorkbookSession
from xlcalc.engine.registry import WorkbookRegistry

SALES_ROWS = [
    ["Item", "Price", "Qty"],
    ["Widget", 25, 10],
    ["Gadget", 15.5, 20],
    ["Widget", 5, 3],
]


@pytest.fixture()
def registry() -> WorkbookRegistry:
    reg = WorkbookRegistry()
    yield reg
    reg.close_all()


@pytest.fixture()
def handle(registry: WorkbookRegistry) -> str:
    return registry.create()


@pytest.fixture()
def session(registry: WorkbookRegistry, handle: str) -> WorkbookSession:
    return registry.get(handle)


@pytest.fixture()
def sales_workbook(tmp_path: Path) -> Path:
    """A workbook with a Sales data sheet and a Summary sheet of formulas."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Sales"
    for row in SALES_ROWS:
        ws.append(row)
    ws["D1"] = "Total"
    ws["D2"] = "=B2*C2"
    ws["D3"] = "=B3*C3"
    ws["D4"] = "=B4*C4"
    ws["F1"] = date(2024, 1, 15)

    summary = wb.create_sheet("Summary")
    summary["A1"] = "Revenue"
    summary["B1"] = "=SUM(Sales!D2:D4)"

    path = tmp_path / "sales.xlsx"
    wb.save(str(path))
    wb.close()
    return path


@pytest.fixture()
def three_sheet_workbook(tmp_path: Path) -> Path:
    wb = Workbook()
    wb.active.title = "One"
    wb.active["A1"] = "first"
    wb.create_sheet("Two")["A1"] = "second"
    wb.create_sheet("Three")["A1"] = "third"
    path = tmp_path / "three.xlsx"
    wb.save(str(path))
    wb.close()
    return path


@pytest.fixture()
def corrupt_file(tmp_path: Path) -> Path:
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"this is not a zip archive")
    return path
