"""Tests for the document/engine sync layer."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

import openpyxl
import pytest

from xlcalc.engine.address import parse_range
from xlcalc.engine.context import WorkbookSession
from xlcalc.engine.registry import WorkbookRegistry
from xlcalc.engine.sync import (
    read_block,
    read_calculated,
    sync_to_document,
    to_engine_content,
    write_block,
    write_cell,
)


class TestCoercion:
    def test_plain_values_pass_through(self):
        assert to_engine_content(None) is None
        assert to_engine_content(True) is True
        assert to_engine_content(3) == 3
        assert to_engine_content(2.5) == 2.5
        assert to_engine_content("=A1") == "=A1"

    def test_dates_become_serial_numbers(self):
        assert to_engine_content(date(2024, 1, 15)) == 45306
        assert to_engine_content(datetime(2024, 1, 15, 12)) == pytest.approx(45306.5)

    def test_decimal_becomes_float(self):
        assert to_engine_content(Decimal("1.25")) == 1.25

    def test_unknown_types_use_display_string(self):
        class Odd:
            def __str__(self) -> str:
                return "odd"

        assert to_engine_content(Odd()) == "odd"


def test_write_cell_updates_both_stores(session: WorkbookSession):
    ws = session.resolve_sheet(1)
    assert write_cell(session, ws, 1, 1, 4) is None
    write_cell(session, ws, 1, 2, "=A1*10")
    assert ws["B1"].value == "=A1*10"
    assert read_calculated(session, ws, 1, 2) == 40
    assert write_cell(session, ws, 1, 1, 5) == 4
    assert read_calculated(session, ws, 1, 2) == 50


def test_write_block_ragged(session: WorkbookSession):
    ws = session.resolve_sheet(1)
    written = write_block(session, ws, 2, 2, [[1, 2, 3], [4]])
    assert written == 4
    assert read_block(session, ws, parse_range("B2:D3")) == [[1, 2, 3], [4, None, None]]


def test_read_block_of_empty_cells_does_not_grow_sheet(session: WorkbookSession):
    ws = session.resolve_sheet(1)
    assert read_block(session, ws, parse_range("A1:C3")) == [[None] * 3] * 3
    assert not ws._cells


def test_opened_dates_read_as_serials(registry: WorkbookRegistry, sales_workbook: Path):
    session = registry.get(registry.open(sales_workbook))
    ws = session.resolve_sheet("Sales")
    assert read_calculated(session, ws, 1, 6) == 45306


def test_missing_engine_sheet_falls_back_with_warning(session: WorkbookSession):
    ws = session.resolve_sheet(1)
    write_cell(session, ws, 1, 1, "kept")
    session.engine.remove_sheet(session.engine.get_sheet_id("Sheet1"))

    assert read_calculated(session, ws, 1, 1) == "kept"
    warnings = session.drain_warnings()
    assert [w.code for w in warnings] == ["WARN_ENGINE_DESYNC"]
    assert warnings[0].path == "Sheet1"


def test_sync_to_document_collects_formula_results(registry: WorkbookRegistry, sales_workbook: Path):
    session = registry.get(registry.open(sales_workbook))
    assert sync_to_document(session) == 4
    assert session.cached_results["Sales"]["D2"] == 250
    assert session.cached_results["Summary"]["B1"] == pytest.approx(575)


def test_saved_file_carries_calculated_values(registry: WorkbookRegistry, sales_workbook: Path, tmp_path: Path):
    session = registry.get(registry.open(sales_workbook))
    write_cell(session, session.resolve_sheet("Sales"), 2, 3, 100)  # Qty of the first Widget
    out = tmp_path / "out.xlsx"
    session.save(out)

    values = openpyxl.load_workbook(str(out), data_only=True)
    assert values["Sales"]["D2"].value == 2500
    assert values["Summary"]["B1"].value == pytest.approx(2825)
    formulas = openpyxl.load_workbook(str(out))
    assert formulas["Summary"]["B1"].value == "=SUM(Sales!D2:D4)"
