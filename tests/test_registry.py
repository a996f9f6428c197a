"""Tests for WorkbookRegistry lifecycle."""

from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from xlcalc.contracts.common import FileFormatError, WorkbookNotFoundError
from xlcalc.engine.registry import WorkbookRegistry
from xlcalc.observe.events import EventEmitter


def test_create_allocates_fresh_handles(registry: WorkbookRegistry):
    first = registry.create()
    second = registry.create()
    assert (first, second) == ("wb_1", "wb_2")
    session = registry.get(first)
    assert session.sheet_names() == ["Sheet1"]
    assert session.engine.sheet_names() == ["Sheet1"]


def test_handles_are_never_reused(registry: WorkbookRegistry):
    first = registry.create()
    registry.close(first)
    assert registry.create() == "wb_2"


def test_get_unknown_handle(registry: WorkbookRegistry):
    with pytest.raises(WorkbookNotFoundError):
        registry.get("wb_404")


def test_close_twice_fails(registry: WorkbookRegistry):
    h = registry.create()
    registry.close(h)
    with pytest.raises(WorkbookNotFoundError):
        registry.close(h)
    with pytest.raises(WorkbookNotFoundError):
        registry.get(h)


def test_list_preserves_insertion_order(registry: WorkbookRegistry, sales_workbook: Path):
    a = registry.create()
    b = registry.open(sales_workbook)
    listing = registry.list()
    assert [w.id for w in listing] == [a, b]
    assert listing[0].path is None
    assert listing[0].sheet_count == 1
    assert listing[1].path == str(sales_workbook.resolve())
    assert listing[1].sheet_count == 2


def test_open_registers_every_sheet_in_engine(registry: WorkbookRegistry, sales_workbook: Path):
    session = registry.get(registry.open(sales_workbook))
    assert session.engine.sheet_names() == ["Sales", "Summary"]
    sales = session.engine.get_sheet_id("Sales")
    summary = session.engine.get_sheet_id("Summary")
    assert session.engine.get_cell_value(sales, 1, 3) == 250
    assert session.engine.get_cell_value(summary, 0, 1) == pytest.approx(575)


def test_open_missing_file(registry: WorkbookRegistry, tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        registry.open(tmp_path / "nope.xlsx")
    assert len(registry) == 0


def test_open_corrupt_file(registry: WorkbookRegistry, corrupt_file: Path):
    with pytest.raises(FileFormatError):
        registry.open(corrupt_file)


def test_close_all(registry: WorkbookRegistry):
    registry.create()
    registry.create()
    registry.close_all()
    assert registry.list() == []


def test_lifecycle_events():
    stream = io.StringIO()
    reg = WorkbookRegistry(emitter=EventEmitter(enabled=True, stream=stream))
    h = reg.create()
    reg.close(h)
    events = [json.loads(line) for line in stream.getvalue().splitlines()]
    assert [e["event"] for e in events] == ["workbook.created", "workbook.closed"]
    assert events[0]["data"]["workbook_id"] == h
