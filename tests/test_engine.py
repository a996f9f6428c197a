"""Tests for the formulas-backed calculation engine."""

from __future__ import annotations

import pytest

from xlcalc.adapters.formulas_engine import CalcEngine, EngineConfig, SheetDimensions


@pytest.fixture()
def engine() -> CalcEngine:
    eng = CalcEngine.build_empty()
    eng.add_sheet("Sheet1")
    yield eng
    eng.destroy()


def test_literals_round_trip(engine: CalcEngine):
    sid = engine.get_sheet_id("Sheet1")
    engine.set_cell_content(sid, 0, 0, 5)
    engine.set_cell_content(sid, 0, 1, "text")
    engine.set_cell_content(sid, 0, 2, True)
    assert engine.get_cell_value(sid, 0, 0) == 5
    assert engine.get_cell_value(sid, 0, 1) == "text"
    assert engine.get_cell_value(sid, 0, 2) is True
    assert engine.get_cell_value(sid, 5, 5) is None


def test_sum_formula(engine: CalcEngine):
    sid = engine.get_sheet_id("Sheet1")
    engine.set_cell_content(sid, 0, 0, 5)
    engine.set_cell_content(sid, 1, 0, 10)
    engine.set_cell_content(sid, 2, 0, "=SUM(A1:A2)")
    assert engine.get_cell_value(sid, 2, 0) == 15
    assert engine.get_cell_content(sid, 2, 0) == "=SUM(A1:A2)"


def test_formula_chain_updates_after_write(engine: CalcEngine):
    sid = engine.get_sheet_id("Sheet1")
    engine.set_cell_contents(sid, 0, 0, [[2, 3, "=A1*B1"], [None, None, "=C1+1"]])
    assert engine.get_cell_value(sid, 1, 2) == 7
    engine.set_cell_content(sid, 0, 0, 10)
    assert engine.get_cell_value(sid, 0, 2) == 30
    assert engine.get_cell_value(sid, 1, 2) == 31


def test_cross_sheet_reference(engine: CalcEngine):
    data = engine.add_sheet("Data")
    engine.set_cell_content(data, 0, 0, 21)
    sid = engine.get_sheet_id("Sheet1")
    engine.set_cell_content(sid, 0, 0, "=Data!A1*2")
    assert engine.get_cell_value(sid, 0, 0) == 42


def test_unknown_sheet_reference_gives_ref_error(engine: CalcEngine):
    sid = engine.get_sheet_id("Sheet1")
    engine.set_cell_content(sid, 0, 0, "=Missing!A1")
    assert engine.get_cell_value(sid, 0, 0) == "#REF!"


def test_circular_reference(engine: CalcEngine):
    sid = engine.get_sheet_id("Sheet1")
    engine.set_cell_content(sid, 0, 0, "=B1")
    engine.set_cell_content(sid, 0, 1, "=A1")
    assert engine.get_cell_value(sid, 0, 0) == "#CYCLE!"
    assert engine.get_cell_value(sid, 0, 1) == "#CYCLE!"


def test_self_reference(engine: CalcEngine):
    sid = engine.get_sheet_id("Sheet1")
    engine.set_cell_content(sid, 0, 0, "=A1+1")
    assert engine.get_cell_value(sid, 0, 0) == "#CYCLE!"


def test_shared_dependency_is_not_a_cycle(engine: CalcEngine):
    sid = engine.get_sheet_id("Sheet1")
    # C1 needs A1 and B1; B1 also needs A1
    engine.set_cell_contents(sid, 0, 0, [["=1+1", "=A1*10", "=A1+B1"]])
    assert engine.get_cell_value(sid, 0, 2) == 22


def test_configured_error_values():
    eng = CalcEngine.build_empty(EngineConfig(cycle_error="#CIRC!"))
    sid = eng.add_sheet("S")
    eng.set_cell_content(sid, 0, 0, "=A1")
    assert eng.get_cell_value(sid, 0, 0) == "#CIRC!"
    eng.destroy()


def test_unparseable_formula_yields_error_value(engine: CalcEngine):
    sid = engine.get_sheet_id("Sheet1")
    engine.set_cell_content(sid, 0, 0, "=SUM(")
    value = engine.get_cell_value(sid, 0, 0)
    assert isinstance(value, str) and value.startswith("#")


def test_division_by_zero(engine: CalcEngine):
    sid = engine.get_sheet_id("Sheet1")
    engine.set_cell_content(sid, 0, 0, "=1/0")
    assert engine.get_cell_value(sid, 0, 0) == "#DIV/0!"


def test_dimensions(engine: CalcEngine):
    sid = engine.get_sheet_id("Sheet1")
    assert engine.get_sheet_dimensions(sid) == SheetDimensions(width=0, height=0)
    engine.set_cell_content(sid, 3, 1, "x")
    assert engine.get_sheet_dimensions(sid) == SheetDimensions(width=2, height=4)
    engine.set_cell_content(sid, 3, 1, None)
    assert engine.get_sheet_dimensions(sid) == SheetDimensions(width=0, height=0)


def test_set_sheet_content_replaces_everything(engine: CalcEngine):
    sid = engine.get_sheet_id("Sheet1")
    engine.set_cell_content(sid, 9, 9, "old")
    engine.set_sheet_content(sid, [[1, 2], [3, None]])
    assert engine.get_cell_value(sid, 9, 9) is None
    assert engine.get_sheet_dimensions(sid) == SheetDimensions(width=2, height=2)


def test_sheet_lifecycle(engine: CalcEngine):
    other = engine.add_sheet("Other")
    assert engine.sheet_names() == ["Sheet1", "Other"]
    engine.rename_sheet(other, "Renamed")
    assert engine.get_sheet_id("Renamed") == other
    assert engine.get_sheet_id("Other") is None
    engine.remove_sheet(other)
    assert engine.sheet_names() == ["Sheet1"]


def test_sheet_names_are_case_sensitive(engine: CalcEngine):
    assert engine.get_sheet_id("sheet1") is None
    with pytest.raises(ValueError):
        engine.add_sheet("Sheet1")


def test_rejects_unsupported_content(engine: CalcEngine):
    sid = engine.get_sheet_id("Sheet1")
    with pytest.raises(TypeError):
        engine.set_cell_content(sid, 0, 0, object())


def test_unknown_sheet_id(engine: CalcEngine):
    with pytest.raises(ValueError):
        engine.get_cell_value(99, 0, 0)


def test_destroyed_engine_refuses_calls():
    eng = CalcEngine.build_empty()
    eng.add_sheet("S")
    eng.destroy()
    with pytest.raises(RuntimeError):
        eng.sheet_names()
