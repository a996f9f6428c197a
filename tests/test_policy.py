"""Tests for policy checks."""

from __future__ import annotations

from xlcalc.contracts.tools import CellArgs, ImportMarkdownArgs, PivotTableArgs, WriteCellArgs, WriteRangeArgs
from xlcalc.engine.registry import WorkbookRegistry
from xlcalc.validation.policy import Policy, check_tool_policy


def _types(violations):
    return [v["type"] for v in violations]


def test_empty_policy_allows_everything():
    args = WriteCellArgs(workbook_id="wb_1", sheet="Data", cell="A1", value=1)
    assert check_tool_policy(Policy(), "write_cell", args) == []


def test_allowed_tools():
    args = WriteCellArgs(workbook_id="wb_1", sheet="Data", cell="A1", value=1)
    policy = Policy(allowed_tools=["read_cell"])
    assert _types(check_tool_policy(policy, "write_cell", args)) == ["tool_not_allowed"]


def test_protected_sheet_by_name_and_index(registry: WorkbookRegistry, handle: str):
    policy = Policy(protected_sheets=["Sheet1"])
    by_name = WriteCellArgs(workbook_id=handle, sheet="Sheet1", cell="A1", value=1)
    by_index = WriteCellArgs(workbook_id=handle, sheet=1, cell="A1", value=1)
    assert _types(check_tool_policy(policy, "write_cell", by_name, registry)) == ["protected_sheet"]
    assert _types(check_tool_policy(policy, "write_cell", by_index, registry)) == ["protected_sheet"]


def test_unresolvable_index_is_left_to_the_tool(registry: WorkbookRegistry, handle: str):
    policy = Policy(protected_sheets=["Sheet1"])
    args = WriteCellArgs(workbook_id=handle, sheet=7, cell="A1", value=1)
    assert check_tool_policy(policy, "write_cell", args, registry) == []


def test_reads_are_not_protected():
    policy = Policy(protected_sheets=["Sheet1"])
    args = CellArgs(workbook_id="wb_1", sheet="Sheet1", cell="A1")
    assert check_tool_policy(policy, "read_cell", args) == []


def test_import_and_pivot_destinations():
    policy = Policy(protected_sheets=["Sheet1", "Report"])
    imported = ImportMarkdownArgs(markdown="| a |\n|---|")
    pivot = PivotTableArgs(
        workbook_id="wb_1", source_sheet="Data", source_range="A1:B2", destination_sheet="Report"
    )
    assert _types(check_tool_policy(policy, "import_markdown_table", imported)) == ["protected_sheet"]
    assert _types(check_tool_policy(policy, "create_pivot_table", pivot)) == ["protected_sheet"]


def test_max_cells_threshold():
    policy = Policy(mutation_thresholds={"max_cells": 3})
    small = WriteRangeArgs(workbook_id="wb_1", sheet="S", start_cell="A1", values=[[1, 2, 3]])
    large = WriteRangeArgs(workbook_id="wb_1", sheet="S", start_cell="A1", values=[[1, 2], [3, 4]])
    assert check_tool_policy(policy, "write_range", small) == []
    violations = check_tool_policy(policy, "write_range", large)
    assert _types(violations) == ["mutation_threshold"]
    assert "4 cells" in violations[0]["message"]
