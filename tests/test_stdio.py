"""Tests for the stdio JSON-lines server."""

from __future__ import annotations

import io
import json

from xlcalc.adapters.formulas_engine import EngineConfig
from xlcalc.engine.registry import WorkbookRegistry
from xlcalc.server.stdio import StdioServer
from xlcalc.validation.policy import Policy


def _serve(*lines: str, policy: Policy | None = None) -> list[dict]:
    registry = WorkbookRegistry()
    out = io.StringIO()
    StdioServer(registry, policy=policy).run(io.StringIO("\n".join(lines) + "\n"), out)
    assert len(registry) == 0
    return [json.loads(line) for line in out.getvalue().splitlines()]


def test_session_over_stdio():
    responses = _serve(
        '{"id": 1, "tool": "create_workbook"}',
        '{"id": 2, "tool": "write_cell", "args": {"workbookId": "wb_1", "sheet": "Sheet1", "cell": "A1", "value": 2}}',
        '{"id": 3, "tool": "write_cell", "args": {"workbookId": "wb_1", "sheet": "Sheet1", "cell": "A2", "value": "=A1^10"}}',
        '{"id": 4, "tool": "read_cell", "args": {"workbookId": "wb_1", "sheet": "Sheet1", "cell": "A2"}}',
    )
    assert [r["id"] for r in responses] == [1, 2, 3, 4]
    assert all(r["ok"] for r in responses)
    assert responses[0]["result"] == {"workbook_id": "wb_1"}
    assert responses[3]["result"]["calculated_value"] == 1024
    assert responses[3]["command"] == "read_cell"


def test_blank_lines_are_skipped():
    responses = _serve("", '{"id": "a", "tool": "list_workbooks"}', "   ")
    assert len(responses) == 1
    assert responses[0]["result"] == []


def test_invalid_json_keeps_serving():
    responses = _serve("{not json", '{"id": 2, "tool": "list_workbooks"}')
    assert responses[0]["id"] is None
    assert responses[0]["errors"][0]["code"] == "ERR_INVALID_JSON"
    assert responses[1]["ok"] is True


def test_malformed_requests():
    responses = _serve("[1, 2]", '{"id": 5}', '{"id": 6, "tool": "nope"}')
    assert responses[0]["errors"][0]["code"] == "ERR_INVALID_ARGUMENT"
    assert (responses[1]["id"], responses[1]["ok"]) == (5, False)
    assert responses[1]["errors"][0]["code"] == "ERR_INVALID_ARGUMENT"
    assert responses[2]["errors"][0]["code"] == "ERR_UNKNOWN_TOOL"


def test_list_tools_request():
    responses = _serve('{"id": 1, "tool": "list_tools"}')
    names = [t["name"] for t in responses[0]["result"]]
    assert "create_pivot_table" in names


def test_policy_applies_to_requests():
    responses = _serve(
        '{"id": 1, "tool": "create_workbook"}',
        '{"id": 2, "tool": "list_sheets", "args": {"workbook_id": "wb_1"}}',
        policy=Policy(allowed_tools=["create_workbook"]),
    )
    assert responses[0]["ok"] is True
    assert responses[1]["errors"][0]["code"] == "ERR_POLICY_VIOLATION"


def test_server_keeps_configured_registry():
    registry = WorkbookRegistry(config=EngineConfig(cycle_error="#CIRC!"))
    server = StdioServer(registry)
    assert server.registry is registry

    out = io.StringIO()
    server.run(io.StringIO("\n".join([
        '{"id": 1, "tool": "create_workbook"}',
        '{"id": 2, "tool": "write_cell", "args": {"workbookId": "wb_1", "sheet": 1, "cell": "A1", "value": "=A1+1"}}',
        '{"id": 3, "tool": "read_cell", "args": {"workbookId": "wb_1", "sheet": 1, "cell": "A1"}}',
    ]) + "\n"), out)
    responses = [json.loads(line) for line in out.getvalue().splitlines()]
    assert responses[2]["result"]["calculated_value"] == "#CIRC!"
