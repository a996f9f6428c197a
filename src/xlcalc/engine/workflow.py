"""Workflow engine for ``xlcalc run``: executes YAML workflow specs."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from xlcalc.contracts.workflow import WorkflowSpec
from xlcalc.engine.registry import WorkbookRegistry
from xlcalc.engine.tools import TOOLS, call_tool
from xlcalc.io.fileops import read_text_safe
from xlcalc.validation.policy import Policy

# Steps whose result carries a handle later steps default to.
_HANDLE_PRODUCERS = frozenset({"create_workbook", "open_workbook", "import_markdown_table"})


def load_workflow(path: str | Path) -> WorkflowSpec:
    """Load a workflow definition from a YAML file."""
    text = read_text_safe(path)
    data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError("Workflow YAML must be a mapping/object.")

    allowed_keys = {"schema_version", "name", "defaults", "steps"}
    unknown_keys = sorted(set(data) - allowed_keys)
    if unknown_keys:
        raise ValueError(f"Unknown workflow keys: {', '.join(unknown_keys)}")

    steps = data.get("steps")
    if not isinstance(steps, list):
        raise ValueError("Workflow must define 'steps' as an array.")
    if not steps:
        raise ValueError("Workflow must contain at least one step.")

    return WorkflowSpec(**data)


def _accepts_handle(tool: str) -> bool:
    return "workbook_id" in TOOLS[tool].args_model.model_fields


def execute_workflow(
    workflow: WorkflowSpec,
    registry: WorkbookRegistry | None = None,
    *,
    policy: Policy | None = None,
) -> dict[str, Any]:
    """Run every step in order against one registry, then close all sessions."""
    if registry is None:
        registry = WorkbookRegistry()
    results: list[dict[str, Any]] = []
    current: str | None = None

    try:
        for step in workflow.steps:
            args = dict(step.args)
            if current and _accepts_handle(step.run) and "workbook_id" not in args and "workbookId" not in args:
                args["workbook_id"] = current

            envelope = call_tool(registry, step.run, args, policy=policy)
            step_result: dict[str, Any] = {"step_id": step.id, "run": step.run, "ok": envelope.ok}
            if envelope.ok:
                step_result["result"] = envelope.model_dump(mode="json")["result"]
                if step.run in _HANDLE_PRODUCERS:
                    current = envelope.result["workbook_id"]
            else:
                error = envelope.errors[0]
                step_result["error"] = {"code": error.code, "message": error.message}
            if envelope.warnings:
                step_result["warnings"] = [w.model_dump() for w in envelope.warnings]
            results.append(step_result)

            if not envelope.ok and workflow.defaults.stop_on_error:
                break
    finally:
        registry.close_all()

    return {
        "workflow": workflow.name,
        "steps_total": len(workflow.steps),
        "steps_passed": sum(1 for r in results if r["ok"]),
        "ok": all(r["ok"] for r in results) and len(results) == len(workflow.steps),
        "steps": results,
    }
