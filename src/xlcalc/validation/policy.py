"""Policy rules: allowed tools, protected sheets, mutation thresholds."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from xlcalc.contracts.common import XlcalcError

if TYPE_CHECKING:
    from xlcalc.engine.registry import WorkbookRegistry


class Policy(BaseModel):
    """The ``policy:`` section of ``xlcalc.yaml``."""

    model_config = ConfigDict(extra="forbid")

    protected_sheets: list[str] = Field(default_factory=list)
    mutation_thresholds: dict[str, int] = Field(default_factory=dict)
    allowed_tools: list[str] = Field(default_factory=list)


# Mutating tools whose ``sheet`` argument names the sheet they change.
_SHEET_MUTATIONS = frozenset({
    "write_cell", "write_range", "delete_sheet", "rename_sheet",
    "create_chart", "delete_chart",
})


def _sheet_name(registry: "WorkbookRegistry | None", workbook_id: str | None, sheet: Any) -> Any:
    """Resolve an index to a sheet name; unresolvable refs are returned as given."""
    if registry is None or not isinstance(sheet, int) or workbook_id is None:
        return sheet
    try:
        return registry.get(workbook_id).resolve_sheet(sheet).title
    except XlcalcError:
        # the tool call itself reports the bad handle or index
        return sheet


def _target_sheets(tool: str, args: BaseModel, registry: "WorkbookRegistry | None") -> list[Any]:
    workbook_id = getattr(args, "workbook_id", None)
    if tool in _SHEET_MUTATIONS:
        return [_sheet_name(registry, workbook_id, args.sheet)]
    if tool == "import_markdown_table":
        return [args.sheet_name or "Sheet1"]
    if tool == "create_pivot_table" and args.destination_sheet:
        return [args.destination_sheet]
    return []


def check_tool_policy(
    policy: Policy,
    tool: str,
    args: BaseModel,
    registry: "WorkbookRegistry | None" = None,
) -> list[dict[str, Any]]:
    """Check one validated tool call against policy rules. Returns list of violations."""
    violations: list[dict[str, Any]] = []

    if policy.allowed_tools and tool not in policy.allowed_tools:
        violations.append({
            "type": "tool_not_allowed",
            "severity": "error",
            "message": f"Tool '{tool}' is not in the allowed tool list",
        })

    for sheet in _target_sheets(tool, args, registry):
        if sheet in policy.protected_sheets:
            violations.append({
                "type": "protected_sheet",
                "severity": "error",
                "message": f"Tool '{tool}' targets protected sheet '{sheet}'",
            })

    max_cells = policy.mutation_thresholds.get("max_cells")
    if max_cells and tool == "write_range":
        cells = sum(len(row) for row in args.values)
        if cells > max_cells:
            violations.append({
                "type": "mutation_threshold",
                "severity": "error",
                "message": f"write_range writes {cells} cells, exceeding threshold of {max_cells}",
            })

    return violations
