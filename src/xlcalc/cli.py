"""Typer CLI application: version, tool catalog, stdio server, workflows."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer

import xlcalc
from xlcalc.config import CONFIG_FILENAME, Settings
from xlcalc.contracts.common import ErrorDetail, ResponseEnvelope
from xlcalc.engine.dispatcher import (
    error_envelope,
    exit_code_for,
    print_response,
    success_envelope,
)
from xlcalc.engine.registry import WorkbookRegistry
from xlcalc.observe.events import EventEmitter, Timer

_MAIN_HELP = """\
Spreadsheet tools for agents: workbooks, sheets, cells, ranges, formulas,
pivot tables and charts, with every formula evaluated by a calculation engine.

**Every command** returns a JSON `ResponseEnvelope`:
`{"ok": bool, "command": "...", "result": ..., "errors": [...], "warnings": [...], "metrics": {"duration_ms": N}}`

**Exit codes:** 0=success, 10=validation, 20=protection, 50=io, 70=unsupported, 90=internal
"""

app = typer.Typer(
    name="xlcalc",
    help=_MAIN_HELP,
    no_args_is_help=True,
    rich_markup_mode="markdown",
)

ConfigOpt = Annotated[
    Optional[str],
    typer.Option("--config", "-c", help=f"Path to settings YAML (default: ./{CONFIG_FILENAME} when present)"),
]


def _emit(envelope: ResponseEnvelope) -> None:
    print_response(envelope)
    raise typer.Exit(exit_code_for(envelope))


def _load_settings(config: str | None) -> Settings:
    if config:
        return Settings.load(config)
    return Settings.load_from_dir(Path.cwd())


def _registry_for(settings: Settings) -> WorkbookRegistry:
    return WorkbookRegistry(config=settings.engine, emitter=EventEmitter(enabled=settings.events))


def _settings_or_emit(command: str, config: str | None) -> Settings:
    try:
        return _load_settings(config)
    except FileNotFoundError as e:
        _emit(error_envelope(command, "ERR_FILE_NOT_FOUND", str(e)))
    except Exception as e:
        _emit(error_envelope(command, "ERR_CONFIG_INVALID", f"Cannot load settings: {e}"))


# ---------------------------------------------------------------------------
# xlcalc version
# ---------------------------------------------------------------------------
@app.command()
def version():
    """Print the xlcalc version.

    Example: `xlcalc version`
    """
    _emit(success_envelope("version", {"version": xlcalc.__version__}))


# ---------------------------------------------------------------------------
# xlcalc tools
# ---------------------------------------------------------------------------
@app.command("tools")
def tools_cmd():
    """List every tool with its description and JSON input schema.

    Example: `xlcalc tools`
    """
    from xlcalc.engine.tools import list_tools

    _emit(success_envelope("tools", list_tools()))


# ---------------------------------------------------------------------------
# xlcalc run
# ---------------------------------------------------------------------------
@app.command("run")
def run_cmd(
    workflow_file: Annotated[str, typer.Option("--workflow", "-w", help="Path to YAML workflow file defining steps to execute")],
    config: ConfigOpt = None,
):
    """Execute a multi-step YAML workflow of tool calls.

    Steps run in order against one set of open workbooks. A step without
    `workbook_id` uses the workbook from the latest `create_workbook`,
    `open_workbook` or `import_markdown_table` step.

    Example YAML workflow::

        schema_version: "1.0"
        name: sales
        defaults: { stop_on_error: true }
        steps:
          - { id: new, run: create_workbook }
          - { id: data, run: write_range, args: { sheet: Sheet1, start_cell: A1, values: [[Item, Price], [Widget, 25]] } }
          - { id: total, run: write_cell, args: { sheet: Sheet1, cell: B3, value: "=SUM(B2:B2)" } }
          - { id: save, run: save_workbook, args: { file_path: sales.xlsx } }

    Example: `xlcalc run --workflow sales.yaml`
    """
    from xlcalc.engine.workflow import execute_workflow, load_workflow

    settings = _settings_or_emit("run", config)
    with Timer() as t:
        try:
            workflow = load_workflow(workflow_file)
        except FileNotFoundError as e:
            _emit(error_envelope("run", "ERR_FILE_NOT_FOUND", str(e)))
            return
        except Exception as e:
            _emit(error_envelope("run", "ERR_WORKFLOW_INVALID", f"Cannot parse workflow: {e}"))
            return

        result = execute_workflow(workflow, _registry_for(settings), policy=settings.policy)

    env = success_envelope("run", result, duration_ms=t.elapsed_ms)
    if not result.get("ok"):
        env.ok = False
        for step in result.get("steps", []):
            if not step.get("ok") and step.get("error"):
                env.errors.append(ErrorDetail(
                    code=step["error"]["code"],
                    message=f"Step '{step['step_id']}' ({step['run']}): {step['error']['message']}",
                ))
    _emit(env)


# ---------------------------------------------------------------------------
# xlcalc serve --stdio
# ---------------------------------------------------------------------------
@app.command("serve")
def serve_cmd(
    stdio: Annotated[bool, typer.Option("--stdio", help="Use stdin/stdout for JSON request/response")] = True,
    config: ConfigOpt = None,
):
    """Start the stdio tool server.

    Each input line is a JSON object `{"id": "1", "tool": "create_workbook", "args": {}}`;
    each output line is `{"id": "1", ...ResponseEnvelope}`. The tool name
    `list_tools` returns the catalog.

    Example: `xlcalc serve --stdio`
    """
    from xlcalc.server.stdio import StdioServer

    settings = _settings_or_emit("serve", config)
    server = StdioServer(_registry_for(settings), policy=settings.policy)
    server.run()


# ---------------------------------------------------------------------------
# Entrypoint (for `python -m xlcalc`)
# ---------------------------------------------------------------------------
def main() -> None:
    try:
        app()
    except SystemExit:
        raise
    except Exception as exc:
        # Unhandled exceptions still produce a JSON envelope for machine consumers.
        env = error_envelope("unknown", "ERR_INTERNAL", str(exc))
        print_response(env)
        raise SystemExit(90) from exc


if __name__ == "__main__":
    main()
