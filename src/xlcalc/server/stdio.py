"""stdio server mode: one JSON request per line in, one JSON response per line out."""

from __future__ import annotations

import sys
from typing import Any, TextIO

import orjson

from xlcalc.engine.dispatcher import error_envelope, success_envelope
from xlcalc.engine.registry import WorkbookRegistry
from xlcalc.engine.tools import call_tool, list_tools
from xlcalc.validation.policy import Policy


class StdioServer:
    """Serves tool calls ``{"id", "tool", "args"}`` sequentially over stdin/stdout."""

    def __init__(self, registry: WorkbookRegistry | None = None, policy: Policy | None = None) -> None:
        self.registry = registry if registry is not None else WorkbookRegistry()
        self.policy = policy

    def handle_request(self, request: Any) -> dict[str, Any]:
        if not isinstance(request, dict):
            envelope = error_envelope("", "ERR_INVALID_ARGUMENT", "Request must be a JSON object")
            return {"id": None, **envelope.model_dump(mode="json")}
        req_id = request.get("id")
        tool = request.get("tool", "")
        if not isinstance(tool, str) or not tool:
            envelope = error_envelope("", "ERR_INVALID_ARGUMENT", "Missing 'tool' in request")
        elif tool == "list_tools":
            envelope = success_envelope("list_tools", list_tools())
        else:
            envelope = call_tool(self.registry, tool, request.get("args"), policy=self.policy)
        return {"id": req_id, **envelope.model_dump(mode="json")}

    def _write(self, out: TextIO, response: dict[str, Any]) -> None:
        out.write(orjson.dumps(response, default=str).decode() + "\n")
        out.flush()

    def run(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        """Main server loop: read JSON lines until EOF, then close every session."""
        stdin = stdin or sys.stdin
        stdout = stdout or sys.stdout
        try:
            for line in stdin:
                line = line.strip()
                if not line:
                    continue
                try:
                    request = orjson.loads(line)
                except orjson.JSONDecodeError as e:
                    envelope = error_envelope("", "ERR_INVALID_JSON", f"Invalid JSON: {e}")
                    self._write(stdout, {"id": None, **envelope.model_dump(mode="json")})
                    continue
                self._write(stdout, self.handle_request(request))
        finally:
            self.registry.close_all()
