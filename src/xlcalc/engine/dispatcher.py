"""Response envelope helpers, error-code mapping and exit codes."""

from __future__ import annotations

import sys
from typing import Any

import orjson
import portalocker
from pydantic import ValidationError

from xlcalc.contracts.common import (
    ErrorDetail,
    Metrics,
    PolicyViolationError,
    ResponseEnvelope,
    Target,
    WarningDetail,
    XlcalcError,
)

EXIT_CODES = {
    "success": 0,
    "validation": 10,
    "protection": 20,
    "io": 50,
    "unsupported": 70,
    "internal": 90,
}

# Error code -> exit class. Codes not listed fall back by suffix, then to "internal".
ERROR_CLASSES = {
    "ERR_INVALID_ARGUMENT": "validation",
    "ERR_INVALID_ADDRESS": "validation",
    "ERR_RANGE_INVALID": "validation",
    "ERR_SHEET_NOT_FOUND": "validation",
    "ERR_SHEET_EXISTS": "validation",
    "ERR_CHART_EXISTS": "validation",
    "ERR_MISSING_FILE_PATH": "validation",
    "ERR_WORKFLOW_INVALID": "validation",
    "ERR_CONFIG_INVALID": "validation",
    "ERR_PROTECTED_SHEET": "protection",
    "ERR_POLICY_VIOLATION": "protection",
    "ERR_FILE_FORMAT": "io",
    "ERR_LOCK_HELD": "io",
    "ERR_UNKNOWN_TOOL": "unsupported",
}


def success_envelope(
    command: str,
    result: Any,
    *,
    target: Target | None = None,
    changes: list | None = None,
    warnings: list[WarningDetail] | None = None,
    duration_ms: int = 0,
) -> ResponseEnvelope:
    return ResponseEnvelope(
        ok=True,
        command=command,
        target=target or Target(),
        result=result,
        changes=changes or [],
        warnings=warnings or [],
        metrics=Metrics(duration_ms=duration_ms),
    )


def error_envelope(
    command: str,
    code: str,
    message: str,
    *,
    target: Target | None = None,
    details: dict | None = None,
    warnings: list[WarningDetail] | None = None,
    duration_ms: int = 0,
) -> ResponseEnvelope:
    return ResponseEnvelope(
        ok=False,
        command=command,
        target=target or Target(),
        warnings=warnings or [],
        errors=[ErrorDetail(code=code, message=message, details=details)],
        metrics=Metrics(duration_ms=duration_ms),
    )


def error_code_for(exc: BaseException) -> str:
    """Map an exception raised by a tool to its structured error code."""
    if isinstance(exc, XlcalcError):
        return exc.code
    if isinstance(exc, portalocker.LockException):
        return "ERR_LOCK_HELD"
    if isinstance(exc, FileNotFoundError):
        return "ERR_FILE_NOT_FOUND"
    if isinstance(exc, (ValidationError, ValueError, TypeError)):
        return "ERR_INVALID_ARGUMENT"
    return "ERR_INTERNAL"


def error_details_for(exc: BaseException) -> dict | None:
    if isinstance(exc, PolicyViolationError):
        return {"violations": exc.violations}
    if isinstance(exc, ValidationError):
        return {"errors": exc.errors(include_url=False, include_context=False)}
    return None


def output_json(envelope: ResponseEnvelope) -> str:
    """Serialize envelope to JSON string using orjson."""
    data = envelope.model_dump(mode="json")
    return orjson.dumps(data, option=orjson.OPT_INDENT_2).decode()


def print_response(envelope: ResponseEnvelope) -> None:
    """Print response as JSON to stdout."""
    sys.stdout.write(output_json(envelope) + "\n")


def exit_code_for(envelope: ResponseEnvelope) -> int:
    """Exit status for an envelope, from the class of its first error."""
    if envelope.ok:
        return EXIT_CODES["success"]
    if not envelope.errors:
        return EXIT_CODES["internal"]
    code = envelope.errors[0].code.upper()
    cls = ERROR_CLASSES.get(code)
    if cls is None:
        cls = "io" if code.endswith("_NOT_FOUND") else "internal"
    return EXIT_CODES[cls]
