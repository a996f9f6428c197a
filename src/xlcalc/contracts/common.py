"""Common Pydantic models: response envelope, errors, warnings, metrics."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class XlcalcError(Exception):
    """Base class for failures reported to tool callers."""

    code = "ERR_INTERNAL"


class WorkbookNotFoundError(XlcalcError):
    """Raised when a workbook handle is not registered."""

    code = "ERR_WORKBOOK_NOT_FOUND"


class SheetNotFoundError(XlcalcError):
    """Raised when a sheet name or index does not resolve."""

    code = "ERR_SHEET_NOT_FOUND"


class SheetExistsError(XlcalcError):
    """Raised when a sheet name is already taken."""

    code = "ERR_SHEET_EXISTS"


class InvalidAddressError(XlcalcError):
    """Raised when a cell reference is not of the form <letters><digits>."""

    code = "ERR_INVALID_ADDRESS"


class InvalidRangeError(XlcalcError):
    """Raised when a range reference is not <cell>:<cell>."""

    code = "ERR_RANGE_INVALID"


class FileFormatError(XlcalcError):
    """Raised when a workbook file cannot be parsed."""

    code = "ERR_FILE_FORMAT"


class MissingFilePathError(XlcalcError):
    """Raised when saving a workbook that has no known destination."""

    code = "ERR_MISSING_FILE_PATH"


class ChartNotFoundError(XlcalcError):
    code = "ERR_CHART_NOT_FOUND"


class ChartExistsError(XlcalcError):
    code = "ERR_CHART_EXISTS"


class PolicyViolationError(XlcalcError):
    """Raised when a tool call is refused by the configured policy."""

    code = "ERR_POLICY_VIOLATION"

    def __init__(self, message: str, violations: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.violations = violations or []
        if any(v.get("type") == "protected_sheet" for v in self.violations):
            self.code = "ERR_PROTECTED_SHEET"


class Target(BaseModel):
    """Identifies the workbook/sheet/range a tool call addressed."""

    workbook_id: str | None = None
    file: str | None = None
    sheet: str | None = None
    ref: str | None = None


class WarningDetail(BaseModel):
    """Structured warning."""

    code: str
    message: str
    path: str | None = None


class ErrorDetail(BaseModel):
    """Structured error."""

    code: str
    message: str
    details: dict[str, Any] | None = None


class Metrics(BaseModel):
    """Execution metrics."""

    duration_ms: int = 0


class ChangeRecord(BaseModel):
    """Describes a single change made by a mutating tool."""

    type: str
    target: str
    before: Any | None = None
    after: Any | None = None
    impact: dict[str, Any] | None = None


class ResponseEnvelope(BaseModel):
    """Standard response envelope returned by every tool."""

    ok: bool = True
    command: str = ""
    target: Target = Field(default_factory=Target)
    result: Any = None
    changes: list[ChangeRecord] = Field(default_factory=list)
    warnings: list[WarningDetail] = Field(default_factory=list)
    errors: list[ErrorDetail] = Field(default_factory=list)
    metrics: Metrics = Field(default_factory=Metrics)
