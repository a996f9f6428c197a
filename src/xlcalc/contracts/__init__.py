"""Pydantic models for tool arguments, results, envelopes, and workflows."""

from xlcalc.contracts.common import (
    ChangeRecord,
    ErrorDetail,
    Metrics,
    ResponseEnvelope,
    Target,
    WarningDetail,
)
from xlcalc.contracts.responses import (
    CellValue,
    ChartMeta,
    ColumnMeta,
    ImportResult,
    PivotResult,
    RecalcResult,
    SaveResult,
    SheetInfo,
    SheetMeta,
    ValidationResult,
    WorkbookSummary,
)

__all__ = [
    "CellValue",
    "ChangeRecord",
    "ChartMeta",
    "ColumnMeta",
    "ErrorDetail",
    "ImportResult",
    "Metrics",
    "PivotResult",
    "RecalcResult",
    "ResponseEnvelope",
    "SaveResult",
    "SheetInfo",
    "SheetMeta",
    "Target",
    "ValidationResult",
    "WarningDetail",
    "WorkbookSummary",
]
