"""Tool-specific result models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class WorkbookSummary(BaseModel):
    """One entry of ``list_workbooks``."""

    id: str
    path: str | None = None
    sheet_count: int = 0


class SheetMeta(BaseModel):
    """A sheet's name and 1-based position."""

    name: str
    index: int


class SheetInfo(BaseModel):
    """Extent information for a single worksheet."""

    name: str
    index: int
    row_count: int = 0
    column_count: int = 0
    actual_row_count: int = 0
    actual_column_count: int = 0


class CellValue(BaseModel):
    """A cell as stored in the document and as calculated by the engine."""

    value: Any = None
    calculated_value: Any = None
    formula: str | None = None


class ColumnMeta(BaseModel):
    """A non-empty header cell in row 1."""

    column: str
    header: str | None = None
    index: int


class SaveResult(BaseModel):
    path: str
    fingerprint: str
    backup_path: str | None = None


class RecalcResult(BaseModel):
    sheets_recalculated: int = 0
    cells_recalculated: int = 0


class PivotResult(BaseModel):
    """Where a pivot table was written."""

    sheet: str
    cell: str
    range: str = ""
    group_count: int = 0


class ChartMeta(BaseModel):
    """Metadata for a chart created in a session."""

    name: str
    sheet: str
    type: str
    data_range: str
    anchor: str


class ImportResult(BaseModel):
    """Result of ``import_markdown_table``."""

    workbook_id: str
    sheet: str
    rows: int = 0
    columns: int = 0


class ValidationResult(BaseModel):
    """Result of a validation tool."""

    valid: bool = True
    checks: list[dict[str, Any]] = Field(default_factory=list)
