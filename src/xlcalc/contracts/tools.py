"""Argument models for the tool surface.

Field names are snake_case; every model also accepts the camelCase spelling
(``workbookId``, ``startCell``, ...) that agent clients commonly send.
"""

from __future__ import annotations

from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CellLiteral = Union[str, int, float, bool, None]
Aggregation = Literal["sum", "count", "average", "min", "max"]
ChartType = Literal["bar", "line", "pie", "scatter"]


class ToolArgs(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class NoArgs(ToolArgs):
    pass


class OpenWorkbookArgs(ToolArgs):
    file_path: str = Field(description="Path to the .xlsx file to open")


class WorkbookArgs(ToolArgs):
    workbook_id: str = Field(description="Workbook handle, e.g. 'wb_1'")


class SaveWorkbookArgs(WorkbookArgs):
    file_path: str | None = Field(default=None, description="Destination; defaults to the remembered path")
    backup: bool = Field(default=False, description="Copy an existing target to a timestamped .bak first")


class CreateSheetArgs(WorkbookArgs):
    name: str | None = Field(default=None, description="Sheet name; auto-generated when omitted")


class SheetArgs(WorkbookArgs):
    sheet: str | int = Field(description="Sheet name or 1-based index")


class RenameSheetArgs(SheetArgs):
    new_name: str


class CellArgs(SheetArgs):
    cell: str = Field(description="Cell address, e.g. 'B2'")


class WriteCellArgs(CellArgs):
    value: CellLiteral = Field(description="Literal value, or formula text starting with '='")


class RangeArgs(SheetArgs):
    range: str = Field(description="Range, e.g. 'A1:C10'")


class WriteRangeArgs(SheetArgs):
    start_cell: str
    values: list[list[CellLiteral]]


class ChartPosition(ToolArgs):
    col: int = Field(ge=1)
    row: int = Field(ge=1)


class CreateChartArgs(SheetArgs):
    type: ChartType
    data_range: str
    title: str | None = None
    position: ChartPosition | None = None


class DeleteChartArgs(SheetArgs):
    chart_name: str


class ListChartsArgs(WorkbookArgs):
    sheet: str | int | None = None


class DataField(ToolArgs):
    field: str
    aggregation: Aggregation


class PivotTableArgs(WorkbookArgs):
    source_sheet: str | int
    source_range: str = Field(description="Source range including the header row")
    row_fields: list[str] = Field(default_factory=list)
    data_fields: list[DataField] = Field(default_factory=list)
    destination_sheet: str | None = None
    destination_cell: str | None = None


class ImportMarkdownArgs(ToolArgs):
    markdown: str
    workbook_id: str | None = None
    sheet_name: str | None = None
