"""Formula evaluation engine built on the ``formulas`` package.

The engine keeps its own copy of every sheet's raw content, addressed by
zero-based (row, col), and evaluates formula cells on demand. Formula text is
compiled once per distinct text with ``formulas.Parser``; the compiled
function's inputs (``A1``, ``A1:B3``, ``SHEET2!C4``, ``A:A``) are resolved
against the engine's own sheets, never against the document.

Accepted content: ``None`` (clears), ``str`` (text, or formula text starting
with ``=``), ``int``, ``float``, ``bool``. Dates must be converted to serial
numbers by the caller.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Iterator

import formulas
import numpy as np
import schedula as sh
from formulas.errors import FormulaError
from formulas.ranges import Ranges
from formulas.tokens.operand import XlError
from pydantic import BaseModel, ConfigDict

from xlcalc.engine.address import column_index, unquote_sheet_name

CellKey = tuple[int, int, int]

_PART_RE = re.compile(r"^\$?([A-Za-z]*)\$?([0-9]*)$")
_CONTENT_TYPES = (str, bool, int, float)


class EngineConfig(BaseModel):
    """Values surfaced for cells that cannot be evaluated."""

    model_config = ConfigDict(extra="forbid")

    cycle_error: str = "#CYCLE!"
    parse_error: str = "#ERROR!"
    ref_error: str = "#REF!"


@dataclass(frozen=True)
class SheetDimensions:
    width: int
    height: int


@dataclass(frozen=True)
class _Ref:
    """A resolved formula input. ``None`` end bounds mean "to the sheet edge"."""

    sheet: int
    row0: int
    col0: int
    row1: int | None
    col1: int | None
    is_range: bool


def is_formula(content: Any) -> bool:
    return isinstance(content, str) and content.startswith("=") and len(content) > 1


class CalcEngine:
    """A set of named sheets plus lazy, cached formula evaluation."""

    @classmethod
    def build_empty(cls, config: EngineConfig | None = None) -> "CalcEngine":
        return cls(config)

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()
        self._parser = formulas.Parser()
        self._names: dict[int, str] = {}
        self._cells: dict[int, dict[tuple[int, int], Any]] = {}
        self._next_sheet_id = 0
        self._functions: dict[str, Any] = {}
        self._values: dict[CellKey, Any] = {}
        self._cyclic: set[CellKey] = set()
        self._destroyed = False

    # -- sheets -------------------------------------------------------------

    def add_sheet(self, name: str) -> int:
        self._check_alive()
        if self.get_sheet_id(name) is not None:
            raise ValueError(f"Engine sheet already exists: {name}")
        sheet_id = self._next_sheet_id
        self._next_sheet_id += 1
        self._names[sheet_id] = name
        self._cells[sheet_id] = {}
        self._invalidate()
        return sheet_id

    def remove_sheet(self, sheet_id: int) -> None:
        self._check_sheet(sheet_id)
        del self._names[sheet_id]
        del self._cells[sheet_id]
        self._invalidate()

    def rename_sheet(self, sheet_id: int, new_name: str) -> None:
        self._check_sheet(sheet_id)
        existing = self.get_sheet_id(new_name)
        if existing is not None and existing != sheet_id:
            raise ValueError(f"Engine sheet already exists: {new_name}")
        self._names[sheet_id] = new_name
        self._invalidate()

    def get_sheet_id(self, name: str) -> int | None:
        self._check_alive()
        for sheet_id, sheet_name in self._names.items():
            if sheet_name == name:
                return sheet_id
        return None

    def get_sheet_name(self, sheet_id: int) -> str:
        self._check_sheet(sheet_id)
        return self._names[sheet_id]

    def sheet_names(self) -> list[str]:
        self._check_alive()
        return list(self._names.values())

    def get_sheet_dimensions(self, sheet_id: int) -> SheetDimensions:
        self._check_sheet(sheet_id)
        cells = self._cells[sheet_id]
        if not cells:
            return SheetDimensions(width=0, height=0)
        return SheetDimensions(
            width=max(c for _, c in cells) + 1,
            height=max(r for r, _ in cells) + 1,
        )

    # -- content ------------------------------------------------------------

    def set_cell_content(self, sheet_id: int, row: int, col: int, content: Any) -> None:
        self._check_sheet(sheet_id)
        self._store(sheet_id, row, col, content)
        self._invalidate()

    def set_cell_contents(self, sheet_id: int, row: int, col: int, grid: list[list[Any]]) -> None:
        """Write a (possibly ragged) block of content with its top-left at (row, col)."""
        self._check_sheet(sheet_id)
        for r_off, row_data in enumerate(grid):
            for c_off, content in enumerate(row_data):
                self._store(sheet_id, row + r_off, col + c_off, content)
        self._invalidate()

    def set_sheet_content(self, sheet_id: int, grid: list[list[Any]]) -> None:
        """Replace everything on a sheet with ``grid`` anchored at (0, 0)."""
        self._check_sheet(sheet_id)
        self._cells[sheet_id] = {}
        self.set_cell_contents(sheet_id, 0, 0, grid)

    def get_cell_content(self, sheet_id: int, row: int, col: int) -> Any:
        self._check_sheet(sheet_id)
        return self._cells[sheet_id].get((row, col))

    def iter_contents(self, sheet_id: int) -> Iterator[tuple[int, int, Any]]:
        self._check_sheet(sheet_id)
        for (row, col), content in sorted(self._cells[sheet_id].items()):
            yield row, col, content

    def get_cell_value(self, sheet_id: int, row: int, col: int) -> Any:
        self._check_sheet(sheet_id)
        content = self._cells[sheet_id].get((row, col))
        if not is_formula(content):
            return content
        return self._evaluate((sheet_id, row, col))

    def recalculate(self) -> None:
        """Drop every cached result; the next read re-evaluates from content."""
        self._check_alive()
        self._invalidate()

    def destroy(self) -> None:
        self._names.clear()
        self._cells.clear()
        self._functions.clear()
        self._invalidate()
        self._destroyed = True

    # -- internals ----------------------------------------------------------

    def _check_alive(self) -> None:
        if self._destroyed:
            raise RuntimeError("Calculation engine has been destroyed")

    def _check_sheet(self, sheet_id: int) -> None:
        self._check_alive()
        if sheet_id not in self._names:
            raise ValueError(f"Unknown engine sheet id: {sheet_id}")

    def _invalidate(self) -> None:
        self._values.clear()
        self._cyclic.clear()

    def _store(self, sheet_id: int, row: int, col: int, content: Any) -> None:
        if row < 0 or col < 0:
            raise ValueError(f"Engine coordinates must be non-negative, got ({row}, {col})")
        cells = self._cells[sheet_id]
        if content is None:
            cells.pop((row, col), None)
            return
        if not isinstance(content, _CONTENT_TYPES):
            raise TypeError(f"Unsupported engine content type: {type(content).__name__}")
        cells[(row, col)] = content

    def _compile(self, text: str) -> Any:
        func = self._functions.get(text)
        if func is None:
            func = self._parser.ast(text)[1].compile()
            self._functions[text] = func
        return func

    def _plan(self, key: CellKey) -> tuple[Any, list[_Ref]] | str:
        """Compile a formula cell and resolve its inputs, or return an error value."""
        sheet_id, row, col = key
        text = self._cells[sheet_id][(row, col)]
        try:
            func = self._compile(text)
        except (FormulaError, ValueError, TypeError):
            return self.config.parse_error
        refs: list[_Ref] = []
        for name in func.inputs:
            ref = self._resolve_input(str(name), sheet_id)
            if ref is None:
                return self.config.ref_error
            refs.append(ref)
        return func, refs

    def _resolve_input(self, name: str, default_sheet: int) -> _Ref | None:
        sheet_id = default_sheet
        ref_text = name
        if "!" in name:
            sheet_part, ref_text = name.rsplit("!", 1)
            sheet_part = unquote_sheet_name(sheet_part)
            if "]" in sheet_part:
                sheet_part = sheet_part.rsplit("]", 1)[1]
            found = self._find_sheet(sheet_part)
            if found is None:
                return None
            sheet_id = found

        parts = ref_text.split(":")
        if len(parts) > 2:
            return None
        parsed = []
        for part in parts:
            m = _PART_RE.match(part)
            if not m or not (m.group(1) or m.group(2)):
                return None
            col = column_index(m.group(1)) - 1 if m.group(1) else None
            row = int(m.group(2)) - 1 if m.group(2) else None
            if row is not None and row < 0:
                return None
            parsed.append((row, col))

        if len(parsed) == 1:
            row, col = parsed[0]
            if row is None or col is None:
                return None
            return _Ref(sheet_id, row, col, row, col, is_range=False)

        (r0, c0), (r1, c1) = parsed
        if (r0 is None) != (r1 is None) or (c0 is None) != (c1 is None):
            return None
        # Whole columns (A:C) or whole rows (1:3) stay open-ended.
        return _Ref(
            sheet_id,
            min(r0, r1) if r0 is not None else 0,
            min(c0, c1) if c0 is not None else 0,
            max(r0, r1) if r0 is not None else None,
            max(c0, c1) if c0 is not None else None,
            is_range=True,
        )

    def _find_sheet(self, name: str) -> int | None:
        exact = self.get_sheet_id(name)
        if exact is not None:
            return exact
        folded = name.casefold()
        for sheet_id, sheet_name in self._names.items():
            if sheet_name.casefold() == folded:
                return sheet_id
        return None

    def _bounds(self, ref: _Ref) -> tuple[int, int, int, int]:
        if ref.row1 is not None and ref.col1 is not None:
            return ref.row0, ref.col0, ref.row1, ref.col1
        dims = self.get_sheet_dimensions(ref.sheet)
        row1 = ref.row1 if ref.row1 is not None else dims.height - 1
        col1 = ref.col1 if ref.col1 is not None else dims.width - 1
        return ref.row0, ref.col0, max(row1, ref.row0), max(col1, ref.col0)

    def _dependencies(self, refs: list[_Ref]) -> list[CellKey]:
        deps: list[CellKey] = []
        for ref in refs:
            cells = self._cells[ref.sheet]
            if not ref.is_range:
                if is_formula(cells.get((ref.row0, ref.col0))):
                    deps.append((ref.sheet, ref.row0, ref.col0))
                continue
            r0, c0, r1, c1 = self._bounds(ref)
            for (row, col), content in cells.items():
                if r0 <= row <= r1 and c0 <= col <= c1 and is_formula(content):
                    deps.append((ref.sheet, row, col))
        return deps

    def _evaluate(self, key: CellKey) -> Any:
        """Evaluate ``key`` and everything it depends on, depth-first, without recursion."""
        if key in self._values:
            return self._values[key]
        stack = [key]
        expanded: set[CellKey] = set()
        while stack:
            current = stack[-1]
            if current in self._values:
                stack.pop()
                continue
            plan = self._plan(current)
            if isinstance(plan, str):
                self._values[current] = plan
                stack.pop()
                expanded.discard(current)
                continue
            func, refs = plan
            if current not in expanded:
                pending = [d for d in self._dependencies(refs) if d not in self._values]
                cyclic = [d for d in pending if d in expanded or d == current]
                if cyclic:
                    self._cyclic.update(cyclic)
                    self._values[current] = self.config.cycle_error
                    stack.pop()
                    continue
                if pending:
                    expanded.add(current)
                    stack.extend(pending)
                    continue
            expanded.discard(current)
            stack.pop()
            if current in self._cyclic:
                self._values[current] = self.config.cycle_error
            else:
                self._values[current] = self._compute(func, refs)
        return self._values[key]

    def _compute(self, func: Any, refs: list[_Ref]) -> Any:
        args = [self._input_value(ref) for ref in refs]
        try:
            result = func(*args)
        except (FormulaError, ValueError, TypeError, ArithmeticError):
            return self.config.parse_error
        return _to_python(result)

    def _cell_result(self, sheet_id: int, row: int, col: int) -> Any:
        content = self._cells[sheet_id].get((row, col))
        if content is None:
            return sh.EMPTY
        if is_formula(content):
            return self._values.get((sheet_id, row, col), self.config.cycle_error)
        return content

    def _input_value(self, ref: _Ref) -> Any:
        if not ref.is_range:
            return self._cell_result(ref.sheet, ref.row0, ref.col0)
        r0, c0, r1, c1 = self._bounds(ref)
        grid = np.empty((r1 - r0 + 1, c1 - c0 + 1), dtype=object)
        for i, row in enumerate(range(r0, r1 + 1)):
            for j, col in enumerate(range(c0, c1 + 1)):
                grid[i, j] = self._cell_result(ref.sheet, row, col)
        return grid


def _to_python(value: Any) -> Any:
    """Reduce a ``formulas`` result to a plain Python scalar."""
    if isinstance(value, Ranges):
        value = value.value
    if isinstance(value, np.ndarray):
        if value.size == 0:
            return None
        value = value.ravel()[0]
    if value is sh.EMPTY:
        return 0
    if isinstance(value, XlError):
        return str(value)
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return "#NUM!"
    return value
