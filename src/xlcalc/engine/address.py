"""A1-style address codec: cell references, column letters, and ranges.

Rows and columns are 1-based here. Column letters are bijective base-26
(no zero digit): A=1 ... Z=26, AA=27 ... ZZ=702, AAA=703. Absolute markers
(``$A$1``) are accepted and ignored. Sheet-qualified references inside
formula text are rewritten with openpyxl's formula tokenizer.
"""

from __future__ import annotations

import re
from typing import Iterator, NamedTuple

from openpyxl.formula.tokenizer import Token, Tokenizer, TokenizerError

from xlcalc.contracts.common import InvalidAddressError, InvalidRangeError

_CELL_RE = re.compile(r"^\$?([A-Za-z]+)\$?([0-9]+)$")


class CellAddress(NamedTuple):
    row: int
    col: int


class RangeBounds(NamedTuple):
    """Inclusive rectangle, always normalized so start <= end on both axes."""

    start_row: int
    start_col: int
    end_row: int
    end_col: int

    @property
    def height(self) -> int:
        return self.end_row - self.start_row + 1

    @property
    def width(self) -> int:
        return self.end_col - self.start_col + 1

    def rows(self) -> Iterator[int]:
        return iter(range(self.start_row, self.end_row + 1))

    def cols(self) -> Iterator[int]:
        return iter(range(self.start_col, self.end_col + 1))


def column_index(letters: str) -> int:
    """Decode column letters (case-insensitive) to a 1-based index."""
    if not letters or not letters.isascii() or not letters.isalpha():
        raise InvalidAddressError(f"Invalid column letters: {letters!r}")
    col = 0
    for ch in letters.upper():
        col = col * 26 + (ord(ch) - 64)
    return col


def format_column(index: int) -> str:
    """Encode a 1-based column index as letters (1 -> A, 27 -> AA)."""
    if isinstance(index, bool) or not isinstance(index, int) or index < 1:
        raise InvalidAddressError(f"Column index must be a positive integer, got {index!r}")
    letters: list[str] = []
    while index > 0:
        index, rem = divmod(index - 1, 26)
        letters.append(chr(65 + rem))
    return "".join(reversed(letters))


def parse_reference(text: str) -> CellAddress:
    """Parse ``B12`` into ``CellAddress(row=12, col=2)``."""
    if not isinstance(text, str):
        raise InvalidAddressError(f"Invalid cell reference: {text!r}")
    m = _CELL_RE.match(text)
    if not m:
        raise InvalidAddressError(f"Invalid cell reference: {text!r}")
    row = int(m.group(2))
    if row < 1:
        raise InvalidAddressError(f"Invalid cell reference: {text!r} (rows start at 1)")
    return CellAddress(row=row, col=column_index(m.group(1)))


def format_reference(row: int, col: int) -> str:
    if isinstance(row, bool) or not isinstance(row, int) or row < 1:
        raise InvalidAddressError(f"Row must be a positive integer, got {row!r}")
    return f"{format_column(col)}{row}"


def parse_range(text: str) -> RangeBounds:
    """Parse ``A1:C10`` into inclusive bounds.

    A reversed range such as ``C10:A1`` is normalized by swapping per axis.
    """
    if not isinstance(text, str):
        raise InvalidRangeError(f"Invalid range: {text!r}")
    parts = text.split(":")
    if len(parts) != 2:
        raise InvalidRangeError(f"Invalid range: {text!r} (expected <cell>:<cell>)")
    try:
        start = parse_reference(parts[0])
        end = parse_reference(parts[1])
    except InvalidAddressError as e:
        raise InvalidRangeError(f"Invalid range: {text!r} ({e})") from e
    return RangeBounds(
        start_row=min(start.row, end.row),
        start_col=min(start.col, end.col),
        end_row=max(start.row, end.row),
        end_col=max(start.col, end.col),
    )


def format_range(bounds: RangeBounds) -> str:
    return (
        f"{format_reference(bounds.start_row, bounds.start_col)}:"
        f"{format_reference(bounds.end_row, bounds.end_col)}"
    )


# -- sheet-qualified references in formula text --------------------------------

_BARE_SHEET_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")


def quote_sheet_name(name: str) -> str:
    """Sheet name as written before ``!`` in a formula (``'Q1 Data'``, ``Data``)."""
    if _BARE_SHEET_RE.match(name) and not _CELL_RE.match(name):
        return name
    return "'" + name.replace("'", "''") + "'"


def unquote_sheet_name(text: str) -> str:
    if len(text) >= 2 and text[0] == text[-1] == "'":
        return text[1:-1].replace("''", "'")
    return text


def rename_sheet_in_formula(formula: str, old: str, new: str) -> str:
    """Point every ``old!ref`` operand of ``formula`` at sheet ``new``.

    Sheet names compare case-insensitively. Text the tokenizer rejects comes
    back unchanged, as does a formula with no reference to ``old``.
    """
    try:
        tokens = Tokenizer(formula)
    except TokenizerError:
        return formula
    folded = old.casefold()
    changed = False
    for token in tokens.items:
        if token.type != Token.OPERAND or token.subtype != Token.RANGE or "!" not in token.value:
            continue
        sheet, ref = token.value.rsplit("!", 1)
        if unquote_sheet_name(sheet).casefold() == folded:
            token.value = f"{quote_sheet_name(new)}!{ref}"
            changed = True
    return tokens.render() if changed else formula
