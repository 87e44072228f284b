"""A1 notation helpers: column letters, column references and range strings.

Column letters use bijective base-26 (A=1 .. Z=26, AA=27, ...) and are
converted to zero-based indices. Ranges are converted to half-open bounds:
start row/column inclusive, end row/column exclusive, all zero-based.

Example:
    ```python
    parse_a1_range("Sales!A1:E100")
    # RangeSpec(sheet_name="Sales", start_col=0, start_row=0, end_col=5, end_row=100)
    ```
"""

import re
from dataclasses import dataclass

from workspace_agent_mcp.sheets.errors import InvalidFormatError

# End row used when a range omits row numbers (e.g. "A:E"). This is a fixed
# placeholder, not the real extent of the sheet.
UNBOUNDED_END_ROW = 1000

_LETTERS_PATTERN = re.compile(r"^[A-Za-z]+$")
_CELL_REF_PATTERN = re.compile(r"^([A-Za-z]+)(\d*)$")


@dataclass(frozen=True)
class RangeSpec:
    """Parsed rectangular region of a sheet.

    Attributes:
        sheet_name: Sheet title from the range prefix, or "" when absent.
        start_col: First column, inclusive.
        start_row: First row, inclusive.
        end_col: Column after the last one, exclusive.
        end_row: Row after the last one, exclusive.
    """

    sheet_name: str
    start_col: int
    start_row: int
    end_col: int
    end_row: int

    @property
    def is_reversed(self) -> bool:
        """True when either axis has no cells (end bound not after start bound)."""
        return self.end_col <= self.start_col or self.end_row <= self.start_row


def column_to_index(letters: str) -> int:
    """Convert column letters ("A", "aa", "ZZZ") to a zero-based index.

    Raises:
        InvalidFormatError: If letters is empty or contains anything but A-Z.
    """
    if not isinstance(letters, str) or not _LETTERS_PATTERN.match(letters):
        raise InvalidFormatError(f"Invalid column letters: {letters!r}", letters)

    index = 0
    for char in letters.upper():
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index - 1


def index_to_column(index: int) -> str:
    """Convert a zero-based column index back to its letters."""
    if isinstance(index, bool) or not isinstance(index, int) or index < 0:
        raise InvalidFormatError(f"Invalid column index: {index!r}", index)

    chunks: list[str] = []
    current = index + 1
    while current > 0:
        current -= 1
        chunks.append(chr(ord("A") + current % 26))
        current //= 26
    return "".join(reversed(chunks))


def resolve_column(ref: int | str) -> int:
    """Normalize a column reference (index or letters) to a zero-based index.

    Integers pass through unchanged. No upper bound is enforced; the Sheets
    API rejects columns past the grid itself.
    """
    if isinstance(ref, bool):
        raise InvalidFormatError(f"Invalid column reference: {ref!r}", ref)
    if isinstance(ref, int):
        if ref < 0:
            raise InvalidFormatError(f"Column index must be non-negative: {ref}", ref)
        return ref
    return column_to_index(ref)


def _strip_quotes(sheet_name: str) -> str:
    if sheet_name.startswith("'"):
        sheet_name = sheet_name[1:]
    if sheet_name.endswith("'"):
        sheet_name = sheet_name[:-1]
    return sheet_name


def parse_a1_range(range_str: str) -> RangeSpec:
    """Parse an A1 range such as "Sheet1!A1:E100", "'My Sheet'!B2" or "A:E".

    Reversed ranges ("E1:A10") are returned as written; callers decide
    whether a negative-width region is acceptable.

    Args:
        range_str: Range in A1 notation, optionally prefixed by a sheet name.

    Returns:
        RangeSpec with zero-based, half-open bounds.

    Raises:
        InvalidFormatError: If either cell reference is not letters followed
            by optional digits.
    """
    sheet_name = ""
    cells = range_str
    if "!" in range_str:
        sheet_part, cells = range_str.split("!", 1)
        sheet_name = _strip_quotes(sheet_part)

    start_ref, sep, end_ref = cells.partition(":")
    if not sep:
        end_ref = start_ref

    start_match = _CELL_REF_PATTERN.match(start_ref)
    end_match = _CELL_REF_PATTERN.match(end_ref)
    if not start_match or not end_match:
        raise InvalidFormatError(f"Invalid range format: {range_str}", range_str)

    start_letters, start_digits = start_match.groups()
    end_letters, end_digits = end_match.groups()

    return RangeSpec(
        sheet_name=sheet_name,
        start_col=column_to_index(start_letters),
        start_row=int(start_digits) - 1 if start_digits else 0,
        end_col=column_to_index(end_letters) + 1,
        end_row=int(end_digits) if end_digits else UNBOUNDED_END_ROW,
    )
