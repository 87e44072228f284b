"""Errors raised by the range parser and pivot-table compiler.

All errors subclass ``ValueError`` so the tool layer can treat them as bad
input. Each carries the offending value so a readable message can be shown
to the caller.
"""


class PivotCompileError(ValueError):
    """Base class for range parsing and pivot compilation failures."""


class InvalidFormatError(PivotCompileError):
    """Malformed A1 range string or column reference.

    Attributes:
        value: The range string or column reference that failed to parse.
    """

    def __init__(self, message: str, value: object = None) -> None:
        super().__init__(message)
        self.value = value


class InvalidSpecError(PivotCompileError):
    """Pivot specification violates a structural invariant."""


class SheetNotFoundError(PivotCompileError):
    """Named sheet is absent, or the spreadsheet has no sheets at all.

    Attributes:
        spreadsheet_id: Spreadsheet that was searched.
        sheet_name: Requested sheet title, or ``None`` for the first sheet.
    """

    def __init__(self, spreadsheet_id: str, sheet_name: str | None = None) -> None:
        if sheet_name:
            message = f'Sheet "{sheet_name}" not found in spreadsheet {spreadsheet_id}'
        else:
            message = f"Spreadsheet {spreadsheet_id} has no sheets"
        super().__init__(message)
        self.spreadsheet_id = spreadsheet_id
        self.sheet_name = sheet_name
