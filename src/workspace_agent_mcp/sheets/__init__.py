"""Spreadsheet range parsing and pivot-table compilation.

Quick Start:
    ```python
    from workspace_agent_mcp.sheets import PivotTableCompiler, PivotTableSpec

    spec = PivotTableSpec.model_validate(
        {
            "spreadsheet_id": "abc",
            "source_range": "Sales!A1:E100",
            "rows": [{"source_column": "A"}],
            "values": [{"source_column": "E", "summarize_function": "SUM"}],
        }
    )
    descriptor = await PivotTableCompiler(client).compile(spec)
    ```
"""

from workspace_agent_mcp.sheets.a1 import (
    UNBOUNDED_END_ROW,
    RangeSpec,
    column_to_index,
    index_to_column,
    parse_a1_range,
    resolve_column,
)
from workspace_agent_mcp.sheets.errors import (
    InvalidFormatError,
    InvalidSpecError,
    PivotCompileError,
    SheetNotFoundError,
)
from workspace_agent_mcp.sheets.models import PivotTableSpec
from workspace_agent_mcp.sheets.pivot import (
    GridRange,
    PivotTableCompiler,
    PivotTableDescriptor,
    SheetRef,
    SheetsMetadataClient,
    resolve_sheet_id,
)

__all__ = [
    "UNBOUNDED_END_ROW",
    "RangeSpec",
    "column_to_index",
    "index_to_column",
    "parse_a1_range",
    "resolve_column",
    "PivotCompileError",
    "InvalidFormatError",
    "InvalidSpecError",
    "SheetNotFoundError",
    "PivotTableSpec",
    "GridRange",
    "PivotTableCompiler",
    "PivotTableDescriptor",
    "SheetRef",
    "SheetsMetadataClient",
    "resolve_sheet_id",
]
