"""Pivot-table compiler for the Google Sheets API.

Compiles a validated :class:`PivotTableSpec` into a :class:`PivotTableDescriptor`
holding the Sheets API ``PivotTable`` structure and the sheet it belongs on.

The compiler does no I/O of its own. Sheet lookups and destination sheet
creation go through an injected :class:`SheetsMetadataClient`. Creating the
destination sheet is the last fallible step, so any parsing, lookup or
validation failure aborts before the spreadsheet is modified.

Example:
    ```python
    spec = PivotTableSpec.model_validate(arguments)
    descriptor = await PivotTableCompiler(client).compile(spec)
    request = descriptor.to_update_request()
    ```
"""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from workspace_agent_mcp.sheets.a1 import UNBOUNDED_END_ROW, parse_a1_range, resolve_column
from workspace_agent_mcp.sheets.errors import (
    InvalidFormatError,
    InvalidSpecError,
    SheetNotFoundError,
)
from workspace_agent_mcp.sheets.models import (
    DateTimeGroupRule,
    FilterCondition,
    GroupRule,
    HistogramGroupRule,
    ManualGroupRule,
    PivotFilter,
    PivotGroup,
    PivotTableSpec,
    PivotValue,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SheetRef:
    """Identifier and title of a sheet (tab) within a spreadsheet."""

    sheet_id: int
    title: str


class SheetsMetadataClient(Protocol):
    """Spreadsheet metadata capabilities the compiler depends on."""

    async def lookup_sheet_id(self, spreadsheet_id: str, title: str) -> int | None:
        """Return the id of the sheet titled ``title``, or None if absent."""
        ...

    async def list_sheets(self, spreadsheet_id: str) -> list[SheetRef]:
        """Return all sheets in the order the service reports them."""
        ...

    async def create_sheet(self, spreadsheet_id: str, title: str) -> SheetRef:
        """Add a sheet and return the id and title the service assigned."""
        ...


@dataclass(frozen=True)
class GridRange:
    """Half-open region of a sheet, zero-based."""

    sheet_id: int
    start_row: int
    start_col: int
    end_row: int
    end_col: int

    def to_api(self) -> dict[str, int]:
        return {
            "sheetId": self.sheet_id,
            "startRowIndex": self.start_row,
            "startColumnIndex": self.start_col,
            "endRowIndex": self.end_row,
            "endColumnIndex": self.end_col,
        }


@dataclass(frozen=True)
class PivotTableDescriptor:
    """Compiled pivot table, ready to be written with a single batchUpdate.

    Attributes:
        source_region: Region of the source data.
        rows: Compiled row groups (Sheets API ``PivotGroup`` dicts).
        columns: Compiled column groups.
        values: Compiled values (``PivotValue`` dicts).
        filter_specs: Compiled ``PivotFilterSpec`` dicts.
        value_layout: HORIZONTAL or VERTICAL.
        destination_sheet_id: Sheet that receives the pivot table.
        destination_sheet_name: Title of that sheet, when known.
    """

    source_region: GridRange
    rows: tuple[dict[str, Any], ...]
    columns: tuple[dict[str, Any], ...]
    values: tuple[dict[str, Any], ...]
    filter_specs: tuple[dict[str, Any], ...]
    value_layout: str
    destination_sheet_id: int
    destination_sheet_name: str | None = None

    def to_pivot_table(self) -> dict[str, Any]:
        """Build the Sheets API ``PivotTable`` object."""
        pivot_table: dict[str, Any] = {
            "source": self.source_region.to_api(),
            "values": list(self.values),
            "valueLayout": self.value_layout,
        }
        if self.rows:
            pivot_table["rows"] = list(self.rows)
        if self.columns:
            pivot_table["columns"] = list(self.columns)
        if self.filter_specs:
            pivot_table["filterSpecs"] = list(self.filter_specs)
        return pivot_table

    def to_update_request(self) -> dict[str, Any]:
        """Build the ``updateCells`` request anchoring the table at A1."""
        return {
            "updateCells": {
                "rows": [{"values": [{"pivotTable": self.to_pivot_table()}]}],
                "start": {
                    "sheetId": self.destination_sheet_id,
                    "rowIndex": 0,
                    "columnIndex": 0,
                },
                "fields": "pivotTable",
            }
        }


# =============================================================================
# Sheet resolution
# =============================================================================


async def resolve_sheet_id(
    client: SheetsMetadataClient, spreadsheet_id: str, sheet_name: str
) -> int:
    """Resolve a sheet title to its id; an empty title means the first sheet.

    Raises:
        SheetNotFoundError: If no sheet has that title, or the spreadsheet
            has no sheets.
    """
    if sheet_name:
        sheet_id = await client.lookup_sheet_id(spreadsheet_id, sheet_name)
        if sheet_id is None:
            raise SheetNotFoundError(spreadsheet_id, sheet_name)
        return sheet_id

    sheets = await client.list_sheets(spreadsheet_id)
    if not sheets:
        raise SheetNotFoundError(spreadsheet_id)
    return sheets[0].sheet_id


# =============================================================================
# Per-item compilers
# =============================================================================


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def compile_group_rule(rule: GroupRule) -> dict[str, Any]:
    """Compile a bucketing rule into a Sheets API ``PivotGroupRule``."""
    if isinstance(rule, DateTimeGroupRule):
        return {"dateTimeRule": {"type": rule.date_time.type.value}}

    if isinstance(rule, HistogramGroupRule):
        histogram: dict[str, Any] = {"interval": rule.histogram.interval}
        if rule.histogram.start is not None:
            histogram["start"] = rule.histogram.start
        if rule.histogram.end is not None:
            histogram["end"] = rule.histogram.end
        return {"histogramRule": histogram}

    if isinstance(rule, ManualGroupRule):
        groups = []
        for group in rule.manual.groups:
            items = [
                {"numberValue": item} if _is_number(item) else {"stringValue": str(item)}
                for item in group.items
            ]
            groups.append({"groupName": {"stringValue": group.group_name}, "items": items})
        return {"manualRule": {"groups": groups}}

    raise InvalidSpecError(f"Invalid group rule: {rule!r}")


def compile_pivot_group(group: PivotGroup) -> dict[str, Any]:
    """Compile a row or column grouping into a Sheets API ``PivotGroup``."""
    pivot_group: dict[str, Any] = {
        "sourceColumnOffset": resolve_column(group.source_column),
        "showTotals": group.show_totals,
    }

    if group.label:
        pivot_group["label"] = group.label

    if group.sort_order is not None:
        pivot_group["sortOrder"] = group.sort_order.value

    # An empty valueBucket sorts labels alphabetically; without one the
    # groups come back in natural order and sortOrder is ignored.
    if group.sort_by_value is not None:
        pivot_group["valueBucket"] = {"valuesIndex": group.sort_by_value.value_index}
    elif group.sort_order is not None:
        pivot_group["valueBucket"] = {}

    if group.group_rule is not None:
        pivot_group["groupRule"] = compile_group_rule(group.group_rule)

    if group.group_limit is not None:
        pivot_group["groupLimit"] = {"countLimit": group.group_limit}

    return pivot_group


def compile_pivot_value(value: PivotValue) -> dict[str, Any]:
    """Compile an aggregation into a Sheets API ``PivotValue``.

    Raises:
        InvalidSpecError: If both or neither of source_column and formula
            are set.
    """
    if value.source_column is not None and value.formula is not None:
        raise InvalidSpecError("Cannot specify both source_column and formula")
    if value.source_column is None and value.formula is None:
        raise InvalidSpecError("Either source_column or formula is required")

    pivot_value: dict[str, Any] = {"summarizeFunction": value.summarize_function.value}

    if value.source_column is not None:
        pivot_value["sourceColumnOffset"] = resolve_column(value.source_column)
    else:
        pivot_value["formula"] = value.formula

    if value.name:
        pivot_value["name"] = value.name

    if value.calculated_display_type is not None:
        pivot_value["calculatedDisplayType"] = value.calculated_display_type.value

    return pivot_value


def _format_operand(operand: str | int | float) -> str:
    if isinstance(operand, float) and operand.is_integer():
        return str(int(operand))
    return str(operand)


def _compile_condition(condition: FilterCondition) -> dict[str, Any]:
    compiled: dict[str, Any] = {"type": condition.type.value}
    if condition.values is not None:
        compiled["values"] = [
            {"userEnteredValue": _format_operand(operand)} for operand in condition.values
        ]
    return compiled


def compile_pivot_filters(filters: list[PivotFilter]) -> list[dict[str, Any]]:
    """Compile filters into Sheets API ``PivotFilterSpec`` objects, in order.

    ``visible_values`` wins when a filter sets both it and ``condition``.
    """
    specs = []
    for pivot_filter in filters:
        criteria: dict[str, Any] = {}
        if pivot_filter.visible_values is not None:
            criteria["visibleValues"] = list(pivot_filter.visible_values)
        elif pivot_filter.condition is not None:
            criteria["condition"] = _compile_condition(pivot_filter.condition)

        specs.append(
            {
                "columnOffsetIndex": resolve_column(pivot_filter.source_column),
                "filterCriteria": criteria,
            }
        )
    return specs


# =============================================================================
# Orchestrator
# =============================================================================


class PivotTableCompiler:
    """Compiles pivot-table specifications against one metadata client.

    Holds no state between calls; one instance may compile specs for
    different spreadsheets concurrently.

    Attributes:
        client: Metadata capabilities used for sheet lookup and creation.
    """

    def __init__(self, client: SheetsMetadataClient) -> None:
        self.client = client

    async def compile(self, spec: PivotTableSpec) -> PivotTableDescriptor:
        """Compile a specification into a descriptor.

        Args:
            spec: Validated pivot-table specification.

        Returns:
            Immutable descriptor for the caller to apply.

        Raises:
            InvalidFormatError: If the source range is malformed or empty.
            SheetNotFoundError: If the source sheet cannot be resolved.
            InvalidSpecError: If groupings or values violate their invariants.
        """
        parsed = parse_a1_range(spec.source_range)
        if parsed.end_row == UNBOUNDED_END_ROW and parsed.start_row >= UNBOUNDED_END_ROW:
            raise InvalidFormatError(
                f"Source range starts at row {parsed.start_row + 1}, past row "
                f"{UNBOUNDED_END_ROW} where ranges without an end row stop; "
                f"give an explicit end row: {spec.source_range}",
                spec.source_range,
            )
        if parsed.is_reversed:
            raise InvalidFormatError(
                f"Source range has no cells (end before start): {spec.source_range}",
                spec.source_range,
            )
        logger.debug("Parsed pivot source range %s -> %s", spec.source_range, parsed)

        source_sheet_id = await resolve_sheet_id(
            self.client, spec.spreadsheet_id, parsed.sheet_name
        )
        source_region = GridRange(
            sheet_id=source_sheet_id,
            start_row=parsed.start_row,
            start_col=parsed.start_col,
            end_row=parsed.end_row,
            end_col=parsed.end_col,
        )

        rows = [compile_pivot_group(group) for group in spec.rows or []]
        columns = [compile_pivot_group(group) for group in spec.columns or []]
        if not rows and not columns:
            raise InvalidSpecError("At least one row or column grouping is required")

        if not spec.values:
            raise InvalidSpecError("At least one value aggregation is required")
        values = [compile_pivot_value(value) for value in spec.values]

        filter_specs = compile_pivot_filters(spec.filters) if spec.filters else []

        destination_sheet_id = spec.destination_sheet_id
        destination_sheet_name: str | None = None
        if destination_sheet_id is None:
            created = await self.client.create_sheet(
                spec.spreadsheet_id, spec.destination_sheet_name
            )
            destination_sheet_id = created.sheet_id
            destination_sheet_name = created.title
            logger.info(
                "Created pivot destination sheet %r (id %s) in %s",
                created.title,
                created.sheet_id,
                spec.spreadsheet_id,
            )

        return PivotTableDescriptor(
            source_region=source_region,
            rows=tuple(rows),
            columns=tuple(columns),
            values=tuple(values),
            filter_specs=tuple(filter_specs),
            value_layout=spec.value_layout.value,
            destination_sheet_id=destination_sheet_id,
            destination_sheet_name=destination_sheet_name,
        )
