"""Input models for the pivot-table compiler.

These Pydantic models validate the arguments of the ``sheets_create_pivot_table``
tool. Group rules are an explicit union of three variant models, each of
which forbids extra keys, so exactly one of ``date_time``, ``histogram`` or
``manual`` can be present on a validated rule.
"""

from enum import Enum
from typing import Annotated

from pydantic import BaseModel, Field, StrictFloat, StrictInt, StrictStr, model_validator

ColumnRef = Annotated[int, Field(ge=0)] | Annotated[str, Field(pattern=r"^[A-Za-z]+$")]

# Strict so JSON booleans are rejected instead of read as 1 or 0
Scalar = StrictStr | StrictInt | StrictFloat


class DateTimeRuleType(str, Enum):
    """Date/time truncation granularities understood by the Sheets API."""

    SECOND = "SECOND"
    MINUTE = "MINUTE"
    HOUR = "HOUR"
    HOUR_MINUTE = "HOUR_MINUTE"
    HOUR_MINUTE_AMPM = "HOUR_MINUTE_AMPM"
    DAY_OF_WEEK = "DAY_OF_WEEK"
    DAY_OF_MONTH = "DAY_OF_MONTH"
    DAY_OF_YEAR = "DAY_OF_YEAR"
    DAY_MONTH = "DAY_MONTH"
    MONTH = "MONTH"
    QUARTER = "QUARTER"
    YEAR = "YEAR"
    YEAR_MONTH = "YEAR_MONTH"
    YEAR_QUARTER = "YEAR_QUARTER"
    YEAR_MONTH_DAY = "YEAR_MONTH_DAY"


class SortOrder(str, Enum):
    ASCENDING = "ASCENDING"
    DESCENDING = "DESCENDING"


class SummarizeFunction(str, Enum):
    """Aggregation applied to a pivot value."""

    SUM = "SUM"
    COUNT = "COUNT"
    COUNTA = "COUNTA"
    COUNTUNIQUE = "COUNTUNIQUE"
    AVERAGE = "AVERAGE"
    MAX = "MAX"
    MIN = "MIN"
    MEDIAN = "MEDIAN"
    PRODUCT = "PRODUCT"
    STDEV = "STDEV"
    STDEVP = "STDEVP"
    VAR = "VAR"
    VARP = "VARP"
    CUSTOM = "CUSTOM"


class CalculatedDisplayType(str, Enum):
    PERCENT_OF_ROW_TOTAL = "PERCENT_OF_ROW_TOTAL"
    PERCENT_OF_COLUMN_TOTAL = "PERCENT_OF_COLUMN_TOTAL"
    PERCENT_OF_GRAND_TOTAL = "PERCENT_OF_GRAND_TOTAL"


class ValueLayout(str, Enum):
    HORIZONTAL = "HORIZONTAL"
    VERTICAL = "VERTICAL"


class FilterConditionType(str, Enum):
    """Boolean condition types accepted in pivot filter criteria."""

    NUMBER_GREATER = "NUMBER_GREATER"
    NUMBER_GREATER_THAN_EQ = "NUMBER_GREATER_THAN_EQ"
    NUMBER_LESS = "NUMBER_LESS"
    NUMBER_LESS_THAN_EQ = "NUMBER_LESS_THAN_EQ"
    NUMBER_EQ = "NUMBER_EQ"
    NUMBER_NOT_EQ = "NUMBER_NOT_EQ"
    NUMBER_BETWEEN = "NUMBER_BETWEEN"
    NUMBER_NOT_BETWEEN = "NUMBER_NOT_BETWEEN"
    TEXT_CONTAINS = "TEXT_CONTAINS"
    TEXT_NOT_CONTAINS = "TEXT_NOT_CONTAINS"
    TEXT_STARTS_WITH = "TEXT_STARTS_WITH"
    TEXT_ENDS_WITH = "TEXT_ENDS_WITH"
    TEXT_EQ = "TEXT_EQ"
    TEXT_NOT_EQ = "TEXT_NOT_EQ"
    DATE_EQ = "DATE_EQ"
    DATE_BEFORE = "DATE_BEFORE"
    DATE_AFTER = "DATE_AFTER"
    DATE_ON_OR_BEFORE = "DATE_ON_OR_BEFORE"
    DATE_ON_OR_AFTER = "DATE_ON_OR_AFTER"
    DATE_BETWEEN = "DATE_BETWEEN"
    DATE_NOT_BETWEEN = "DATE_NOT_BETWEEN"
    DATE_IS_VALID = "DATE_IS_VALID"
    BLANK = "BLANK"
    NOT_BLANK = "NOT_BLANK"


# =============================================================================
# Group rules
# =============================================================================


class DateTimeRule(BaseModel):
    type: DateTimeRuleType = Field(..., description="How to group date/time values")


class HistogramRule(BaseModel):
    """Numeric bucketing; values outside start/end fall into open-ended buckets."""

    interval: float = Field(..., gt=0, description="Bucket size (e.g., 100 for 0-100, 100-200)")
    start: float | None = Field(default=None, description="Minimum bucketed value")
    end: float | None = Field(default=None, description="Maximum bucketed value")


class ManualGroup(BaseModel):
    group_name: str = Field(..., description="Name for this group")
    items: list[Scalar] = Field(..., description="Values to include in this group")


class ManualRule(BaseModel):
    groups: list[ManualGroup] = Field(..., min_length=1, description="Custom groups, in order")


class DateTimeGroupRule(BaseModel):
    date_time: DateTimeRule

    model_config = {"extra": "forbid"}


class HistogramGroupRule(BaseModel):
    histogram: HistogramRule

    model_config = {"extra": "forbid"}


class ManualGroupRule(BaseModel):
    manual: ManualRule

    model_config = {"extra": "forbid"}


GroupRule = DateTimeGroupRule | HistogramGroupRule | ManualGroupRule


# =============================================================================
# Groups, values and filters
# =============================================================================


class SortByValue(BaseModel):
    value_index: int = Field(..., ge=0, description="Index into values array (0 = first value)")


class PivotGroup(BaseModel):
    """A row or column grouping.

    ``sort_order`` alone sorts group labels alphabetically in that direction.
    ``sort_by_value`` orders groups by an aggregated value instead; when both
    are given, ``sort_order`` sets the direction of the value ordering.
    """

    source_column: ColumnRef = Field(
        ..., description="Column index (0-based) or column letter (e.g., 'A', 'B', 'AA')"
    )
    label: str | None = Field(default=None, description="Custom display name for this grouping")
    show_totals: bool = Field(default=True, description="Show subtotals for this group")
    sort_order: SortOrder | None = Field(default=None, description="Sort order for group values")
    sort_by_value: SortByValue | None = Field(
        default=None, description="Sort groups by aggregated value instead of alphabetically"
    )
    group_rule: GroupRule | None = Field(
        default=None, description="How to bucket values (date_time, histogram, or manual)"
    )
    group_limit: int | None = Field(
        default=None, gt=0, description="Maximum number of groups to display"
    )


class PivotValue(BaseModel):
    """An aggregation over a source column or a custom formula (never both)."""

    source_column: ColumnRef | None = Field(
        default=None, description="Column to aggregate (omit if using formula)"
    )
    formula: str | None = Field(
        default=None, description="Custom formula starting with '=' (e.g., '=Revenue/Quantity')"
    )
    summarize_function: SummarizeFunction = Field(
        ..., description="Aggregation function (use CUSTOM with formula)"
    )
    name: str | None = Field(default=None, description="Custom display name for this value")
    calculated_display_type: CalculatedDisplayType | None = Field(
        default=None, description="Display as percentage instead of raw value"
    )

    @model_validator(mode="after")
    def _check_source(self) -> "PivotValue":
        has_column = self.source_column is not None
        has_formula = self.formula is not None
        if has_column and has_formula:
            raise ValueError("Cannot specify both source_column and formula")
        if not has_column and not has_formula:
            raise ValueError("Either source_column or formula is required")
        return self


class FilterCondition(BaseModel):
    type: FilterConditionType = Field(..., description="Condition type")
    values: list[Scalar] | None = Field(
        default=None,
        description="Condition operands (e.g., [100] for NUMBER_GREATER, [10, 50] for NUMBER_BETWEEN)",
    )


class PivotFilter(BaseModel):
    source_column: ColumnRef = Field(..., description="Column to filter on")
    visible_values: list[str] | None = Field(
        default=None, description="Only show rows where the column matches these values"
    )
    condition: FilterCondition | None = Field(
        default=None, description="Filter by condition (alternative to visible_values)"
    )


# =============================================================================
# Full specification
# =============================================================================


class PivotTableSpec(BaseModel):
    """Arguments of the ``sheets_create_pivot_table`` tool."""

    spreadsheet_id: str = Field(..., min_length=1, description="The ID of the Google Spreadsheet")
    source_range: str = Field(
        ...,
        min_length=1,
        description="A1 notation range containing the source data (e.g., 'Sheet1!A1:E100', 'Data!A:F')",
    )
    destination_sheet_id: int | None = Field(
        default=None,
        description="Sheet ID where the pivot table is placed (default: creates a new sheet)",
    )
    destination_sheet_name: str = Field(
        default="Pivot Table",
        description="Name for the new sheet if destination_sheet_id is not provided",
    )
    rows: list[PivotGroup] | None = Field(default=None, description="Row groupings")
    columns: list[PivotGroup] | None = Field(default=None, description="Column groupings")
    values: list[PivotValue] = Field(
        ..., min_length=1, description="Value aggregations (e.g., SUM of Revenue)"
    )
    filters: list[PivotFilter] | None = Field(
        default=None, description="Filter source data before pivoting"
    )
    value_layout: ValueLayout = Field(
        default=ValueLayout.HORIZONTAL,
        description="Layout for multiple values: HORIZONTAL (side by side) or VERTICAL (stacked)",
    )

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def _check_groupings(self) -> "PivotTableSpec":
        if not self.rows and not self.columns:
            raise ValueError("At least one row or column grouping is required")
        return self
