"""Unit tests for the pivot-table compiler.

Tests cover sheet resolution, per-item compilation and the orchestrator,
using the in-memory metadata client from conftest.
"""

import pytest

from workspace_agent_mcp.sheets.errors import (
    InvalidFormatError,
    InvalidSpecError,
    SheetNotFoundError,
)
from workspace_agent_mcp.sheets.models import (
    HistogramRule,
    PivotFilter,
    PivotGroup,
    PivotTableSpec,
    PivotValue,
    SummarizeFunction,
    ValueLayout,
)
from workspace_agent_mcp.sheets.pivot import (
    GridRange,
    PivotTableCompiler,
    SheetRef,
    compile_group_rule,
    compile_pivot_filters,
    compile_pivot_group,
    compile_pivot_value,
    resolve_sheet_id,
)


def _spec(**overrides) -> PivotTableSpec:
    arguments = {
        "spreadsheet_id": "sheet-abc",
        "source_range": "Sales!A1:E100",
        "rows": [{"source_column": "A"}],
        "values": [{"source_column": "E", "summarize_function": "SUM"}],
    }
    arguments.update(overrides)
    return PivotTableSpec.model_validate(arguments)


# =============================================================================
# Sheet resolution
# =============================================================================


@pytest.mark.unit
class TestResolveSheetId:
    """Tests for resolve_sheet_id()."""

    @pytest.mark.asyncio
    async def test_should_resolve_named_sheet(self, metadata_client) -> None:
        assert await resolve_sheet_id(metadata_client, "sheet-abc", "Sales") == 7
        assert metadata_client.lookups == [("sheet-abc", "Sales")]

    @pytest.mark.asyncio
    async def test_should_resolve_sheet_with_id_zero(self, metadata_client) -> None:
        """Verify a sheet id of 0 is a valid result, not a missing one."""
        assert await resolve_sheet_id(metadata_client, "sheet-abc", "Sheet1") == 0

    @pytest.mark.asyncio
    async def test_should_use_first_sheet_when_name_empty(self, make_metadata_client) -> None:
        client = make_metadata_client(
            sheets=[SheetRef(sheet_id=12, title="Data"), SheetRef(sheet_id=0, title="Sheet1")]
        )

        assert await resolve_sheet_id(client, "sheet-abc", "") == 12
        assert client.lookups == []

    @pytest.mark.asyncio
    async def test_should_raise_for_unknown_name(self, metadata_client) -> None:
        with pytest.raises(SheetNotFoundError) as exc_info:
            await resolve_sheet_id(metadata_client, "sheet-abc", "Missing")

        assert exc_info.value.sheet_name == "Missing"
        assert exc_info.value.spreadsheet_id == "sheet-abc"

    @pytest.mark.asyncio
    async def test_should_raise_when_spreadsheet_has_no_sheets(self, make_metadata_client) -> None:
        with pytest.raises(SheetNotFoundError):
            await resolve_sheet_id(make_metadata_client(), "sheet-abc", "")


# =============================================================================
# Groups
# =============================================================================


@pytest.mark.unit
class TestCompilePivotGroup:
    """Tests for compile_pivot_group()."""

    def test_should_compile_minimal_group(self) -> None:
        assert compile_pivot_group(PivotGroup(source_column="C")) == {
            "sourceColumnOffset": 2,
            "showTotals": True,
        }

    def test_should_sort_alphabetically_with_empty_value_bucket(self) -> None:
        """Verify sort_order alone emits an empty valueBucket."""
        compiled = compile_pivot_group(PivotGroup(source_column=0, sort_order="ASCENDING"))

        assert compiled["sortOrder"] == "ASCENDING"
        assert compiled["valueBucket"] == {}

    def test_should_sort_by_value_index(self) -> None:
        compiled = compile_pivot_group(
            PivotGroup(source_column="A", sort_by_value={"value_index": 1})
        )

        assert compiled["valueBucket"] == {"valuesIndex": 1}
        assert "sortOrder" not in compiled

    def test_should_combine_sort_order_with_value_sort(self) -> None:
        """Verify sort_by_value wins the bucket while sort_order sets direction."""
        compiled = compile_pivot_group(
            PivotGroup(
                source_column="A", sort_order="DESCENDING", sort_by_value={"value_index": 0}
            )
        )

        assert compiled["sortOrder"] == "DESCENDING"
        assert compiled["valueBucket"] == {"valuesIndex": 0}

    def test_should_include_optional_fields(self) -> None:
        compiled = compile_pivot_group(
            PivotGroup(source_column="B", label="Region", show_totals=False, group_limit=5)
        )

        assert compiled["label"] == "Region"
        assert compiled["showTotals"] is False
        assert compiled["groupLimit"] == {"countLimit": 5}

    def test_should_omit_empty_label(self) -> None:
        assert "label" not in compile_pivot_group(PivotGroup(source_column="B", label=""))


@pytest.mark.unit
class TestCompileGroupRule:
    """Tests for compile_group_rule()."""

    def test_should_compile_date_time_rule(self) -> None:
        group = PivotGroup(source_column="A", group_rule={"date_time": {"type": "YEAR_MONTH"}})

        assert compile_group_rule(group.group_rule) == {"dateTimeRule": {"type": "YEAR_MONTH"}}

    def test_should_compile_histogram_rule_without_bounds(self) -> None:
        group = PivotGroup(source_column="A", group_rule={"histogram": {"interval": 50}})

        assert compile_group_rule(group.group_rule) == {"histogramRule": {"interval": 50}}

    def test_should_compile_histogram_rule_with_bounds(self) -> None:
        group = PivotGroup(
            source_column="A", group_rule={"histogram": {"interval": 10, "start": 0, "end": 100}}
        )

        assert compile_group_rule(group.group_rule) == {
            "histogramRule": {"interval": 10, "start": 0, "end": 100}
        }

    def test_should_type_manual_items(self) -> None:
        """Verify numeric items become numberValue and the rest stringValue."""
        group = PivotGroup(
            source_column="A",
            group_rule={
                "manual": {
                    "groups": [
                        {"group_name": "West", "items": ["CA", "OR"]},
                        {"group_name": "Small", "items": [1, 2.5]},
                    ]
                }
            },
        )

        assert compile_group_rule(group.group_rule) == {
            "manualRule": {
                "groups": [
                    {
                        "groupName": {"stringValue": "West"},
                        "items": [{"stringValue": "CA"}, {"stringValue": "OR"}],
                    },
                    {
                        "groupName": {"stringValue": "Small"},
                        "items": [{"numberValue": 1}, {"numberValue": 2.5}],
                    },
                ]
            }
        }

    @pytest.mark.parametrize(
        "rule", [object(), HistogramRule(interval=5), {"histogram": {"interval": 5}}, None]
    )
    def test_should_reject_unrecognised_rule(self, rule) -> None:
        """Verify a value that is none of the three variants is never defaulted."""
        with pytest.raises(InvalidSpecError, match="Invalid group rule"):
            compile_group_rule(rule)

    def test_should_embed_rule_in_group(self) -> None:
        compiled = compile_pivot_group(
            PivotGroup(source_column="D", group_rule={"date_time": {"type": "QUARTER"}})
        )

        assert compiled["groupRule"] == {"dateTimeRule": {"type": "QUARTER"}}


# =============================================================================
# Values
# =============================================================================


@pytest.mark.unit
class TestCompilePivotValue:
    """Tests for compile_pivot_value()."""

    def test_should_compile_column_value(self) -> None:
        value = PivotValue(source_column="E", summarize_function="AVERAGE", name="Avg")

        assert compile_pivot_value(value) == {
            "summarizeFunction": "AVERAGE",
            "sourceColumnOffset": 4,
            "name": "Avg",
        }

    def test_should_compile_formula_value(self) -> None:
        value = PivotValue(formula="=Revenue/Quantity", summarize_function="CUSTOM")

        assert compile_pivot_value(value) == {
            "summarizeFunction": "CUSTOM",
            "formula": "=Revenue/Quantity",
        }

    def test_should_include_calculated_display_type(self) -> None:
        value = PivotValue(
            source_column=1,
            summarize_function="SUM",
            calculated_display_type="PERCENT_OF_GRAND_TOTAL",
        )

        assert compile_pivot_value(value)["calculatedDisplayType"] == "PERCENT_OF_GRAND_TOTAL"

    def test_should_reject_both_column_and_formula(self) -> None:
        """Verify the compiler rechecks exclusivity on unvalidated input."""
        value = PivotValue.model_construct(
            source_column="A",
            formula="=A",
            summarize_function=SummarizeFunction.SUM,
            name=None,
            calculated_display_type=None,
        )

        with pytest.raises(InvalidSpecError, match="both"):
            compile_pivot_value(value)

    def test_should_reject_neither_column_nor_formula(self) -> None:
        value = PivotValue.model_construct(
            source_column=None,
            formula=None,
            summarize_function=SummarizeFunction.SUM,
            name=None,
            calculated_display_type=None,
        )

        with pytest.raises(InvalidSpecError, match="required"):
            compile_pivot_value(value)


# =============================================================================
# Filters
# =============================================================================


@pytest.mark.unit
class TestCompilePivotFilters:
    """Tests for compile_pivot_filters()."""

    def test_should_compile_visible_values(self) -> None:
        filters = [PivotFilter(source_column="B", visible_values=["East", "West"])]

        assert compile_pivot_filters(filters) == [
            {"columnOffsetIndex": 1, "filterCriteria": {"visibleValues": ["East", "West"]}}
        ]

    def test_should_stringify_condition_operands(self) -> None:
        """Verify numeric operands are sent as user-entered strings."""
        filters = [
            PivotFilter(
                source_column=4,
                condition={"type": "NUMBER_BETWEEN", "values": [10, 100.0, 2.5]},
            )
        ]

        assert compile_pivot_filters(filters)[0]["filterCriteria"] == {
            "condition": {
                "type": "NUMBER_BETWEEN",
                "values": [
                    {"userEnteredValue": "10"},
                    {"userEnteredValue": "100"},
                    {"userEnteredValue": "2.5"},
                ],
            }
        }

    def test_should_omit_values_for_operandless_condition(self) -> None:
        filters = [PivotFilter(source_column="A", condition={"type": "NOT_BLANK"})]

        assert compile_pivot_filters(filters)[0]["filterCriteria"] == {
            "condition": {"type": "NOT_BLANK"}
        }

    def test_should_prefer_visible_values_over_condition(self) -> None:
        filters = [
            PivotFilter(
                source_column="A",
                visible_values=["x"],
                condition={"type": "TEXT_CONTAINS", "values": ["y"]},
            )
        ]

        assert compile_pivot_filters(filters)[0]["filterCriteria"] == {"visibleValues": ["x"]}

    def test_should_emit_empty_criteria_when_nothing_set(self) -> None:
        filters = [PivotFilter(source_column="C")]

        assert compile_pivot_filters(filters) == [
            {"columnOffsetIndex": 2, "filterCriteria": {}}
        ]

    def test_should_preserve_order(self) -> None:
        filters = [
            PivotFilter(source_column="C", visible_values=["a"]),
            PivotFilter(source_column="A", visible_values=["b"]),
        ]

        offsets = [spec["columnOffsetIndex"] for spec in compile_pivot_filters(filters)]
        assert offsets == [2, 0]


# =============================================================================
# Orchestrator
# =============================================================================


@pytest.mark.unit
class TestPivotTableCompiler:
    """Tests for PivotTableCompiler.compile()."""

    @pytest.mark.asyncio
    async def test_should_compile_end_to_end(self, make_metadata_client) -> None:
        """Verify a typical request compiles into the expected descriptor."""
        client = make_metadata_client(
            sheets=[SheetRef(sheet_id=0, title="Sheet1"), SheetRef(sheet_id=3, title="Sales")],
            next_sheet_id=42,
        )

        descriptor = await PivotTableCompiler(client).compile(
            _spec(source_range="Sales!A1:E100")
        )

        assert descriptor.source_region == GridRange(
            sheet_id=3, start_row=0, start_col=0, end_row=100, end_col=5
        )
        assert descriptor.rows[0]["sourceColumnOffset"] == 0
        assert descriptor.values[0] == {"summarizeFunction": "SUM", "sourceColumnOffset": 4}
        assert descriptor.destination_sheet_id == 42
        assert descriptor.destination_sheet_name == "Pivot Table"
        assert client.created == [("sheet-abc", "Pivot Table")]

    @pytest.mark.asyncio
    async def test_should_use_first_sheet_for_unqualified_range(self, metadata_client) -> None:
        descriptor = await PivotTableCompiler(metadata_client).compile(
            _spec(source_range="A:C")
        )

        assert descriptor.source_region.sheet_id == 0
        assert descriptor.source_region.end_row == 1000

    @pytest.mark.asyncio
    async def test_should_not_create_sheet_when_destination_given(self, metadata_client) -> None:
        descriptor = await PivotTableCompiler(metadata_client).compile(
            _spec(destination_sheet_id=7)
        )

        assert descriptor.destination_sheet_id == 7
        assert descriptor.destination_sheet_name is None
        assert metadata_client.created == []

    @pytest.mark.asyncio
    async def test_should_adopt_created_sheet_title(self, metadata_client) -> None:
        descriptor = await PivotTableCompiler(metadata_client).compile(
            _spec(destination_sheet_name="Summary")
        )

        assert descriptor.destination_sheet_name == "Summary"
        assert descriptor.destination_sheet_id == 900

    @pytest.mark.asyncio
    async def test_should_reject_malformed_range_before_lookup(self, metadata_client) -> None:
        with pytest.raises(InvalidFormatError):
            await PivotTableCompiler(metadata_client).compile(_spec(source_range="1A:E"))

        assert metadata_client.lookups == []
        assert metadata_client.created == []

    @pytest.mark.asyncio
    async def test_should_reject_reversed_range(self, metadata_client) -> None:
        with pytest.raises(InvalidFormatError, match="end before start"):
            await PivotTableCompiler(metadata_client).compile(_spec(source_range="Sales!E10:A1"))

        assert metadata_client.created == []

    @pytest.mark.asyncio
    async def test_should_name_row_cap_for_open_range_past_it(self, metadata_client) -> None:
        """Verify "A1500:C" is reported against the 1000-row cap, not as reversed."""
        with pytest.raises(InvalidFormatError, match="past row 1000") as exc_info:
            await PivotTableCompiler(metadata_client).compile(_spec(source_range="Sales!A1500:C"))

        assert "end before start" not in str(exc_info.value)
        assert exc_info.value.value == "Sales!A1500:C"
        assert metadata_client.lookups == []
        assert metadata_client.created == []

    @pytest.mark.asyncio
    async def test_should_accept_open_range_starting_on_last_capped_row(
        self, metadata_client
    ) -> None:
        descriptor = await PivotTableCompiler(metadata_client).compile(
            _spec(source_range="Sales!A1000:E")
        )

        source = descriptor.source_region
        assert (source.start_row, source.end_row) == (999, 1000)

    @pytest.mark.asyncio
    async def test_should_not_create_sheet_when_source_missing(self, metadata_client) -> None:
        with pytest.raises(SheetNotFoundError):
            await PivotTableCompiler(metadata_client).compile(_spec(source_range="Nope!A1:B2"))

        assert metadata_client.created == []

    @pytest.mark.asyncio
    async def test_should_not_create_sheet_when_value_invalid(self, metadata_client) -> None:
        spec = _spec()
        bad_value = PivotValue.model_construct(
            source_column=None,
            formula=None,
            summarize_function=SummarizeFunction.SUM,
            name=None,
            calculated_display_type=None,
        )
        spec = spec.model_copy(update={"values": [bad_value]})

        with pytest.raises(InvalidSpecError):
            await PivotTableCompiler(metadata_client).compile(spec)

        assert metadata_client.created == []

    @pytest.mark.asyncio
    async def test_should_reject_spec_without_groupings(self, metadata_client) -> None:
        spec = PivotTableSpec.model_construct(
            spreadsheet_id="sheet-abc",
            source_range="Sales!A1:E100",
            destination_sheet_id=None,
            destination_sheet_name="Pivot Table",
            rows=[],
            columns=None,
            values=[PivotValue(source_column="E", summarize_function="SUM")],
            filters=None,
            value_layout=ValueLayout.HORIZONTAL,
        )

        with pytest.raises(InvalidSpecError, match="row or column"):
            await PivotTableCompiler(metadata_client).compile(spec)

        assert metadata_client.created == []

    @pytest.mark.asyncio
    async def test_should_reject_invalid_column_letter(self, metadata_client) -> None:
        spec = _spec()
        bad_group = PivotGroup.model_construct(
            source_column="A1",
            label=None,
            show_totals=True,
            sort_order=None,
            sort_by_value=None,
            group_rule=None,
            group_limit=None,
        )
        spec = spec.model_copy(update={"rows": [bad_group]})

        with pytest.raises(InvalidFormatError):
            await PivotTableCompiler(metadata_client).compile(spec)

        assert metadata_client.created == []

    @pytest.mark.asyncio
    async def test_should_compile_columns_filters_and_layout(self, metadata_client) -> None:
        descriptor = await PivotTableCompiler(metadata_client).compile(
            _spec(
                rows=None,
                columns=[{"source_column": "B"}],
                filters=[{"source_column": "C", "visible_values": ["2024"]}],
                value_layout="VERTICAL",
                destination_sheet_id=0,
            )
        )

        pivot_table = descriptor.to_pivot_table()
        assert "rows" not in pivot_table
        assert pivot_table["columns"] == [{"sourceColumnOffset": 1, "showTotals": True}]
        assert pivot_table["filterSpecs"] == [
            {"columnOffsetIndex": 2, "filterCriteria": {"visibleValues": ["2024"]}}
        ]
        assert pivot_table["valueLayout"] == "VERTICAL"


@pytest.mark.unit
class TestPivotTableDescriptor:
    """Tests for descriptor serialization."""

    @pytest.mark.asyncio
    async def test_should_build_update_cells_request(self, metadata_client) -> None:
        descriptor = await PivotTableCompiler(metadata_client).compile(
            _spec(destination_sheet_id=7)
        )

        request = descriptor.to_update_request()

        update_cells = request["updateCells"]
        assert update_cells["fields"] == "pivotTable"
        assert update_cells["start"] == {"sheetId": 7, "rowIndex": 0, "columnIndex": 0}
        pivot_table = update_cells["rows"][0]["values"][0]["pivotTable"]
        assert pivot_table["source"] == {
            "sheetId": 7,
            "startRowIndex": 0,
            "startColumnIndex": 0,
            "endRowIndex": 100,
            "endColumnIndex": 5,
        }
        assert pivot_table["valueLayout"] == "HORIZONTAL"
        assert "filterSpecs" not in pivot_table
