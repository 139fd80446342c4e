"""
Unit tests for the pivot layout builder.
"""
import math

import pandas as pd
import pytest

from portfolio_pivot.core.fiscal_calendar import MONTH_LABELS, FiscalCalendar
from portfolio_pivot.tools.aggregation import AggregatedCell, aggregate
from portfolio_pivot.tools.pivot_layout import NO_DATA, build_matrix, sort_keys


def _pivot(facts, rows, cols, metrics, catalog, calendar):
    cells = aggregate(facts, rows, cols, metrics, catalog=catalog).cells
    return build_matrix(cells, rows, cols, catalog, calendar)


class TestHeaders:
    """Tests for header ordering."""

    def test_months_in_calendar_order(self, catalog, calendar, fact_factory):
        # Alphabetical insertion order: Abr, Ago, Dez, Fev, ...
        facts = [fact_factory(month=m, target=1) for m in sorted(MONTH_LABELS)]
        matrix = _pivot(facts, ["month"], [], ["target"], catalog, calendar)
        assert [h[0] for h in matrix.row_headers] == MONTH_LABELS

    def test_months_follow_fiscal_start(self, catalog, fact_factory):
        facts = [fact_factory(month=m, target=1) for m in ["Jan", "Abr", "Dez"]]
        matrix = _pivot(facts, [], ["month"], ["target"], catalog, FiscalCalendar(4))
        assert [h[0] for h in matrix.column_headers] == ["Abr", "Dez", "Jan"]

    def test_years_sort_numerically(self, catalog, calendar, fact_factory):
        facts = [fact_factory(fiscal_year=y, target=1) for y in [2024, 999, 2023]]
        matrix = _pivot(facts, ["year"], [], ["target"], catalog, calendar)
        assert [h[0] for h in matrix.row_headers] == [999, 2023, 2024]

    def test_unknown_sorts_last(self, catalog, calendar, fact_factory):
        facts = [fact_factory("P1", target=1), fact_factory("P2", area="Zeta", target=1),
                 fact_factory("P3", area="Alpha", target=1)]
        matrix = _pivot(facts, ["area"], [], ["target"], catalog, calendar)
        assert [h[0] for h in matrix.row_headers] == ["Alpha", "Zeta", "Unknown"]

    def test_composite_keys_sort_component_wise(self, catalog, calendar, brl_facts):
        matrix = _pivot(brl_facts, ["area", "month"], [], ["target"], catalog, calendar)
        assert matrix.row_headers == [
            ("Marketing", "Jan"), ("Marketing", "Abr"), ("TI", "Jan"), ("TI", "Fev"),
        ]

    def test_sort_keys_without_dimensions_keeps_order(self):
        assert sort_keys([("b",), ("a",)], []) == [("b",), ("a",)]


class TestMatrix:
    """Tests for matrix shape and content."""

    def test_missing_pairs_are_no_data(self, catalog, calendar, brl_facts):
        matrix = _pivot(brl_facts, ["area"], ["month"], ["target"], catalog, calendar)
        assert matrix.row_headers == [("Marketing",), ("TI",)]
        assert matrix.column_headers == [("Jan",), ("Fev",), ("Abr",)]
        assert matrix.shape == (2, 3)
        assert matrix.cell(("Marketing",), ("Fev",)) is NO_DATA
        assert matrix.cell(("TI",), ("Abr",)) is NO_DATA
        assert matrix.cell(("TI",), ("Jan",)).value("target") == 1500

    def test_zero_is_not_no_data(self, catalog, calendar, fact_factory):
        facts = [fact_factory(area="TI", target=0)]
        matrix = _pivot(facts, ["area"], ["month"], ["target"], catalog, calendar)
        assert matrix.values("target") == [[0]]

    def test_cell_lookup_outside_headers(self, catalog, calendar, brl_facts):
        matrix = _pivot(brl_facts, ["area"], [], ["target"], catalog, calendar)
        assert matrix.cell(("Finance",), ("Total",)) is NO_DATA

    def test_single_axis_uses_total_column(self, catalog, calendar, brl_facts):
        matrix = _pivot(brl_facts, ["area"], [], ["target"], catalog, calendar)
        assert matrix.column_headers == [("Total",)]
        assert matrix.values("target") == [[1000], [3500]]

    def test_no_dimensions_gives_total_only(self, catalog, calendar, brl_facts):
        matrix = _pivot(brl_facts, [], [], ["target"], catalog, calendar)
        assert matrix.row_headers == []
        assert matrix.column_headers == []
        assert matrix.matrix == []
        assert matrix.total.value("target") == 4500
        assert not matrix.is_empty

    def test_empty_cells(self, catalog, calendar):
        matrix = build_matrix([], ["area"], ["month"], catalog, calendar)
        assert matrix.row_headers == []
        assert matrix.column_headers == []
        assert matrix.matrix == []
        assert matrix.total is None
        assert matrix.is_empty

    def test_deterministic(self, catalog, calendar, brl_facts):
        first = _pivot(brl_facts, ["area"], ["month"], ["target"], catalog, calendar)
        second = _pivot(list(reversed(brl_facts)), ["area"], ["month"], ["target"], catalog, calendar)
        assert first.row_headers == second.row_headers
        assert first.column_headers == second.column_headers
        assert first.values("target") == second.values("target")


class TestExports:
    """Tests for the DataFrame and record adapters."""

    def test_to_dataframe(self, catalog, calendar, brl_facts):
        matrix = _pivot(brl_facts, ["area"], ["month"], ["target"], catalog, calendar)
        df = matrix.to_dataframe("target")
        assert list(df.index) == ["Marketing", "TI"]
        assert list(df.columns) == ["Jan", "Fev", "Abr"]
        assert df.index.name == "area"
        assert df.loc["TI", "Jan"] == 1500
        assert math.isnan(df.loc["TI", "Abr"])

    def test_to_dataframe_multiindex(self, catalog, calendar, brl_facts):
        matrix = _pivot(brl_facts, ["area", "month"], [], ["target"], catalog, calendar)
        df = matrix.to_dataframe("target")
        assert isinstance(df.index, pd.MultiIndex)
        assert list(df.index.names) == ["area", "month"]
        assert df.loc[("TI", "Fev"), "Total"] == 2000

    def test_to_dataframe_total_only(self, catalog, calendar, brl_facts):
        df = _pivot(brl_facts, [], [], ["target"], catalog, calendar).to_dataframe("target")
        assert df.loc["Total", "target"] == 4500

    def test_to_dataframe_empty(self, catalog, calendar):
        assert build_matrix([], ["area"], [], catalog, calendar).to_dataframe("target").empty

    def test_to_records(self, catalog, calendar, brl_facts):
        matrix = _pivot(brl_facts, ["area"], ["month"], ["target"], catalog, calendar)
        records = matrix.to_records()
        assert len(records) == 6
        first = records[0]
        assert first["row"] == {"area": "Marketing"}
        assert first["column"] == {"month": "Jan"}
        assert first["metrics"] == {"target": 300}
        no_data = [r for r in records if r["no_data"]]
        assert len(no_data) == 2
        assert all(r["source_count"] == 0 for r in no_data)

    def test_to_records_serialises_dates(self, catalog, calendar, brl_facts):
        matrix = _pivot(brl_facts, ["period"], [], ["target"], catalog, calendar)
        records = matrix.to_records(["target"])
        assert records[0]["row"] == {"period": "2024-01-01"}

    def test_hand_built_cells(self, catalog, calendar):
        cells = [
            AggregatedCell(("TI",), ("Fev",), {"target": 1.0}, 1),
            AggregatedCell(("TI",), ("Jan",), {"target": 2.0}, 1),
        ]
        matrix = build_matrix(cells, ["area"], ["month"], catalog, calendar)
        assert matrix.column_headers == [("Jan",), ("Fev",)]
        assert matrix.values("target") == [[2.0, 1.0]]
