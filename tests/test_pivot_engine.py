"""
Integration tests for the full pivot pipeline.
"""
import pytest

from portfolio_pivot.core.error_taxonomy import (
    ErrorCategory,
    InvalidFilterOperandError,
    InvalidPivotConfigurationError,
    MissingRateError,
    UnknownDimensionError,
    UnknownMetricError,
)
from portfolio_pivot.core.schemas import FilterCriterionModel, PivotConfigurationModel
from portfolio_pivot.tools.filter_engine import ALL, FilterCriterion, FilterOperator, FilterSet
from portfolio_pivot.tools.pivot_engine import PivotConfiguration, PivotEngine, criterion_from_model


@pytest.fixture
def engine(catalog, rate_table, calendar):
    return PivotEngine(catalog=catalog, rate_table=rate_table, calendar=calendar)


class TestPivotConfiguration:
    """Tests for configuration validation."""

    def test_duplicate_row_dimensions(self, engine, brl_facts):
        config = PivotConfiguration(row_dimensions=("area", "area"), metrics=("target",))
        with pytest.raises(InvalidPivotConfigurationError):
            engine.run(brl_facts, config)

    def test_overlapping_dimensions(self, engine, brl_facts):
        config = PivotConfiguration(row_dimensions=("area",), column_dimensions=("area",))
        with pytest.raises(InvalidPivotConfigurationError) as exc_info:
            engine.run(brl_facts, config)
        assert exc_info.value.category == ErrorCategory.INVALID_PIVOT_CONFIGURATION

    def test_unknown_dimension(self, engine, brl_facts):
        with pytest.raises(UnknownDimensionError):
            engine.run(brl_facts, PivotConfiguration(column_dimensions=("colour",)))

    def test_unknown_metric(self, engine, brl_facts):
        with pytest.raises(UnknownMetricError):
            engine.run(brl_facts, PivotConfiguration(metrics=("profit",)))

    def test_invalid_filter_fails_before_processing(self, engine):
        config = PivotConfiguration(filters=FilterSet.all_of(FilterCriterion.between("target", 5, 1)))
        with pytest.raises(InvalidFilterOperandError):
            engine.run([], config)

    def test_target_year_without_rates(self, engine, brl_facts):
        with pytest.raises(MissingRateError) as exc_info:
            engine.run(brl_facts, PivotConfiguration(target_year=2019))
        assert exc_info.value.classify().user_message == "Exchange rates unavailable for year 2019."

    def test_strict_target_currency(self, catalog, rate_table, calendar, brl_facts):
        strict = PivotEngine(catalog, rate_table, strict_rates=True, calendar=calendar)
        with pytest.raises(MissingRateError):
            strict.run(brl_facts, PivotConfiguration(target_currency="SEK", target_year=2024))

    def test_currency_upper_cased(self):
        assert PivotConfiguration(target_currency="usd").target_currency == "USD"


class TestPivotRun:
    """Tests for the pipeline output."""

    def test_ti_january_example(self, engine, mixed_currency_facts):
        config = PivotConfiguration(
            row_dimensions=("area",),
            column_dimensions=("month",),
            metrics=("target",),
            target_currency="BRL",
        )
        report = engine.run(mixed_currency_facts, config)
        cell = report.matrix.cell(("TI",), ("Jan",))
        assert cell.value("target") == pytest.approx(3600)
        assert cell.source_count == 2
        assert not report.is_degraded
        assert report.warnings == []

    def test_normalized_before_filtering(self, engine, mixed_currency_facts):
        # The USD fact is 2600 BRL, so only it passes a >= 2000 BRL filter
        config = PivotConfiguration(
            metrics=("target",),
            filters=FilterSet.all_of(FilterCriterion.between("target", 2000, None)),
            target_currency="BRL",
        )
        report = engine.run(mixed_currency_facts, config)
        assert [f.project_id for f in report.filter_result.data] == ["P2"]
        assert report.grand_total.value("target") == pytest.approx(2600)

    def test_inputs_not_mutated(self, engine, mixed_currency_facts):
        engine.run(mixed_currency_facts, PivotConfiguration(metrics=("target",), target_currency="BRL"))
        assert mixed_currency_facts[1].currency == "USD"
        assert mixed_currency_facts[1].metric("target") == 500

    def test_totals_reaggregate_facts(self, engine, brl_facts):
        config = PivotConfiguration(
            row_dimensions=("area",),
            column_dimensions=("month",),
            metrics=("target", "assertiveness"),
        )
        report = engine.run(brl_facts, config)

        assert report.row_totals[("TI",)].value("target") == 3500
        assert report.column_totals[("Jan",)].value("target") == 1800
        assert report.grand_total.value("target") == 4500
        assert report.grand_total.source_count == 5

        expected = (90 * 1000 + 80 * 500 + 105 * 2000 + 50 * 300 + 90 * 700) / 4500
        assert report.grand_total.value("assertiveness") == pytest.approx(expected)

    def test_single_axis_totals(self, engine, brl_facts):
        report = engine.run(brl_facts, PivotConfiguration(row_dimensions=("area",), metrics=("target",)))
        assert report.row_totals == {}
        assert set(report.column_totals) == {("Total",)}

    def test_totals_can_be_disabled(self, engine, brl_facts):
        config = PivotConfiguration(row_dimensions=("area",), metrics=("target",), include_totals=False)
        report = engine.run(brl_facts, config)
        assert report.grand_total is None
        assert report.row_totals == {}

    def test_empty_metrics_selects_all(self, engine, brl_facts, catalog):
        report = engine.run(brl_facts, PivotConfiguration(row_dimensions=("area",)))
        assert set(report.cells[0].metrics) == set(catalog.metric_ids)

    def test_no_matching_data_is_not_an_error(self, engine, brl_facts):
        config = PivotConfiguration(
            row_dimensions=("area",),
            column_dimensions=("month",),
            filters=FilterSet.all_of(FilterCriterion.equals("area", "Finance")),
        )
        report = engine.run(brl_facts, config)
        assert report.is_empty
        assert report.matrix.is_empty
        assert report.grand_total is None
        assert [w.category for w in report.warnings] == [ErrorCategory.NO_MATCHING_DATA]
        assert not report.is_degraded

    def test_rate_fallback_marks_report_degraded(self, engine, fact_factory):
        facts = [fact_factory("P1", currency="SEK", area="TI", target=100)]
        report = engine.run(facts, PivotConfiguration(row_dimensions=("area",), metrics=("target",)))
        assert report.is_degraded
        assert report.warnings[0].category == ErrorCategory.RATE_FALLBACK
        assert report.to_dict()["is_degraded"] is True

    def test_missing_fact_year_uses_target_year(self, engine, fact_factory):
        facts = [fact_factory("P1", currency="USD", fiscal_year=None, target=100)]
        report = engine.run(facts, PivotConfiguration(metrics=("target",), target_year=2023))
        assert report.grand_total.value("target") == pytest.approx(500)

    def test_fact_year_missing_from_table_propagates(self, engine, fact_factory):
        facts = [fact_factory("P1", currency="USD", fiscal_year=2019, target=100)]
        with pytest.raises(MissingRateError):
            engine.run(facts, PivotConfiguration(metrics=("target",)))

    def test_months_ordered_in_report(self, engine, brl_facts):
        report = engine.run(brl_facts, PivotConfiguration(column_dimensions=("month",), metrics=("target",)))
        assert report.matrix.column_headers == [("Jan",), ("Fev",), ("Abr",)]

    def test_to_dict(self, engine, brl_facts):
        data = engine.run(brl_facts, PivotConfiguration(row_dimensions=("area",), metrics=("target",))).to_dict()
        assert data["target_currency"] == "BRL"
        assert data["grand_total"]["metrics"]["target"] == 4500
        assert len(data["records"]) == 2


class TestFromModel:
    """Tests for building configurations from UI payloads."""

    def test_all_operand_becomes_sentinel(self):
        criterion = criterion_from_model(FilterCriterionModel(field_id="area", operator="in", operand=["all"]))
        assert criterion.operator == FilterOperator.IN
        assert criterion.operand is ALL

    def test_scalar_all_option_becomes_sentinel(self):
        criterion = criterion_from_model(FilterCriterionModel(field_id="status", operand=" All "))
        assert criterion.operand is ALL

    def test_missing_operand_is_unrestricted(self):
        criterion = criterion_from_model(FilterCriterionModel(field_id="area"))
        assert criterion.operand is ALL

    def test_unknown_operator(self):
        with pytest.raises(InvalidFilterOperandError):
            criterion_from_model(FilterCriterionModel(field_id="area", operator="like", operand="x"))

    def test_contains_is_case_insensitive(self):
        criterion = criterion_from_model(
            FilterCriterionModel(operator="contains", operand="erp", field_ids=["project"])
        )
        assert criterion.field_ids == ("project",)
        assert criterion.case_sensitive is False

    def test_run_model(self, engine, brl_facts):
        payload = {
            "row_dimensions": ["status"],
            "metrics": ["target"],
            "filters": [
                {"field_id": "area", "operator": "in", "operand": ["TI"]},
                {"field_id": "target", "operator": "range", "operand": [600, 5000]},
            ],
            "target_currency": "brl",
        }
        report = engine.run_model(brl_facts, payload)
        assert report.matrix.row_headers == [("Em Andamento",)]
        assert report.grand_total.value("target") == 3000

    def test_from_model_configuration(self):
        model = PivotConfigurationModel(row_dimensions=["area"], column_dimensions=["month"], target_year=2024)
        config = PivotConfiguration.from_model(model)
        assert config.row_dimensions == ("area",)
        assert config.target_year == 2024
        assert len(config.filters) == 0
