"""
Pivot Engine

Runs the full report pipeline for one configuration snapshot:

    raw facts -> currency normalization (per record) -> filters
              -> grouping & aggregation -> pivot layout

The engine is stateless between calls: the UI re-runs it on every filter
change, dimension drag or currency switch. Row, column and grand totals are
re-aggregated from the filtered facts so ratio metrics in totals never come
from summed or averaged cell values.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from portfolio_pivot.core.catalog import Catalog, get_catalog
from portfolio_pivot.core.currency import CurrencyNormalizer
from portfolio_pivot.core.error_taxonomy import (
    EngineWarning,
    ErrorCategory,
    InvalidFilterOperandError,
    InvalidPivotConfigurationError,
    MissingRateError,
)
from portfolio_pivot.core.exchange_rates import ExchangeRateTable, get_rate_table
from portfolio_pivot.core.fiscal_calendar import FiscalCalendar, get_fiscal_calendar
from portfolio_pivot.core.models import FactRecord
from portfolio_pivot.core.schemas import FilterCriterionModel, PivotConfigurationModel
from portfolio_pivot.tools.aggregation import AggregatedCell, Key, aggregate
from portfolio_pivot.tools.filter_engine import (
    ALL,
    FilterCriterion,
    FilterEngine,
    FilterOperator,
    FilterResult,
    FilterSet,
    is_all_option,
)
from portfolio_pivot.tools.pivot_layout import PivotMatrix, build_matrix

logger = logging.getLogger(__name__)

# Warning categories that mean the numbers themselves are approximations
_DEGRADING_CATEGORIES = {ErrorCategory.RATE_FALLBACK, ErrorCategory.WEIGHT_FALLBACK}


@dataclass(frozen=True)
class PivotConfiguration:
    """
    Snapshot of the UI's pivot settings.

    An empty metrics tuple selects every catalog metric. target_year only
    applies to facts without a fiscal year of their own.
    """
    row_dimensions: tuple = ()
    column_dimensions: tuple = ()
    metrics: tuple = ()
    filters: FilterSet = field(default_factory=FilterSet)
    target_currency: str = "BRL"
    target_year: Optional[int] = None
    include_totals: bool = True

    def __post_init__(self):
        object.__setattr__(self, "row_dimensions", tuple(self.row_dimensions))
        object.__setattr__(self, "column_dimensions", tuple(self.column_dimensions))
        object.__setattr__(self, "metrics", tuple(self.metrics))
        object.__setattr__(self, "target_currency", self.target_currency.upper())

    def validate(self, catalog: Catalog, rate_table: ExchangeRateTable = None, strict_rates: bool = False) -> None:
        """
        Check the configuration before any fact is processed.

        Raises:
            InvalidPivotConfigurationError: duplicated or overlapping dimensions
            UnknownDimensionError / UnknownMetricError: ids not in the catalog
            InvalidFilterOperandError: a filter that cannot be evaluated
            MissingRateError: target year without rates, or (strict) without
                a rate for the target currency
        """
        for axis, dims in (("row", self.row_dimensions), ("column", self.column_dimensions)):
            duplicates = sorted({d for d in dims if dims.count(d) > 1})
            if duplicates:
                raise InvalidPivotConfigurationError(
                    f"Duplicate {axis} dimensions: {duplicates}",
                    context={"axis": axis, "dimensions": duplicates},
                )
        overlap = sorted(set(self.row_dimensions) & set(self.column_dimensions))
        if overlap:
            raise InvalidPivotConfigurationError(
                f"Dimensions used as both row and column: {overlap}",
                context={"dimensions": overlap},
            )

        catalog.dimensions(self.row_dimensions)
        catalog.dimensions(self.column_dimensions)
        catalog.metrics(self.metrics)

        filter_engine = FilterEngine(catalog)
        for criterion in self.filters:
            filter_engine.compile(criterion)

        if rate_table is not None and self.target_year is not None:
            if not rate_table.has_year(self.target_year):
                raise MissingRateError(self.target_year)
            if strict_rates and rate_table.lookup(self.target_year, self.target_currency) is None:
                raise MissingRateError(self.target_year, self.target_currency)

    @classmethod
    def from_model(cls, model: PivotConfigurationModel) -> "PivotConfiguration":
        """Build a configuration from the validated UI payload."""
        return cls(
            row_dimensions=tuple(model.row_dimensions),
            column_dimensions=tuple(model.column_dimensions),
            metrics=tuple(model.metrics),
            filters=FilterSet(tuple(criterion_from_model(f) for f in model.filters)),
            target_currency=model.target_currency,
            target_year=model.target_year,
            include_totals=model.include_totals,
        )


def criterion_from_model(model: FilterCriterionModel) -> FilterCriterion:
    """Convert a UI filter payload into a FilterCriterion."""
    try:
        operator = FilterOperator(model.operator.strip().lower())
    except ValueError:
        raise InvalidFilterOperandError(
            f"Unknown filter operator: {model.operator!r}", model.field_id, model.operand
        ) from None

    operand = model.operand
    # The UI sends "all" for no restriction
    if operand is None or is_all_option(operand):
        operand = ALL
    elif operator == FilterOperator.IN and isinstance(operand, list):
        operand = ALL if any(is_all_option(v) for v in operand) else tuple(operand)
    elif operator == FilterOperator.RANGE and isinstance(operand, list):
        operand = tuple(operand)

    return FilterCriterion(
        operator=operator,
        field_id=model.field_id,
        operand=operand,
        field_ids=tuple(model.field_ids),
        case_sensitive=model.case_sensitive if operator != FilterOperator.CONTAINS else False,
    )


@dataclass
class PivotReport:
    """Everything a report screen needs to render one pivot."""
    matrix: PivotMatrix
    cells: List[AggregatedCell]
    configuration: PivotConfiguration
    filter_result: FilterResult
    row_totals: Dict[Key, AggregatedCell] = field(default_factory=dict)
    column_totals: Dict[Key, AggregatedCell] = field(default_factory=dict)
    grand_total: Optional[AggregatedCell] = None
    warnings: List[EngineWarning] = field(default_factory=list)

    @property
    def is_degraded(self) -> bool:
        """True when the numbers rely on a fallback the UI should caveat."""
        return any(w.category in _DEGRADING_CATEGORIES for w in self.warnings)

    @property
    def is_empty(self) -> bool:
        return not self.cells

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_currency": self.configuration.target_currency,
            "row_dimensions": list(self.configuration.row_dimensions),
            "column_dimensions": list(self.configuration.column_dimensions),
            "records": self.matrix.to_records(),
            "row_totals": [c.to_dict() for c in self.row_totals.values()],
            "column_totals": [c.to_dict() for c in self.column_totals.values()],
            "grand_total": self.grand_total.to_dict() if self.grand_total else None,
            "filters": self.filter_result.filter_summary,
            "warnings": [w.to_dict() for w in self.warnings],
            "is_degraded": self.is_degraded,
        }


def _merge_warnings(*groups: Sequence[EngineWarning]) -> List[EngineWarning]:
    merged: List[EngineWarning] = []
    for group in groups:
        for warning in group:
            if warning not in merged:
                merged.append(warning)
    return merged


class PivotEngine:
    """
    Orchestrates normalization, filtering, aggregation and layout.

    Usage:
        engine = PivotEngine(catalog, rate_table)
        report = engine.run(facts, PivotConfiguration(
            row_dimensions=("area",),
            column_dimensions=("month",),
            metrics=("target", "assertiveness"),
            target_currency="BRL",
        ))
    """

    def __init__(
        self,
        catalog: Catalog = None,
        rate_table: ExchangeRateTable = None,
        strict_rates: bool = False,
        calendar: FiscalCalendar = None,
        total_label: str = "Total",
    ):
        self.catalog = catalog or get_catalog()
        self.rate_table = rate_table if rate_table is not None else get_rate_table()
        self.strict_rates = strict_rates
        self.calendar = calendar or get_fiscal_calendar()
        self.total_label = total_label
        self.normalizer = CurrencyNormalizer(self.rate_table, strict=strict_rates)
        self.filter_engine = FilterEngine(self.catalog)

    def run(self, facts: Sequence[FactRecord], config: PivotConfiguration) -> PivotReport:
        """
        Run the pipeline for one configuration.

        Args:
            facts: Fact records from the data layer (not modified)
            config: Pivot configuration snapshot

        Returns:
            PivotReport with the matrix, totals and collected warnings
        """
        config.validate(self.catalog, self.rate_table, self.strict_rates)
        metric_ids = list(config.metrics) or self.catalog.metric_ids
        logger.info(
            f"Pivot: {len(facts)} facts, rows={list(config.row_dimensions)}, "
            f"columns={list(config.column_dimensions)}, currency={config.target_currency}"
        )

        normalized = self.normalizer.normalize_facts(
            facts, config.target_currency, self.catalog, fallback_year=config.target_year
        )
        filter_result = self.filter_engine.apply_filters(normalized.facts, config.filters)
        filtered = filter_result.data

        stage_warnings = [normalized.warnings]
        if not filtered:
            stage_warnings.append([EngineWarning(
                category=ErrorCategory.NO_MATCHING_DATA,
                message="No facts match the selected filters",
                context={"filters": filter_result.filters_applied},
            )])

        aggregation = self._aggregate(filtered, config.row_dimensions, config.column_dimensions, metric_ids)
        stage_warnings.append(aggregation.warnings)
        matrix = build_matrix(
            aggregation.cells, config.row_dimensions, config.column_dimensions,
            self.catalog, self.calendar,
        )

        row_totals: Dict[Key, AggregatedCell] = {}
        column_totals: Dict[Key, AggregatedCell] = {}
        grand_total = None
        if config.include_totals and filtered:
            if config.column_dimensions:
                by_row = self._aggregate(filtered, config.row_dimensions, (), metric_ids)
                row_totals = {c.row_key: c for c in by_row.cells}
            if config.row_dimensions:
                by_column = self._aggregate(filtered, (), config.column_dimensions, metric_ids)
                column_totals = {c.column_key: c for c in by_column.cells}
            grand = self._aggregate(filtered, (), (), metric_ids)
            grand_total = grand.cells[0] if grand.cells else None

        warnings = _merge_warnings(*stage_warnings)
        report = PivotReport(
            matrix=matrix,
            cells=aggregation.cells,
            configuration=config,
            filter_result=filter_result,
            row_totals=row_totals,
            column_totals=column_totals,
            grand_total=grand_total,
            warnings=warnings,
        )
        if report.is_degraded:
            logger.warning(f"Pivot result is degraded: {len(warnings)} warning(s)")
        return report

    def run_model(self, facts: Sequence[FactRecord], payload: Dict[str, Any]) -> PivotReport:
        """Run from a raw UI configuration payload."""
        model = PivotConfigurationModel.model_validate(payload)
        return self.run(facts, PivotConfiguration.from_model(model))

    def _aggregate(self, facts, row_dimensions, column_dimensions, metric_ids):
        return aggregate(
            facts,
            row_dimensions,
            column_dimensions,
            metric_ids,
            catalog=self.catalog,
            total_label=self.total_label,
        )


# Singleton instance
_pivot_engine: Optional[PivotEngine] = None

def get_pivot_engine() -> PivotEngine:
    """Get the pivot engine configured from settings."""
    global _pivot_engine
    if _pivot_engine is None:
        from config.settings import get_config

        config = get_config()
        _pivot_engine = PivotEngine(
            rate_table=get_rate_table(),
            strict_rates=config.rates.strict_rates,
            calendar=FiscalCalendar(config.pivot.fiscal_year_start_month),
            total_label=config.pivot.total_label,
        )
    return _pivot_engine

def reset_pivot_engine():
    """Reset the pivot engine (useful for testing or reloading config)."""
    global _pivot_engine
    _pivot_engine = None
