"""
Report pipeline: filters, aggregation, pivot layout, KPIs and sample data.
"""
from portfolio_pivot.tools.filter_engine import (
    ALL,
    FilterCriterion,
    FilterEngine,
    FilterOperator,
    FilterResult,
    FilterSet,
    apply_filters,
)
from portfolio_pivot.tools.aggregation import AggregatedCell, AggregationResult, aggregate
from portfolio_pivot.tools.pivot_layout import NO_DATA, PivotMatrix, build_matrix
from portfolio_pivot.tools.portfolio_metrics import (
    AccuracyStatus,
    PortfolioSummary,
    accuracy,
    accuracy_status,
    execution_rate,
    portfolio_summary,
    rank_by_accuracy,
)
from portfolio_pivot.tools.pivot_engine import (
    PivotConfiguration,
    PivotEngine,
    PivotReport,
    get_pivot_engine,
)
