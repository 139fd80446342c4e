"""
Grouping & Aggregation Engine

Groups fact records by (row key, column key) and aggregates each group's
metrics according to the catalog:

- sum:            arithmetic sum (target, realized, committed, variance...)
- average:        unweighted mean; ratio metrics are never summed
- weightedRatio:  mean weighted by the group's summed weight metric,
                  falling back to the unweighted mean when that sum is zero
                  or any weight is negative

Keys are tuples of dimension values. A missing dimension value groups as
"Unknown"; an empty dimension list gives the single key ("Total",).

Monetary metrics must already share one currency: run the facts through the
CurrencyNormalizer first, or pass it in so aggregate() does it per record.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from portfolio_pivot.core.catalog import AggregationKind, Catalog, MetricDescriptor, get_catalog
from portfolio_pivot.core.currency import CurrencyNormalizer
from portfolio_pivot.core.error_taxonomy import (
    EngineWarning,
    ErrorCategory,
    InvalidPivotConfigurationError,
    RecoveryAction,
)
from portfolio_pivot.core.models import FactRecord

logger = logging.getLogger(__name__)

UNKNOWN_VALUE = "Unknown"
DEFAULT_TOTAL_LABEL = "Total"

Key = Tuple[Any, ...]


@dataclass
class AggregatedCell:
    """One (row key, column key) group and its aggregated metrics."""
    row_key: Key
    column_key: Key
    metrics: Dict[str, Optional[float]]
    source_count: int
    # Weighted-ratio metrics that fell back to an unweighted mean
    fallback_metrics: Tuple[str, ...] = ()

    def value(self, metric_id: str) -> Optional[float]:
        return self.metrics.get(metric_id)

    @property
    def is_degraded(self) -> bool:
        return bool(self.fallback_metrics)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row_key": list(self.row_key),
            "column_key": list(self.column_key),
            "metrics": dict(self.metrics),
            "source_count": self.source_count,
            "fallback_metrics": list(self.fallback_metrics),
        }


@dataclass
class AggregationResult:
    """Result of an aggregation pass."""
    cells: List[AggregatedCell]
    row_dimensions: List[str] = field(default_factory=list)
    column_dimensions: List[str] = field(default_factory=list)
    metrics: List[str] = field(default_factory=list)
    warnings: List[EngineWarning] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.cells)

    def cell_map(self) -> Dict[Tuple[Key, Key], AggregatedCell]:
        return {(c.row_key, c.column_key): c for c in self.cells}

    def to_list(self) -> List[Dict[str, Any]]:
        return [c.to_dict() for c in self.cells]

    def __len__(self) -> int:
        return len(self.cells)

    def __iter__(self):
        return iter(self.cells)


class _MetricAccumulator:
    """Running state for one metric within one group."""

    __slots__ = ("metric", "total", "count", "weighted_total", "weight_total", "negative_weight")

    def __init__(self, metric: MetricDescriptor):
        self.metric = metric
        self.total = 0.0
        self.count = 0
        self.weighted_total = 0.0
        self.weight_total = 0.0
        self.negative_weight = False

    def add(self, value: Optional[float], weight: Optional[float] = None) -> None:
        if value is None:
            return
        self.total += value
        self.count += 1
        if self.metric.aggregation == AggregationKind.WEIGHTED_RATIO:
            weight = weight or 0.0
            self.weighted_total += value * weight
            self.weight_total += weight
            if weight < 0:
                self.negative_weight = True

    def result(self) -> Tuple[Optional[float], bool]:
        """Aggregated value and whether the weighted fallback was used."""
        kind = self.metric.aggregation
        if kind == AggregationKind.SUM:
            return self.total, False
        if self.count == 0:
            return None, False
        if kind == AggregationKind.AVERAGE:
            return self.total / self.count, False
        # Mixed-sign weights can put the weighted mean outside [min, max]
        if self.weight_total == 0 or self.negative_weight:
            return self.total / self.count, True
        return self.weighted_total / self.weight_total, False


def build_key(fact: FactRecord, dimensions: Sequence, total_label: str = DEFAULT_TOTAL_LABEL) -> Key:
    """
    Composite key of a fact for the given dimension descriptors.

    Values are kept as-is (years stay ints, dates stay dates) so the layout
    builder can order them; None becomes "Unknown".
    """
    if not dimensions:
        return (total_label,)
    parts = []
    for dimension in dimensions:
        value = dimension.value(fact)
        parts.append(UNKNOWN_VALUE if value is None else value)
    return tuple(parts)


def _resolve_metrics(
    metrics: Sequence[Union[str, MetricDescriptor]], catalog: Catalog
) -> List[MetricDescriptor]:
    resolved = []
    for metric in metrics:
        descriptor = catalog.metric(metric) if isinstance(metric, str) else metric
        if descriptor.weight_metric:
            # Fail on a dangling weight reference before touching any fact
            catalog.metric(descriptor.weight_metric)
        resolved.append(descriptor)
    return resolved


def _check_single_currency(facts: Sequence[FactRecord], metrics: List[MetricDescriptor]) -> None:
    if not any(m.currency for m in metrics):
        return
    currencies = {f.currency for f in facts}
    if len(currencies) > 1:
        raise InvalidPivotConfigurationError(
            f"Cannot sum monetary metrics across currencies {sorted(currencies)}; "
            f"normalize facts to one currency first",
            context={"currencies": sorted(currencies)},
        )


def aggregate(
    facts: Sequence[FactRecord],
    row_dimensions: Sequence[str],
    column_dimensions: Sequence[str],
    metrics: Sequence[Union[str, MetricDescriptor]],
    catalog: Catalog = None,
    normalizer: CurrencyNormalizer = None,
    target_currency: str = None,
    fallback_year: int = None,
    total_label: str = DEFAULT_TOTAL_LABEL,
) -> AggregationResult:
    """
    Group facts by row and column keys and aggregate metrics per group.

    Args:
        facts: Fact records (not modified)
        row_dimensions: Dimension ids forming the row key
        column_dimensions: Dimension ids forming the column key
        metrics: Metric ids or descriptors to aggregate
        catalog: Dimension & metric catalog (default catalog when None)
        normalizer: When given with target_currency, facts are converted per
                    record (own fiscal year and month) before summation
        target_currency: Currency every monetary metric is expressed in
        fallback_year: Fiscal year for facts that carry none
        total_label: Key part used for an empty dimension list

    Returns:
        AggregationResult with one cell per non-empty group, in order of first
        appearance, plus any fallback warnings
    """
    catalog = catalog or get_catalog()
    row_dims = catalog.dimensions(row_dimensions)
    col_dims = catalog.dimensions(column_dimensions)
    metric_descriptors = _resolve_metrics(metrics, catalog)

    warnings: List[EngineWarning] = []
    if not facts:
        return AggregationResult(
            cells=[],
            row_dimensions=list(row_dimensions),
            column_dimensions=list(column_dimensions),
            metrics=[m.id for m in metric_descriptors],
            warnings=warnings,
        )

    if normalizer is not None and target_currency:
        normalized = normalizer.normalize_facts(facts, target_currency, catalog, fallback_year)
        facts = normalized.facts
        warnings.extend(normalized.warnings)
    _check_single_currency(facts, metric_descriptors)

    weight_fields = {
        m.id: catalog.metric(m.weight_metric).field
        for m in metric_descriptors
        if m.aggregation == AggregationKind.WEIGHTED_RATIO
    }

    groups: "OrderedDict[Tuple[Key, Key], Tuple[List[_MetricAccumulator], List[int]]]" = OrderedDict()
    for fact in facts:
        key = (build_key(fact, row_dims, total_label), build_key(fact, col_dims, total_label))
        group = groups.get(key)
        if group is None:
            group = ([_MetricAccumulator(m) for m in metric_descriptors], [0])
            groups[key] = group
        accumulators, count = group
        count[0] += 1
        for acc in accumulators:
            weight_field = weight_fields.get(acc.metric.id)
            weight = fact.metric(weight_field) if weight_field else None
            acc.add(acc.metric.value(fact), weight)

    cells = []
    for (row_key, column_key), (accumulators, count) in groups.items():
        values: Dict[str, Optional[float]] = {}
        fallbacks = []
        for acc in accumulators:
            value, fell_back = acc.result()
            values[acc.metric.id] = value
            if fell_back:
                fallbacks.append(acc.metric.id)
        if fallbacks:
            message = (
                f"Zero or negative weight for {', '.join(fallbacks)} in group "
                f"{row_key} x {column_key}; using unweighted average"
            )
            logger.warning(message)
            warnings.append(EngineWarning(
                category=ErrorCategory.WEIGHT_FALLBACK,
                message=message,
                context={"row_key": row_key, "column_key": column_key, "metrics": fallbacks},
                recovery=RecoveryAction.fallback("unweighted average"),
            ))
        cells.append(AggregatedCell(
            row_key=row_key,
            column_key=column_key,
            metrics=values,
            source_count=count[0],
            fallback_metrics=tuple(fallbacks),
        ))

    logger.info(
        f"Aggregate: {len(facts)} facts -> {len(cells)} cells "
        f"(rows={list(row_dimensions)}, columns={list(column_dimensions)}, "
        f"metrics={[m.id for m in metric_descriptors]})"
    )

    return AggregationResult(
        cells=cells,
        row_dimensions=list(row_dimensions),
        column_dimensions=list(column_dimensions),
        metrics=[m.id for m in metric_descriptors],
        warnings=warnings,
    )
