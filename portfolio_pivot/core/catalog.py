"""
Dimension & Metric Catalog

Single source of truth for the field ids a pivot may reference:
- Dimensions: categorical fields facts are grouped by (area, project, month...)
- Metrics: numeric fields aggregated per group, each with its aggregation kind

Any id that reaches the engine is validated here first; an unknown id is a
configuration error, never defaulted.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from portfolio_pivot.core.error_taxonomy import UnknownDimensionError, UnknownMetricError
from portfolio_pivot.core.fiscal_calendar import FiscalCalendar, get_fiscal_calendar
from portfolio_pivot.core.models import FactRecord

logger = logging.getLogger(__name__)


class AggregationKind(Enum):
    """How a metric combines across a group."""
    SUM = "sum"
    AVERAGE = "average"
    WEIGHTED_RATIO = "weightedRatio"


class DimensionOrdering(Enum):
    """How a dimension's values sort in pivot headers."""
    NATURAL = "natural"
    MONTH = "month"
    YEAR = "year"


@dataclass(frozen=True)
class DimensionDescriptor:
    """A groupable field of a fact record."""
    id: str
    display_name: str
    value_extractor: Callable[[FactRecord], Any]
    ordering: DimensionOrdering = DimensionOrdering.NATURAL
    # Included in free-text "contains" search when no fields are named
    searchable: bool = False

    def value(self, fact: FactRecord) -> Any:
        return self.value_extractor(fact)


@dataclass(frozen=True)
class MetricDescriptor:
    """
    An aggregatable numeric field.

    For WEIGHTED_RATIO metrics, weight_metric names the metric whose group
    sum weights each fact's value (e.g. accuracy weighted by planned amount).
    source_field lets two metrics read the same fact value with different
    aggregation kinds.
    """
    id: str
    display_name: str
    aggregation: AggregationKind = AggregationKind.SUM
    currency: bool = False
    weight_metric: Optional[str] = None
    source_field: Optional[str] = None

    def __post_init__(self):
        if self.aggregation == AggregationKind.WEIGHTED_RATIO and not self.weight_metric:
            raise ValueError(f"Metric {self.id!r} is a weighted ratio but has no weight_metric")

    @property
    def field(self) -> str:
        return self.source_field or self.id

    def value(self, fact: FactRecord) -> Optional[float]:
        return fact.metric(self.field)


class Catalog:
    """
    Registry of dimensions and metrics.

    Usage:
        catalog = get_catalog()
        dim = catalog.dimension("month")
        metric = catalog.metric("assertiveness")
        catalog.dimension("colour")   # raises UnknownDimensionError
    """

    def __init__(
        self,
        dimensions: Iterable[DimensionDescriptor] = (),
        metrics: Iterable[MetricDescriptor] = (),
    ):
        self._dimensions: Dict[str, DimensionDescriptor] = {}
        self._metrics: Dict[str, MetricDescriptor] = {}
        for dimension in dimensions:
            self.register_dimension(dimension)
        for metric in metrics:
            self.register_metric(metric)

    def register_dimension(self, dimension: DimensionDescriptor) -> None:
        if dimension.id in self._dimensions or dimension.id in self._metrics:
            raise ValueError(f"Field id already registered: {dimension.id!r}")
        self._dimensions[dimension.id] = dimension

    def register_metric(self, metric: MetricDescriptor) -> None:
        if metric.id in self._metrics or metric.id in self._dimensions:
            raise ValueError(f"Field id already registered: {metric.id!r}")
        if metric.weight_metric and metric.weight_metric not in self._metrics:
            raise UnknownMetricError(metric.weight_metric, list(self._metrics))
        self._metrics[metric.id] = metric

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def dimension(self, dimension_id: str) -> DimensionDescriptor:
        try:
            return self._dimensions[dimension_id]
        except KeyError:
            raise UnknownDimensionError(dimension_id, list(self._dimensions)) from None

    def metric(self, metric_id: str) -> MetricDescriptor:
        try:
            return self._metrics[metric_id]
        except KeyError:
            raise UnknownMetricError(metric_id, list(self._metrics)) from None

    def has_dimension(self, dimension_id: str) -> bool:
        return dimension_id in self._dimensions

    def has_metric(self, metric_id: str) -> bool:
        return metric_id in self._metrics

    @property
    def dimension_ids(self) -> List[str]:
        return list(self._dimensions)

    @property
    def metric_ids(self) -> List[str]:
        return list(self._metrics)

    def dimensions(self, dimension_ids: Iterable[str]) -> List[DimensionDescriptor]:
        """Resolve ids in order, failing on the first unknown one."""
        return [self.dimension(d) for d in dimension_ids]

    def metrics(self, metric_ids: Iterable[str] = None) -> List[MetricDescriptor]:
        """Resolve metric ids in order; all registered metrics when ids is None."""
        if metric_ids is None:
            return list(self._metrics.values())
        return [self.metric(m) for m in metric_ids]

    def monetary_metrics(self) -> List[MetricDescriptor]:
        return [m for m in self._metrics.values() if m.currency]

    def searchable_dimensions(self) -> List[DimensionDescriptor]:
        return [d for d in self._dimensions.values() if d.searchable]

    def field_value(self, fact: FactRecord, field_id: str) -> Any:
        """
        Value of a dimension or metric on a fact.

        Used by filters, which may target either kind of field.
        """
        if field_id in self._dimensions:
            return self._dimensions[field_id].value(fact)
        if field_id in self._metrics:
            return self._metrics[field_id].value(fact)
        raise UnknownDimensionError(field_id, self.dimension_ids + self.metric_ids)

    def is_field(self, field_id: str) -> bool:
        return field_id in self._dimensions or field_id in self._metrics


def build_default_catalog(fiscal_calendar: FiscalCalendar = None) -> Catalog:
    """
    Catalog of the portfolio dashboard's report fields.

    Assertiveness is weighted by planned amount so projects with more
    financial exposure dominate a group's accuracy; assertiveness_avg reads
    the same value with a plain average.
    """
    cal = fiscal_calendar or get_fiscal_calendar()

    dimensions = [
        DimensionDescriptor("area", "Área", lambda f: f.area, searchable=True),
        DimensionDescriptor("project", "Projeto", lambda f: f.project_name or f.project_id, searchable=True),
        DimensionDescriptor("project_id", "Código do Projeto", lambda f: f.project_id, searchable=True),
        DimensionDescriptor("status", "Status", lambda f: f.status),
        DimensionDescriptor("month", "Mês", lambda f: f.month, ordering=DimensionOrdering.MONTH),
        DimensionDescriptor("year", "Ano", lambda f: f.fiscal_year, ordering=DimensionOrdering.YEAR),
        DimensionDescriptor("responsible", "Responsável", lambda f: f.responsible, searchable=True),
        DimensionDescriptor("category", "Categoria", lambda f: f.category, searchable=True),
        DimensionDescriptor("country", "País", lambda f: f.country),
        DimensionDescriptor("currency", "Moeda", lambda f: f.currency),
        DimensionDescriptor("kind", "Tipo", lambda f: f.kind.value),
        DimensionDescriptor("critical", "Crítico", lambda f: f.critical),
        DimensionDescriptor("period", "Período", lambda f: cal.period_start(f.fiscal_year, f.month)),
    ]

    metrics = [
        MetricDescriptor("target", "Target", AggregationKind.SUM, currency=True),
        MetricDescriptor("ac_sop", "AC+SOP", AggregationKind.SUM, currency=True),
        MetricDescriptor("variance", "Desvio", AggregationKind.SUM, currency=True),
        MetricDescriptor("planned", "Planejado", AggregationKind.SUM, currency=True),
        MetricDescriptor("realized", "Realizado", AggregationKind.SUM, currency=True),
        MetricDescriptor("committed", "Comprometido", AggregationKind.SUM, currency=True),
        MetricDescriptor("savings", "Savings", AggregationKind.SUM, currency=True),
        MetricDescriptor("budget", "Orçamento", AggregationKind.SUM, currency=True),
        MetricDescriptor(
            "assertiveness", "Assertividade %", AggregationKind.WEIGHTED_RATIO,
            weight_metric="planned",
        ),
        MetricDescriptor(
            "assertiveness_avg", "Assertividade Média %", AggregationKind.AVERAGE,
            source_field="assertiveness",
        ),
        MetricDescriptor("progress", "Progresso %", AggregationKind.AVERAGE),
    ]

    return Catalog(dimensions, metrics)


# Singleton instance
_catalog: Optional[Catalog] = None

def get_catalog() -> Catalog:
    """Get the default catalog instance."""
    global _catalog
    if _catalog is None:
        _catalog = build_default_catalog()
    return _catalog

def reset_catalog():
    """Reset the catalog (useful for testing)."""
    global _catalog
    _catalog = None
