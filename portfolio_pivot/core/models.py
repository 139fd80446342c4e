"""
Fact Records

The immutable unit of financial activity the engine aggregates: a
project-month snapshot, a transaction, or a portfolio line. Dimension
fields are plain attributes; metrics live in a read-only mapping keyed by
metric id and all monetary metrics share the record's currency.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from portfolio_pivot.core.fiscal_calendar import canonical_month_label


class FactKind(Enum):
    """Report context a fact record comes from."""
    PROJECT_MONTH = "project_month"
    TRANSACTION = "transaction"
    PORTFOLIO_ENTRY = "portfolio_entry"


@dataclass(frozen=True)
class FactRecord:
    """One atomic unit of financial data subject to aggregation."""
    project_id: str
    currency: str
    fiscal_year: Optional[int] = None
    metrics: Mapping[str, float] = field(default_factory=dict, hash=False)
    kind: FactKind = FactKind.PROJECT_MONTH
    project_name: Optional[str] = None
    area: Optional[str] = None
    status: Optional[str] = None
    month: Optional[str] = None
    responsible: Optional[str] = None
    category: Optional[str] = None
    country: Optional[str] = None
    critical: bool = False

    def __post_init__(self):
        object.__setattr__(self, "currency", self.currency.upper())
        if self.month is not None:
            # "Janeiro", "January" and "Jan" all group as "Jan"
            label = canonical_month_label(self.month)
            if label is not None:
                object.__setattr__(self, "month", label)
        metrics = {k: (float(v) if v is not None else None) for k, v in dict(self.metrics).items()}
        object.__setattr__(self, "metrics", MappingProxyType(metrics))

    def metric(self, metric_id: str) -> Optional[float]:
        """Value of a metric, or None when the record does not carry it."""
        return self.metrics.get(metric_id)

    def with_metrics(self, metrics: Mapping[str, float], currency: str = None) -> "FactRecord":
        """Copy of this record with replaced metrics (and optionally currency)."""
        return replace(self, metrics=metrics, currency=currency or self.currency)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "project_name": self.project_name,
            "kind": self.kind.value,
            "area": self.area,
            "status": self.status,
            "month": self.month,
            "fiscal_year": self.fiscal_year,
            "responsible": self.responsible,
            "category": self.category,
            "country": self.country,
            "currency": self.currency,
            "critical": self.critical,
            "metrics": dict(self.metrics),
        }
