"""
Portfolio KPI Calculations

All KPI numbers shown on the report screens are computed here by
deterministic code: execution rate, accuracy and its status band,
portfolio-level summaries and period rankings.

Accuracy (assertividade) is realized / planned x 100. Status bands:
    >= 90  Excelente
    >= 80  Bom
    >= 70  Atenção
    <  70  Crítico
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from portfolio_pivot.core.catalog import Catalog, get_catalog
from portfolio_pivot.core.models import FactRecord
from portfolio_pivot.tools.aggregation import UNKNOWN_VALUE, AggregatedCell, aggregate
from portfolio_pivot.tools.pivot_layout import sort_keys

logger = logging.getLogger(__name__)

OVERDUE_STATUS = "Em Atraso"


class AccuracyStatus(Enum):
    """Accuracy status bands used by the dashboards."""
    EXCELLENT = "Excelente"
    GOOD = "Bom"
    ATTENTION = "Atenção"
    CRITICAL = "Crítico"


# (lower bound, status), highest first
ACCURACY_BANDS = [
    (90.0, AccuracyStatus.EXCELLENT),
    (80.0, AccuracyStatus.GOOD),
    (70.0, AccuracyStatus.ATTENTION),
]


class ExecutionTrend(Enum):
    """Budget execution trend shown on the portfolio insights card."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class ProjectGap:
    """Budget still available for one project."""
    project_id: str
    project_name: str
    budget: float
    realized: float

    @property
    def gap(self) -> float:
        return self.budget - self.realized


@dataclass
class PortfolioSummary:
    """Headline numbers of a (filtered) portfolio."""
    currency: Optional[str]
    project_count: int
    total_budget: float
    total_realized: float
    critical_projects: int
    overdue_projects: int
    highest_spender: Optional[str] = None
    highest_spent: float = 0.0
    biggest_gaps: List[ProjectGap] = field(default_factory=list)

    @property
    def balance(self) -> float:
        return self.total_budget - self.total_realized

    @property
    def execution_rate(self) -> Optional[float]:
        return execution_rate(self.total_realized, self.total_budget)

    @property
    def trend(self) -> Optional[ExecutionTrend]:
        rate = self.execution_rate
        if rate is None:
            return None
        if rate > 85:
            return ExecutionTrend.HIGH
        if rate > 70:
            return ExecutionTrend.MEDIUM
        return ExecutionTrend.LOW

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currency": self.currency,
            "project_count": self.project_count,
            "total_budget": self.total_budget,
            "total_realized": self.total_realized,
            "balance": self.balance,
            "execution_rate": self.execution_rate,
            "trend": self.trend.value if self.trend else None,
            "critical_projects": self.critical_projects,
            "overdue_projects": self.overdue_projects,
            "highest_spender": self.highest_spender,
            "highest_spent": self.highest_spent,
            "biggest_gaps": [
                {"project_id": g.project_id, "project_name": g.project_name, "gap": g.gap}
                for g in self.biggest_gaps
            ],
        }


@dataclass
class RankedCell:
    """An aggregated cell annotated with its accuracy rank and band."""
    rank: int
    cell: AggregatedCell
    accuracy: float
    status: AccuracyStatus


@dataclass
class PeriodResult:
    """A single period picked out of a monthly series."""
    period: Any
    value: float
    metric_id: str


def _safe_divide(numerator: float, denominator: float) -> Optional[float]:
    """Safe division with zero handling."""
    if not denominator:
        return None
    return numerator / denominator


def format_currency(value: float, currency: str = "BRL") -> str:
    """Compact currency label, e.g. "BRL 1.25M"."""
    magnitude = abs(value)
    if magnitude >= 1_000_000:
        return f"{currency} {value/1_000_000:,.2f}M"
    elif magnitude >= 1_000:
        return f"{currency} {value/1_000:,.2f}K"
    else:
        return f"{currency} {value:,.2f}"


def format_percentage(value: Optional[float]) -> str:
    """Format a 0-100 percentage."""
    if value is None:
        return "N/A"
    return f"{value:.1f}%"


# ==================== RATES ====================

def execution_rate(realized: float, budget: float) -> Optional[float]:
    """Realized / budget x 100; None when there is no budget."""
    value = _safe_divide(realized, budget)
    return value * 100 if value is not None else None


def accuracy(planned: float, realized: float) -> float:
    """Realized / planned x 100; 0 when nothing was planned."""
    value = _safe_divide(realized, planned)
    return value * 100 if value is not None else 0.0


def accuracy_status(value: float) -> AccuracyStatus:
    """Status band of an accuracy percentage."""
    for lower_bound, status in ACCURACY_BANDS:
        if value >= lower_bound:
            return status
    return AccuracyStatus.CRITICAL


# ==================== PORTFOLIO ====================

def portfolio_summary(facts: Sequence[FactRecord], top_gaps: int = 3) -> PortfolioSummary:
    """
    Summarize a portfolio.

    Facts are rolled up per project first (a project can have one fact per
    month), so counts are of distinct projects. All facts must share one
    currency; normalize them beforehand.

    Args:
        facts: Fact records, already in a single currency
        top_gaps: How many projects to list by remaining budget

    Returns:
        PortfolioSummary; an empty input gives zero totals and no spender
    """
    currencies = {f.currency for f in facts}
    if len(currencies) > 1:
        raise ValueError(f"Portfolio summary needs one currency, got {sorted(currencies)}")

    projects: Dict[str, Dict[str, Any]] = {}
    for fact in facts:
        project = projects.setdefault(fact.project_id, {
            "name": fact.project_name or fact.project_id,
            "budget": 0.0,
            "realized": 0.0,
            "critical": False,
            "overdue": False,
        })
        project["budget"] += fact.metric("budget") or 0.0
        project["realized"] += fact.metric("realized") or 0.0
        project["critical"] = project["critical"] or fact.critical
        project["overdue"] = project["overdue"] or fact.status == OVERDUE_STATUS

    highest_spender = None
    highest_spent = 0.0
    if projects:
        spender_id = max(projects, key=lambda pid: projects[pid]["realized"])
        highest_spender = projects[spender_id]["name"]
        highest_spent = projects[spender_id]["realized"]

    gaps = sorted(
        (ProjectGap(pid, p["name"], p["budget"], p["realized"]) for pid, p in projects.items()),
        key=lambda g: g.gap,
        reverse=True,
    )[:top_gaps]

    summary = PortfolioSummary(
        currency=next(iter(currencies)) if currencies else None,
        project_count=len(projects),
        total_budget=sum(p["budget"] for p in projects.values()),
        total_realized=sum(p["realized"] for p in projects.values()),
        critical_projects=sum(1 for p in projects.values() if p["critical"]),
        overdue_projects=sum(1 for p in projects.values() if p["overdue"]),
        highest_spender=highest_spender,
        highest_spent=highest_spent,
        biggest_gaps=gaps,
    )
    logger.info(
        f"Portfolio summary: {summary.project_count} projects, "
        f"execution {format_percentage(summary.execution_rate)}, {summary.critical_projects} critical"
    )
    return summary


def rank_by_accuracy(
    cells: Sequence[AggregatedCell], metric_id: str = "assertiveness"
) -> List[RankedCell]:
    """
    Order cells by accuracy, best first, each with its status band.

    Cells without a value for the metric are left out. Ties keep their
    input order.
    """
    scored = [(c, c.value(metric_id)) for c in cells if c.value(metric_id) is not None]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return [
        RankedCell(rank=i + 1, cell=cell, accuracy=value, status=accuracy_status(value))
        for i, (cell, value) in enumerate(scored)
    ]


# ==================== PERIODS ====================

def monthly_series(
    facts: Sequence[FactRecord], metric_id: str, catalog: Catalog = None
) -> List[Tuple[Any, float]]:
    """(month, value) pairs in fiscal order; months without a value are skipped."""
    catalog = catalog or get_catalog()
    result = aggregate(facts, ["month"], [], [metric_id], catalog=catalog)
    by_month = {c.row_key: c.value(metric_id) for c in result.cells}
    ordered = sort_keys(list(by_month), catalog.dimensions(["month"]))
    return [
        (key[0], by_month[key])
        for key in ordered
        if by_month[key] is not None and key[0] != UNKNOWN_VALUE
    ]


def most_accurate_period(
    facts: Sequence[FactRecord], metric_id: str = "assertiveness", catalog: Catalog = None
) -> Optional[PeriodResult]:
    """Month with the highest accuracy; the earliest month wins a tie."""
    series = monthly_series(facts, metric_id, catalog)
    if not series:
        return None
    period, value = max(series, key=lambda pair: pair[1])
    return PeriodResult(period=period, value=value, metric_id=metric_id)


def largest_deviation_period(
    facts: Sequence[FactRecord], metric_id: str = "variance", catalog: Catalog = None
) -> Optional[PeriodResult]:
    """Month with the most negative variance; the earliest month wins a tie."""
    series = monthly_series(facts, metric_id, catalog)
    if not series:
        return None
    period, value = min(series, key=lambda pair: pair[1])
    return PeriodResult(period=period, value=value, metric_id=metric_id)
