"""
Shared fixtures for the pivot engine tests.
"""
import pytest

from portfolio_pivot.core.catalog import build_default_catalog
from portfolio_pivot.core.exchange_rates import ExchangeRateTable
from portfolio_pivot.core.fiscal_calendar import FiscalCalendar
from portfolio_pivot.core.models import FactRecord


@pytest.fixture
def calendar():
    return FiscalCalendar(fiscal_year_start_month=1)


@pytest.fixture
def catalog(calendar):
    return build_default_catalog(calendar)


@pytest.fixture
def rate_table():
    """2023 and 2024 budget rates relative to USD."""
    return ExchangeRateTable.from_mapping({
        2023: {"USD": 1, "BRL": 5.0, "EUR": 0.9},
        2024: {"USD": 1, "BRL": 5.2, "EUR": 0.85},
    })


def make_fact(project_id="P1", currency="BRL", fiscal_year=2024, month="Jan", **kwargs):
    """Build a FactRecord; metric keyword arguments go into metrics."""
    dimension_keys = {
        "project_name", "area", "status", "responsible", "category", "country", "critical", "kind",
    }
    dims = {k: v for k, v in kwargs.items() if k in dimension_keys}
    metrics = {k: v for k, v in kwargs.items() if k not in dimension_keys}
    return FactRecord(
        project_id=project_id,
        currency=currency,
        fiscal_year=fiscal_year,
        month=month,
        metrics=metrics,
        **dims,
    )


@pytest.fixture
def brl_facts():
    """Single-currency facts across areas and months."""
    return [
        make_fact("P1", area="TI", month="Jan", project_name="ERP Rollout", status="Em Andamento",
                  responsible="Ana Silva", category="Capex",
                  target=1000, planned=1000, realized=900, variance=-100, budget=1200, assertiveness=90),
        make_fact("P2", area="TI", month="Jan", project_name="Cloud Migration", status="Planejado",
                  responsible="Carlos Santos", category="Opex",
                  target=500, planned=500, realized=400, variance=-100, budget=600, assertiveness=80),
        make_fact("P1", area="TI", month="Fev", project_name="ERP Rollout", status="Em Andamento",
                  responsible="Ana Silva", category="Capex",
                  target=2000, planned=2000, realized=2100, variance=100, budget=1200, assertiveness=105),
        make_fact("P3", area="Marketing", month="Jan", project_name="Campanha Digital", status="Em Atraso",
                  responsible="João Costa", category="Opex", critical=True,
                  target=300, planned=300, realized=150, variance=-150, budget=400, assertiveness=50),
        make_fact("P3", area="Marketing", month="Abr", project_name="Campanha Digital", status="Em Atraso",
                  responsible="João Costa", category="Opex", critical=True,
                  target=700, planned=700, realized=630, variance=-70, budget=400, assertiveness=90),
    ]


@pytest.fixture
def mixed_currency_facts():
    """TI / Jan facts in BRL and USD."""
    return [
        make_fact("P1", currency="BRL", area="TI", month="Jan", target=1000),
        make_fact("P2", currency="USD", area="TI", month="Jan", target=500),
    ]


@pytest.fixture
def fact_factory():
    return make_fact
