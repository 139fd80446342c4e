"""
Mock Portfolio Data Generator

Generates fake project-month fact rows shaped like the dashboard's portfolio
data (projects in several countries and currencies, one row per month), so
the engine and CLI can be exercised without a real data source.

Usage:
    rows = generate_mock_portfolio_rows(fiscal_year=2024, seed=7)
    facts = generate_sample_facts(fiscal_year=2024, seed=7)
"""
import random
import logging
from typing import List, Dict, Any, Optional

from portfolio_pivot.core.fiscal_calendar import MONTH_LABELS
from portfolio_pivot.core.models import FactRecord
from portfolio_pivot.core.schemas import parse_facts
from portfolio_pivot.tools.portfolio_metrics import accuracy

logger = logging.getLogger(__name__)

# id, name, area, leader, status, category, country, currency, annual budget, critical
MOCK_PROJECTS = [
    ("MOD-CWB-001", "Modernização Linha Produção Curitiba", "Produção", "Ana Silva",
     "Em Andamento", "Capex", "Brasil", "BRL", 2_500_000, True),
    ("ERP-ROS-002", "Implementação ERP Rosário", "TI", "Carlos Santos",
     "Planejado", "Opex", "Argentina", "USD", 850_000, False),
    ("EXP-MEX-003", "Expansão Capacidade México", "Operações", "Maria Oliveira",
     "Em Atraso", "Capex", "México", "USD", 4_200_000, True),
    ("CRM-SAO-004", "Campanha Digital São Paulo", "Marketing", "João Costa",
     "Em Andamento", "Opex", "Brasil", "BRL", 600_000, False),
    ("QLT-SCL-005", "Certificação Qualidade Santiago", "Qualidade", "Pedro Lima",
     "Concluído", "Opex", "Chile", "USD", 300_000, False),
    ("SUS-LIS-006", "Eficiência Energética Lisboa", "Sustentabilidade", "Ana Silva",
     "Em Andamento", "Capex", "Portugal", "EUR", 1_100_000, False),
    ("DAT-CWB-007", "Data Lake Corporativo", "TI", "Pedro Lima",
     "Em Andamento", "Capex", "Brasil", "BRL", 1_800_000, False),
]


def generate_mock_project_month(
    project: tuple,
    fiscal_year: int,
    month_index: int,
    rng: random.Random,
) -> Dict[str, Any]:
    """
    Generate one project-month row.

    Args:
        project: Entry of MOCK_PROJECTS
        fiscal_year: Fiscal year of the row
        month_index: 0-based month (0 = Jan)
        rng: Random source

    Returns:
        Flat dict with dimension fields and metric values side by side
    """
    (project_id, name, area, leader, status, category, country,
     currency, annual_budget, critical) = project

    budget = annual_budget / 12
    planned = round(budget * rng.uniform(0.85, 1.1), 2)
    # Occasionally a month overshoots the plan
    if rng.random() < 0.15:
        realized = round(planned * rng.uniform(1.0, 1.25), 2)
    else:
        realized = round(planned * rng.uniform(0.55, 1.0), 2)
    committed = round(planned * rng.uniform(0.8, 1.05), 2)
    ac_sop = round(realized + (planned - realized) * rng.uniform(0.3, 0.9), 2)

    return {
        "id": project_id,
        "name": name,
        "area": area,
        "leader": leader,
        "status": status,
        "category": category,
        "country": country,
        "currency": currency,
        "is_critical": critical,
        "year": fiscal_year,
        "month": MONTH_LABELS[month_index],
        "target": planned,
        "ac_sop": ac_sop,
        "variance": round(ac_sop - planned, 2),
        "planned": planned,
        "realized": realized,
        "committed": committed,
        "savings": round(max(planned - realized, 0.0) * 0.3, 2),
        "budget": round(budget, 2),
        "assertiveness": round(accuracy(planned, realized), 2),
        "progress": round(min(100.0, (month_index + 1) / 12 * 100 * rng.uniform(0.8, 1.0)), 1),
    }


def generate_mock_portfolio_rows(
    fiscal_year: int = 2024,
    months: Optional[List[str]] = None,
    projects: Optional[List[tuple]] = None,
    seed: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """
    Generate mock portfolio rows.

    Args:
        fiscal_year: Fiscal year of every row
        months: Month labels to include (defaults to all twelve)
        projects: Project definitions (defaults to MOCK_PROJECTS)
        seed: Seed for reproducible output

    Returns:
        List of flat project-month rows
    """
    rng = random.Random(seed)
    months = months or MONTH_LABELS
    projects = projects or MOCK_PROJECTS

    data = []
    for project in projects:
        for month in months:
            data.append(generate_mock_project_month(project, fiscal_year, MONTH_LABELS.index(month), rng))

    logger.info(f"Generated {len(data)} mock project-month rows for {fiscal_year}")
    return data


def generate_sample_facts(
    fiscal_year: int = 2024,
    months: Optional[List[str]] = None,
    seed: Optional[int] = None,
) -> List[FactRecord]:
    """Mock rows validated into FactRecords."""
    return parse_facts(generate_mock_portfolio_rows(fiscal_year, months, seed=seed))
