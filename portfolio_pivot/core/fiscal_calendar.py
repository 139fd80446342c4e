"""
Fiscal Calendar Module

Provides month-label parsing and fiscal ordering for portfolio reports.
Month dimensions must sort chronologically ("Jan" before "Abr"), never
alphabetically.

Key Concepts:
- Month labels are the dashboard's Portuguese abbreviations (Jan, Fev, ... Dez);
  full Portuguese names and English names are accepted as aliases.
- Fiscal Year (FY): a 12-month period named by its ENDING calendar year.
  With the default January start the fiscal year equals the calendar year.
- Fiscal position: 1 for the first month of the fiscal year, 12 for the last.
"""
import os
import calendar
import unicodedata
from datetime import date
from typing import Any, List, Optional, Tuple

MONTH_LABELS = [
    "Jan", "Fev", "Mar", "Abr", "Mai", "Jun",
    "Jul", "Ago", "Set", "Out", "Nov", "Dez",
]

_MONTH_NAMES_PT = [
    "janeiro", "fevereiro", "marco", "abril", "maio", "junho",
    "julho", "agosto", "setembro", "outubro", "novembro", "dezembro",
]

_MONTH_NAMES_EN = [
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
]


def _strip_accents(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value)
    return "".join(c for c in normalized if not unicodedata.combining(c))


def _build_month_aliases() -> dict:
    aliases = {}
    for idx in range(12):
        number = idx + 1
        aliases[MONTH_LABELS[idx].lower()] = number
        aliases[_MONTH_NAMES_PT[idx]] = number
        aliases[_MONTH_NAMES_PT[idx][:3]] = number
        aliases[_MONTH_NAMES_EN[idx]] = number
        aliases[_MONTH_NAMES_EN[idx][:3]] = number
    # "Sept" shows up in exported spreadsheets
    aliases["sept"] = 9
    return aliases


MONTH_ALIASES = _build_month_aliases()


def month_number(value: Any) -> Optional[int]:
    """
    Resolve a month label or number to 1-12.

    Accepts "Abr", "abril", "Apr", "April", "04", 4. Returns None when the
    value is not a recognizable month.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 1 <= value <= 12 else None
    text = _strip_accents(str(value)).strip().lower().rstrip(".")
    if text.isdigit():
        number = int(text)
        return number if 1 <= number <= 12 else None
    return MONTH_ALIASES.get(text)


def month_label(number: int) -> str:
    """Get the dashboard label for a calendar month number."""
    if not 1 <= number <= 12:
        raise ValueError(f"Month must be 1-12, got {number}")
    return MONTH_LABELS[number - 1]


def canonical_month_label(value: Any) -> Optional[str]:
    """Normalize any accepted month spelling to its dashboard label."""
    number = month_number(value)
    if number is None:
        return None
    return month_label(number)


class FiscalCalendar:
    """
    Fiscal calendar with configurable fiscal year start.

    Usage:
        cal = FiscalCalendar(fiscal_year_start_month=1)
        cal.sort_months(["Mar", "Jan", "Abr"])   # ["Jan", "Mar", "Abr"]
        cal.period_start(2024, "Abr")             # date(2024, 4, 1)
    """

    def __init__(self, fiscal_year_start_month: int = None):
        """
        Initialize fiscal calendar.

        Args:
            fiscal_year_start_month: Month number (1-12) when fiscal year starts.
                                    Defaults to FISCAL_YEAR_START_MONTH env var or 1 (January).
        """
        if fiscal_year_start_month is None:
            fiscal_year_start_month = int(os.getenv("FISCAL_YEAR_START_MONTH", "1"))

        if not 1 <= fiscal_year_start_month <= 12:
            raise ValueError(f"Fiscal year start month must be 1-12, got {fiscal_year_start_month}")

        self.fy_start_month = fiscal_year_start_month

    def get_fiscal_year_for_date(self, d: date) -> int:
        """
        Determine which fiscal year a date belongs to.

        Fiscal year is NAMED after the ENDING calendar year, so with an April
        start Mar 15, 2025 is FY2025 and Apr 15, 2025 is FY2026.
        """
        if self.fy_start_month == 1:
            return d.year
        if d.month >= self.fy_start_month:
            return d.year + 1
        return d.year

    def fiscal_position(self, month: Any) -> Optional[int]:
        """Position (1-12) of a month inside the fiscal year."""
        number = month_number(month)
        if number is None:
            return None
        return ((number - self.fy_start_month) % 12) + 1

    def fiscal_months(self) -> List[str]:
        """Month labels in fiscal order."""
        return [
            MONTH_LABELS[(self.fy_start_month - 1 + i) % 12]
            for i in range(12)
        ]

    def month_sort_key(self, month: Any) -> Tuple[int, Any]:
        """
        Sort key placing known months in fiscal order.

        Unrecognized labels sort after every real month, alphabetically.
        """
        position = self.fiscal_position(month)
        if position is None:
            return (1, str(month))
        return (0, position)

    def sort_months(self, months: List[Any]) -> List[Any]:
        return sorted(months, key=self.month_sort_key)

    def period_start(self, fiscal_year: int, month: Any) -> Optional[date]:
        """
        First calendar day of a fiscal month.

        Example (April start): FY2026 "Abr" -> Apr 1, 2025; FY2026 "Jan" -> Jan 1, 2026.
        """
        number = month_number(month)
        if number is None or fiscal_year is None:
            return None
        if self.fy_start_month == 1 or number < self.fy_start_month:
            calendar_year = fiscal_year
        else:
            calendar_year = fiscal_year - 1
        return date(calendar_year, number, 1)

    def period_end(self, fiscal_year: int, month: Any) -> Optional[date]:
        start = self.period_start(fiscal_year, month)
        if start is None:
            return None
        last_day = calendar.monthrange(start.year, start.month)[1]
        return date(start.year, start.month, last_day)

    def month_label_for_date(self, d: date) -> str:
        return month_label(d.month)


# Singleton instance
_fiscal_calendar: Optional[FiscalCalendar] = None

def get_fiscal_calendar() -> FiscalCalendar:
    """Get the configured fiscal calendar instance."""
    global _fiscal_calendar
    if _fiscal_calendar is None:
        _fiscal_calendar = FiscalCalendar()
    return _fiscal_calendar

def reset_fiscal_calendar():
    """Reset the fiscal calendar (useful for testing)."""
    global _fiscal_calendar
    _fiscal_calendar = None
