"""
Exchange Rate Table

Year -> currency -> rate mapping used by the currency normalizer.
Every rate is expressed relative to a common base currency (USD by default):
a rate of 5.2 for BRL means 1 USD = 5.2 BRL.

Two rate types exist, as on the multi-currency screen:
- BU rate: the budget rate fixed for the whole fiscal year
- AVG rate: the average realised rate, optionally one rate per month

Tables are loaded from config/exchange_rates.yaml or built in code, and are
read-only once built.
"""
import logging
from pathlib import Path
from types import MappingProxyType
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Any, Optional, Iterable, Mapping, Tuple

import yaml

from portfolio_pivot.core.error_taxonomy import MissingRateError
from portfolio_pivot.core.fiscal_calendar import month_number

logger = logging.getLogger(__name__)


class RateType(Enum):
    """Kinds of exchange-rate tables."""
    BU = "BU"
    AVG = "AVG"


@dataclass(frozen=True)
class ExchangeRateEntry:
    """One (fiscal year, currency) rate, optionally refined per month."""
    fiscal_year: int
    currency: str
    rate: float
    monthly_rates: Mapping[int, float] = field(default_factory=dict, hash=False)
    relative_to_base: bool = True

    def __post_init__(self):
        if self.rate is None or self.rate <= 0:
            raise ValueError(
                f"Exchange rate for {self.currency} in {self.fiscal_year} must be positive, got {self.rate}"
            )
        for month, value in self.monthly_rates.items():
            if not 1 <= month <= 12:
                raise ValueError(f"Monthly rate key must be 1-12, got {month}")
            if value is None or value <= 0:
                raise ValueError(
                    f"Monthly rate for {self.currency} {self.fiscal_year}/{month} must be positive, got {value}"
                )
        object.__setattr__(self, "monthly_rates", MappingProxyType(dict(self.monthly_rates)))

    def rate_for_month(self, month: Any = None) -> float:
        """Monthly rate when one exists for the month, otherwise the annual rate."""
        number = month_number(month) if month is not None else None
        if number is not None and number in self.monthly_rates:
            return self.monthly_rates[number]
        return self.rate

    def to_dict(self) -> Dict[str, Any]:
        data = {"rate": self.rate}
        if self.monthly_rates:
            data["monthly"] = dict(self.monthly_rates)
        return data


class ExchangeRateTable:
    """
    Read-only lookup of exchange rates by fiscal year and currency.

    Usage:
        table = ExchangeRateTable.from_mapping({2024: {"USD": 1, "BRL": 5.2}})
        table.lookup(2024, "BRL")      # 5.2
        table.lookup(2024, "SEK")      # None (currency missing in a known year)
        table.lookup(2019, "BRL")      # raises MissingRateError
    """

    def __init__(
        self,
        entries: Iterable[ExchangeRateEntry] = (),
        base_currency: str = "USD",
        rate_type: RateType = RateType.BU,
    ):
        self.base_currency = base_currency.upper()
        self.rate_type = rate_type
        self._rates: Dict[int, Dict[str, ExchangeRateEntry]] = {}
        for entry in entries:
            year_rates = self._rates.setdefault(int(entry.fiscal_year), {})
            if entry.currency in year_rates:
                raise ValueError(
                    f"Duplicate exchange rate for {entry.currency} in fiscal year {entry.fiscal_year}"
                )
            year_rates[entry.currency] = entry

    @classmethod
    def from_mapping(
        cls,
        mapping: Mapping[Any, Mapping[str, Any]],
        base_currency: str = "USD",
        rate_type: RateType = RateType.BU,
    ) -> "ExchangeRateTable":
        """
        Build a table from a nested mapping.

        Each currency value is either a number (annual rate) or a mapping
        with an "annual" (or "rate") number and an optional "monthly" mapping
        keyed by month label or number.
        """
        entries = []
        for year, currencies in (mapping or {}).items():
            for currency, value in (currencies or {}).items():
                entries.append(_parse_entry(int(year), str(currency).upper(), value))
        return cls(entries, base_currency=base_currency, rate_type=rate_type)

    @classmethod
    def from_yaml(
        cls, path: Path, rate_type: RateType = None, base_currency: str = None
    ) -> "ExchangeRateTable":
        """
        Load a rate table from a YAML file.

        Args:
            path: YAML file with base_currency, default_rate_type and rate_tables
            rate_type: Which table to load (defaults to the file's default_rate_type)
            base_currency: Expected base currency; the file must declare the same one

        Raises:
            ValueError: When the file's base currency differs from base_currency
        """
        path = Path(path)
        with open(path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}

        file_base = str(config.get("base_currency", "USD")).upper()
        if base_currency and base_currency.strip().upper() != file_base:
            raise ValueError(
                f"Rate file {path} is based on {file_base}, "
                f"but base currency {base_currency.strip().upper()} is configured"
            )
        base_currency = file_base
        if rate_type is None:
            rate_type = RateType(str(config.get("default_rate_type", "BU")).upper())

        tables = config.get("rate_tables", {})
        if rate_type.value not in tables:
            raise KeyError(f"Rate table {rate_type.value!r} not found in {path}")

        table = cls.from_mapping(tables[rate_type.value], base_currency=base_currency, rate_type=rate_type)
        logger.info(
            f"Loaded {rate_type.value} exchange rates from {path} "
            f"(years: {table.years()}, base: {table.base_currency})"
        )
        return table

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def has_year(self, fiscal_year: int) -> bool:
        return fiscal_year in self._rates

    def years(self) -> List[int]:
        return sorted(self._rates)

    def currencies(self, fiscal_year: int) -> List[str]:
        """Currencies with a rate in the given fiscal year."""
        if fiscal_year not in self._rates:
            raise MissingRateError(fiscal_year)
        return sorted(self._rates[fiscal_year])

    def get_entry(self, fiscal_year: int, currency: str) -> Optional[ExchangeRateEntry]:
        """
        Get the entry for a currency in a fiscal year.

        Raises MissingRateError when the year is absent entirely; returns None
        when only the currency is missing.
        """
        if fiscal_year not in self._rates:
            raise MissingRateError(fiscal_year)
        return self._rates[fiscal_year].get(currency.upper())

    def lookup(self, fiscal_year: int, currency: str, month: Any = None) -> Optional[float]:
        """Rate relative to the base currency, or None when the currency is missing."""
        entry = self.get_entry(fiscal_year, currency)
        if entry is None:
            return None
        return entry.rate_for_month(month)

    def missing_rates(self, pairs: Iterable[Tuple[int, str]]) -> List[Tuple[int, str]]:
        """
        Check coverage for the (fiscal year, currency) pairs the facts reference.

        Returns the sorted pairs that have no rate, including pairs whose year
        is absent from the table.
        """
        missing = set()
        for fiscal_year, currency in pairs:
            year_rates = self._rates.get(fiscal_year)
            if year_rates is None or currency.upper() not in year_rates:
                missing.add((fiscal_year, currency.upper()))
        return sorted(missing)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_currency": self.base_currency,
            "rate_type": self.rate_type.value,
            "rates": {
                year: {cur: entry.to_dict() for cur, entry in sorted(currencies.items())}
                for year, currencies in sorted(self._rates.items())
            },
        }

    def __len__(self) -> int:
        return sum(len(currencies) for currencies in self._rates.values())

    def __repr__(self) -> str:
        return (
            f"ExchangeRateTable(rate_type={self.rate_type.value}, base={self.base_currency}, "
            f"years={self.years()})"
        )


def _parse_entry(fiscal_year: int, currency: str, value: Any) -> ExchangeRateEntry:
    """Parse one currency value from a rate mapping."""
    if isinstance(value, Mapping):
        annual = value.get("annual", value.get("rate"))
        monthly_raw = value.get("monthly") or {}
        monthly = {}
        for month, rate in monthly_raw.items():
            number = month_number(month)
            if number is None:
                raise ValueError(f"Unknown month {month!r} in rates for {currency} {fiscal_year}")
            monthly[number] = float(rate)
        if annual is None:
            if not monthly:
                raise ValueError(f"No rate given for {currency} in {fiscal_year}")
            # Average of the months present stands in for the annual rate
            annual = sum(monthly.values()) / len(monthly)
        return ExchangeRateEntry(
            fiscal_year=fiscal_year,
            currency=currency,
            rate=float(annual),
            monthly_rates=monthly,
        )
    return ExchangeRateEntry(fiscal_year=fiscal_year, currency=currency, rate=float(value))


def _get_config_dir() -> Path:
    """Get the config directory path."""
    # Try relative to this file
    project_root = Path(__file__).parent.parent.parent
    config_dir = project_root / "config"

    if config_dir.exists():
        return config_dir

    # Try current working directory
    cwd_config = Path.cwd() / "config"
    if cwd_config.exists():
        return cwd_config

    raise FileNotFoundError(f"Config directory not found. Tried: {config_dir}, {cwd_config}")


def default_rates_path() -> Path:
    return _get_config_dir() / "exchange_rates.yaml"


# Singleton instance
_rate_table: Optional[ExchangeRateTable] = None

def get_rate_table() -> ExchangeRateTable:
    """Get the configured exchange-rate table."""
    global _rate_table
    if _rate_table is None:
        from config.settings import get_config

        rates_config = get_config().rates
        path = Path(rates_config.rates_path) if rates_config.rates_path else default_rates_path()
        _rate_table = ExchangeRateTable.from_yaml(
            path,
            RateType(rates_config.rate_type.upper()),
            base_currency=rates_config.base_currency,
        )
    return _rate_table

def reset_rate_table():
    """Reset the rate table (useful for testing or reloading config)."""
    global _rate_table
    _rate_table = None
