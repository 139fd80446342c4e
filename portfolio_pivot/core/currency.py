"""
Currency Normalizer

Converts monetary amounts between currencies using the exchange-rate table
of the amount's own fiscal year. Conversion goes through the table's base
currency: amount / rate(source) * rate(target).

Normalization is applied per fact record BEFORE aggregation; summing amounts
in mixed currencies and converting afterwards gives wrong totals.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Tuple

from portfolio_pivot.core.catalog import Catalog
from portfolio_pivot.core.error_taxonomy import EngineWarning, ErrorCategory, MissingRateError, RecoveryAction
from portfolio_pivot.core.exchange_rates import ExchangeRateTable
from portfolio_pivot.core.models import FactRecord

logger = logging.getLogger(__name__)


@dataclass
class NormalizationResult:
    """Facts converted to one currency plus any fallback warnings."""
    facts: List[FactRecord]
    target_currency: str
    warnings: List[EngineWarning] = field(default_factory=list)

    @property
    def is_degraded(self) -> bool:
        return bool(self.warnings)


class CurrencyNormalizer:
    """
    Converts amounts with a read-only ExchangeRateTable.

    Usage:
        normalizer = CurrencyNormalizer(table)
        warnings = []
        brl = normalizer.normalize(500, "USD", 2024, "BRL", warnings=warnings)

    A fiscal year missing from the table raises MissingRateError. A single
    currency missing inside a known year falls back to rate 1 and appends an
    EngineWarning to `warnings`. Without a `warnings` list, or when the
    normalizer is strict, the missing currency raises MissingRateError instead.
    """

    def __init__(self, rate_table: ExchangeRateTable, strict: bool = False):
        self.rate_table = rate_table
        self.strict = strict

    def _rate(
        self,
        fiscal_year: int,
        currency: str,
        month: Any,
        warnings: Optional[List[EngineWarning]],
    ) -> float:
        rate = self.rate_table.lookup(fiscal_year, currency, month)
        if rate is not None:
            return rate
        if self.strict or warnings is None:
            # Without a sink the fallback would go unseen by the caller
            raise MissingRateError(fiscal_year, currency)

        message = f"No {currency} rate for fiscal year {fiscal_year}; using fallback rate 1"
        logger.warning(message)
        warning = EngineWarning(
            category=ErrorCategory.RATE_FALLBACK,
            message=message,
            context={"fiscal_year": fiscal_year, "currency": currency},
            recovery=RecoveryAction.fallback("rate 1"),
        )
        if warning not in warnings:
            warnings.append(warning)
        return 1.0

    def normalize(
        self,
        amount: float,
        source_currency: str,
        fiscal_year: int,
        target_currency: str,
        month: Any = None,
        warnings: Optional[List[EngineWarning]] = None,
    ) -> float:
        """
        Convert an amount from source to target currency for a fiscal year.

        Args:
            amount: Amount in source currency
            source_currency: ISO code of the amount
            fiscal_year: Year whose rates apply
            target_currency: ISO code to convert to
            month: Optional month; a monthly rate wins over the annual rate
            warnings: Sink collecting fallback warnings; required for the rate-1
                      fallback, otherwise a missing currency raises

        Returns:
            The converted amount. Identical currencies return `amount` unchanged.
        """
        if source_currency.upper() == target_currency.upper():
            return amount
        if fiscal_year is None or not self.rate_table.has_year(fiscal_year):
            raise MissingRateError(fiscal_year)

        source_rate = self._rate(fiscal_year, source_currency, month, warnings)
        target_rate = self._rate(fiscal_year, target_currency, month, warnings)
        return amount / source_rate * target_rate

    def normalize_fact(
        self,
        fact: FactRecord,
        target_currency: str,
        catalog: Catalog,
        fallback_year: int = None,
        warnings: Optional[List[EngineWarning]] = None,
    ) -> FactRecord:
        """
        Copy of a fact with every monetary metric in target currency.

        Uses the fact's own fiscal year and month; `fallback_year` only
        applies to facts that carry no fiscal year.
        """
        target = target_currency.upper()
        if fact.currency == target:
            return fact

        fiscal_year = fact.fiscal_year if fact.fiscal_year is not None else fallback_year
        monetary = {m.field for m in catalog.monetary_metrics()}
        converted = {}
        for metric_id, value in fact.metrics.items():
            if metric_id in monetary and value is not None:
                converted[metric_id] = self.normalize(
                    value, fact.currency, fiscal_year, target, month=fact.month, warnings=warnings
                )
            else:
                converted[metric_id] = value
        return fact.with_metrics(converted, currency=target)

    def normalize_facts(
        self,
        facts: Iterable[FactRecord],
        target_currency: str,
        catalog: Catalog,
        fallback_year: int = None,
    ) -> NormalizationResult:
        """Normalize a collection of facts; inputs are left untouched."""
        warnings: List[EngineWarning] = []
        normalized = [
            self.normalize_fact(fact, target_currency, catalog, fallback_year, warnings)
            for fact in facts
        ]
        if warnings:
            logger.warning(f"Currency normalization to {target_currency} used {len(warnings)} fallback rate(s)")
        return NormalizationResult(facts=normalized, target_currency=target_currency.upper(), warnings=warnings)

    def round_trip_error(
        self,
        amount: float,
        currency_a: str,
        currency_b: str,
        fiscal_year: int,
        warnings: Optional[List[EngineWarning]] = None,
    ) -> Tuple[float, float]:
        """Convert A->B->A and return (result, absolute error); used for rate sanity checks."""
        there = self.normalize(amount, currency_a, fiscal_year, currency_b, warnings=warnings)
        back = self.normalize(there, currency_b, fiscal_year, currency_a, warnings=warnings)
        return back, abs(back - amount)


def normalize(
    amount: float,
    source_currency: str,
    fiscal_year: int,
    target_currency: str,
    rate_table: ExchangeRateTable,
    warnings: Optional[List[EngineWarning]] = None,
) -> float:
    """Functional form of CurrencyNormalizer.normalize; pass `warnings` to allow the rate-1 fallback."""
    return CurrencyNormalizer(rate_table).normalize(
        amount, source_currency, fiscal_year, target_currency, warnings=warnings
    )
