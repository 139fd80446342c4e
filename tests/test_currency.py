"""
Unit tests for the currency normalizer.
"""
import pytest

from portfolio_pivot.core.currency import CurrencyNormalizer, normalize
from portfolio_pivot.core.error_taxonomy import ErrorCategory, MissingRateError
from portfolio_pivot.core.exchange_rates import ExchangeRateTable


@pytest.fixture
def normalizer(rate_table):
    return CurrencyNormalizer(rate_table)


class TestNormalize:
    """Tests for single-amount conversion."""

    @pytest.mark.parametrize("amount", [0, 1, 123.456, -50.5, 1e12])
    def test_same_currency_is_identity(self, normalizer, amount):
        assert normalizer.normalize(amount, "BRL", 2024, "BRL") == amount

    def test_same_currency_needs_no_rates(self, normalizer):
        # Even a year without rates converts BRL -> BRL
        assert normalizer.normalize(10.0, "BRL", 1999, "brl") == 10.0

    def test_usd_to_brl(self, normalizer):
        assert normalizer.normalize(500, "USD", 2024, "BRL") == pytest.approx(2600)

    def test_uses_each_year_rates(self, normalizer):
        assert normalizer.normalize(100, "USD", 2023, "BRL") == pytest.approx(500)
        assert normalizer.normalize(100, "USD", 2024, "BRL") == pytest.approx(520)

    def test_cross_rate_through_base(self, normalizer):
        # 850 EUR = 1000 USD = 5200 BRL
        assert normalizer.normalize(850, "EUR", 2024, "BRL") == pytest.approx(5200)

    @pytest.mark.parametrize("pair", [("USD", "BRL"), ("BRL", "EUR"), ("EUR", "USD")])
    def test_round_trip(self, normalizer, pair):
        a, b = pair
        there = normalizer.normalize(1234.56, a, 2024, b)
        back = normalizer.normalize(there, b, 2024, a)
        assert back == pytest.approx(1234.56)

    def test_round_trip_error_helper(self, normalizer):
        back, error = normalizer.round_trip_error(1000.0, "USD", "BRL", 2024)
        assert back == pytest.approx(1000.0)
        assert error < 1e-9

    def test_missing_year_raises(self, normalizer):
        with pytest.raises(MissingRateError) as exc_info:
            normalizer.normalize(100, "USD", 2019, "BRL")
        assert exc_info.value.fiscal_year == 2019

    def test_missing_year_none_raises(self, normalizer):
        with pytest.raises(MissingRateError):
            normalizer.normalize(100, "USD", None, "BRL")

    def test_missing_currency_falls_back_with_warning(self, normalizer):
        warnings = []
        result = normalizer.normalize(100, "SEK", 2024, "USD", warnings=warnings)
        assert result == pytest.approx(100)
        assert len(warnings) == 1
        assert warnings[0].category == ErrorCategory.RATE_FALLBACK
        assert warnings[0].context["currency"] == "SEK"

    def test_missing_currency_without_sink_raises(self, normalizer):
        # A caller that cannot receive the warning does not get a silent rate 1
        with pytest.raises(MissingRateError) as exc_info:
            normalizer.normalize(100, "SEK", 2024, "BRL")
        assert exc_info.value.currency == "SEK"
        assert exc_info.value.fiscal_year == 2024

    def test_fallback_warning_carries_recovery(self, normalizer):
        warnings = []
        result = normalizer.normalize(100, "SEK", 2024, "BRL", warnings=warnings)
        assert result == pytest.approx(520)
        assert warnings[0].recovery.action_type == "fallback"

    def test_functional_form_surfaces_fallback(self, rate_table):
        with pytest.raises(MissingRateError):
            normalize(100, "SEK", 2024, "BRL", rate_table)
        warnings = []
        assert normalize(100, "SEK", 2024, "BRL", rate_table, warnings=warnings) == pytest.approx(520)
        assert [w.category for w in warnings] == [ErrorCategory.RATE_FALLBACK]

    def test_fallback_warning_deduplicated(self, normalizer):
        warnings = []
        normalizer.normalize(100, "SEK", 2024, "USD", warnings=warnings)
        normalizer.normalize(200, "SEK", 2024, "USD", warnings=warnings)
        assert len(warnings) == 1

    def test_strict_mode_raises_on_missing_currency(self, rate_table):
        strict = CurrencyNormalizer(rate_table, strict=True)
        with pytest.raises(MissingRateError) as exc_info:
            strict.normalize(100, "SEK", 2024, "USD")
        assert exc_info.value.currency == "SEK"

    def test_monthly_rate_used_when_present(self):
        table = ExchangeRateTable.from_mapping({
            2024: {"USD": 1, "BRL": {"annual": 5.0, "monthly": {"Jan": 4.0}}},
        })
        normalizer = CurrencyNormalizer(table)
        assert normalizer.normalize(10, "USD", 2024, "BRL", month="Jan") == pytest.approx(40)
        assert normalizer.normalize(10, "USD", 2024, "BRL", month="Fev") == pytest.approx(50)

    def test_functional_form(self, rate_table):
        assert normalize(1, "USD", 2024, "BRL", rate_table) == pytest.approx(5.2)


class TestNormalizeFacts:
    """Tests for record-level normalization."""

    def test_only_monetary_metrics_convert(self, normalizer, catalog, fact_factory):
        fact = fact_factory(currency="USD", target=100, assertiveness=85, progress=40)
        converted = normalizer.normalize_fact(fact, "BRL", catalog)
        assert converted.currency == "BRL"
        assert converted.metric("target") == pytest.approx(520)
        assert converted.metric("assertiveness") == 85
        assert converted.metric("progress") == 40

    def test_input_fact_untouched(self, normalizer, catalog, fact_factory):
        fact = fact_factory(currency="USD", target=100)
        normalizer.normalize_fact(fact, "BRL", catalog)
        assert fact.currency == "USD"
        assert fact.metric("target") == 100

    def test_same_currency_returns_same_fact(self, normalizer, catalog, fact_factory):
        fact = fact_factory(currency="BRL", target=100)
        assert normalizer.normalize_fact(fact, "BRL", catalog) is fact

    def test_fallback_year_for_facts_without_year(self, normalizer, catalog, fact_factory):
        fact = fact_factory(currency="USD", fiscal_year=None, target=100)
        converted = normalizer.normalize_fact(fact, "BRL", catalog, fallback_year=2023)
        assert converted.metric("target") == pytest.approx(500)

    def test_own_year_beats_fallback_year(self, normalizer, catalog, fact_factory):
        fact = fact_factory(currency="USD", fiscal_year=2024, target=100)
        converted = normalizer.normalize_fact(fact, "BRL", catalog, fallback_year=2023)
        assert converted.metric("target") == pytest.approx(520)

    def test_normalize_facts_collects_warnings(self, normalizer, catalog, fact_factory):
        facts = [
            fact_factory("P1", currency="USD", target=100),
            fact_factory("P2", currency="SEK", target=100),
        ]
        result = normalizer.normalize_facts(facts, "BRL", catalog)
        assert result.target_currency == "BRL"
        assert result.is_degraded
        assert [f.currency for f in result.facts] == ["BRL", "BRL"]
        assert result.facts[1].metric("target") == pytest.approx(520)
        assert [w.context["currency"] for w in result.warnings] == ["SEK"]
