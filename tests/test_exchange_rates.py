"""
Unit tests for the exchange-rate table.
"""
import pytest

from portfolio_pivot.core.error_taxonomy import MissingRateError
from portfolio_pivot.core.exchange_rates import (
    ExchangeRateEntry,
    ExchangeRateTable,
    RateType,
    default_rates_path,
    get_rate_table,
    reset_rate_table,
)


class TestExchangeRateEntry:
    """Tests for ExchangeRateEntry validation and monthly rates."""

    def test_rate_must_be_positive(self):
        with pytest.raises(ValueError):
            ExchangeRateEntry(fiscal_year=2024, currency="BRL", rate=0)

    def test_monthly_rate_wins_over_annual(self):
        entry = ExchangeRateEntry(2024, "BRL", 5.0, monthly_rates={1: 4.9})
        assert entry.rate_for_month("Jan") == 4.9
        assert entry.rate_for_month("January") == 4.9
        assert entry.rate_for_month("Fev") == 5.0
        assert entry.rate_for_month(None) == 5.0

    def test_monthly_rates_are_read_only(self):
        entry = ExchangeRateEntry(2024, "BRL", 5.0, monthly_rates={1: 4.9})
        with pytest.raises(TypeError):
            entry.monthly_rates[2] = 5.1


class TestExchangeRateTable:
    """Tests for lookups and loading."""

    def test_lookup(self, rate_table):
        assert rate_table.lookup(2024, "BRL") == 5.2
        assert rate_table.lookup(2024, "brl") == 5.2

    def test_missing_currency_in_known_year_is_none(self, rate_table):
        assert rate_table.lookup(2024, "SEK") is None

    def test_missing_year_raises(self, rate_table):
        with pytest.raises(MissingRateError) as exc_info:
            rate_table.lookup(2019, "BRL")
        assert exc_info.value.fiscal_year == 2019

    def test_years_and_currencies(self, rate_table):
        assert rate_table.years() == [2023, 2024]
        assert rate_table.currencies(2024) == ["BRL", "EUR", "USD"]
        assert len(rate_table) == 6

    def test_duplicate_entry_rejected(self):
        with pytest.raises(ValueError):
            ExchangeRateTable([
                ExchangeRateEntry(2024, "BRL", 5.2),
                ExchangeRateEntry(2024, "BRL", 5.3),
            ])

    def test_missing_rates_reports_pairs(self, rate_table):
        missing = rate_table.missing_rates([(2024, "BRL"), (2024, "sek"), (2019, "USD")])
        assert missing == [(2019, "USD"), (2024, "SEK")]

    def test_from_mapping_with_monthly_rates(self):
        table = ExchangeRateTable.from_mapping(
            {2024: {"USD": 1, "BRL": {"annual": 5.4, "monthly": {"Jan": 4.9, "Fev": 5.0}}}},
            rate_type=RateType.AVG,
        )
        assert table.lookup(2024, "BRL") == 5.4
        assert table.lookup(2024, "BRL", "Jan") == 4.9
        assert table.rate_type == RateType.AVG

    def test_unknown_month_in_mapping_rejected(self):
        with pytest.raises(ValueError):
            ExchangeRateTable.from_mapping({2024: {"BRL": {"annual": 5, "monthly": {"Xyz": 5}}}})

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "rates.yaml"
        path.write_text(
            "base_currency: USD\n"
            "default_rate_type: BU\n"
            "rate_tables:\n"
            "  BU:\n"
            "    2024: {USD: 1, BRL: 5.2}\n"
            "  AVG:\n"
            "    2024: {USD: 1, BRL: {annual: 5.4, monthly: {Mar: 5.0}}}\n",
            encoding="utf-8",
        )
        bu = ExchangeRateTable.from_yaml(path)
        avg = ExchangeRateTable.from_yaml(path, RateType.AVG)
        assert bu.lookup(2024, "BRL") == 5.2
        assert avg.lookup(2024, "BRL", "Mar") == 5.0

    def test_from_yaml_missing_table(self, tmp_path):
        path = tmp_path / "rates.yaml"
        path.write_text("rate_tables:\n  BU:\n    2024: {USD: 1}\n", encoding="utf-8")
        with pytest.raises(KeyError):
            ExchangeRateTable.from_yaml(path, RateType.AVG)

    def test_from_yaml_base_currency_must_match(self, tmp_path):
        path = tmp_path / "rates.yaml"
        path.write_text("base_currency: USD\nrate_tables:\n  BU:\n    2024: {USD: 1}\n", encoding="utf-8")
        assert ExchangeRateTable.from_yaml(path, RateType.BU, base_currency="usd").base_currency == "USD"
        with pytest.raises(ValueError):
            ExchangeRateTable.from_yaml(path, RateType.BU, base_currency="EUR")

    def test_configured_base_currency_reaches_singleton(self, tmp_path, monkeypatch):
        path = tmp_path / "rates.yaml"
        path.write_text("base_currency: USD\nrate_tables:\n  BU:\n    2024: {USD: 1}\n", encoding="utf-8")
        monkeypatch.setenv("EXCHANGE_RATES_PATH", str(path))
        monkeypatch.setenv("RATE_TYPE", "BU")
        monkeypatch.setenv("BASE_CURRENCY", "BRL")
        reset_rate_table()
        try:
            with pytest.raises(ValueError):
                get_rate_table()
            monkeypatch.setenv("BASE_CURRENCY", "USD")
            assert get_rate_table().years() == [2024]
        finally:
            reset_rate_table()

    def test_shipped_rate_file(self):
        table = ExchangeRateTable.from_yaml(default_rates_path(), RateType.BU)
        assert table.lookup(2024, "BRL") == 5.2
        assert table.lookup(2024, "USD") == 1
        assert 2022 in table.years()

    def test_to_dict(self, rate_table):
        data = rate_table.to_dict()
        assert data["base_currency"] == "USD"
        assert data["rates"][2024]["BRL"] == {"rate": 5.2}
