"""
Configuration settings for the Portfolio Pivot Engine.

Key Design Principle: all behaviour switches come from environment variables,
never from module-level constants scattered through the engine.
"""
import os
from dataclasses import dataclass, field


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class RatesConfig:
    """Exchange-rate table configuration."""
    # Path to the YAML rate file; empty means config/exchange_rates.yaml
    rates_path: str = field(default_factory=lambda: os.getenv("EXCHANGE_RATES_PATH", ""))
    base_currency: str = field(default_factory=lambda: os.getenv("BASE_CURRENCY", "USD"))
    # BU (budget rate) or AVG (average realised rate)
    rate_type: str = field(default_factory=lambda: os.getenv("RATE_TYPE", "BU"))
    # When true a currency missing inside a known year raises instead of falling back to 1
    strict_rates: bool = field(default_factory=lambda: _env_bool("STRICT_RATES"))


@dataclass
class PivotConfig:
    """Defaults for pivot computations."""
    default_target_currency: str = field(
        default_factory=lambda: os.getenv("DEFAULT_TARGET_CURRENCY", "BRL")
    )
    default_target_year: int = field(
        default_factory=lambda: int(os.getenv("DEFAULT_TARGET_YEAR", "2024"))
    )
    # Fiscal year start month (1-12). January = calendar year.
    fiscal_year_start_month: int = field(
        default_factory=lambda: int(os.getenv("FISCAL_YEAR_START_MONTH", "1"))
    )
    total_label: str = field(default_factory=lambda: os.getenv("TOTAL_LABEL", "Total"))


@dataclass
class AppConfig:
    """Main application configuration."""
    rates: RatesConfig = field(default_factory=RatesConfig)
    pivot: PivotConfig = field(default_factory=PivotConfig)

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

def get_config() -> AppConfig:
    """Factory function to get application configuration."""
    return AppConfig()
