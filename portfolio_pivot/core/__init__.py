"""
Core model: fact records, catalog, exchange rates, currency normalization and errors.
"""
from portfolio_pivot.core.error_taxonomy import (
    ErrorCategory,
    ErrorSeverity,
    ClassifiedError,
    EngineWarning,
    PivotError,
    MissingRateError,
    UnknownDimensionError,
    UnknownMetricError,
    InvalidFilterOperandError,
    InvalidPivotConfigurationError,
    RecordValidationError,
    classify_error,
)
from portfolio_pivot.core.fiscal_calendar import (
    MONTH_LABELS,
    FiscalCalendar,
    get_fiscal_calendar,
    month_number,
)
from portfolio_pivot.core.models import FactKind, FactRecord
from portfolio_pivot.core.exchange_rates import (
    ExchangeRateEntry,
    ExchangeRateTable,
    RateType,
    get_rate_table,
)
from portfolio_pivot.core.catalog import (
    AggregationKind,
    Catalog,
    DimensionDescriptor,
    DimensionOrdering,
    MetricDescriptor,
    build_default_catalog,
    get_catalog,
)
from portfolio_pivot.core.currency import CurrencyNormalizer, NormalizationResult, normalize
from portfolio_pivot.core.schemas import (
    FactRecordModel,
    FilterCriterionModel,
    PivotConfigurationModel,
    parse_fact,
    parse_facts,
)
