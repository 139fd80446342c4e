#!/usr/bin/env python3
"""
Portfolio Pivot Engine - Main Entry Point

Usage:
    python main.py demo                      # Pivot of generated sample data
    python main.py pivot facts.json -r area  # Pivot a JSON file of fact records
    python main.py rates                     # Validate and list exchange rates
"""
import os
import sys
import json
import argparse
import logging
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

logger = logging.getLogger(__name__)


def setup_environment():
    """Load environment variables from .env file if present."""
    env_file = PROJECT_ROOT / '.env'
    if env_file.exists():
        with open(env_file) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    os.environ.setdefault(key.strip(), value.strip())


def setup_logging():
    """Configure logging from the LOG_LEVEL setting."""
    from config.settings import get_config

    logging.basicConfig(
        level=getattr(logging, get_config().log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()],
    )


def _split(value):
    return [v.strip() for v in value.split(',') if v.strip()] if value else []


def _parse_filters(filter_args, search):
    """Turn repeated --filter field=value[,value] options into a FilterSet."""
    from portfolio_pivot.tools.filter_engine import ALL, FilterCriterion, FilterSet, is_all_option

    criteria = []
    for raw in filter_args or []:
        if '=' not in raw:
            raise ValueError(f"Filter must look like field=value, got {raw!r}")
        field_id, value = raw.split('=', 1)
        values = _split(value)
        if any(is_all_option(v) for v in values):
            criteria.append(FilterCriterion.equals(field_id.strip(), ALL))
        elif len(values) == 1:
            criteria.append(FilterCriterion.equals(field_id.strip(), _coerce(values[0])))
        else:
            criteria.append(FilterCriterion.is_in(field_id.strip(), [_coerce(v) for v in values]))
    if search:
        criteria.append(FilterCriterion.contains(search))
    return FilterSet(tuple(criteria))


def _coerce(value):
    """Year filters compare against ints."""
    return int(value) if value.isdigit() else value


def _print_report(report, as_json=False):
    from portfolio_pivot.tools.portfolio_metrics import format_currency

    if as_json:
        print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False, default=str))
        return

    config = report.configuration
    print("\n" + "="*60)
    print(f"PIVOT ({config.target_currency})  {report.filter_result.filter_summary}")
    print("="*60)

    if report.is_empty:
        print("\nNo data found matching your criteria.")
    else:
        metric_ids = list(config.metrics) or list(report.cells[0].metrics)
        for metric_id in metric_ids:
            print(f"\n[{metric_id}]")
            print(report.matrix.to_dataframe(metric_id).to_string(float_format=lambda v: f"{v:,.2f}"))

    if report.grand_total is not None:
        print("\nGrand total:")
        for metric_id, value in report.grand_total.metrics.items():
            shown = "N/A" if value is None else f"{value:,.2f}"
            print(f"  {metric_id}: {shown}")
        realized = report.grand_total.value("realized")
        if realized is not None:
            print(f"  (realized {format_currency(realized, config.target_currency)})")

    if report.warnings:
        print("\n⚠️  Warnings:")
        for warning in report.warnings:
            print(f"   - {warning.message}")


def _run_pivot(facts, args):
    from config.settings import get_config
    from portfolio_pivot.tools.pivot_engine import PivotConfiguration, get_pivot_engine

    settings = get_config()
    config = PivotConfiguration(
        row_dimensions=tuple(_split(args.rows)),
        column_dimensions=tuple(_split(args.columns)),
        metrics=tuple(_split(args.metrics)),
        filters=_parse_filters(args.filter, args.search),
        target_currency=args.currency or settings.pivot.default_target_currency,
        target_year=args.year or settings.pivot.default_target_year,
    )
    return get_pivot_engine().run(facts, config)


def cmd_demo(args):
    """Pivot generated sample data."""
    from portfolio_pivot.tools.mock_data_generator import generate_sample_facts
    from portfolio_pivot.tools.portfolio_metrics import (
        format_currency,
        format_percentage,
        largest_deviation_period,
        most_accurate_period,
        portfolio_summary,
        rank_by_accuracy,
    )

    facts = generate_sample_facts(fiscal_year=args.year or 2024, seed=args.seed)
    report = _run_pivot(facts, args)
    _print_report(report, args.json)
    if args.json:
        return

    normalized = report.filter_result.data
    summary = portfolio_summary(normalized)
    currency = report.configuration.target_currency
    print("\n📊 Portfolio:")
    print(f"   Projects: {summary.project_count} ({summary.critical_projects} critical, "
          f"{summary.overdue_projects} overdue)")
    print(f"   Budget: {format_currency(summary.total_budget, currency)}  "
          f"Realized: {format_currency(summary.total_realized, currency)}  "
          f"Execution: {format_percentage(summary.execution_rate)}")
    print(f"   Highest spender: {summary.highest_spender}")

    best = most_accurate_period(normalized)
    worst = largest_deviation_period(normalized)
    if best:
        print(f"   Most accurate month: {best.period} ({format_percentage(best.value)})")
    if worst:
        print(f"   Largest deviation: {worst.period} ({format_currency(worst.value, currency)})")

    ranked = rank_by_accuracy(report.cells)
    if ranked:
        print("\n🎯 Accuracy ranking:")
        for item in ranked[:5]:
            label = " / ".join(str(p) for p in item.cell.row_key + item.cell.column_key)
            print(f"   {item.rank}. {label}: {format_percentage(item.accuracy)} {item.status.value}")


def cmd_pivot(args):
    """Pivot a JSON file of fact records."""
    from portfolio_pivot.core.schemas import parse_facts

    path = Path(args.file)
    with open(path, 'r', encoding='utf-8') as f:
        payload = json.load(f)
    rows = payload.get("facts", []) if isinstance(payload, dict) else payload

    facts = parse_facts(rows)
    logger.info(f"Loaded {len(facts)} facts from {path}")
    _print_report(_run_pivot(facts, args), args.json)


def cmd_rates(args):
    """Validate and list the configured exchange-rate table."""
    from config.settings import get_config
    from portfolio_pivot.core.currency import CurrencyNormalizer
    from portfolio_pivot.core.exchange_rates import ExchangeRateTable, RateType, default_rates_path

    rates_config = get_config().rates
    path = Path(rates_config.rates_path) if rates_config.rates_path else default_rates_path()
    rate_type = RateType((args.type or rates_config.rate_type).upper())
    table = ExchangeRateTable.from_yaml(path, rate_type, base_currency=rates_config.base_currency)
    normalizer = CurrencyNormalizer(table)

    print("\n" + "="*60)
    print(f"EXCHANGE RATES ({rate_type.value}, base {table.base_currency})")
    print("="*60)

    years = [args.year] if args.year else table.years()
    worst = 0.0
    for year in years:
        print(f"\n📅 {year}")
        fallbacks = []
        for currency in table.currencies(year):
            entry = table.get_entry(year, currency)
            monthly = f"  ({len(entry.monthly_rates)} monthly)" if entry.monthly_rates else ""
            _, error = normalizer.round_trip_error(1000.0, table.base_currency, currency, year, warnings=fallbacks)
            worst = max(worst, error)
            print(f"   {currency}: {entry.rate:>10.4f}{monthly}")
        if table.missing_rates([(year, table.base_currency)]):
            print(f"   ❌ Base currency {table.base_currency} has no rate")

    print(f"\n✅ {len(table)} rates; worst round-trip error {worst:.2e}")


def _add_pivot_options(parser):
    parser.add_argument('-r', '--rows', default='area', help='Comma-separated row dimensions')
    parser.add_argument('-c', '--columns', default='', help='Comma-separated column dimensions')
    parser.add_argument('-m', '--metrics', default='target,realized,assertiveness',
                        help='Comma-separated metrics (empty for all)')
    parser.add_argument('--currency', help='Target currency (default from settings)')
    parser.add_argument('--year', type=int, help='Fiscal year for facts without one')
    parser.add_argument('-f', '--filter', action='append',
                        help='field=value or field=v1,v2 (repeatable)')
    parser.add_argument('-s', '--search', help='Free-text search across searchable fields')
    parser.add_argument('--json', action='store_true', help='Print the report as JSON')


def main():
    setup_environment()
    setup_logging()

    parser = argparse.ArgumentParser(
        description="Portfolio Pivot Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py demo -r area -c month -m target     Sample pivot by area and month
  python main.py pivot facts.json -r status -f area=TI
  python main.py rates --type AVG                    List average rates

Environment Variables:
  EXCHANGE_RATES_PATH       YAML rate file (default config/exchange_rates.yaml)
  RATE_TYPE                 BU or AVG
  STRICT_RATES              Fail instead of falling back to rate 1
  DEFAULT_TARGET_CURRENCY   Currency of pivot output (default BRL)
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Demo command
    demo_parser = subparsers.add_parser('demo', help='Pivot generated sample data')
    _add_pivot_options(demo_parser)
    demo_parser.add_argument('--seed', type=int, default=42, help='Random seed')
    demo_parser.set_defaults(func=cmd_demo)

    # Pivot command
    pivot_parser = subparsers.add_parser('pivot', help='Pivot a JSON file of facts')
    pivot_parser.add_argument('file', help='JSON list of fact records')
    _add_pivot_options(pivot_parser)
    pivot_parser.set_defaults(func=cmd_pivot)

    # Rates command
    rates_parser = subparsers.add_parser('rates', help='Validate exchange rates')
    rates_parser.add_argument('--type', choices=['BU', 'AVG'], help='Rate table to load')
    rates_parser.add_argument('--year', type=int, help='Only this fiscal year')
    rates_parser.set_defaults(func=cmd_rates)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    from portfolio_pivot.core.error_taxonomy import PivotError, classify_error

    try:
        args.func(args)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except PivotError as e:
        classified = classify_error(e, pipeline_phase=args.command)
        logger.error(f"{classified.category.name}: {e}")
        print(f"\n❌ {classified.user_message}")
        sys.exit(2)
    except Exception as e:
        logger.error(f"Error: {e}", exc_info=True)
        sys.exit(1)

if __name__ == "__main__":
    main()
