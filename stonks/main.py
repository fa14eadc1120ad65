"""
Stonks - periodic stock summary reports as CSV.

Usage:
    python -m stonks.main AAPL,MSFT --from 2020-07-02T19:30:00Z
    python -m stonks.main AAPL MSFT GOOG -f 2021-01-01T00:00:00+00:00 --interval 1d --period 60
    python -m stonks.main AAPL --from 2024-01-01T00:00:00Z --once
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime

from .analytics.report import CsvReportWriter
from .config import ConfigError, Settings, get_settings
from .providers.yahoo_rest import YahooChartClient
from .streaming.runner import PipelineRunner
from .streaming.scheduler import utc_now
from .utils.timeframes import days_between, parse_rfc3339


logger = logging.getLogger(__name__)


def rfc3339_arg(value: str) -> datetime:
    """argparse type for the --from date."""
    try:
        return parse_rfc3339(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stonks",
        description="Look up stocks and print a rolling CSV summary per symbol.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  stonks AAPL,MSFT --from 2020-07-02T19:30:00Z
  stonks AAPL MSFT -f 2021-01-01T00:00:00+00:00 --interval 1d --period 60
  stonks AAPL --from 2024-01-01T00:00:00Z --once
        """
    )
    parser.add_argument(
        "symbols",
        nargs="+",
        help="Ticker symbols (space- or comma-separated)"
    )
    parser.add_argument(
        "-f", "--from",
        dest="from_date",
        required=True,
        type=rfc3339_arg,
        help="Start of the reporting period, RFC3339 (e.g. 2020-07-02T19:30:00Z)"
    )
    parser.add_argument(
        "--interval",
        default=None,
        help="Sampling granularity (default: STONKS_INTERVAL or 1h)"
    )
    parser.add_argument(
        "--period",
        type=float,
        default=None,
        help="Seconds between polls (default: STONKS_POLL_SECONDS or 10)"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Print a single report and exit"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level for stderr diagnostics (default: INFO)"
    )
    return parser


def load_settings(args: argparse.Namespace, now: datetime | None = None) -> Settings:
    """
    Merge CLI arguments over environment settings and validate them.

    Raises:
        ConfigError: Empty symbol list, future start date or invalid option
    """
    overrides: dict = {"symbols": ",".join(args.symbols)}
    if args.interval is not None:
        overrides["interval"] = args.interval
    if args.period is not None:
        overrides["poll_seconds"] = args.period
    if args.log_level is not None:
        overrides["log_level"] = args.log_level

    settings = get_settings(**overrides)

    if not settings.get_symbols():
        raise ConfigError("At least one ticker symbol is required")

    now = now or utc_now()
    if args.from_date > now:
        raise ConfigError(f"--from date {args.from_date.isoformat()} is in the future")

    return settings


async def main_async(settings: Settings, start: datetime, once: bool) -> int:
    writer = CsvReportWriter(sys.stdout)
    provider = YahooChartClient(
        base_url=settings.yahoo_base_url,
        timeout=settings.request_timeout,
    )
    runner = PipelineRunner(settings, provider, writer, start=start)

    logger.info(
        f"Reporting {len(runner.symbols)} symbol(s) over the last "
        f"{days_between(start, utc_now())} day(s)"
    )
    writer.write_header()

    try:
        if once:
            await runner.run_once()
        else:
            await runner.run_forever()
    finally:
        await runner.stop()
    return 0


def run(argv: list[str] | None = None) -> int:
    """Console entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args)
    except ConfigError as e:
        parser.error(str(e))

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        return asyncio.run(main_async(settings, args.from_date, args.once))
    except KeyboardInterrupt:
        logger.info("Received Ctrl+C, shutting down.")
        return 0
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(run())
