"""Summary report rows and their CSV rendering."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence, TextIO

from .stats import maximum, minimum, period_change, windowed_average


logger = logging.getLogger(__name__)

CSV_HEADER = "period start,symbol,price,change %,min,max,30d avg"

DEFAULT_WINDOW = 30


@dataclass(frozen=True)
class SummaryReport:
    """One printable output row for a symbol."""
    period_start: datetime
    symbol: str
    price: float  # Last close
    percent_change: float
    absolute_change: float
    minimum: float
    maximum: float
    trailing_average: float


def build_report(
    period_start: datetime,
    symbol: str,
    series: Sequence[float],
    window: int = DEFAULT_WINDOW,
) -> SummaryReport | None:
    """
    Reduce an ordered close-price series into a SummaryReport.

    Args:
        period_start: Logical start of the reporting period
        symbol: Ticker the series belongs to
        series: Close prices in ascending time order
        window: Trailing average window size

    Returns:
        SummaryReport, or None if the series is empty
    """
    if not series:
        return None

    change = period_change(series)
    averages = windowed_average(window, series)

    # Fewer samples than the window reports an average of 0 rather than omitting it.
    trailing = averages[-1] if averages else 0.0

    return SummaryReport(
        period_start=period_start,
        symbol=symbol,
        price=series[-1],
        percent_change=change.percent_change,
        absolute_change=change.absolute_change,
        minimum=minimum(series),
        maximum=maximum(series),
        trailing_average=trailing,
    )


def format_period_start(start: datetime) -> str:
    """ISO 8601 with the fraction only as long as it needs to be (.5, not .500000)."""
    text = start.isoformat(timespec="seconds")
    if not start.microsecond:
        return text
    fraction = f"{start.microsecond:06d}".rstrip("0")
    return f"{text[:19]}.{fraction}{text[19:]}"


def format_report_line(report: SummaryReport) -> str:
    """Render a report as one CSV data row (no trailing newline)."""
    return (
        f"{format_period_start(report.period_start)},{report.symbol},"
        f"${report.price:.2f},{report.percent_change:.3f}%,"
        f"${report.minimum:.2f},${report.maximum:.2f},${report.trailing_average:.2f}"
    )


class CsvReportWriter:
    """Writes the CSV header and report rows to a text stream (stdout by default)."""

    def __init__(self, stream: TextIO | None = None):
        self.stream = stream if stream is not None else sys.stdout
        self.rows_written = 0

    def write_header(self) -> None:
        self.stream.write(CSV_HEADER + "\n")
        self.stream.flush()

    def write(self, report: SummaryReport) -> None:
        self.stream.write(format_report_line(report) + "\n")
        self.stream.flush()
        self.rows_written += 1
        logger.debug(f"Report row written for {report.symbol}")
