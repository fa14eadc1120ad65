"""Result processor stage: reduces quote batches into summary reports."""

from __future__ import annotations

import logging

from ..analytics.report import DEFAULT_WINDOW, CsvReportWriter, SummaryReport, build_report
from ..providers.base import QuoteBatch


logger = logging.getLogger(__name__)


class ResultProcessor:
    """Sorts each batch by timestamp and emits one report row per non-empty batch."""

    def __init__(self, writer: CsvReportWriter, window: int = DEFAULT_WINDOW):
        self.writer = writer
        self.window = window
        self.reports_emitted = 0
        self.batches_skipped = 0

    async def handle(self, batch: QuoteBatch) -> None:
        self.process(batch)

    def process(self, batch: QuoteBatch) -> SummaryReport | None:
        if batch.is_empty:
            self.batches_skipped += 1
            logger.debug(f"No quotes for {batch.symbol} (tick {batch.tick}); nothing to report.")
            return None

        report = build_report(batch.period_start, batch.symbol, batch.closes(), self.window)
        if report is None:
            return None

        self.writer.write(report)
        self.reports_emitted += 1
        return report

    async def close(self) -> None:
        pass
