"""Aggregate statistics over a close-price series."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence


@dataclass(frozen=True)
class PriceChange:
    """Difference between the first and last price of a series."""
    absolute_change: float
    percent_change: float  # Meaningless when the first price is 0 (divides by 1.0 instead)


def minimum(series: Sequence[float]) -> float | None:
    """Smallest price, or None for an empty series."""
    found: float | None = None
    for price in series:
        if found is None or price < found:
            found = price
    return found


def maximum(series: Sequence[float]) -> float | None:
    """Largest price, or None for an empty series."""
    found: float | None = None
    for price in series:
        if found is None or price > found:
            found = price
    return found


def period_change(series: Sequence[float]) -> PriceChange | None:
    """
    Absolute and percentage change from the first to the last price.

    A first price of 0 is replaced by 1.0 in the percentage division.

    Returns:
        PriceChange, or None for an empty series
    """
    if not series:
        return None
    first, last = series[0], series[-1]
    absolute = last - first
    divisor = 1.0 if first == 0 else first
    return PriceChange(absolute_change=absolute, percent_change=absolute / divisor * 100)


def windowed_average(n: int, series: Sequence[float]) -> list[float] | None:
    """
    Simple moving average over every full window of ``n`` prices.

    Returns:
        None when the series is empty or n <= 1 (invalid call), otherwise
        len(series) - n + 1 averages; an empty list when the series is
        shorter than the window.
    """
    if not series or n <= 1:
        return None

    averages = []
    for i in range(len(series) - n + 1):
        # Plain left-to-right sum per window keeps results reproducible.
        total = 0.0
        for price in series[i:i + n]:
            total += price
        averages.append(total / n)
    return averages
