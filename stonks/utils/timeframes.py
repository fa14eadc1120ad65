from __future__ import annotations

import re
from datetime import datetime


INTERVAL_RE = re.compile(r"^(\d+)(m|h|d|wk|mo)$")

# Granularities accepted by the Yahoo chart endpoint.
SUPPORTED_INTERVALS = (
    "1m", "2m", "5m", "15m", "30m", "60m", "90m",
    "1h", "1d", "5d", "1wk", "1mo", "3mo",
)

RFC3339_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}[Tt ]\d{2}:\d{2}:\d{2}(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)


def interval_to_seconds(interval: str) -> int:
    """Convert intervals like 1m/1h/1d/1wk/1mo into seconds (a month is 30 days)."""
    value = interval.strip()
    m = INTERVAL_RE.match(value)
    if not m or value not in SUPPORTED_INTERVALS:
        raise ValueError(
            f"Unsupported interval '{interval}'. Use one of {','.join(SUPPORTED_INTERVALS)}."
        )
    n = int(m.group(1))
    unit = m.group(2)
    if unit == "m":
        return n * 60
    if unit == "h":
        return n * 3600
    if unit == "d":
        return n * 86400
    if unit == "wk":
        return n * 7 * 86400
    if unit == "mo":
        return n * 30 * 86400
    raise ValueError(f"Unsupported interval unit '{unit}'.")


def parse_rfc3339(value: str) -> datetime:
    """
    Parse an RFC3339 timestamp into a timezone-aware datetime.

    Accepts a trailing ``Z`` for UTC. Timestamps without an offset are rejected
    since the start of the reporting period must be unambiguous.
    """
    text = value.strip()
    if not RFC3339_RE.match(text):
        raise ValueError(f"Date parsing error: '{value}' is not an RFC3339 timestamp")
    if text[-1] in "Zz":
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as e:
        raise ValueError(f"Date parsing error: {e}") from e


def days_between(start: datetime, end: datetime) -> int:
    """Whole days from start to end (negative when start lies in the future)."""
    return int((end - start).total_seconds() / 86400)
