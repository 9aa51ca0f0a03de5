from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Optional, Tuple

import pandas as pd


def to_milliseconds(value: Any) -> int | None:
    """Normalize assorted timestamp-like inputs to epoch milliseconds."""

    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, pd.Timestamp):
        return int(value.value // 1_000_000)

    if isinstance(value, datetime):
        ts = value.timestamp()
        return int(ts * 1000) if ts > 0 else None

    try:
        numeric = float(value)
    except (TypeError, ValueError):
        # Upstox candles carry ISO-8601 strings with an offset, e.g. 2024-01-05T09:15:00+05:30
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
        ts = dt.timestamp()
        return int(ts * 1000) if ts > 0 else None

    if numeric <= 0:
        return None
    if numeric >= 1_000_000_000_000:
        return int(numeric)
    return int(numeric * 1000)


def lookback_window(days: int, today: Optional[date] = None) -> Tuple[str, str]:
    """Return ``(from_date, to_date)`` as ISO dates covering the last ``days`` days."""

    end = today or datetime.now().date()
    start = end - timedelta(days=days)
    return start.isoformat(), end.isoformat()


def percent(value: float, digits: int = 2) -> str:
    return f"{value * 100:.{digits}f}%"
