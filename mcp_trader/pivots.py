"""Most Connected Pivot (MCP) detection.

A pivot candidate is a point where the price crosses the series mean. Each
candidate is scored by how many points of the whole series sit within a
small relative band of its price; the best scored candidate is the MCP.
"""

from __future__ import annotations

import math
from typing import Iterable, List, Optional, Sequence

import pandas as pd

from .config import CONNECTION_TOLERANCE
from .errors import InvalidInput
from .models import Pivot, PricePoint


def candles_to_points(candles: pd.DataFrame) -> List[PricePoint]:
    """Turn an OHLCV frame indexed by timestamp into chronological close prices."""

    if candles is None or candles.empty:
        return []
    if "close" not in candles.columns:
        raise InvalidInput("Candle data has no 'close' column")

    df = candles.sort_index(kind="stable")
    return [PricePoint(timestamp=int(ts), price=float(close)) for ts, close in df["close"].items()]


def _validate(points: Sequence[PricePoint]) -> None:
    for point in points:
        if not math.isfinite(point.price) or point.price <= 0:
            raise InvalidInput(f"Invalid price {point.price!r} at {point.timestamp}")


def _monotonic(points: Sequence[PricePoint]) -> bool:
    # repeated closes (plateaus) do not break a trend
    steps = [b.price - a.price for a, b in zip(points, points[1:])]
    return all(s >= 0 for s in steps) or all(s <= 0 for s in steps)


def find_pivot_candidates(points: Sequence[PricePoint]) -> List[PricePoint]:
    """
    Return the points where price crosses the mean, in series order.

    A rising or falling series (flat steps allowed) passes its own mean
    exactly once without ever reverting, so it yields no candidates.
    """

    if len(points) < 2 or _monotonic(points):
        return []

    avg = sum(p.price for p in points) / len(points)

    # strict '>' on purpose: a price equal to the mean counts as below it
    candidates: List[PricePoint] = []
    above_avg = points[0].price > avg
    for point in points[1:]:
        current_above = point.price > avg
        if current_above != above_avg:
            candidates.append(point)
            above_avg = current_above

    return candidates


def count_connections(price: float, points: Iterable[PricePoint], tolerance: float = CONNECTION_TOLERANCE) -> int:
    """Number of points whose relative distance to ``price`` is within ``tolerance``."""
    return sum(1 for p in points if abs(price - p.price) / price <= tolerance)


def detect_mcp(points: Iterable[PricePoint], tolerance: float = CONNECTION_TOLERANCE) -> Optional[Pivot]:
    """
    Find the Most Connected Pivot of a price series.

    Args:
        points: chronological price points
        tolerance: relative band used to count connections (0.001 = 0.1%)

    Returns:
        The candidate with the most connections, the earliest one on ties,
        or None when the series never crosses its mean.
    """
    points = list(points)
    if not points:
        return None
    _validate(points)

    best: Optional[Pivot] = None
    for candidate in find_pivot_candidates(points):
        connections = count_connections(candidate.price, points, tolerance)
        if best is None or connections > best.connections:
            best = Pivot(timestamp=candidate.timestamp, price=candidate.price, connections=connections)

    return best
