from __future__ import annotations

from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from .config import DEFAULT_LOOKBACK_DAYS, RECENT_WINDOW
from .errors import InvalidInput, NoPivotFound
from .logger import get_logger
from .models import Pivot, PricePoint
from .pivots import candles_to_points, detect_mcp
from .strategy import build_order, decide
from .upstox import UpstoxClient
from .utils import lookback_window, percent

logger = get_logger(__name__)


def fetch_price_points(client: UpstoxClient, symbol: str, interval: str,
                       from_date: str, to_date: str) -> List[PricePoint]:
    candles = client.get_candles(symbol, interval, from_date, to_date)
    return candles_to_points(candles)


def calculate_mcps(client: UpstoxClient, symbols: Iterable[str], interval: str,
                   from_date: str, to_date: str) -> Dict[str, Optional[Pivot]]:
    """
    Compute the MCP of every symbol, one symbol at a time.

    Symbols are processed sequentially to stay under the data provider's
    rate limits.
    """
    symbols = list(symbols)
    if not symbols:
        raise InvalidInput("No symbols provided")

    results: Dict[str, Optional[Pivot]] = {}
    for symbol in symbols:
        points = fetch_price_points(client, symbol, interval, from_date, to_date)
        results[symbol] = detect_mcp(points)
        logger.info(f"MCP for {symbol} ({interval}, {len(points)} points): {results[symbol]}")
    return results


def run_mcp_strategy(
    client: UpstoxClient,
    symbol: str,
    interval: str,
    investment_amount: float,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    *,
    place: bool = True,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Run one pass of the MCP strategy for ``symbol`` and place the order.

    Raises:
        NoPivotFound: the lookback series never crossed its mean
        InsufficientCapital: the amount is too small for one unit
    """
    from_date, to_date = lookback_window(lookback_days or DEFAULT_LOOKBACK_DAYS, today)
    points = fetch_price_points(client, symbol, interval, from_date, to_date)

    mcp = detect_mcp(points)
    if mcp is None:
        logger.info(f"No MCP found for {symbol} between {from_date} and {to_date}")
        raise NoPivotFound(f"No MCP found for {symbol} between {from_date} and {to_date}")

    current_price = client.get_last_price(symbol)
    decision = decide(mcp, current_price, points[-RECENT_WINDOW:], investment_amount)

    result: Dict[str, Any] = {
        "strategy": "MCP",
        "symbol": symbol,
        "action": decision.action,
        "mcp": mcp.to_dict(),
        "current_price": current_price,
        "analysis": {
            "mcp_deviation": percent(decision.deviation, 4),
            "connection_strength": mcp.connections,
        },
    }

    if decision.action == "HOLD":
        result["reason"] = "Price not sufficiently close to MCP"
        logger.info(f"{symbol}: HOLD, price {current_price} is {percent(decision.deviation)} from MCP {mcp.price}")
        return result

    order = build_order(symbol, decision)
    result["decision"] = decision.to_dict()
    if place:
        result["order"] = client.place_order(order)
    logger.info(f"{symbol}: {decision.action} {decision.quantity} @ {decision.order_price} "
                f"(MCP {mcp.price}, {mcp.connections} connections)")
    return result
