"""JSON analysis reports built from MCPs across symbols and timeframes."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Sequence

from .config import (
    ANALYSIS_DIR,
    ANALYSIS_TIMEFRAMES,
    DEFAULT_LOOKBACK_DAYS,
    HIGH_CONFIDENCE_CONNECTIONS,
    RECOMMENDATION_DISTANCE,
    STRONG_MCP_CONNECTIONS,
)
from .errors import InvalidInput, RemoteRejection
from .find_signal import fetch_price_points
from .logger import get_logger
from .pivots import detect_mcp
from .upstox import UpstoxClient
from .utils import lookback_window, percent

logger = get_logger(__name__)


def _stamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace(":", "-").replace(".", "-")


def save_analysis_to_file(data: Dict[str, Any], filename: str, directory: str | Path = ANALYSIS_DIR) -> Path:
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / filename
    with path.open("w", encoding="utf-8") as handle:
        json.dump(data, handle, indent=2, default=str)
    logger.info(f"Analysis saved to {path}")
    return path


def _timeframe_summary(client: UpstoxClient, symbol: str, interval: str,
                       from_date: str, to_date: str) -> Dict[str, Any]:
    try:
        points = fetch_price_points(client, symbol, interval, from_date, to_date)
        mcp = detect_mcp(points)
    except (RemoteRejection, InvalidInput) as exc:
        logger.error(f"Failed to calculate MCP for {symbol} {interval}: {exc}")
        return {"error": "Failed to calculate MCP"}

    if mcp is None:
        return {"error": "Failed to calculate MCP"}

    last_price = points[-1].price
    return {
        "mcp": mcp.to_dict(),
        "data_points": len(points),
        "last_price": last_price,
        "distance_from_mcp": percent((last_price - mcp.price) / mcp.price),
    }


def _recommendation(symbol: str, daily: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    mcp = daily.get("mcp")
    if not mcp:
        return None

    last_price = daily["last_price"]
    distance = abs(last_price - mcp["price"]) / mcp["price"]
    if distance > RECOMMENDATION_DISTANCE:
        return None

    return {
        "symbol": symbol,
        "action": "BUY" if last_price > mcp["price"] else "SELL",
        "reason": (f"Price is within {percent(RECOMMENDATION_DISTANCE, 0)} of a strong MCP ({mcp['price']}) "
                   f"with {mcp['connections']} connections"),
        "timeframe": "day",
        "confidence": "High" if mcp["connections"] > HIGH_CONFIDENCE_CONNECTIONS else "Medium",
    }


def generate_market_analysis(
    client: UpstoxClient,
    symbols: Sequence[str],
    timeframes: Iterable[str] = ANALYSIS_TIMEFRAMES,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """
    MCPs for every symbol and timeframe, the strongest MCPs overall and
    recommendations for symbols trading close to their daily MCP.
    """
    timeframes = list(timeframes)
    from_date, to_date = lookback_window(lookback_days, today)

    analysis: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "symbols": {},
        "market_overview": {
            "analyzed_symbols": len(symbols),
            "timeframe": f"{from_date} to {to_date}",
            "strongest_mcps": [],
        },
        "trading_recommendations": [],
    }
    strongest = analysis["market_overview"]["strongest_mcps"]

    for symbol in symbols:
        logger.info(f"Analyzing {symbol}...")
        frames: Dict[str, Any] = {}
        for interval in timeframes:
            summary = _timeframe_summary(client, symbol, interval, from_date, to_date)
            frames[interval] = summary
            mcp = summary.get("mcp")
            if mcp and mcp["connections"] > STRONG_MCP_CONNECTIONS:
                strongest.append({
                    "symbol": symbol,
                    "timeframe": interval,
                    "price": mcp["price"],
                    "connections": mcp["connections"],
                })

        scores = [tf["mcp"]["connections"] for tf in frames.values() if tf.get("mcp")]
        avg_score = sum(scores) / len(scores) if scores else 0.0
        analysis["symbols"][symbol] = {"timeframes": frames, "overall_strength": round(avg_score, 2)}

        recommendation = _recommendation(symbol, frames.get("day", {}))
        if recommendation:
            analysis["trading_recommendations"].append(recommendation)

    strongest.sort(key=lambda item: item["connections"], reverse=True)
    return analysis


def generate_visualization_data(client: UpstoxClient, symbol: str, interval: str,
                                lookback_days: int = DEFAULT_LOOKBACK_DAYS,
                                today: Optional[date] = None) -> Dict[str, Any]:
    from_date, to_date = lookback_window(lookback_days, today)
    points = fetch_price_points(client, symbol, interval, from_date, to_date)
    mcp = detect_mcp(points)
    return {
        "symbol": symbol,
        "interval": interval,
        "period": f"{from_date} to {to_date}",
        "price_data": [{"date": p.timestamp, "price": p.price} for p in points],
        "mcp": mcp.to_dict() if mcp else None,
    }


def generate_portfolio_analysis(client: UpstoxClient, lookback_days: int = DEFAULT_LOOKBACK_DAYS,
                                today: Optional[date] = None) -> Dict[str, Any]:
    """Daily MCP of every instrument currently held."""
    positions = client.get_positions()
    from_date, to_date = lookback_window(lookback_days, today)

    analysis: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "portfolio": positions,
        "mcp_analysis": {},
    }

    for position in positions:
        symbol = position.get("instrument_token")
        if not symbol:
            continue
        logger.info(f"Analyzing {symbol} against MCPs...")
        summary = _timeframe_summary(client, symbol, "day", from_date, to_date)
        if summary.get("mcp"):
            analysis["mcp_analysis"][symbol] = {"mcp": summary["mcp"], "current_position": position}

    return analysis


def report_filename(kind: str, symbol: Optional[str] = None) -> str:
    prefix = f"{symbol.replace('|', '_')}_{kind}" if symbol else kind
    return f"{prefix}_{_stamp()}.json"
