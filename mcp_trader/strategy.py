from __future__ import annotations

import math
from typing import Sequence

from .config import DEFAULT_ORDER_TYPE, DEFAULT_VALIDITY, MCP_DEVIATION_THRESHOLD
from .errors import InsufficientCapital, InvalidInput
from .models import OrderRequest, Pivot, PricePoint, StrategyDecision


def decide(
    pivot: Pivot,
    current_price: float,
    recent_window: Sequence[PricePoint],
    investment_amount: float,
    deviation_threshold: float = MCP_DEVIATION_THRESHOLD,
) -> StrategyDecision:
    """
    Decide what to do with the current price relative to the MCP.

    Args:
        pivot: the Most Connected Pivot of the lookback series
        current_price: last traded price
        recent_window: the latest points of the series (normally the last 10)
        investment_amount: capital available for this order

    Returns:
        HOLD when price is further than ``deviation_threshold`` from the pivot,
        otherwise BUY above the recent average and SELL at or below it.

    Raises:
        InvalidInput: non-positive prices, negative or non-finite capital, no recent data
        InsufficientCapital: the amount does not cover one unit
    """
    if pivot.price <= 0 or not math.isfinite(pivot.price):
        raise InvalidInput(f"Invalid pivot price {pivot.price!r}")
    if current_price <= 0 or not math.isfinite(current_price):
        raise InvalidInput(f"Invalid current price {current_price!r}")
    if investment_amount < 0 or not math.isfinite(investment_amount):
        raise InvalidInput(f"Investment amount must be finite and not negative, got {investment_amount!r}")

    deviation = abs(current_price - pivot.price) / pivot.price

    if deviation > deviation_threshold:
        return StrategyDecision(action="HOLD", deviation=deviation, connections=pivot.connections)

    if not recent_window:
        raise InvalidInput("Recent window is empty")
    avg_recent = sum(p.price for p in recent_window) / len(recent_window)

    # uptrend near the MCP buys, downtrend sells
    action = "BUY" if current_price > avg_recent else "SELL"
    quantity = math.floor(investment_amount / current_price)
    if quantity == 0:
        raise InsufficientCapital(
            f"Investment amount {investment_amount} too small for one unit at {current_price}"
        )

    return StrategyDecision(
        action=action,
        deviation=deviation,
        connections=pivot.connections,
        order_price=current_price,
        quantity=quantity,
    )


def build_order(symbol: str, decision: StrategyDecision) -> OrderRequest:
    if decision.action == "HOLD" or not decision.quantity:
        raise InvalidInput("Only BUY/SELL decisions with a quantity can be turned into orders")

    return OrderRequest(
        symbol=symbol,
        quantity=decision.quantity,
        side=decision.action,
        order_type=DEFAULT_ORDER_TYPE,
        price=decision.order_price,
        validity=DEFAULT_VALIDITY,
    )
