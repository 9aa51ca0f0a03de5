"""Project data models for the session, pivot detection and strategy decisions."""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

import pandas as pd


Action = Literal["BUY", "SELL", "HOLD"]


@dataclass
class TokenState:
    """Current OAuth2 token pair of the brokerage session.

    Attributes:
        access_token: bearer token sent with every authenticated call
        refresh_token: long lived token used to obtain a new access token
        expires_at: UTC expiry of ``access_token``
        authenticated: True iff ``access_token`` is set and not expired at last check

    """
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    authenticated: bool = False

    def is_valid_at(self, now: datetime) -> bool:
        return bool(self.access_token) and self.expires_at is not None and self.expires_at > now

    def to_dict(self) -> Dict[str, Any]:
        # camelCase keys keep token.json files written by the old tool readable
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "isAuthenticated": self.authenticated,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> "TokenState":
        if not data:
            return cls()

        expires_at = None
        raw_expiry = data.get("expiresAt")
        if raw_expiry:
            expires_at = pd.Timestamp(raw_expiry).to_pydatetime()
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)

        state = cls(
            access_token=data.get("accessToken"),
            refresh_token=data.get("refreshToken"),
            expires_at=expires_at,
        )
        state.authenticated = state.is_valid_at(now or datetime.now(timezone.utc))
        return state


@dataclass(frozen=True)
class PricePoint:
    """Closing price of one candle."""
    timestamp: int
    price: float


@dataclass
class Pivot:
    """A mean-crossover point and the number of points near its price."""
    timestamp: int
    price: float
    connections: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StrategyDecision:
    action: Action
    deviation: float
    connections: int
    order_price: Optional[float] = None
    quantity: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OrderRequest:
    symbol: str
    quantity: int
    side: Literal["BUY", "SELL"]
    order_type: str = "LIMIT"
    price: Optional[float] = None
    validity: str = "DAY"
    disclosed_quantity: int = 0
    trigger_price: Optional[float] = None
    is_amo: bool = False
