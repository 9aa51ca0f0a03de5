import os
import tempfile

# keep the log database out of the working tree; must run before mcp_trader is imported
os.environ.setdefault("MCP_DB_PATH", os.path.join(tempfile.mkdtemp(prefix="mcp_trader_"), "trading.db"))

from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest

from mcp_trader.errors import InvalidGrant, RemoteRejection
from mcp_trader.models import PricePoint

NOW = datetime(2026, 10, 18, 9, 15, tzinfo=timezone.utc)
DAY_MS = 24 * 60 * 60 * 1000
T0 = 1_700_000_000_000


def make_points(prices, start=T0, step=DAY_MS):
    return [PricePoint(timestamp=start + i * step, price=float(p)) for i, p in enumerate(prices)]


def make_candles(prices, start=T0, step=DAY_MS, newest_first=False):
    rows = [
        {"timestamp": start + i * step, "open": p, "high": p, "low": p, "close": float(p), "volume": 1000.0}
        for i, p in enumerate(prices)
    ]
    if newest_first:
        rows.reverse()
    columns = ["timestamp", "open", "high", "low", "close", "volume"]
    return pd.DataFrame(rows, columns=columns).set_index("timestamp")


class MemoryBackend:
    def __init__(self, payload=None):
        self.payload = payload
        self.saves = []

    def load(self):
        return self.payload

    def save(self, payload):
        self.payload = payload
        self.saves.append(payload)


class FakeAuthServer:
    """Authorization server double counting every network call."""

    def __init__(self, expires_in=3600):
        self.expires_in = expires_in
        self.refresh_calls = 0
        self.exchange_calls = 0
        self.refresh_error = None
        self.issued = 0

    def authorization_url(self):
        return "https://api.upstox.com/v2/login/authorization/dialog?client_id=key"

    def _tokens(self):
        self.issued += 1
        return {
            "access_token": f"access-{self.issued}",
            "refresh_token": f"refresh-{self.issued}",
            "expires_in": self.expires_in,
        }

    def exchange_code(self, code):
        self.exchange_calls += 1
        if code == "bad":
            raise RemoteRejection("code rejected", status_code=400)
        return self._tokens()

    def refresh(self, refresh_token):
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        return self._tokens()


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeMarketClient:
    """Stands in for UpstoxClient in runner and analysis tests."""

    def __init__(self, candles=None, last_price=None, positions=None):
        self.candles = candles or {}
        self.last_price = last_price or {}
        self.positions = positions or []
        self.candle_calls = []
        self.orders = []

    def get_candles(self, symbol, interval, from_date, to_date):
        self.candle_calls.append((symbol, interval, from_date, to_date))
        data = self.candles.get((symbol, interval), self.candles.get(symbol))
        if isinstance(data, Exception):
            raise data
        return data if data is not None else make_candles([])

    def get_last_price(self, symbol):
        return self.last_price[symbol]

    def place_order(self, order):
        self.orders.append(order)
        return {"order_id": f"ord-{len(self.orders)}", "status": "success"}

    def get_positions(self):
        return self.positions


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def auth_server():
    return FakeAuthServer()


@pytest.fixture
def invalid_grant():
    return InvalidGrant("refresh token rejected", status_code=400, payload={"error": "invalid_grant"})
