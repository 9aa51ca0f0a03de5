from __future__ import annotations

import os
import time
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote, urlencode

import pandas as pd
import requests
from dotenv import load_dotenv

from .config import (
    BACK_OFF_FACTOR,
    DEFAULT_PRODUCT,
    DEFAULT_TOKEN_TTL_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
    RETRIES,
    UPSTOX_AUTH_PATH,
    UPSTOX_BASE_URL,
    UPSTOX_TOKEN_PATH,
)
from .errors import InvalidGrant, RemoteRejection, Unauthenticated
from .logger import get_logger
from .models import OrderRequest
from .utils import to_milliseconds

logger = get_logger(__name__)

CANDLE_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]

# error codes meaning the refresh token (or code) will never be accepted again
INVALID_GRANT_CODES = {"invalid_grant", "UDAPI100050", "UDAPI100057"}


def _error_codes(payload: Any) -> List[str]:
    if not isinstance(payload, dict):
        return []
    codes = []
    if payload.get("error"):
        codes.append(str(payload["error"]))
    for err in payload.get("errors") or []:
        if isinstance(err, dict):
            codes.append(str(err.get("errorCode") or err.get("error_code") or ""))
    return codes


class UpstoxClient:
    """Thin API client for the Upstox v2 REST API.

    Authenticated calls ask ``token_provider`` for a bearer token right
    before every request; the session manager installs itself there so
    each call is gated by a token check.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        session: Optional[requests.Session] = None,
        token_provider: Optional[Callable[[], str]] = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        load_dotenv()

        self.base_url = base_url or os.getenv("UPSTOX_BASE_URL") or UPSTOX_BASE_URL
        self.api_key = api_key or os.getenv("UPSTOX_API_KEY")
        self.api_secret = api_secret or os.getenv("UPSTOX_API_SECRET")
        self.redirect_uri = redirect_uri or os.getenv("REDIRECT_URI")

        if not all([self.api_key, self.api_secret, self.redirect_uri]):
            raise ValueError("Missing required environment variables. Please check your .env file.")

        self.session = session or requests.Session()
        self.token_provider = token_provider
        self.timeout = timeout

    def _request(self, method: str, path: str, *, params: Optional[Dict[str, Any]] = None,
                 data: Optional[Dict[str, Any]] = None, json: Optional[Dict[str, Any]] = None,
                 auth: bool = False) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {"Accept": "application/json"}

        retry = 0
        while retry < RETRIES:
            if auth:
                if self.token_provider is None:
                    raise Unauthenticated("No session attached to the client")
                # asked on every attempt so a retry picks up a refreshed token
                headers["Authorization"] = f"Bearer {self.token_provider()}"

            try:
                response = self.session.request(
                    method=method,
                    url=url,
                    params=params,
                    data=data,
                    json=json,
                    headers=headers,
                    timeout=self.timeout,
                )
                response.raise_for_status()  # Raise exception for HTTP errors (4xx, 5xx)
                return response.json()

            except requests.exceptions.HTTPError as exc:
                status = exc.response.status_code
                # Handle 429 Too Many Requests
                if status == 429:
                    retry += 1
                    retry_after = exc.response.headers.get("Retry-After")
                    wait_time = int(retry_after) if retry_after else BACK_OFF_FACTOR ** retry
                    logger.warning(f"Rate limit exceeded (429) on {path}. Retrying in {wait_time} seconds... "
                                   f"(Attempt {retry}/{RETRIES})")
                    time.sleep(wait_time)
                    continue

                payload = self._error_payload(exc.response)
                logger.error(f"HTTPError on {path}: {status} {payload}. No retry.")
                if status == 401 and auth:
                    raise Unauthenticated() from exc
                raise RemoteRejection(f"{method} {path} failed with status {status}",
                                      status_code=status, payload=payload) from exc

            except requests.exceptions.RequestException as exc:
                # Handle generic request errors (timeouts included) with retries
                retry += 1
                wait_time = BACK_OFF_FACTOR ** retry
                logger.warning(f"RequestException on {path}: {exc}. Retrying in {wait_time} seconds... "
                               f"(Attempt {retry}/{RETRIES})")
                if retry < RETRIES:
                    time.sleep(wait_time)

        raise RemoteRejection(f"{method} {path} failed: max retries reached")

    @staticmethod
    def _error_payload(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    # Authorization server ---------------------------------------------

    def authorization_url(self) -> str:
        query = urlencode({
            "client_id": self.api_key,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
        })
        return f"{self.base_url}{UPSTOX_AUTH_PATH}?{query}"

    def exchange_code(self, code: str) -> Dict[str, Any]:
        """Trade a one-time authorization code for the initial token pair."""
        return self._token_request({
            "code": code,
            "client_id": self.api_key,
            "client_secret": self.api_secret,
            "redirect_uri": self.redirect_uri,
            "grant_type": "authorization_code",
        })

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        return self._token_request({
            "client_id": self.api_key,
            "client_secret": self.api_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

    def _token_request(self, form: Dict[str, Any]) -> Dict[str, Any]:
        try:
            body = self._request("POST", UPSTOX_TOKEN_PATH, data=form)
        except RemoteRejection as exc:
            if INVALID_GRANT_CODES.intersection(_error_codes(exc.payload)):
                raise InvalidGrant(str(exc), status_code=exc.status_code, payload=exc.payload) from exc
            raise

        if not body.get("access_token"):
            raise RemoteRejection("Token endpoint returned no access_token", payload=body)

        return {
            "access_token": body["access_token"],
            "refresh_token": body.get("refresh_token"),
            "expires_in": int(body.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS),
        }

    # Market data ------------------------------------------------------

    def get_candles(self, symbol: str, interval: str, from_date: str, to_date: str) -> pd.DataFrame:
        """
        Fetch historical OHLCV candles.

        Args:
            symbol: Upstox instrument key (e.g., 'NSE_EQ|INE002A01018')
            interval: Candle interval ('1minute', '30minute', 'day', 'week', 'month')
            from_date: First day as YYYY-MM-DD
            to_date: Last day as YYYY-MM-DD

        Returns:
            DataFrame indexed by epoch-millisecond timestamp, oldest first,
            with columns open, high, low, close, volume.
        """
        path = f"/historical-candle/{quote(symbol, safe='')}/{interval}/{to_date}/{from_date}"
        body = self._request("GET", path, auth=True)
        candles = (body.get("data") or {}).get("candles") or []

        if not candles:
            return pd.DataFrame(columns=CANDLE_COLUMNS[1:], index=pd.Index([], name="timestamp"))

        # Upstox appends open interest as a 7th field on some segments
        df = pd.DataFrame([row[:6] for row in candles], columns=CANDLE_COLUMNS)
        df["timestamp"] = df["timestamp"].map(to_milliseconds)
        df = df.dropna(subset=["timestamp"])
        df["timestamp"] = df["timestamp"].astype("int64")
        for col in ["open", "high", "low", "close", "volume"]:
            df[col] = df[col].astype(float)

        # newest-first on the wire
        return df.set_index("timestamp").sort_index(kind="stable")

    def get_last_price(self, symbol: str) -> float:
        body = self._request("GET", "/market-quote/ltp", params={"instrument_key": symbol}, auth=True)
        quotes = body.get("data") or {}

        # response keys use ':' in place of '|', so match on instrument_token first
        for key, item in quotes.items():
            if item.get("instrument_token") == symbol or key == symbol:
                return float(item["last_price"])
        if len(quotes) == 1:
            return float(next(iter(quotes.values()))["last_price"])

        raise RemoteRejection(f"No quote returned for {symbol}", payload=body)

    # Orders and portfolio ---------------------------------------------

    def place_order(self, order: OrderRequest) -> Dict[str, Any]:
        payload = {
            "instrument_token": order.symbol,
            "quantity": order.quantity,
            "transaction_type": order.side,
            "order_type": order.order_type,
            "price": order.price or 0,
            "validity": order.validity,
            "disclosed_quantity": order.disclosed_quantity,
            "trigger_price": order.trigger_price or 0,
            "is_amo": order.is_amo,
            "product": DEFAULT_PRODUCT,
        }
        body = self._request("POST", "/order/place", json=payload, auth=True)
        logger.info(f"Placed {order.side} {order.order_type} order for {order.quantity} x {order.symbol}: {body}")
        return {
            "order_id": (body.get("data") or {}).get("order_id"),
            "status": body.get("status"),
        }

    def get_positions(self) -> List[Dict[str, Any]]:
        body = self._request("GET", "/portfolio/short-term-positions", auth=True)
        return body.get("data") or []
