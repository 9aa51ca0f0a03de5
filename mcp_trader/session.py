"""OAuth2 session lifecycle for the Upstox account.

One ``SessionManager`` per process owns the ``TokenState``. Every
authenticated call goes through :meth:`SessionManager.ensure_valid_token`,
which answers from memory while the access token has more than five
minutes left and otherwise refreshes it. Refreshes are serialized by a
lock, so threads that find the token near expiry at the same time end up
sharing one refresh.
"""

from __future__ import annotations

import functools
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Protocol, TypeVar

from .config import TOKEN_REFRESH_MARGIN_SECONDS
from .errors import InvalidGrant, RemoteRejection, Unauthenticated
from .logger import get_logger
from .models import TokenState
from .token_store import TokenStore

logger = get_logger(__name__)

T = TypeVar("T")


class AuthorizationServer(Protocol):
    def authorization_url(self) -> str: ...

    def exchange_code(self, code: str) -> Dict[str, Any]: ...

    def refresh(self, refresh_token: str) -> Dict[str, Any]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    def __init__(
        self,
        auth_server: AuthorizationServer,
        store: TokenStore,
        clock: Callable[[], datetime] = _utcnow,
        refresh_margin: timedelta = timedelta(seconds=TOKEN_REFRESH_MARGIN_SECONDS),
    ) -> None:
        self.auth_server = auth_server
        self.store = store
        self.clock = clock
        self.refresh_margin = refresh_margin
        self._lock = threading.Lock()
        self.state = store.load(now=clock())

    @property
    def access_token(self) -> Optional[str]:
        return self.state.access_token

    @property
    def is_authenticated(self) -> bool:
        return self.state.authenticated

    def authorization_url(self) -> str:
        return self.auth_server.authorization_url()

    def ensure_valid_token(self) -> bool:
        """
        Make sure a usable access token is on record.

        Returns:
            True if the token is valid for more than the refresh margin or was
            refreshed, False if the caller has to drive an interactive login.
        """
        with self._lock:
            state = self.state
            if not state.refresh_token or state.expires_at is None:
                return False

            now = self.clock()
            if state.expires_at - now > self.refresh_margin:
                state.authenticated = state.is_valid_at(now)
                return True

            try:
                response = self.auth_server.refresh(state.refresh_token)
            except InvalidGrant as exc:
                logger.error(f"Refresh token rejected permanently, clearing session: {exc.payload or exc}")
                self._reset()
                return False
            except RemoteRejection as exc:
                # keep the old pair; the next check retries the refresh
                logger.error(f"Token refresh error: {exc.payload or exc}")
                state.authenticated = state.is_valid_at(now)
                return False

            self.state = self._state_from_response(response, now, previous_refresh=state.refresh_token)
            self.store.save(self.state)
            logger.info(f"Access token refreshed, valid until {self.state.expires_at.isoformat()}")
            return True

    def complete_login(self, code: str) -> TokenState:
        """Exchange a one-time authorization code for the initial token pair."""
        if not code:
            raise ValueError("Authorization code not provided")

        response = self.auth_server.exchange_code(code)
        with self._lock:
            self.state = self._state_from_response(response, self.clock())
            self.store.save(self.state)
        logger.info("Authentication successful")
        return self.state

    def logout(self) -> None:
        with self._lock:
            self._reset()
        logger.info("Logged out successfully")

    def authorized_token(self) -> str:
        """Return a valid access token or raise ``Unauthenticated``."""
        if not self.ensure_valid_token() or not self.state.access_token:
            raise Unauthenticated()
        return self.state.access_token

    def require_auth(self, func: Callable[..., T]) -> Callable[..., T]:
        """Decorator failing ``func`` with ``Unauthenticated`` unless the session is valid."""

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            if not self.ensure_valid_token():
                raise Unauthenticated()
            return func(*args, **kwargs)

        return wrapper

    def _reset(self) -> None:
        self.state = TokenState()
        self.store.save(self.state)

    @staticmethod
    def _state_from_response(response: Dict[str, Any], now: datetime,
                             previous_refresh: Optional[str] = None) -> TokenState:
        return TokenState(
            access_token=response["access_token"],
            refresh_token=response.get("refresh_token") or previous_refresh,
            expires_at=now + timedelta(seconds=int(response["expires_in"])),
            authenticated=True,
        )


def call_with_reauth(operation: Callable[..., T], login: Callable[[], bool], *args: Any, **kwargs: Any) -> T:
    """
    Run ``operation``; on ``Unauthenticated`` drive ``login`` and retry once.

    A second ``Unauthenticated`` (or a failed login) propagates to the caller.
    """
    try:
        return operation(*args, **kwargs)
    except Unauthenticated:
        logger.warning("Session expired. Please authenticate again.")
        if not login():
            raise
        return operation(*args, **kwargs)
