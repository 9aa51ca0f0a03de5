"""Error conditions raised by the session, the Upstox client and the strategy."""

from __future__ import annotations

from typing import Any, Optional


class MCPTraderError(Exception):
    """Base class for every error raised by this package."""


class Unauthenticated(MCPTraderError):
    """No session, or the session expired and could not be refreshed."""

    def __init__(self, message: str = "Not authenticated or session expired") -> None:
        super().__init__(message)


class RemoteRejection(MCPTraderError):
    """The authorization server or a data/order endpoint returned an error."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class InvalidGrant(RemoteRejection):
    """The stored refresh token was permanently rejected."""


class InsufficientCapital(MCPTraderError):
    """Investment amount does not buy a single unit at the current price."""


class NoPivotFound(MCPTraderError):
    """The price series never crossed its mean, so there is no signal."""


class InvalidInput(MCPTraderError, ValueError):
    """Malformed price data or strategy arguments."""
