"""Durable mirror of the session's TokenState.

The store itself only converts between ``TokenState`` and a plain payload;
where the payload lives is up to the backend (a JSON file or the SQLite
datastore). Any object with ``load() -> dict | None`` and ``save(dict)``
can be plugged in.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from .datastore import SQLiteDataStore
from .logger import get_logger
from .models import TokenState

logger = get_logger(__name__)


class TokenBackend(Protocol):
    def load(self) -> Optional[Dict[str, Any]]: ...

    def save(self, payload: Dict[str, Any]) -> None: ...


class JsonFileBackend:
    """Keeps the token payload in a JSON file (``token.json`` by default)."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        with self.path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    def save(self, payload: Dict[str, Any]) -> None:
        if not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
        # write-then-rename so a crash never leaves a half written token file
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
        tmp_path.replace(self.path)


class SQLiteTokenBackend:
    def __init__(self, store: SQLiteDataStore) -> None:
        self.store = store
        self.store.initialize()

    def load(self) -> Optional[Dict[str, Any]]:
        return self.store.load_token()

    def save(self, payload: Dict[str, Any]) -> None:
        self.store.save_token(payload)


class TokenStore:
    """Load and persist the TokenState through a backend."""

    def __init__(self, backend: TokenBackend) -> None:
        self.backend = backend

    def load(self, now: Optional[datetime] = None) -> TokenState:
        """Return the persisted state, or an empty one if missing or unreadable."""
        try:
            payload = self.backend.load()
            if payload is not None and not isinstance(payload, dict):
                raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
            return TokenState.from_dict(payload, now=now)
        except (OSError, ValueError, sqlite3.Error) as exc:
            logger.error(f"Error loading token data: {exc}")
            return TokenState()

    def save(self, state: TokenState) -> bool:
        """
        Persist ``state``. Logout stores the empty state rather than deleting it.

        Returns:
            True if the backend accepted the payload, False otherwise.
        """
        payload = {} if not (state.access_token or state.refresh_token) else state.to_dict()
        try:
            self.backend.save(payload)
            return True
        except (OSError, sqlite3.Error) as exc:
            logger.error(f"Error saving token data: {exc}")
            return False
