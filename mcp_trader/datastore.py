"""Minimal SQLite helper for the trading assistant.

This module handles two things:
1. Ensuring the SQLite database file exists in the desired location.
2. Creating and using the base tables (tokens, logs).

Historical candles are never written here; they are fetched fresh on every run.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


def _ensure_parent(path: Path) -> None:
    """Create the parent directory for the database file if required."""

    if not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)


class SQLiteDataStore:
    """Very small wrapper around sqlite3 connections."""

    def __init__(self, db_path: str | Path = Path("data/trading.db")) -> None:
        self.db_path = Path(db_path)
        _ensure_parent(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        """Return a live sqlite3 connection."""

        return sqlite3.connect(self.db_path)

    def initialize(self) -> None:
        """Create base tables if they do not already exist."""
        schema = """
        CREATE TABLE IF NOT EXISTS tokens (
            id INTEGER PRIMARY KEY CHECK (id = 1),  -- single session per process
            payload TEXT NOT NULL,  -- TokenState as a JSON string
            updated_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s', 'now') AS INTEGER))
        );

        CREATE TABLE IF NOT EXISTS logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp INTEGER NOT NULL,
            level TEXT NOT NULL,
            module TEXT NOT NULL,
            message TEXT NOT NULL
        );
        """

        with self._connect() as conn:
            conn.executescript(schema)

    def load_token(self) -> Optional[Dict[str, Any]]:
        """Return the stored token payload, or None if nothing was saved yet."""

        with self._connect() as conn:
            row = conn.execute("SELECT payload FROM tokens WHERE id = 1").fetchone()

        if row is None:
            return None
        return json.loads(row[0])

    def save_token(self, payload: Dict[str, Any]) -> None:
        """Insert or replace the single token row."""

        sql = (
            "INSERT INTO tokens (id, payload) VALUES (1, ?) "
            "ON CONFLICT(id) DO UPDATE SET payload = excluded.payload, "
            "updated_at = CAST(strftime('%s', 'now') AS INTEGER)"
        )
        with self._connect() as conn:
            conn.execute(sql, (json.dumps(payload),))

    def insert_log(self, timestamp_ms: int, level: str, module: str, message: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO logs (timestamp, level, module, message) VALUES (?, ?, ?, ?)",
                (timestamp_ms, level, module, message),
            )

    def fetch_logs(self, *, level: Optional[str] = None, limit: Optional[int] = None) -> List[Tuple[int, str, str, str]]:
        """Return ``(timestamp, level, module, message)`` rows, oldest first."""

        clauses: List[str] = []
        params: List[object] = []

        if level is not None:
            clauses.append("level = ?")
            params.append(level)

        query_parts = ["SELECT timestamp, level, module, message FROM logs"]
        if clauses:
            query_parts.append("WHERE " + " AND ".join(clauses))
        query_parts.append("ORDER BY id ASC")

        if limit is not None:
            query_parts.append("LIMIT ?")
            params.append(int(limit))

        with self._connect() as conn:
            cursor = conn.execute(" ".join(query_parts), params)
            return [tuple(row) for row in cursor.fetchall()]
