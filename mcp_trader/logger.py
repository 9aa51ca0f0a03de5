import logging
import os
import sqlite3
from datetime import datetime
from typing import Optional

from .config import DB_PATH
from .datastore import SQLiteDataStore
from .utils import to_milliseconds

ROOT_LOGGER_NAME = "mcp_trader"


class DatabaseHandler(logging.Handler):
    """
    A custom logging handler that writes log records to an SQLite database.
    """
    def __init__(self, db_path: str):
        super().__init__()
        self.db_store = SQLiteDataStore(db_path)
        self.db_store.initialize()

    def emit(self, record: logging.LogRecord):
        """
        Saves a log record to the database.
        """
        try:
            self.db_store.insert_log(
                timestamp_ms=to_milliseconds(datetime.now()),
                level=record.levelname,
                module=record.name,
                message=record.getMessage()
            )
        except sqlite3.Error:
            self.handleError(record)

_logger: Optional[logging.Logger] = None

def get_logger(name: str, db_path: Optional[str] = None) -> logging.Logger:
    """
    Configures and returns a logger that writes to the console and a database.

    Every module logger is a child of ``mcp_trader`` so the handlers below
    are shared by the whole package.
    """
    global _logger
    if _logger is None:
        _logger = logging.getLogger(ROOT_LOGGER_NAME)
        _logger.setLevel(logging.INFO)

        # Prevent logs from being propagated to the root logger
        _logger.propagate = False

        # Console handler
        if not any(isinstance(h, logging.StreamHandler) for h in _logger.handlers):
            console_handler = logging.StreamHandler()
            formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
            console_handler.setFormatter(formatter)
            _logger.addHandler(console_handler)

        # Database handler
        if not any(isinstance(h, DatabaseHandler) for h in _logger.handlers):
            db_handler = DatabaseHandler(db_path or os.getenv("MCP_DB_PATH", DB_PATH))
            _logger.addHandler(db_handler)

    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
