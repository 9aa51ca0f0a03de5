"""
Log handler and datastore tests.
"""
import logging

from mcp_trader.datastore import SQLiteDataStore
from mcp_trader.logger import DatabaseHandler, get_logger


def test_database_handler_writes_records(tmp_path):
    db_path = tmp_path / "logs" / "trading.db"
    handler = DatabaseHandler(str(db_path))
    record = logging.LogRecord("mcp_trader.session", logging.ERROR, __file__, 1, "Token refresh error: %s", ("503",), None)

    handler.emit(record)

    rows = SQLiteDataStore(db_path).fetch_logs(level="ERROR")
    assert len(rows) == 1
    _, level, module, message = rows[0]
    assert (level, module, message) == ("ERROR", "mcp_trader.session", "Token refresh error: 503")


def test_module_loggers_share_package_handlers():
    log = get_logger("mcp_trader.find_signal")
    other = get_logger("some_script")

    assert log.name == "mcp_trader.find_signal"
    assert other.name == "mcp_trader.some_script"
    assert log.parent.name == "mcp_trader"
    assert any(isinstance(h, DatabaseHandler) for h in logging.getLogger("mcp_trader").handlers)


def test_fetch_logs_limit(tmp_path):
    store = SQLiteDataStore(tmp_path / "trading.db")
    store.initialize()
    for i in range(3):
        store.insert_log(1_700_000_000_000 + i, "INFO", "m", f"line {i}")

    assert [row[3] for row in store.fetch_logs(limit=2)] == ["line 0", "line 1"]
