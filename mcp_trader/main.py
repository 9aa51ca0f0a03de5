import os
from typing import Callable, Tuple

from mcp_trader.analysis import (
    generate_market_analysis,
    generate_portfolio_analysis,
    generate_visualization_data,
    report_filename,
    save_analysis_to_file,
)
from mcp_trader.config import DB_PATH, DEFAULT_LOOKBACK_DAYS, TOKEN_FILE_PATH
from mcp_trader.datastore import SQLiteDataStore
from mcp_trader.errors import MCPTraderError, RemoteRejection
from mcp_trader.find_signal import calculate_mcps, run_mcp_strategy
from mcp_trader.logger import get_logger
from mcp_trader.session import SessionManager, call_with_reauth
from mcp_trader.token_store import JsonFileBackend, SQLiteTokenBackend, TokenStore
from mcp_trader.upstox import UpstoxClient
from mcp_trader.utils import lookback_window

logger = get_logger(__name__)


def build_session(client: UpstoxClient) -> SessionManager:
    """
    Wire the session to the client: the session refreshes through the client,
    and the client asks the session for a checked token on every private call.
    """
    if os.getenv("MCP_TOKEN_BACKEND", "file") == "sqlite":
        backend = SQLiteTokenBackend(SQLiteDataStore(os.getenv("MCP_DB_PATH", DB_PATH)))
    else:
        backend = JsonFileBackend(os.getenv("MCP_TOKEN_FILE", TOKEN_FILE_PATH))

    session = SessionManager(client, TokenStore(backend))
    client.token_provider = session.authorized_token
    return session


def make_login(session: SessionManager, prompt: Callable[[str], str] = input) -> Callable[[], bool]:
    def login() -> bool:
        print("\nYou need to authenticate with Upstox first.")
        print(f"Please open this URL in your browser: {session.authorization_url()}")
        code = prompt("Paste the 'code' parameter from the redirect URL: ").strip()
        try:
            session.complete_login(code)
        except (RemoteRejection, ValueError) as e:
            logger.error(f"Authentication failed: {e}")
            return False
        return True

    return login


def _ask_symbols(prompt: Callable[[str], str]) -> list:
    return [s.strip() for s in prompt("Enter symbols (comma separated): ").split(",") if s.strip()]


def _ask_days(prompt: Callable[[str], str]) -> int:
    raw = prompt(f"Enter lookback days [{DEFAULT_LOOKBACK_DAYS}]: ").strip()
    return int(raw) if raw else DEFAULT_LOOKBACK_DAYS


def menu_actions(client: UpstoxClient,
                 prompt: Callable[[str], str] = input) -> dict:
    def strategy():
        symbol = prompt("Enter symbol: ").strip()
        interval = prompt("Enter interval (e.g., day, 30minute, 1minute): ").strip()
        amount = float(prompt("Enter investment amount: "))
        days = _ask_days(prompt)
        return lambda: run_mcp_strategy(client, symbol, interval, amount, days)

    def batch():
        symbols = _ask_symbols(prompt)
        interval = prompt("Enter interval (e.g., day, 30minute, 1minute): ").strip()
        from_date, to_date = lookback_window(_ask_days(prompt))

        def run():
            results = calculate_mcps(client, symbols, interval, from_date, to_date)
            return {symbol: (mcp.to_dict() if mcp else None) for symbol, mcp in results.items()}
        return run

    def market():
        symbols = _ask_symbols(prompt)
        return lambda: save_analysis_to_file(generate_market_analysis(client, symbols),
                                             report_filename("market_analysis"))

    def visualization():
        symbol = prompt("Enter symbol to visualize: ").strip()
        interval = prompt("Enter interval (e.g., day, 30minute, 1minute): ").strip()
        days = _ask_days(prompt)
        return lambda: save_analysis_to_file(generate_visualization_data(client, symbol, interval, days),
                                             report_filename("viz", symbol))

    def portfolio():
        return lambda: save_analysis_to_file(generate_portfolio_analysis(client),
                                             report_filename("portfolio_analysis"))

    return {
        "2": ("Run MCP strategy", strategy),
        "3": ("Calculate MCPs for symbols", batch),
        "4": ("Generate market analysis", market),
        "5": ("Generate visualization data", visualization),
        "6": ("Generate portfolio analysis", portfolio),
    }


def main_loop(prompt: Callable[[str], str] = input) -> Tuple[UpstoxClient, SessionManager]:
    """
    Interactive menu. Every action runs behind the session check; an expired
    session prompts a fresh login and the action is retried once.
    """
    client = UpstoxClient()
    session = build_session(client)
    login = make_login(session, prompt)
    actions = menu_actions(client, prompt)

    if session.ensure_valid_token():
        logger.info("Already authenticated with Upstox.")
    else:
        login()

    while True:
        print("\n--- MCP Trading Assistant ---")
        print("1. Authenticate with Upstox")
        for key, (label, _) in actions.items():
            print(f"{key}. {label}")
        print("7. Logout")
        print("0. Exit")

        choice = prompt("\nEnter your choice: ").strip()
        if choice == "0":
            print("Exiting...")
            return client, session
        if choice == "1":
            login()
            continue
        if choice == "7":
            session.logout()
            continue
        if choice not in actions:
            print("Invalid choice, please try again.")
            continue

        label, action = actions[choice]
        try:
            # inputs are collected once; only the remote part is retried after a re-login
            operation = action()
            result = call_with_reauth(operation, login)
            print(result)
        except MCPTraderError as e:
            logger.error(f"{label} failed: {e}")
        except ValueError as e:
            logger.error(f"Invalid input for {label}: {e}")


def main() -> None:
    main_loop()


if __name__ == "__main__":
    main()
