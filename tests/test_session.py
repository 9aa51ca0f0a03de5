"""
Session lifecycle tests.

Covers the no-network fast path, refresh success/failure, permanent
refresh-token rejection, login/logout persistence, the auth guard, refresh
coalescing across threads and the bounded re-login retry.
"""
import threading
import time
from datetime import timedelta

import pytest

from conftest import NOW, FakeAuthServer, MemoryBackend
from mcp_trader.errors import RemoteRejection, Unauthenticated
from mcp_trader.models import TokenState
from mcp_trader.session import SessionManager, call_with_reauth
from mcp_trader.token_store import TokenStore


def stored(expires_in_seconds, access="access-0", refresh="refresh-0"):
    return TokenState(
        access_token=access,
        refresh_token=refresh,
        expires_at=NOW + timedelta(seconds=expires_in_seconds),
        authenticated=True,
    ).to_dict()


def make_session(auth_server, clock, payload=None):
    backend = MemoryBackend(payload)
    session = SessionManager(auth_server, TokenStore(backend), clock=clock)
    return session, backend


class TestStartup:
    def test_loads_persisted_tokens(self, auth_server, clock):
        session, _ = make_session(auth_server, clock, stored(3600))

        assert session.access_token == "access-0"
        assert session.is_authenticated

    def test_expired_tokens_load_unauthenticated(self, auth_server, clock):
        session, _ = make_session(auth_server, clock, stored(-60))

        assert session.state.refresh_token == "refresh-0"
        assert not session.is_authenticated

    def test_empty_store(self, auth_server, clock):
        session, _ = make_session(auth_server, clock)

        assert session.state == TokenState()


class TestEnsureValidToken:
    """ensure_valid_token()"""

    def test_no_refresh_token(self, auth_server, clock):
        session, _ = make_session(auth_server, clock)

        assert session.ensure_valid_token() is False
        assert auth_server.refresh_calls == 0

    def test_fast_path_skips_network(self, auth_server, clock):
        session, backend = make_session(auth_server, clock, stored(301))

        assert session.ensure_valid_token() is True
        assert auth_server.refresh_calls == 0
        assert backend.saves == []

    def test_refreshes_within_five_minutes_of_expiry(self, auth_server, clock):
        session, backend = make_session(auth_server, clock, stored(300))

        assert session.ensure_valid_token() is True

        assert auth_server.refresh_calls == 1
        assert session.state == TokenState(
            access_token="access-1",
            refresh_token="refresh-1",
            expires_at=NOW + timedelta(seconds=3600),
            authenticated=True,
        )
        assert backend.saves[-1]["accessToken"] == "access-1"

    def test_refreshes_expired_token(self, auth_server, clock):
        session, _ = make_session(auth_server, clock, stored(-3600))

        assert session.ensure_valid_token() is True
        assert session.access_token == "access-1"

    def test_keeps_refresh_token_when_server_omits_it(self, clock):
        class NoRotation(FakeAuthServer):
            def refresh(self, refresh_token):
                tokens = super().refresh(refresh_token)
                tokens["refresh_token"] = None
                return tokens

        session, _ = make_session(NoRotation(), clock, stored(10))

        assert session.ensure_valid_token() is True
        assert session.state.refresh_token == "refresh-0"

    def test_failed_refresh_keeps_state(self, auth_server, clock):
        session, backend = make_session(auth_server, clock, stored(120))
        before = (session.state.access_token, session.state.refresh_token, session.state.expires_at)
        auth_server.refresh_error = RemoteRejection("timeout", status_code=503)

        assert session.ensure_valid_token() is False

        after = (session.state.access_token, session.state.refresh_token, session.state.expires_at)
        assert after == before
        assert backend.saves == []

    def test_failed_refresh_is_retried_on_next_check(self, auth_server, clock):
        session, _ = make_session(auth_server, clock, stored(120))
        auth_server.refresh_error = RemoteRejection("timeout", status_code=503)
        session.ensure_valid_token()

        auth_server.refresh_error = None
        assert session.ensure_valid_token() is True
        assert auth_server.refresh_calls == 2

    def test_rejected_refresh_token_clears_session(self, auth_server, clock, invalid_grant):
        session, backend = make_session(auth_server, clock, stored(120))
        auth_server.refresh_error = invalid_grant

        assert session.ensure_valid_token() is False

        assert session.state == TokenState()
        assert backend.payload == {}
        # no further network calls until a new login
        assert session.ensure_valid_token() is False
        assert auth_server.refresh_calls == 1

    def test_concurrent_checks_share_one_refresh(self, clock):
        class SlowAuthServer(FakeAuthServer):
            def refresh(self, refresh_token):
                time.sleep(0.05)
                return super().refresh(refresh_token)

        server = SlowAuthServer()
        session, _ = make_session(server, clock, stored(60))
        results = []

        threads = [threading.Thread(target=lambda: results.append(session.ensure_valid_token())) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results == [True] * 8
        assert server.refresh_calls == 1


class TestLoginLogout:
    def test_complete_login(self, auth_server, clock):
        session, backend = make_session(auth_server, clock)

        state = session.complete_login("one-time-code")

        assert state.authenticated
        assert state.access_token == "access-1"
        assert state.expires_at == NOW + timedelta(seconds=3600)
        assert backend.payload["refreshToken"] == "refresh-1"
        assert session.ensure_valid_token() is True

    def test_failed_login_leaves_state(self, auth_server, clock):
        session, backend = make_session(auth_server, clock)

        with pytest.raises(RemoteRejection):
            session.complete_login("bad")

        assert session.state == TokenState()
        assert backend.saves == []

    def test_missing_code(self, auth_server, clock):
        session, _ = make_session(auth_server, clock)

        with pytest.raises(ValueError):
            session.complete_login("")
        assert auth_server.exchange_calls == 0

    def test_logout_persists_empty_state(self, auth_server, clock):
        session, backend = make_session(auth_server, clock, stored(3600))

        session.logout()

        assert session.state == TokenState()
        assert backend.payload == {}
        assert session.ensure_valid_token() is False

    def test_full_cycle(self, auth_server, clock):
        session, _ = make_session(auth_server, clock)
        session.complete_login("code")

        clock.advance(minutes=56)
        assert session.ensure_valid_token() is True
        assert session.access_token == "access-2"

        session.logout()
        assert not session.is_authenticated


class TestRequireAuth:
    def test_runs_operation_with_valid_session(self, auth_server, clock):
        session, _ = make_session(auth_server, clock, stored(3600))

        guarded = session.require_auth(lambda x: x * 2)

        assert guarded(21) == 42

    def test_blocks_operation_without_session(self, auth_server, clock):
        session, _ = make_session(auth_server, clock)
        calls = []

        guarded = session.require_auth(lambda: calls.append(1))

        with pytest.raises(Unauthenticated):
            guarded()
        assert calls == []

    def test_authorized_token(self, auth_server, clock):
        session, _ = make_session(auth_server, clock, stored(3600))
        assert session.authorized_token() == "access-0"

        session.logout()
        with pytest.raises(Unauthenticated):
            session.authorized_token()


class TestCallWithReauth:
    def test_retries_once_after_login(self):
        attempts = []
        logins = []

        def operation():
            attempts.append(1)
            if len(attempts) == 1:
                raise Unauthenticated()
            return "ok"

        assert call_with_reauth(operation, lambda: logins.append(1) or True) == "ok"
        assert len(attempts) == 2
        assert len(logins) == 1

    def test_persistent_failure_is_not_retried_again(self):
        attempts = []

        def operation():
            attempts.append(1)
            raise Unauthenticated()

        with pytest.raises(Unauthenticated):
            call_with_reauth(operation, lambda: True)
        assert len(attempts) == 2

    def test_failed_login_reraises(self):
        attempts = []

        def operation():
            attempts.append(1)
            raise Unauthenticated()

        with pytest.raises(Unauthenticated):
            call_with_reauth(operation, lambda: False)
        assert len(attempts) == 1

    def test_passes_arguments(self):
        assert call_with_reauth(lambda a, b=0: a + b, lambda: True, 1, b=2) == 3
