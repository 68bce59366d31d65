"""Tests for session-cookie authentication."""

import asyncio
from unittest.mock import MagicMock
from urllib.parse import quote

import pytest

from helpers import SECRET, make_websocket, signed_cookie
from matcha_realtime import (
    AuthenticationError,
    InMemorySessionStore,
    RealtimeConfig,
    SessionAuthenticator,
    sign_cookie_value,
    unsign_cookie_value,
)


@pytest.fixture
def authenticator(
    config: RealtimeConfig, session_store: InMemorySessionStore
) -> SessionAuthenticator:
    return SessionAuthenticator(session_store, config)


class TestCookieSignature:
    """Test express-compatible cookie signing."""

    def test_should_unsign_value_signed_with_same_secret(self) -> None:
        signed = sign_cookie_value("abc123", SECRET)

        assert signed.startswith("abc123.")
        assert not signed.endswith("=")
        assert unsign_cookie_value(signed, SECRET) == "abc123"

    def test_should_reject_value_signed_with_other_secret(self) -> None:
        signed = sign_cookie_value("abc123", "other-secret")

        assert unsign_cookie_value(signed, SECRET) is None

    def test_should_reject_tampered_payload(self) -> None:
        signed = sign_cookie_value("abc123", SECRET)
        tampered = "abc124" + signed[len("abc123"):]

        assert unsign_cookie_value(tampered, SECRET) is None

    def test_should_reject_value_without_signature(self) -> None:
        assert unsign_cookie_value("abc123", SECRET) is None


class TestSessionAuthenticator:
    """Test SessionAuthenticator.authenticate."""

    @pytest.mark.asyncio
    async def test_should_authenticate_signed_cookie(
        self, authenticator: SessionAuthenticator
    ) -> None:
        ws = make_websocket({"connect.sid": signed_cookie("sid-1")})

        session = await authenticator.authenticate(ws)

        assert session.user_id == 1
        assert session.username == "alice"
        assert session.session_id == "sid-1"

    @pytest.mark.asyncio
    async def test_should_authenticate_url_encoded_signed_cookie(
        self, authenticator: SessionAuthenticator
    ) -> None:
        ws = make_websocket({"connect.sid": quote(signed_cookie("sid-2"), safe="")})

        session = await authenticator.authenticate(ws)

        assert session.user_id == 2

    @pytest.mark.asyncio
    async def test_should_accept_unsigned_cookie_as_session_key(
        self, authenticator: SessionAuthenticator
    ) -> None:
        ws = make_websocket({"connect.sid": "sid-1"})

        session = await authenticator.authenticate(ws)

        assert session.user_id == 1

    @pytest.mark.asyncio
    async def test_should_reject_missing_cookie(
        self, authenticator: SessionAuthenticator
    ) -> None:
        with pytest.raises(AuthenticationError) as exc_info:
            await authenticator.authenticate(make_websocket({"other": "x"}))

        assert exc_info.value.reason == "No session cookie"

    @pytest.mark.asyncio
    async def test_should_reject_bad_signature(
        self, authenticator: SessionAuthenticator
    ) -> None:
        ws = make_websocket({"connect.sid": signed_cookie("sid-1", "wrong-secret")})

        with pytest.raises(AuthenticationError) as exc_info:
            await authenticator.authenticate(ws)

        assert exc_info.value.reason == "Invalid session signature"

    @pytest.mark.asyncio
    async def test_should_reject_unknown_session(
        self, authenticator: SessionAuthenticator
    ) -> None:
        ws = make_websocket({"connect.sid": signed_cookie("sid-unknown")})

        with pytest.raises(AuthenticationError) as exc_info:
            await authenticator.authenticate(ws)

        assert exc_info.value.reason == "Invalid or expired session"

    @pytest.mark.asyncio
    async def test_should_reject_session_without_user_id(
        self, config: RealtimeConfig, session_store: InMemorySessionStore
    ) -> None:
        session_store.set("sid-anon", {"username": "nobody"})
        authenticator = SessionAuthenticator(session_store, config)

        with pytest.raises(AuthenticationError) as exc_info:
            await authenticator.authenticate(make_websocket({"connect.sid": "sid-anon"}))

        assert exc_info.value.reason == "Invalid or expired session"

    @pytest.mark.asyncio
    async def test_should_treat_store_failure_as_invalid_session(
        self, config: RealtimeConfig
    ) -> None:
        store = MagicMock()

        async def failing_get(session_id):
            raise ConnectionError("store down")

        store.get = failing_get
        authenticator = SessionAuthenticator(store, config)

        with pytest.raises(AuthenticationError) as exc_info:
            await authenticator.authenticate(make_websocket({"connect.sid": "sid-1"}))

        assert exc_info.value.reason == "Invalid or expired session"

    @pytest.mark.asyncio
    async def test_should_fail_when_store_lookup_times_out(self) -> None:
        config = RealtimeConfig(session_secret=SECRET, session_lookup_timeout=0.05)
        store = MagicMock()

        async def slow_get(session_id):
            await asyncio.sleep(1)
            return {"userId": 1}

        store.get = slow_get
        authenticator = SessionAuthenticator(store, config)

        with pytest.raises(AuthenticationError) as exc_info:
            await authenticator.authenticate(make_websocket({"connect.sid": "sid-1"}))

        assert exc_info.value.reason == "Authentication failed"

    @pytest.mark.asyncio
    async def test_should_wrap_unexpected_errors(
        self, authenticator: SessionAuthenticator
    ) -> None:
        ws = make_websocket()
        ws.cookies = MagicMock()
        ws.cookies.get.side_effect = RuntimeError("boom")

        with pytest.raises(AuthenticationError) as exc_info:
            await authenticator.authenticate(ws)

        assert exc_info.value.reason == "Authentication failed"


class TestAuthenticateOrClose:
    """Test that rejected handshakes close the socket."""

    @pytest.mark.asyncio
    async def test_should_close_with_4001_and_reason_on_rejection(
        self, authenticator: SessionAuthenticator
    ) -> None:
        ws = make_websocket()

        session = await authenticator.authenticate_or_close(ws)

        assert session is None
        ws.close.assert_awaited_once_with(code=4001, reason="No session cookie")

    @pytest.mark.asyncio
    async def test_should_leave_socket_open_on_success(
        self, authenticator: SessionAuthenticator
    ) -> None:
        ws = make_websocket({"connect.sid": signed_cookie("sid-1")})

        session = await authenticator.authenticate_or_close(ws)

        assert session is not None
        ws.close.assert_not_called()
