"""Session-cookie authentication for websocket handshakes and REST requests."""

import asyncio
import base64
import hashlib
import hmac
from collections.abc import Mapping
from typing import Any, Optional, Protocol
from urllib.parse import unquote

from fastapi import WebSocket
from starlette.requests import HTTPConnection

from ._models import SessionRecord
from .config import RealtimeConfig
from .exceptions import AuthenticationError
from .logging_utils import StructuredLogger, get_logger

NO_SESSION_COOKIE = "No session cookie"
INVALID_SIGNATURE = "Invalid session signature"
INVALID_SESSION = "Invalid or expired session"
AUTHENTICATION_FAILED = "Authentication failed"


class SessionStore(Protocol):
    """Read-only view of the external session store."""

    async def get(self, session_id: str) -> Optional[Mapping[str, Any]]:
        """Return the session data for ``session_id`` or None when unknown."""
        ...


class InMemorySessionStore:
    """Process-local session store, keyed by unsigned session id."""

    def __init__(self) -> None:
        self._sessions: dict[str, dict[str, Any]] = {}

    async def get(self, session_id: str) -> Optional[Mapping[str, Any]]:
        return self._sessions.get(session_id)

    def set(self, session_id: str, data: dict[str, Any]) -> None:
        self._sessions[session_id] = dict(data)

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)


def _signature(value: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), value.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode().rstrip("=")


def sign_cookie_value(value: str, secret: str) -> str:
    """Sign ``value`` as ``<value>.<base64 hmac-sha256>`` without padding."""
    return f"{value}.{_signature(value, secret)}"


def unsign_cookie_value(signed: str, secret: str) -> Optional[str]:
    """Verify a signed value and return the payload, or None if tampered.

    Args:
        signed: Value in ``<payload>.<signature>`` form (prefix already removed)
        secret: Server-held signing secret

    Returns:
        The payload when the signature matches, otherwise None
    """
    payload, sep, provided = signed.rpartition(".")
    if not sep:
        return None
    expected = _signature(payload, secret)
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        return None
    return payload


class SessionAuthenticator:
    """Resolves the session cookie of a connection to an authenticated identity."""

    def __init__(self, store: SessionStore, config: RealtimeConfig) -> None:
        self._store = store
        self.config = config
        self._logger = get_logger(__name__)
        self._structured_logger = StructuredLogger(self._logger)

    def extract_session_id(self, conn: HTTPConnection) -> str:
        """Read and verify the session cookie.

        Raises:
            AuthenticationError: If the cookie is absent or its signature is invalid
        """
        raw = conn.cookies.get(self.config.session_cookie_name)
        if not raw:
            raise AuthenticationError(NO_SESSION_COOKIE)

        value = unquote(raw) if "%" in raw else raw
        prefix = self.config.signed_cookie_prefix
        if prefix and value.startswith(prefix):
            unsigned = unsign_cookie_value(value[len(prefix):], self.config.session_secret)
            if unsigned is None:
                raise AuthenticationError(INVALID_SIGNATURE)
            value = unsigned
        return value

    async def _lookup(self, session_id: str) -> Optional[Mapping[str, Any]]:
        try:
            return await asyncio.wait_for(
                self._store.get(session_id), timeout=self.config.session_lookup_timeout
            )
        except asyncio.TimeoutError:
            self._logger.warning("Session store lookup timed out")
            raise AuthenticationError(AUTHENTICATION_FAILED)
        except Exception as e:
            self._logger.error(f"Session store lookup failed: {e}")
            raise AuthenticationError(INVALID_SESSION) from e

    async def authenticate(self, conn: HTTPConnection) -> SessionRecord:
        """Authenticate a websocket or HTTP request by its session cookie.

        Args:
            conn: Starlette connection (WebSocket or Request)

        Returns:
            SessionRecord for the authenticated user

        Raises:
            AuthenticationError: With the rejection reason
        """
        try:
            session_id = self.extract_session_id(conn)
            data = await self._lookup(session_id)
            if not data:
                raise AuthenticationError(INVALID_SESSION)

            user_id = data.get("userId")
            if isinstance(user_id, bool) or user_id is None:
                raise AuthenticationError(INVALID_SESSION)
            try:
                user_id = int(user_id)
            except (TypeError, ValueError):
                raise AuthenticationError(INVALID_SESSION)

            username = data.get("username")
            return SessionRecord(
                session_id=session_id,
                user_id=user_id,
                username=str(username) if username is not None else None,
            )
        except AuthenticationError:
            raise
        except Exception as e:
            self._logger.error(f"Authentication error: {e}")
            raise AuthenticationError(AUTHENTICATION_FAILED) from e

    async def authenticate_or_close(self, websocket: WebSocket) -> Optional[SessionRecord]:
        """Authenticate an accepted websocket, closing it on rejection.

        Returns:
            SessionRecord on success, None after the socket was closed
        """
        try:
            session = await self.authenticate(websocket)
        except AuthenticationError as e:
            self._structured_logger.log_auth("rejected", reason=repr(e.reason))
            try:
                await websocket.close(code=self.config.auth_close_code, reason=e.reason)
            except Exception as close_error:
                self._logger.debug(f"Error closing rejected websocket: {close_error}")
            return None

        self._structured_logger.log_auth("authenticated", user_id=session.user_id)
        return session
