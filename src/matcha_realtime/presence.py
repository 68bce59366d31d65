"""Durable online/offline tracking and the REST presence middleware."""

from collections.abc import Iterable
from typing import Literal

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .auth import SessionAuthenticator
from .db import User, utcnow
from .exceptions import AuthenticationError, PersistenceError
from .logging_utils import StructuredLogger, get_logger

PresenceStatus = Literal["online", "offline"]


class PresenceTracker:
    """Reads and writes the ``is_online``/``last_online`` columns.

    Writes are fail-open: a store failure is logged and reported as False,
    never raised, so presence never blocks the operation that triggered it.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._logger = get_logger(__name__)
        self._structured_logger = StructuredLogger(self._logger)

    async def _set_online(self, user_id: int, online: bool) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(is_online=online, last_online=utcnow())
                )
                await session.commit()
        except SQLAlchemyError as e:
            self._structured_logger.log_error(
                "presence_write", user_id, str(e), online=online
            )
            return False
        self._structured_logger.log_presence("online" if online else "offline", user_id)
        return True

    async def mark_online(self, user_id: int) -> bool:
        return await self._set_online(user_id, True)

    async def mark_offline(self, user_id: int) -> bool:
        return await self._set_online(user_id, False)

    async def touch(self, user_id: int) -> bool:
        """Heartbeat refresh: online now."""
        return await self._set_online(user_id, True)

    async def get_statuses(self, user_ids: Iterable[int]) -> dict[int, PresenceStatus]:
        """Look up durable presence for each id.

        Ids without a row are reported offline.

        Raises:
            PersistenceError: If the store cannot be read
        """
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        try:
            async with self._session_factory() as session:
                rows = await session.execute(
                    select(User.id, User.is_online).where(User.id.in_(ids))
                )
                online = {row.id for row in rows if row.is_online}
        except (SQLAlchemyError, OverflowError) as e:
            raise PersistenceError(f"Failed to read presence: {e}") from e
        return {uid: ("online" if uid in online else "offline") for uid in ids}


class PresenceMiddleware(BaseHTTPMiddleware):
    """Refreshes presence for every REST request carrying a valid session.

    Reads the authenticator and tracker from ``app.state.realtime``.
    Authentication failures are ignored here; protected routes reject on
    their own.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        server = getattr(request.app.state, "realtime", None)
        if server is not None:
            authenticator: SessionAuthenticator = server.authenticator
            presence: PresenceTracker = server.presence
            if request.cookies.get(authenticator.config.session_cookie_name):
                try:
                    session = await authenticator.authenticate(request)
                except AuthenticationError:
                    session = None
                if session is not None:
                    await presence.touch(session.user_id)
        return await call_next(request)
