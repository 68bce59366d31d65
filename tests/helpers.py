"""Test helpers for building mock sockets and seeding the database."""

import json
from typing import Any, Optional
from unittest.mock import AsyncMock

from matcha_realtime import ClientConnection, Database, sign_cookie_value
from matcha_realtime.db import User

SECRET = "test-secret"

DISCONNECT = {"type": "websocket.disconnect", "code": 1000}


def signed_cookie(session_id: str, secret: str = SECRET) -> str:
    """Cookie value as express-session writes it, before URL encoding."""
    return "s:" + sign_cookie_value(session_id, secret)


async def add_users(db: Database, *users: tuple[int, bool]) -> None:
    """Insert ``(id, is_online)`` rows."""
    async with db.session_factory() as session:
        for user_id, online in users:
            session.add(User(id=user_id, username=f"user{user_id}", is_online=online))
        await session.commit()


async def get_user(db: Database, user_id: int) -> Optional[User]:
    async with db.session_factory() as session:
        return await session.get(User, user_id)


def make_websocket(cookies: Optional[dict[str, str]] = None) -> AsyncMock:
    """Create a mock WebSocket for testing."""
    ws = AsyncMock()
    ws.cookies = cookies or {}
    ws.send_json = AsyncMock()
    ws.close = AsyncMock()
    ws.accept = AsyncMock()
    return ws


def make_connection(user_id: int, ws: Optional[AsyncMock] = None) -> ClientConnection:
    return ClientConnection(user_id=user_id, websocket=ws or make_websocket())


def text_message(payload: Any) -> dict[str, Any]:
    raw = payload if isinstance(payload, str) else json.dumps(payload)
    return {"type": "websocket.receive", "text": raw}


def sent_frames(ws: AsyncMock) -> list[dict[str, Any]]:
    """All JSON frames sent on a mock websocket, in order."""
    return [c.args[0] for c in ws.send_json.await_args_list]
