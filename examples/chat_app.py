"""Chat and notification server demonstrating the realtime subsystem.

Run with SESSION_SECRET set. A demo session is seeded for user 1 and the
signed cookie to use is printed at startup.
"""

import asyncio
import uuid

from fastapi import Request

from matcha_realtime import (
    Database,
    InMemorySessionStore,
    RealtimeConfig,
    create_app,
    sign_cookie_value,
)
from matcha_realtime.db import User

config = RealtimeConfig.from_env()
session_store = InMemorySessionStore()
database = Database(config.database_url)
app = create_app(config, session_store, database)


async def seed_demo_user() -> str:
    """Create user 1 and a session for it; return the cookie value."""
    await database.create_all()
    async with database.session_factory() as session:
        if await session.get(User, 1) is None:
            session.add(User(id=1, username="demo"))
            await session.commit()

    sid = uuid.uuid4().hex
    session_store.set(sid, {"userId": 1, "username": "demo"})
    return "s:" + sign_cookie_value(sid, config.session_secret)


@app.post("/demo/notify/{user_id}")
async def demo_notify(user_id: int, request: Request):
    """Push a test notification to a user."""
    body = await request.json()
    record = await request.app.state.realtime.send_notification(
        user_id, body.get("type", "info"), body.get("message", "Hello")
    )
    return record.to_dict()


if __name__ == "__main__":
    import uvicorn

    cookie = asyncio.run(seed_demo_user())
    print(f"Demo cookie: connect.sid={cookie}")
    uvicorn.run(app, host="0.0.0.0", port=3000)
