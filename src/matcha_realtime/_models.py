"""Internal data models for connections, sessions and stored records."""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from fastapi import WebSocket


class ConnectionState(str, Enum):
    """Per-connection protocol states."""

    AUTHENTICATING = "authenticating"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class SessionRecord:
    """An authenticated session as read from the session store.

    Attributes:
        session_id: Unsigned session identifier (the store key)
        user_id: Authenticated user identifier
        username: Optional display name stored in the session
    """

    session_id: str
    user_id: int
    username: Optional[str] = None


@dataclass(eq=False)
class ClientConnection:
    """A live, authenticated websocket owned by one user.

    Instances hash by identity so a user's connections can live in a set.

    Attributes:
        user_id: Owning user identifier
        websocket: FastAPI WebSocket instance
        username: Display name from the session, if any
        conn_id: Random identifier used in logs
        state: Current protocol state
        created_at: Unix timestamp when the connection was opened
        last_activity: Unix timestamp of the last inbound frame
        pending_ping: Whether a server ping has gone unanswered by any traffic
        ping_sent_at: Unix timestamp of the outstanding ping
    """

    user_id: int
    websocket: WebSocket
    username: Optional[str] = None
    conn_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: ConnectionState = ConnectionState.OPEN
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    pending_ping: bool = False
    ping_sent_at: Optional[float] = None
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    def get_duration_seconds(self) -> float:
        """Get connection duration in seconds."""
        return time.time() - self.created_at

    def record_traffic(self) -> None:
        """Mark inbound traffic, which also satisfies any outstanding ping."""
        self.last_activity = time.time()
        self.pending_ping = False
        self.ping_sent_at = None

    async def send(self, payload: dict[str, Any]) -> None:
        """Send one JSON frame; sends on the same socket never interleave."""
        async with self.send_lock:
            await self.websocket.send_json(payload)


@dataclass
class NotificationRecord:
    """A persisted notification row.

    Attributes:
        id: Primary key (None when persistence failed)
        user_id: Recipient user identifier
        type: Notification category, used for bulk deletion
        message: Human-readable content
        created_at: Creation time (UTC)
    """

    id: Optional[int]
    user_id: int
    type: str
    message: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }
