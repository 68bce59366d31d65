"""In-process registry of open connections, keyed by user."""

import asyncio
from typing import Any

from ._models import ClientConnection
from .config import DeliveryResult
from .logging_utils import get_logger


class ConnectionRegistry:
    """Maps each user id to the set of its open connections.

    A user id is present if and only if it has at least one connection.
    The registry is process-local: it answers "can this process push to
    this user right now", not whether the user is online.
    """

    def __init__(self) -> None:
        self._connections: dict[int, set[ClientConnection]] = {}
        self._lock = asyncio.Lock()
        self._logger = get_logger(__name__)

    async def register(self, user_id: int, conn: ClientConnection) -> bool:
        """Add ``conn`` under ``user_id``.

        Returns:
            True if this is the user's first open connection
        """
        async with self._lock:
            existing = self._connections.get(user_id)
            first = not existing
            if existing is None:
                existing = self._connections[user_id] = set()
            existing.add(conn)
            return first

    async def remove(self, user_id: int, conn: ClientConnection) -> bool:
        """Remove ``conn``; drops the user key when its set empties.

        Returns:
            True if the user has no connections left
        """
        async with self._lock:
            existing = self._connections.get(user_id)
            if existing is None:
                return True
            existing.discard(conn)
            if not existing:
                del self._connections[user_id]
                return True
            return False

    def lookup(self, user_id: int) -> frozenset[ClientConnection]:
        """Snapshot of the user's open connections (empty if none)."""
        return frozenset(self._connections.get(user_id, ()))

    def is_connected(self, user_id: int) -> bool:
        return user_id in self._connections

    def connected_user_ids(self) -> list[int]:
        return list(self._connections.keys())

    def connection_count(self) -> int:
        return sum(len(conns) for conns in self._connections.values())

    def all_connections(self) -> list[ClientConnection]:
        return [conn for conns in self._connections.values() for conn in conns]

    async def clear(self) -> None:
        async with self._lock:
            self._connections.clear()

    async def send_to_user(self, user_id: int, payload: dict[str, Any]) -> DeliveryResult:
        """Fan a frame out to every open connection of ``user_id``.

        Connections whose send fails are removed from the registry.

        Args:
            user_id: Recipient user id
            payload: JSON-serializable frame

        Returns:
            DeliveryResult with per-connection counts
        """
        targets = [conn for conn in self.lookup(user_id) if conn.is_open]
        result = DeliveryResult(total=len(targets))
        if not targets:
            return result

        outcomes = await asyncio.gather(
            *[conn.send(payload) for conn in targets], return_exceptions=True
        )
        for conn, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                result.failed += 1
                self._logger.debug(
                    f"Failed to send to user {user_id} conn {conn.conn_id}: {outcome}"
                )
                await self.remove(user_id, conn)
            else:
                result.succeeded += 1
        return result
