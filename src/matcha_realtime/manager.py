"""Realtime server: connection lifecycle, liveness and component wiring."""

import asyncio
import time
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect

from ._models import ClientConnection, ConnectionState, NotificationRecord
from .auth import SessionAuthenticator, SessionStore
from .config import RealtimeConfig, ShutdownReport
from .db import Database
from .frames import ServerPingFrame, WelcomeFrame
from .logging_utils import StructuredLogger, get_logger
from .notifications import NotificationDispatcher
from .presence import PresenceTracker
from .registry import ConnectionRegistry
from .router import ProtocolRouter

_PRESENCE_LOCK_STRIPES = 64


class RealtimeServer:
    """Owns every realtime component for one process.

    This server provides:
    - Cookie-authenticated websocket handshakes
    - Multi-device connection tracking per user
    - In-order frame routing per connection
    - Presence updates on first connect and last disconnect
    - Server pings with a liveness timeout
    - Graceful shutdown

    The registry is process-local. Running several instances behind a
    load balancer needs sticky sessions or an external pub/sub layer for
    forwards to reach a recipient connected to another instance.
    """

    def __init__(
        self,
        config: RealtimeConfig,
        session_store: SessionStore,
        database: Database,
        registry: Optional[ConnectionRegistry] = None,
    ) -> None:
        """Initialize the server and its components.

        Args:
            config: RealtimeConfig instance
            session_store: External session store used at handshake
            database: Relational store for presence and notifications
            registry: Registry to use. Defaults to a new empty registry.
        """
        self.config = config
        self.database = database
        self._logger = get_logger(__name__)
        self._structured_logger = StructuredLogger(self._logger)

        self.registry = registry or ConnectionRegistry()
        self.authenticator = SessionAuthenticator(session_store, config)
        self.presence = PresenceTracker(database.session_factory)
        self.dispatcher = NotificationDispatcher(database.session_factory, self.registry)
        self.router = ProtocolRouter(self.registry, self.presence)

        self._heartbeat_task: Optional[asyncio.Task[None]] = None
        self._liveness_tasks: dict[ClientConnection, asyncio.Task[None]] = {}
        self._presence_locks = [asyncio.Lock() for _ in range(_PRESENCE_LOCK_STRIPES)]
        self._accepting_connections = True

    async def start(self) -> None:
        """Start the heartbeat worker.

        Should be called during application startup.
        """
        self._accepting_connections = True
        self._heartbeat_task = asyncio.create_task(self._heartbeat_worker())
        self._logger.info("Realtime server started with heartbeat")

    async def serve(self, websocket: WebSocket) -> None:
        """Run one websocket from handshake to close.

        Args:
            websocket: FastAPI WebSocket (not yet accepted)
        """
        await websocket.accept()

        session = await self.authenticator.authenticate_or_close(websocket)
        if session is None:
            return

        if not self._accepting_connections:
            await websocket.close(code=self.config.shutdown_close_code, reason="server shutdown")
            return

        conn = ClientConnection(
            user_id=session.user_id,
            websocket=websocket,
            username=session.username,
            state=ConnectionState.AUTHENTICATING,
        )
        # The welcome frame goes out before the connection is reachable by
        # pings, forwards or pushes
        try:
            await conn.send(WelcomeFrame(user_id=conn.user_id).dump())
        except Exception as e:
            conn.state = ConnectionState.CLOSED
            self._logger.debug(f"Failed to send welcome to user {conn.user_id}: {e}")
            return

        if not self._accepting_connections:
            conn.state = ConnectionState.CLOSED
            await websocket.close(code=self.config.shutdown_close_code, reason="server shutdown")
            return

        conn.state = ConnectionState.OPEN
        first = await self.registry.register(conn.user_id, conn)
        self._structured_logger.log_connection(
            "connected", conn.user_id, conn_id=conn.conn_id, first=first
        )

        try:
            if first:
                async with self._presence_lock(conn.user_id):
                    await self.presence.mark_online(conn.user_id)
            await self._receive_loop(conn)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            if conn.is_open:
                self._structured_logger.log_error(
                    type(e).__name__, conn.user_id, str(e), conn_id=conn.conn_id
                )
        finally:
            await self._release(conn)

    async def _receive_loop(self, conn: ClientConnection) -> None:
        while conn.is_open:
            message = await conn.websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                data = message.get("bytes") or b""
                raw = data.decode("utf-8", errors="replace")
            conn.record_traffic()
            await self.router.handle(conn, raw)

    async def _release(self, conn: ClientConnection) -> None:
        """Drop ``conn`` from the registry exactly once."""
        if conn.state is ConnectionState.CLOSED:
            return
        conn.state = ConnectionState.CLOSED

        task = self._liveness_tasks.pop(conn, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

        last = await self.registry.remove(conn.user_id, conn)
        self._structured_logger.log_connection(
            "disconnected",
            conn.user_id,
            conn_id=conn.conn_id,
            duration_seconds=round(conn.get_duration_seconds(), 3),
        )
        if last and self.config.mark_offline_on_last_disconnect:
            async with self._presence_lock(conn.user_id):
                # A new device may have connected while waiting
                if not self.registry.is_connected(conn.user_id):
                    await self.presence.mark_offline(conn.user_id)

    def _presence_lock(self, user_id: int) -> asyncio.Lock:
        """Lock ordering one user's connect and last-disconnect presence writes."""
        return self._presence_locks[hash(user_id) % len(self._presence_locks)]

    async def disconnect(
        self,
        conn: ClientConnection,
        code: int = 1000,
        reason: str = "normal closure",
    ) -> None:
        """Close a connection and release it.

        Args:
            conn: Connection to close
            code: Websocket close code
            reason: Close reason
        """
        if conn.is_open:
            try:
                await conn.websocket.close(code=code, reason=reason)
            except Exception as e:
                self._logger.debug(f"Error closing websocket {conn.conn_id}: {e}")
        await self._release(conn)

    async def send_notification(self, user_id: int, type: str, message: str) -> NotificationRecord:
        """Persist and push a notification; see NotificationDispatcher.dispatch."""
        return await self.dispatcher.dispatch(user_id, type, message)

    async def forward_message_to_user(self, from_user: int, to_user: int, content: str) -> bool:
        return await self.router.forward_message_to_user(from_user, to_user, content)

    async def graceful_shutdown(self, timeout: float = 30.0) -> ShutdownReport:
        """Stop the heartbeat worker and close every connection.

        Args:
            timeout: Maximum time to wait for the closes, in seconds

        Returns:
            ShutdownReport with closure statistics
        """
        start_time = time.time()
        self._accepting_connections = False

        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            try:
                await asyncio.wait_for(self._heartbeat_task, timeout=5.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass
            self._heartbeat_task = None

        connections = self.registry.all_connections()

        async def close_one(conn: ClientConnection) -> bool:
            try:
                await conn.websocket.close(
                    code=self.config.shutdown_close_code, reason="server shutdown"
                )
                return True
            except Exception as e:
                self._logger.debug(f"Error closing {conn.conn_id}: {e}")
                return False

        try:
            results = await asyncio.wait_for(
                asyncio.gather(*[close_one(conn) for conn in connections]), timeout=timeout
            )
        except asyncio.TimeoutError:
            results = []
        closed_count = sum(1 for r in results if r is True)
        failed_count = len(connections) - closed_count

        for conn in connections:
            await self._release(conn)
        await self.registry.clear()

        duration = time.time() - start_time
        report = ShutdownReport(
            closed_count=closed_count,
            failed_count=failed_count,
            duration_seconds=duration,
        )
        self._logger.info(
            f"Graceful shutdown complete: "
            f"closed={closed_count}, failed={failed_count}, "
            f"duration={duration:.2f}s"
        )
        return report

    async def _heartbeat_worker(self) -> None:
        """Background task sending pings on every open connection."""
        while True:
            try:
                await asyncio.sleep(self.config.heartbeat_interval)
                await self.send_pings()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._logger.error(f"Error in heartbeat worker: {e}")

    async def send_pings(self) -> None:
        """Ping every open connection that is not already awaiting traffic."""
        for conn in self.registry.all_connections():
            if not conn.is_open or conn.pending_ping:
                continue
            try:
                await conn.send(ServerPingFrame().dump())
            except Exception as e:
                self._logger.debug(f"Failed to send heartbeat to {conn.conn_id}: {e}")
                await self.disconnect(conn, code=1011, reason="heartbeat send failed")
                continue
            if not conn.is_open:
                continue

            conn.pending_ping = True
            conn.ping_sent_at = time.time()

            previous = self._liveness_tasks.pop(conn, None)
            if previous is not None:
                previous.cancel()
            self._liveness_tasks[conn] = asyncio.create_task(self._wait_for_traffic(conn))
            self._structured_logger.log_heartbeat("ping_sent", conn.user_id, conn_id=conn.conn_id)

    async def _wait_for_traffic(self, conn: ClientConnection) -> None:
        """Close ``conn`` if nothing arrives within the liveness window."""
        try:
            await asyncio.sleep(self.config.heartbeat_timeout)
            if conn.is_open and conn.pending_ping:
                self._structured_logger.log_heartbeat("timeout", conn.user_id, conn_id=conn.conn_id)
                await self.disconnect(
                    conn, code=self.config.liveness_close_code, reason="Heartbeat timeout"
                )
        except asyncio.CancelledError:
            pass
        except Exception as e:
            self._logger.debug(f"Error in liveness timeout handler: {e}")
        finally:
            if self._liveness_tasks.get(conn) is asyncio.current_task():
                del self._liveness_tasks[conn]

    def get_connection_count(self) -> int:
        return self.registry.connection_count()

    def get_pending_liveness_count(self) -> int:
        """Number of connections with a liveness check in flight."""
        return len(self._liveness_tasks)
