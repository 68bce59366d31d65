"""Per-frame dispatch for open connections."""

from typing import Any

from ._models import ClientConnection
from .exceptions import (
    InvalidFrameError,
    PersistenceError,
    ProtocolParseError,
    UnknownMessageTypeError,
)
from .frames import (
    AckFrame,
    ChatDeliveryFrame,
    ChatMessageFrame,
    CheckOnlineUsersFrame,
    ErrorFrame,
    InboundFrame,
    OnlineStatusResultFrame,
    PingFrame,
    PongFrame,
    parse_inbound,
)
from .logging_utils import StructuredLogger, get_logger
from .presence import PresenceTracker
from .registry import ConnectionRegistry


class ProtocolRouter:
    """Parses inbound frames and runs the matching handler.

    Callers must not run two ``handle`` calls for the same connection
    concurrently; frames from one socket are handled in arrival order.
    Protocol errors and handler failures are answered in-band and never
    close the connection; only a failed send does.
    """

    def __init__(self, registry: ConnectionRegistry, presence: PresenceTracker) -> None:
        self._registry = registry
        self._presence = presence
        self._logger = get_logger(__name__)
        self._structured_logger = StructuredLogger(self._logger)

    async def handle(self, conn: ClientConnection, raw: str) -> None:
        """Handle one raw text frame received on ``conn``."""
        try:
            frame = parse_inbound(raw)
        except ProtocolParseError:
            await self._reply(conn, ErrorFrame(message="Invalid JSON").dump())
            return
        except UnknownMessageTypeError:
            await self._reply(conn, ErrorFrame(message="Unknown type").dump())
            return
        except InvalidFrameError as e:
            self._logger.debug(f"Rejected frame from user {conn.user_id}: {e.detail}")
            if e.frame_type == "message":
                # Every message frame is acked; malformed ones are just not forwarded
                await self._reply(conn, AckFrame().dump())
            else:
                await self._reply(conn, ErrorFrame(message=str(e)).dump())
            return

        self._structured_logger.log_frame(frame.type, conn.user_id, conn_id=conn.conn_id)

        try:
            await self._dispatch(conn, frame)
        except Exception as e:
            self._structured_logger.log_error(
                type(e).__name__, conn.user_id, str(e), frame=frame.type, conn_id=conn.conn_id
            )
            await self._reply(conn, ErrorFrame(message="Internal error").dump())

    async def _dispatch(self, conn: ClientConnection, frame: InboundFrame) -> None:
        if isinstance(frame, PingFrame):
            await self._reply(conn, PongFrame().dump())
        elif isinstance(frame, PongFrame):
            # Liveness is already recorded by the receive loop
            pass
        elif isinstance(frame, ChatMessageFrame):
            await self._handle_message(conn, frame)
        elif isinstance(frame, CheckOnlineUsersFrame):
            await self._handle_check_online_users(conn, frame)

    async def _reply(self, conn: ClientConnection, payload: dict[str, Any]) -> None:
        await conn.send(payload)

    async def _handle_message(self, conn: ClientConnection, frame: ChatMessageFrame) -> None:
        await self._reply(conn, AckFrame().dump())
        if frame.is_forwardable:
            await self.forward_message_to_user(conn.user_id, frame.to, frame.content)

    async def _handle_check_online_users(
        self, conn: ClientConnection, frame: CheckOnlineUsersFrame
    ) -> None:
        try:
            statuses = await self._presence.get_statuses(frame.user_ids)
        except PersistenceError as e:
            self._structured_logger.log_error("presence_read", conn.user_id, str(e))
            await self._reply(conn, ErrorFrame(message="Presence unavailable").dump())
            return
        status = {str(uid): value for uid, value in statuses.items()}
        await self._reply(conn, OnlineStatusResultFrame(status=status).dump())

    async def forward_message_to_user(self, from_user: int, to_user: int, content: str) -> bool:
        """Best-effort, at-most-once forward of a chat message.

        Only connections registered at this instant are tried; nothing is
        queued or stored for later.

        Returns:
            True if at least one of the recipient's connections received it
        """
        payload = ChatDeliveryFrame(from_user=from_user, content=content).dump()
        result = await self._registry.send_to_user(to_user, payload)
        self._structured_logger.log_frame(
            "forward", from_user, to=to_user, delivered=result.succeeded
        )
        return result.delivered
