"""Persist notifications and push them to live connections."""

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ._models import NotificationRecord
from .db import Notification, utcnow
from .exceptions import PersistenceError
from .frames import NotificationFrame
from .logging_utils import StructuredLogger, get_logger
from .registry import ConnectionRegistry


def _to_record(row: Notification) -> NotificationRecord:
    return NotificationRecord(
        id=row.id,
        user_id=row.user_id,
        type=row.type,
        message=row.message,
        created_at=row.created_at,
    )


class NotificationDispatcher:
    """Creates notification rows and pushes them over open sockets.

    There is no replay on reconnect: a user without a live connection
    sees the record only through the REST listing.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: ConnectionRegistry,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._logger = get_logger(__name__)
        self._structured_logger = StructuredLogger(self._logger)

    async def _persist(self, user_id: int, type: str, message: str) -> NotificationRecord:
        async with self._session_factory() as session:
            row = Notification(user_id=user_id, type=type, message=message, created_at=utcnow())
            session.add(row)
            await session.commit()
            return _to_record(row)

    async def dispatch(self, user_id: int, type: str, message: str) -> NotificationRecord:
        """Persist a notification, then push it to every live connection.

        A failed write is logged and the push still goes out with a null id.

        Args:
            user_id: Recipient
            type: Notification category (e.g. 'like', 'match', 'view')
            message: Human-readable content

        Returns:
            The stored record, or an unsaved record when the write failed
        """
        try:
            record = await self._persist(user_id, type, message)
        except SQLAlchemyError as e:
            self._structured_logger.log_error("notification_write", user_id, str(e), type=type)
            record = NotificationRecord(
                id=None, user_id=user_id, type=type, message=message, created_at=utcnow()
            )

        if self._registry.is_connected(user_id):
            frame = NotificationFrame(
                id=record.id,
                notification_type=record.type,
                content=record.message,
                created_at=record.created_at.isoformat(),
            )
            result = await self._registry.send_to_user(user_id, frame.dump())
            self._structured_logger.log_notification(
                "pushed", user_id, type=type, delivered=result.succeeded
            )
        else:
            self._structured_logger.log_notification("stored", user_id, type=type)
        return record

    async def list_for_user(self, user_id: int) -> list[NotificationRecord]:
        """All notifications for ``user_id``, newest first.

        Raises:
            PersistenceError: If the store cannot be read
        """
        try:
            async with self._session_factory() as session:
                rows = await session.scalars(
                    select(Notification)
                    .where(Notification.user_id == user_id)
                    .order_by(Notification.created_at.desc(), Notification.id.desc())
                )
                return [_to_record(row) for row in rows]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to fetch notifications: {e}") from e

    async def delete_by_type(self, user_id: int, type: str) -> int:
        """Delete every notification of ``type`` for ``user_id``.

        Returns:
            Number of rows deleted

        Raises:
            PersistenceError: If the store cannot be written
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(Notification).where(
                        Notification.user_id == user_id, Notification.type == type
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete notifications: {e}") from e
        self._structured_logger.log_notification(
            "deleted", user_id, type=type, count=result.rowcount
        )
        return result.rowcount
