"""Matcha realtime: presence, messaging and notification delivery over websockets."""

from ._models import ClientConnection, ConnectionState, NotificationRecord, SessionRecord
from .app import create_app
from .auth import (
    InMemorySessionStore,
    SessionAuthenticator,
    SessionStore,
    sign_cookie_value,
    unsign_cookie_value,
)
from .config import DeliveryResult, RealtimeConfig, ShutdownReport
from .db import Database
from .exceptions import (
    AuthenticationError,
    InvalidFrameError,
    PersistenceError,
    ProtocolParseError,
    RealtimeError,
    UnknownMessageTypeError,
)
from .logging_utils import StructuredLogger, configure_logging, get_logger
from .manager import RealtimeServer
from .notifications import NotificationDispatcher
from .presence import PresenceMiddleware, PresenceTracker
from .registry import ConnectionRegistry
from .router import ProtocolRouter

__version__ = "0.1.0"

__all__ = [
    # Main classes
    "RealtimeServer",
    "create_app",
    # Components
    "SessionAuthenticator",
    "ConnectionRegistry",
    "ProtocolRouter",
    "PresenceTracker",
    "PresenceMiddleware",
    "NotificationDispatcher",
    "Database",
    # Sessions
    "SessionStore",
    "InMemorySessionStore",
    "sign_cookie_value",
    "unsign_cookie_value",
    # Models
    "ClientConnection",
    "ConnectionState",
    "NotificationRecord",
    "SessionRecord",
    # Configuration
    "RealtimeConfig",
    "DeliveryResult",
    "ShutdownReport",
    # Exceptions
    "RealtimeError",
    "AuthenticationError",
    "ProtocolParseError",
    "UnknownMessageTypeError",
    "InvalidFrameError",
    "PersistenceError",
    # Logging
    "get_logger",
    "configure_logging",
    "StructuredLogger",
]
