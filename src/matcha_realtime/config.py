"""Configuration models for the realtime subsystem."""

import os
from dataclasses import dataclass
from typing import Optional

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class RealtimeConfig:
    """Configuration for the realtime server.

    Attributes:
        session_secret: Secret used to verify signed session cookies. Required.
        session_cookie_name: Name of the session cookie. Default: 'connect.sid'
        signed_cookie_prefix: Marker prefixed to signed cookie values. Default: 's:'
        session_lookup_timeout: Seconds to wait on the session store. Default: 5.0
        auth_close_code: Close code sent on every handshake rejection. Default: 4001
        heartbeat_interval: Seconds between server pings. Default: 30.0
        heartbeat_timeout: Seconds without inbound traffic after a ping before the
            connection is closed. Default: 60.0
        liveness_close_code: Close code sent on a liveness timeout. Default: 4002
        mark_offline_on_last_disconnect: Whether closing a user's last connection
            marks the user offline. Default: True
        database_url: SQLAlchemy async database URL.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR). Default: 'INFO'
        shutdown_close_code: Close code sent to clients on shutdown. Default: 1001
    """

    session_secret: str

    # Handshake
    session_cookie_name: str = "connect.sid"
    signed_cookie_prefix: str = "s:"
    session_lookup_timeout: float = 5.0
    auth_close_code: int = 4001

    # Liveness
    heartbeat_interval: float = 30.0
    heartbeat_timeout: float = 60.0
    liveness_close_code: int = 4002

    # Presence
    mark_offline_on_last_disconnect: bool = True

    # Storage
    database_url: str = "sqlite+aiosqlite:///./matcha.db"

    # Logging
    log_level: str = "INFO"

    # Shutdown
    shutdown_close_code: int = 1001

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.session_secret:
            raise ValueError("session_secret must not be empty")
        if not self.session_cookie_name:
            raise ValueError("session_cookie_name must not be empty")
        if self.session_lookup_timeout <= 0:
            raise ValueError("session_lookup_timeout must be positive")
        if self.heartbeat_interval <= 0:
            raise ValueError("heartbeat_interval must be positive")
        if self.heartbeat_timeout <= 0:
            raise ValueError("heartbeat_timeout must be positive")
        for name in ("auth_close_code", "liveness_close_code"):
            # 4000-4999 is reserved for application use
            if not 4000 <= getattr(self, name) <= 4999:
                raise ValueError(f"{name} must be in the 4000-4999 range")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError("log_level must be a valid logging level")

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> "RealtimeConfig":
        """Build a config from environment variables.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.

        Returns:
            RealtimeConfig populated from the environment

        Raises:
            ValueError: If SESSION_SECRET is missing
        """
        env = os.environ if environ is None else environ
        secret = env.get("SESSION_SECRET")
        if not secret:
            raise ValueError("Missing required environment variable: SESSION_SECRET")

        kwargs: dict = {"session_secret": secret}
        if env.get("DATABASE_URL"):
            kwargs["database_url"] = env["DATABASE_URL"]
        if env.get("WS_HEARTBEAT_INTERVAL"):
            kwargs["heartbeat_interval"] = float(env["WS_HEARTBEAT_INTERVAL"])
        if env.get("WS_HEARTBEAT_TIMEOUT"):
            kwargs["heartbeat_timeout"] = float(env["WS_HEARTBEAT_TIMEOUT"])
        if env.get("LOG_LEVEL"):
            kwargs["log_level"] = env["LOG_LEVEL"].upper()
        return cls(**kwargs)


@dataclass
class DeliveryResult:
    """Result of a fan-out to one user's connections.

    Attributes:
        total: Number of connections targeted.
        succeeded: Number of successful sends.
        failed: Number of failed sends.
    """

    total: int = 0
    succeeded: int = 0
    failed: int = 0

    @property
    def delivered(self) -> bool:
        """Whether at least one connection received the frame."""
        return self.succeeded > 0


@dataclass
class ShutdownReport:
    """Report from graceful shutdown.

    Attributes:
        closed_count: Number of connections successfully closed.
        failed_count: Number of connections that failed to close.
        duration_seconds: Total time taken for shutdown.
    """

    closed_count: int
    failed_count: int
    duration_seconds: float
