"""Logging utilities for the realtime subsystem."""

import logging
from typing import Any

_ROOT = "matcha_realtime"


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance under the package namespace.

    Args:
        name: Logger name (typically __name__ from calling module)

    Returns:
        Configured logger instance
    """
    if name == _ROOT or name.startswith(f"{_ROOT}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT}.{name}")


def configure_logging(level: str = "INFO") -> None:
    """Configure logging for the realtime subsystem.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    logger = logging.getLogger(_ROOT)
    logger.setLevel(level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        logger.addHandler(handler)


def _format(tag: str, head: str, **kwargs: Any) -> str:
    message = f"[{tag}] {head}"
    for key, value in kwargs.items():
        message += f" {key}={value}"
    return message


class StructuredLogger:
    """Structured logging helper for key=value log output."""

    def __init__(self, logger: logging.Logger) -> None:
        """Initialize structured logger.

        Args:
            logger: Python logger instance
        """
        self._logger = logger

    def log_connection(self, event: str, user_id: Any, **kwargs: Any) -> None:
        """Log connection lifecycle event.

        Args:
            event: Event type (connected, disconnected, timeout)
            user_id: Owning user identifier
            **kwargs: Additional context data
        """
        self._logger.info(_format("WS_CONNECTION", f"event={event} user_id={user_id}", **kwargs))

    def log_auth(self, event: str, **kwargs: Any) -> None:
        """Log handshake outcome (authenticated, rejected)."""
        self._logger.info(_format("WS_AUTH", f"event={event}", **kwargs))

    def log_frame(self, frame_type: str, user_id: Any, **kwargs: Any) -> None:
        """Log an inbound frame dispatch."""
        self._logger.debug(_format("WS_FRAME", f"type={frame_type} user_id={user_id}", **kwargs))

    def log_heartbeat(self, event: str, user_id: Any, **kwargs: Any) -> None:
        """Log heartbeat-related event.

        Args:
            event: Event type (ping_sent, traffic, timeout)
            user_id: Owning user identifier
            **kwargs: Additional context data
        """
        self._logger.debug(_format("WS_HEARTBEAT", f"event={event} user_id={user_id}", **kwargs))

    def log_presence(self, event: str, user_id: Any, **kwargs: Any) -> None:
        """Log a presence transition."""
        self._logger.debug(_format("PRESENCE", f"event={event} user_id={user_id}", **kwargs))

    def log_notification(self, event: str, user_id: Any, **kwargs: Any) -> None:
        """Log notification persistence and push."""
        self._logger.info(_format("NOTIFICATION", f"event={event} user_id={user_id}", **kwargs))

    def log_error(
        self,
        error_type: str,
        user_id: Any,
        error_message: str,
        **kwargs: Any,
    ) -> None:
        """Log error event.

        Args:
            error_type: Type of error
            user_id: User identifier (if applicable)
            error_message: Error message
            **kwargs: Additional context data
        """
        self._logger.error(
            _format(
                "WS_ERROR",
                f"error_type={error_type} user_id={user_id} error={error_message}",
                **kwargs,
            )
        )
